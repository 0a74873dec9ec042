"""
Agent Registry.

Lookup table from capability tag to the capability agent serving it. Built
once at startup; the workflow executor routes agent steps through it.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..domain.ports import ICapabilityAgent
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Capability tag -> agent lookup table.

    Usage:
        registry = AgentRegistry([EmotionalStateAdapter(), CarbonEstimator()])
        agent = registry.get("carbon_estimation")
    """

    def __init__(self, agents: Optional[Iterable[ICapabilityAgent]] = None):
        self._agents: dict[str, ICapabilityAgent] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: ICapabilityAgent) -> None:
        """Register an agent under each of its capability tags.

        Raises:
            ConfigurationError: If a tag is already served by another agent
        """
        duplicates = sorted(tag for tag in agent.capability_tags if tag in self._agents)
        if duplicates:
            raise ConfigurationError(
                f"Capability tags already registered: {duplicates}",
                invalid_keys=duplicates,
            )
        for tag in agent.capability_tags:
            self._agents[tag] = agent
        logger.info(
            f"Registered agent {agent.__class__.__name__} for {sorted(agent.capability_tags)}"
        )

    def get(self, tag: str) -> Optional[ICapabilityAgent]:
        return self._agents.get(tag)

    def __contains__(self, tag: str) -> bool:
        return tag in self._agents

    @property
    def tags(self) -> list[str]:
        return sorted(self._agents)

    @property
    def agents(self) -> list[ICapabilityAgent]:
        unique: list[ICapabilityAgent] = []
        for agent in self._agents.values():
            if agent not in unique:
                unique.append(agent)
        return unique
