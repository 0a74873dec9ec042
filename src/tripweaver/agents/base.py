"""
Base Capability Agent Implementation.

Provides the result helpers shared by all capability agents.
"""

from __future__ import annotations

import logging
from abc import ABC
from typing import Any

from ..domain.entities import Step, StepResult, StepStatus
from ..domain.ports import ICapabilityAgent

logger = logging.getLogger(__name__)

# Compute cost charged per executed agent step
AGENT_STEP_COST = 0.0005


class BaseCapabilityAgent(ICapabilityAgent, ABC):
    """Base class for capability agents.

    Subclasses set ``tags`` and implement ``handle``.
    """

    tags: frozenset[str] = frozenset()
    cost_per_step: float = AGENT_STEP_COST

    @property
    def capability_tags(self) -> frozenset[str]:
        return self.tags

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def _succeeded(self, step: Step, output: Any, **kwargs) -> StepResult:
        """Build a SUCCEEDED result for ``step``."""
        return StepResult(
            step_id=step.step_id,
            status=StepStatus.SUCCEEDED,
            output=output,
            cost=self.cost_per_step,
            agent_tag=step.capability_tag,
            **kwargs,
        )
