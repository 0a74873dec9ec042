"""Capability agents and the capability-tag registry."""

from .base import AGENT_STEP_COST, BaseCapabilityAgent
from .carbon import EnvironmentalImpactAgent
from .contingency import ContingencyReplanner
from .emotion import EmotionalStateAdapter
from .memory import CrossSessionMemoryAgent
from .peer_matching import PeerMatchingAgent
from .preference import PreferenceInferenceAgent
from .registry import AgentRegistry

__all__ = [
    "AGENT_STEP_COST",
    "BaseCapabilityAgent",
    "EnvironmentalImpactAgent",
    "ContingencyReplanner",
    "EmotionalStateAdapter",
    "CrossSessionMemoryAgent",
    "PeerMatchingAgent",
    "PreferenceInferenceAgent",
    "AgentRegistry",
]
