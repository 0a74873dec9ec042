"""Outcome-driven learning of intent and provider weights."""

from .optimizer import LearningOptimizer
from .reward import (
    SIGNAL_QUALITY,
    age_days,
    cost_penalty,
    outcome_reward,
    step_reward,
    updated_weight,
)

__all__ = [
    "LearningOptimizer",
    "SIGNAL_QUALITY",
    "age_days",
    "cost_penalty",
    "outcome_reward",
    "step_reward",
    "updated_weight",
]
