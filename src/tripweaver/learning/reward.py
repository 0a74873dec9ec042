"""
Reward signals for the learning optimizer.

An outcome's reward is the explicit user feedback when present, otherwise the
implicit quality signal, minus a cost penalty. Rewards are clipped to [0, 1],
which keeps every learned weight in [0, 1].
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..config import LearningConfig
from ..domain.entities import OutcomeRecord, OutcomeSignal, StepMetric

# Implicit quality by outcome signal, used when a record carries no quality
SIGNAL_QUALITY = {
    OutcomeSignal.COMPLETED: 1.0,
    OutcomeSignal.DEGRADED: 0.5,
    OutcomeSignal.FAILED: 0.0,
    OutcomeSignal.CANCELLED: 0.0,
}


def clip(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def cost_penalty(cost: float, config: LearningConfig) -> float:
    """Penalty in [0, cost_weight]; saturates at ``cost_reference``."""
    if cost <= 0 or config.cost_reference <= 0:
        return 0.0
    return config.cost_weight * min(1.0, cost / config.cost_reference)


def outcome_reward(record: OutcomeRecord, config: LearningConfig) -> float:
    """Reward for the record's intent."""
    if record.feedback is not None:
        base = clip(record.feedback)
    else:
        base = clip(record.quality_signal)
    return clip(base - cost_penalty(record.total_cost, config))


def step_reward(metric: StepMetric, record: OutcomeRecord, config: LearningConfig) -> float:
    """Reward for the provider that served one step.

    A failed call earns nothing; a successful one earns the request's quality
    less the step's own cost penalty.
    """
    if not metric.success:
        return 0.0
    base = record.feedback if record.feedback is not None else record.quality_signal
    return clip(clip(base) - cost_penalty(metric.cost, config))


def age_days(timestamp: Optional[datetime], now: datetime) -> float:
    """Age of an outcome in days (0 for missing or future timestamps)."""
    if timestamp is None:
        return 0.0
    return max(0.0, (now - timestamp).total_seconds() / 86400)


def updated_weight(current: float, reward: float, age: float, config: LearningConfig) -> float:
    """``w + learning_rate * (reward - w) * discount_factor ** age``."""
    step = config.learning_rate * (config.discount_factor ** age)
    return clip(current + step * (reward - current))


__all__ = [
    "SIGNAL_QUALITY",
    "age_days",
    "clip",
    "cost_penalty",
    "outcome_reward",
    "step_reward",
    "updated_weight",
]
