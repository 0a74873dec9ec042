"""
Tests for the learning optimizer and reward signals.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.tripweaver.adapters import InMemoryLearningStateStore
from src.tripweaver.config import LearningConfig
from src.tripweaver.domain.capabilities import ITINERARY_GENERATION
from src.tripweaver.domain.entities import (
    HealthStatus,
    OutcomeRecord,
    OutcomeSignal,
    StepMetric,
    WeightEntry,
)
from src.tripweaver.learning import LearningOptimizer
from src.tripweaver.learning.reward import age_days, cost_penalty, outcome_reward

NOW = datetime(2026, 3, 1, 12, 0, 0)


class FixedRandom:
    """random.Random stand-in with scripted draws."""

    def __init__(self, value=0.0, index=1):
        self.value = value
        self.index = index

    def random(self):
        return self.value

    def randrange(self, start, stop):
        return self.index


def outcome(
    request_id="req-1",
    signal=OutcomeSignal.COMPLETED,
    quality=1.0,
    intent="trip_planning",
    metrics=(),
    feedback=None,
    total_cost=0.0,
    timestamp=NOW,
):
    return OutcomeRecord(
        request_id=request_id,
        user_id="alice",
        intent=intent,
        signal=signal,
        quality_signal=quality,
        step_metrics=list(metrics),
        feedback=feedback,
        total_cost=total_cost,
        timestamp=timestamp,
    )


@pytest.fixture
def config():
    return LearningConfig(learning_rate=0.1, discount_factor=0.95, exploration_rate=0.0)


@pytest.fixture
def optimizer(config):
    return LearningOptimizer(config, clock=lambda: NOW)


# ============================================
# Rewards
# ============================================

class TestRewards:
    """Tests for reward computation."""

    def test_cost_penalty_saturates(self, config):
        assert cost_penalty(0.0, config) == 0.0
        assert cost_penalty(0.01, config) == pytest.approx(0.04)
        assert cost_penalty(10.0, config) == pytest.approx(config.cost_weight)

    def test_feedback_overrides_quality(self, config):
        assert outcome_reward(outcome(quality=1.0, feedback=0.2), config) == pytest.approx(0.2)

    def test_reward_is_clipped(self, config):
        assert outcome_reward(outcome(quality=0.0, total_cost=1.0), config) == 0.0
        assert outcome_reward(outcome(feedback=3.0), config) == 1.0

    def test_age_days(self):
        assert age_days(NOW - timedelta(days=2), NOW) == pytest.approx(2.0)
        assert age_days(NOW + timedelta(days=2), NOW) == 0.0
        assert age_days(None, NOW) == 0.0


# ============================================
# Weight Updates
# ============================================

class TestWeightUpdates:
    """Tests for the update rule."""

    async def test_completed_outcome_raises_intent_weight(self, optimizer):
        assert await optimizer.record(outcome())

        assert optimizer.intent_weight("trip_planning") == pytest.approx(0.55)
        assert optimizer.intent_weight("book_hotel") == pytest.approx(0.5)

    async def test_failed_outcome_lowers_intent_weight(self, optimizer):
        await optimizer.record(outcome(signal=OutcomeSignal.FAILED, quality=0.0))
        assert optimizer.intent_weight("trip_planning") == pytest.approx(0.45)

    async def test_cost_reduces_reward(self, optimizer):
        await optimizer.record(outcome(total_cost=0.01))
        assert optimizer.intent_weight("trip_planning") == pytest.approx(0.546)

    async def test_old_outcomes_are_discounted(self, optimizer):
        await optimizer.record(outcome(timestamp=NOW - timedelta(days=10)))
        expected = 0.5 + 0.1 * 0.95 ** 10 * 0.5
        assert optimizer.intent_weight("trip_planning") == pytest.approx(expected)

    async def test_provider_weights_follow_step_metrics(self, optimizer):
        metrics = [
            StepMetric("itinerary", ITINERARY_GENERATION, True, cost=0.0001, provider_id="local"),
            StepMetric("guidance", ITINERARY_GENERATION, False, provider_id="hosted"),
            StepMetric("answer", ITINERARY_GENERATION, True, provider_id="fallback"),
            StepMetric("tone_adaptation", "emotional_adaptation", True),
        ]

        await optimizer.record(outcome(metrics=metrics))

        assert optimizer.provider_weight("local") == pytest.approx(0.5 + 0.1 * (0.9996 - 0.5))
        assert optimizer.provider_weight("hosted") == pytest.approx(0.45)
        assert "provider:fallback" not in optimizer.weights()

    async def test_weights_stay_bounded(self, optimizer):
        for i in range(200):
            await optimizer.record(outcome(request_id=f"req-{i}", feedback=1.0))
        assert 0.0 <= optimizer.intent_weight("trip_planning") <= 1.0
        assert optimizer.intent_weight("trip_planning") > 0.99

    async def test_concurrent_updates_are_not_lost(self, optimizer):
        await asyncio.gather(*(optimizer.record(outcome(request_id=f"req-{i}")) for i in range(10)))

        expected = 1.0 - 0.5 * 0.9 ** 10
        assert optimizer.intent_weight("trip_planning") == pytest.approx(expected)
        assert optimizer.get_metrics()["records_applied"] == 10


# ============================================
# Idempotency and Cancellation
# ============================================

class TestRecordSemantics:
    """Tests for replay and cancellation handling."""

    async def test_replay_is_ignored(self, optimizer):
        record = outcome()
        assert await optimizer.record(record)
        assert not await optimizer.record(outcome())

        assert optimizer.intent_weight("trip_planning") == pytest.approx(0.55)
        assert optimizer.get_metrics()["replays_ignored"] == 1
        assert len(optimizer.history) == 1

    async def test_retry_after_partial_failure_finishes_record(self, optimizer):
        update = optimizer._update
        failures = []

        async def flaky_update(key, reward, age):
            if key == "provider:local" and not failures:
                failures.append(key)
                raise RuntimeError("weight table locked")
            await update(key, reward, age)

        optimizer._update = flaky_update
        metrics = [StepMetric("itinerary", ITINERARY_GENERATION, True, provider_id="local")]

        with pytest.raises(RuntimeError):
            await optimizer.record(outcome(metrics=metrics))
        assert "provider:local" not in optimizer.weights()

        assert await optimizer.record(outcome(metrics=metrics))
        assert not await optimizer.record(outcome(metrics=metrics))

        # The intent weight applied before the failure is not applied twice
        assert optimizer.intent_weight("trip_planning") == pytest.approx(0.55)
        assert optimizer.provider_weight("local") == pytest.approx(0.55)
        assert len(optimizer.history) == 1
        assert optimizer.get_metrics()["records_applied"] == 1

    def test_record_id_is_derived_from_request_id(self):
        assert outcome("req-9").record_id == outcome("req-9").record_id
        assert outcome("req-9").record_id != outcome("req-10").record_id

    async def test_cancelled_outcome_kept_without_update(self, optimizer):
        assert await optimizer.record(outcome(signal=OutcomeSignal.CANCELLED, quality=0.0))

        assert optimizer.weights() == {}
        assert len(optimizer.history) == 1


# ============================================
# Persistence
# ============================================

class TestPersistence:
    """Tests for the learning state store."""

    async def test_weights_and_outcomes_are_persisted(self, config):
        store = InMemoryLearningStateStore()
        optimizer = LearningOptimizer(config, store=store, clock=lambda: NOW)

        record = outcome()
        await optimizer.record(record)

        assert store.weights["intent:trip_planning"].value == pytest.approx(0.55)
        assert store.weights["intent:trip_planning"].updates == 1
        assert record.record_id in store.outcomes

    async def test_load_restores_weights(self, config):
        store = InMemoryLearningStateStore()
        store.weights["intent:book_hotel"] = WeightEntry(value=0.8, updates=4)
        optimizer = LearningOptimizer(config, store=store)

        assert await optimizer.load() == 1
        assert optimizer.intent_weight("book_hotel") == pytest.approx(0.8)

    async def test_store_failure_is_logged_and_skipped(self, config):
        store = MagicMock()
        store.save_weight = AsyncMock(side_effect=ConnectionError("db down"))
        store.append_outcome = AsyncMock()
        optimizer = LearningOptimizer(config, store=store, clock=lambda: NOW)

        assert await optimizer.record(outcome())

        assert optimizer.intent_weight("trip_planning") == pytest.approx(0.55)
        assert optimizer.get_metrics()["store_failures"] == 1
        health = optimizer.health_check()
        assert health.status == HealthStatus.DEGRADED
        assert "LEARNING_UPDATE_FAILED" in health.details["last_store_error"]

    async def test_load_failure_returns_zero(self, config):
        store = MagicMock()
        store.load_weights = AsyncMock(side_effect=ConnectionError("db down"))
        optimizer = LearningOptimizer(config, store=store)

        assert await optimizer.load() == 0


# ============================================
# Exploration and Maintenance
# ============================================

class TestExploration:
    """Tests for epsilon-greedy exploration."""

    def test_no_exploration_keeps_order(self, config):
        optimizer = LearningOptimizer(config, rng=FixedRandom(value=0.0))
        assert optimizer.explore(["a", "b", "c"]) == ["a", "b", "c"]

    def test_exploration_promotes_a_candidate(self):
        optimizer = LearningOptimizer(
            LearningConfig(exploration_rate=0.3), rng=FixedRandom(value=0.1, index=2)
        )

        assert optimizer.explore(["a", "b", "c"]) == ["c", "a", "b"]
        assert optimizer.get_metrics()["explorations"] == 1

    def test_draw_above_rate_exploits(self):
        optimizer = LearningOptimizer(
            LearningConfig(exploration_rate=0.3), rng=FixedRandom(value=0.5, index=2)
        )
        assert optimizer.explore(["a", "b", "c"]) == ["a", "b", "c"]

    def test_single_candidate(self):
        optimizer = LearningOptimizer(LearningConfig(exploration_rate=1.0))
        assert optimizer.explore(["a"]) == ["a"]


class TestCleanup:
    """Tests for retention pruning."""

    async def test_prunes_old_history(self, config):
        optimizer = LearningOptimizer(config, clock=lambda: NOW)
        await optimizer.record(outcome("old", timestamp=NOW - timedelta(days=120)))
        await optimizer.record(outcome("new", timestamp=NOW - timedelta(days=1)))

        assert optimizer.cleanup() == 1
        assert [r.request_id for r in optimizer.history] == ["new"]
        # The pruned record id is forgotten along with its history
        assert await optimizer.record(outcome("old", timestamp=NOW - timedelta(days=120)))
