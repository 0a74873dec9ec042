"""
Learning Optimizer.

Keeps bounded weights for intents (``intent:<label>``) and providers
(``provider:<id>``) and nudges them toward the reward of each finished
request:

    w <- w + learning_rate * (reward - w) * discount_factor ** age_days

Records are idempotent by ``record_id``: replaying one is a no-op. Cancelled
outcomes are kept in history without touching weights. Each key has its own
lock, so concurrent outcomes for different keys never wait on each other.
Persistence is optional; a store failure is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..config import LearningConfig
from ..domain.entities import (
    ComponentHealth,
    HealthStatus,
    OutcomeRecord,
    OutcomeSignal,
    WeightEntry,
)
from ..domain.ports import ILearningStateStore
from ..exceptions import LearningUpdateFailedError
from ..intent.analyzer import intent_key
from ..providers.fallback import FALLBACK_PROVIDER_ID
from ..providers.manager import provider_key
from .reward import age_days, outcome_reward, step_reward, updated_weight

logger = logging.getLogger(__name__)


class LearningOptimizer:
    """Outcome-driven weight learner with epsilon-greedy exploration.

    Implements ``WeightReader``, so it can be handed read-only to the intent
    analyzer and the provider manager.

    Example:
        optimizer = LearningOptimizer(LearningConfig())
        await optimizer.record(outcome)
        optimizer.intent_weight("trip_planning")
    """

    def __init__(
        self,
        config: Optional[LearningConfig] = None,
        store: Optional[ILearningStateStore] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.config = config or LearningConfig()
        self.store = store
        self._rng = rng or random.Random()
        self._clock = clock

        self._weights: dict[str, WeightEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._seen: dict[str, datetime] = {}
        # Keys already updated for records whose application did not finish
        self._partial: dict[str, set[str]] = {}
        self._history: list[OutcomeRecord] = []

        self._records_applied = 0
        self._replays_ignored = 0
        self._explorations = 0
        self._store_failures = 0
        self._last_store_error: Optional[str] = None

    # ============================================
    # Weight Access
    # ============================================

    def get_weight(self, key: str) -> float:
        entry = self._weights.get(key)
        return entry.value if entry else self.config.initial_weight

    def intent_weight(self, label: str) -> float:
        return self.get_weight(intent_key(label))

    def provider_weight(self, provider_id: str) -> float:
        return self.get_weight(provider_key(provider_id))

    def weights(self) -> dict[str, float]:
        """Snapshot of all learned weights."""
        return {key: entry.value for key, entry in self._weights.items()}

    async def load(self) -> int:
        """Load persisted weights from the store (if any).

        Returns:
            Number of weights loaded
        """
        if self.store is None:
            return 0
        try:
            loaded = await self.store.load_weights()
        except Exception as e:
            logger.warning(f"Could not load learning state: {e}")
            return 0
        self._weights.update(loaded)
        logger.info(f"Loaded {len(loaded)} learned weights")
        return len(loaded)

    # ============================================
    # Recording Outcomes
    # ============================================

    async def record(self, outcome: OutcomeRecord) -> bool:
        """Apply one outcome record.

        Returns:
            False if the record was already seen (replay), True otherwise
        """
        if outcome.record_id in self._seen:
            self._replays_ignored += 1
            logger.debug(f"Ignoring replayed outcome {outcome.record_id}")
            return False
        applied = self._partial.get(outcome.record_id)
        if applied is None:
            applied = self._partial[outcome.record_id] = set()
            self._history.append(outcome)
            await self._persist_outcome(outcome)
        else:
            logger.info(f"Resuming outcome {outcome.record_id} after {sorted(applied)}")

        if outcome.signal == OutcomeSignal.CANCELLED:
            self._mark_seen(outcome)
            logger.debug(f"Outcome {outcome.record_id} cancelled; weights unchanged")
            return True

        age = age_days(outcome.timestamp, self._clock())
        updates = {intent_key(outcome.intent): outcome_reward(outcome, self.config)}

        provider_rewards: dict[str, list[float]] = {}
        for metric in outcome.step_metrics:
            if not metric.provider_id or metric.provider_id == FALLBACK_PROVIDER_ID:
                continue
            provider_rewards.setdefault(provider_key(metric.provider_id), []).append(
                step_reward(metric, outcome, self.config)
            )
        for key, rewards in provider_rewards.items():
            updates[key] = sum(rewards) / len(rewards)

        for key, reward in updates.items():
            if key in applied:
                continue
            await self._update(key, reward, age)
            applied.add(key)

        self._mark_seen(outcome)
        self._records_applied += 1
        logger.debug(
            f"Applied outcome {outcome.record_id} ({outcome.signal.value}) to {sorted(updates)}"
        )
        return True

    def _mark_seen(self, outcome: OutcomeRecord) -> None:
        self._partial.pop(outcome.record_id, None)
        self._seen[outcome.record_id] = outcome.timestamp or self._clock()

    async def _update(self, key: str, reward: float, age: float) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._weights.get(key) or WeightEntry(value=self.config.initial_weight)
            new_entry = WeightEntry(
                value=updated_weight(entry.value, reward, age, self.config),
                updates=entry.updates + 1,
                last_updated=self._clock(),
            )
            self._weights[key] = new_entry
            try:
                await self._persist_weight(key, new_entry)
            except LearningUpdateFailedError as e:
                self._store_failures += 1
                self._last_store_error = str(e)
                logger.warning(f"Learning state not persisted: {e}")

    async def _persist_weight(self, key: str, entry: WeightEntry) -> None:
        if self.store is None:
            return
        try:
            await self.store.save_weight(key, entry)
        except Exception as e:
            raise LearningUpdateFailedError(
                f"Failed to save weight '{key}'", key=key, cause=e
            ) from e

    async def _persist_outcome(self, outcome: OutcomeRecord) -> None:
        if self.store is None:
            return
        try:
            await self.store.append_outcome(outcome)
        except Exception as e:
            self._store_failures += 1
            self._last_store_error = str(e)
            logger.warning(f"Outcome {outcome.record_id} not persisted: {e}")

    # ============================================
    # Exploration
    # ============================================

    def explore(self, ordered: list[str]) -> list[str]:
        """Epsilon-greedy reordering of a ranked candidate list.

        With probability ``exploration_rate`` a random non-first candidate is
        promoted to the front; otherwise the order is unchanged.
        """
        if len(ordered) < 2 or self._rng.random() >= self.config.exploration_rate:
            return list(ordered)
        index = self._rng.randrange(1, len(ordered))
        self._explorations += 1
        reordered = list(ordered)
        reordered.insert(0, reordered.pop(index))
        return reordered

    # ============================================
    # Maintenance
    # ============================================

    def cleanup(self) -> int:
        """Drop history and replay markers older than the retention window.

        Returns:
            Number of history records removed
        """
        cutoff = self._clock() - timedelta(days=self.config.retention_days)
        before = len(self._history)
        self._history = [r for r in self._history if r.timestamp and r.timestamp >= cutoff]
        self._seen = {rid: ts for rid, ts in self._seen.items() if ts >= cutoff}
        removed = before - len(self._history)
        if removed:
            logger.info(f"Pruned {removed} outcome records older than {cutoff.isoformat()}")
        return removed

    @property
    def history(self) -> list[OutcomeRecord]:
        return list(self._history)

    def get_metrics(self) -> dict[str, Any]:
        return {
            "records_applied": self._records_applied,
            "replays_ignored": self._replays_ignored,
            "history_size": len(self._history),
            "tracked_weights": len(self._weights),
            "explorations": self._explorations,
            "store_failures": self._store_failures,
        }

    def health_check(self) -> ComponentHealth:
        status = HealthStatus.DEGRADED if self._store_failures else HealthStatus.HEALTHY
        details: dict[str, Any] = {
            "tracked_weights": len(self._weights),
            "store_failures": self._store_failures,
        }
        if self._last_store_error:
            details["last_store_error"] = self._last_store_error
        return ComponentHealth(name="learning", status=status, details=details)


__all__ = ["LearningOptimizer"]
