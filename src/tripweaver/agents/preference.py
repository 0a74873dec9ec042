"""
Preference inference agent.

Extracts preference signals from the request and folds them into the
traveller's persisted preference weights with an exponential moving average.
Writes persisted state, so its steps are never cached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ..domain.capabilities import PREFERENCE_INFERENCE
from ..domain.entities import PeerProfile, Step, StepContext, StepResult
from ..domain.ports import IPeerDirectory, IPreferenceStore
from ..intent.lexicon import tokenize
from .base import BaseCapabilityAgent

logger = logging.getLogger(__name__)

PREFERENCE_SIGNALS: dict[str, set[str]] = {
    "budget": {"cheap", "budget", "affordable", "backpacking", "hostel", "save"},
    "luxury": {"luxury", "upscale", "boutique", "spa", "premium", "resort"},
    "nature": {"hiking", "beach", "mountain", "nature", "outdoor", "park", "lake"},
    "culture": {"museum", "history", "art", "culture", "cultural", "architecture"},
    "food": {"food", "cuisine", "restaurant", "wine", "foodie", "market"},
    "nightlife": {"nightlife", "bar", "party", "club", "music"},
    "relaxation": {"relax", "quiet", "calm", "slow", "unwind"},
    "adventure": {"adventure", "surfing", "diving", "climbing", "kayaking", "trek"},
    "family": {"kid", "family", "children", "child"},
    "eco": {"sustainable", "eco", "train", "green", "carbon"},
}

# Daily spend below which a trip counts as a budget signal
BUDGET_PER_DAY_THRESHOLD = 120.0


def extract_preference_signals(utterance: str, slots: dict[str, Any]) -> dict[str, float]:
    """Preference category -> signal strength in [0, 1]."""
    tokens = set(tokenize(utterance))
    signals = {
        category: 1.0
        for category, words in PREFERENCE_SIGNALS.items()
        if tokens & words
    }

    budget = slots.get("budget")
    days = slots.get("duration_days")
    if budget and days:
        per_day = budget / days / max(1, slots.get("travelers", 1))
        if per_day < BUDGET_PER_DAY_THRESHOLD:
            signals["budget"] = max(signals.get("budget", 0.0), 0.7)
        elif per_day > BUDGET_PER_DAY_THRESHOLD * 4:
            signals["luxury"] = max(signals.get("luxury", 0.0), 0.7)
    return signals


class PreferenceInferenceAgent(BaseCapabilityAgent):
    """Learns per-user preference weights from each request.

    Args:
        store: Persisted preference weights
        peers: Optional peer directory kept in sync with the weights
        smoothing: EMA factor applied to each observed signal
    """

    tags = frozenset({PREFERENCE_INFERENCE})

    def __init__(
        self,
        store: IPreferenceStore,
        peers: Optional[IPeerDirectory] = None,
        smoothing: float = 0.3,
    ):
        self.store = store
        self.peers = peers
        self.smoothing = smoothing
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def mutates_state(self) -> bool:
        return True

    async def handle(self, step: Step, context: StepContext) -> StepResult:
        user_id = context.request.user_id
        signals = extract_preference_signals(context.request.utterance, context.slots)

        # Read-modify-write, serialized per user
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            preferences = dict(await self.store.get_preferences(user_id))
            for category, signal in signals.items():
                previous = preferences.get(category, 0.0)
                preferences[category] = round(
                    (1 - self.smoothing) * previous + self.smoothing * signal, 4
                )

            if signals:
                await self.store.save_preferences(user_id, preferences)
                if self.peers is not None:
                    await self.peers.upsert_profile(
                        PeerProfile(user_id=user_id, preferences=dict(preferences))
                    )
                logger.debug(f"Updated preferences for {user_id}: {sorted(signals)}")

        return self._succeeded(
            step,
            {"signals": signals, "preferences": preferences},
        )
