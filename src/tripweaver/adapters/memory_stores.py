"""
In-memory store adapters.

Process-local implementations of the persistence ports, used by the CLI,
by tests, and whenever no database is configured. All state is lost on exit.
"""

from __future__ import annotations

import asyncio
import copy
import logging

from ..domain.entities import MemoryFact, OutcomeRecord, PeerProfile, WeightEntry
from ..domain.ports import IMemoryStore, ILearningStateStore, IPeerDirectory, IPreferenceStore

logger = logging.getLogger(__name__)


class InMemoryPreferenceStore(IPreferenceStore):
    def __init__(self):
        self._preferences: dict[str, dict[str, float]] = {}

    async def get_preferences(self, user_id: str) -> dict[str, float]:
        return dict(self._preferences.get(user_id, {}))

    async def save_preferences(self, user_id: str, preferences: dict[str, float]) -> None:
        self._preferences[user_id] = dict(preferences)


class InMemoryMemoryStore(IMemoryStore):
    """Facts per user, capped at ``max_facts_per_user`` (oldest dropped)."""

    def __init__(self, max_facts_per_user: int = 200):
        self.max_facts_per_user = max_facts_per_user
        self._facts: dict[str, list[MemoryFact]] = {}
        self._lock = asyncio.Lock()

    async def recall(self, user_id: str, limit: int = 50) -> list[MemoryFact]:
        facts = self._facts.get(user_id, [])
        return list(reversed(facts))[:limit]

    async def remember(self, fact: MemoryFact) -> None:
        async with self._lock:
            facts = self._facts.setdefault(fact.user_id, [])
            facts.append(fact)
            if len(facts) > self.max_facts_per_user:
                del facts[: len(facts) - self.max_facts_per_user]


class InMemoryPeerDirectory(IPeerDirectory):
    def __init__(self, profiles: list[PeerProfile] | None = None):
        self._profiles: dict[str, PeerProfile] = {p.user_id: p for p in profiles or []}

    async def list_profiles(self) -> list[PeerProfile]:
        return [copy.deepcopy(p) for p in self._profiles.values()]

    async def upsert_profile(self, profile: PeerProfile) -> None:
        self._profiles[profile.user_id] = copy.deepcopy(profile)


class InMemoryLearningStateStore(ILearningStateStore):
    """Weights and outcome history kept in dictionaries."""

    def __init__(self):
        self.weights: dict[str, WeightEntry] = {}
        self.outcomes: dict[str, OutcomeRecord] = {}

    async def load_weights(self) -> dict[str, WeightEntry]:
        return {key: copy.copy(entry) for key, entry in self.weights.items()}

    async def save_weight(self, key: str, entry: WeightEntry) -> None:
        self.weights[key] = copy.copy(entry)

    async def append_outcome(self, record: OutcomeRecord) -> None:
        # Keyed by record id, so a replay overwrites rather than duplicates
        self.outcomes[record.record_id] = record


__all__ = [
    "InMemoryLearningStateStore",
    "InMemoryMemoryStore",
    "InMemoryPeerDirectory",
    "InMemoryPreferenceStore",
]
