"""
Peer matching agent.

Finds travellers with similar preference vectors (cosine similarity) so the
assistant can point at trips that worked for people like this one.
"""

from __future__ import annotations

import logging

from ..domain.capabilities import PEER_MATCHING
from ..domain.entities import PeerMatch, Step, StepContext, StepResult
from ..domain.ports import IPeerDirectory, IPreferenceStore
from ..intent.analyzer import cosine_similarity
from .base import BaseCapabilityAgent

logger = logging.getLogger(__name__)


class PeerMatchingAgent(BaseCapabilityAgent):
    """Top-k most similar travellers, excluding the requester.

    Args:
        preferences: Source of the requester's preference vector
        directory: Peer profiles to match against
        top_k: Maximum matches returned
        min_similarity: Matches below this similarity are dropped
    """

    tags = frozenset({PEER_MATCHING})

    def __init__(
        self,
        preferences: IPreferenceStore,
        directory: IPeerDirectory,
        top_k: int = 3,
        min_similarity: float = 0.3,
    ):
        self.preferences = preferences
        self.directory = directory
        self.top_k = top_k
        self.min_similarity = min_similarity

    async def handle(self, step: Step, context: StepContext) -> StepResult:
        user_id = context.request.user_id
        vector = await self.preferences.get_preferences(user_id)

        matches: list[PeerMatch] = []
        if vector:
            for profile in await self.directory.list_profiles():
                if profile.user_id == user_id:
                    continue
                similarity = cosine_similarity(vector, profile.preferences)
                if similarity >= self.min_similarity:
                    matches.append(
                        PeerMatch(
                            user_id=profile.user_id,
                            similarity=round(similarity, 4),
                            display_name=profile.display_name,
                        )
                    )
        matches.sort(key=lambda m: m.similarity, reverse=True)
        matches = matches[: self.top_k]

        return self._succeeded(
            step,
            {
                "matches": [
                    {"user_id": m.user_id, "similarity": m.similarity, "display_name": m.display_name}
                    for m in matches
                ]
            },
        )
