"""
Cross-session memory agent.

Recalls facts from the traveller's earlier sessions that are relevant to the
current request, and captures new trip facts once a plan has been produced.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..domain.capabilities import CROSS_SESSION_MEMORY, MEMORY_CAPTURE
from ..domain.entities import MemoryFact, Step, StepContext, StepResult
from ..domain.ports import IMemoryStore
from ..intent.lexicon import tokenize
from .base import BaseCapabilityAgent

logger = logging.getLogger(__name__)

_STOPWORDS = {
    "a", "an", "the", "to", "in", "of", "for", "and", "or", "with", "on", "at",
    "my", "me", "i", "we", "our", "is", "it", "this", "that", "under", "over",
    "about", "want", "like", "would", "please", "can", "you",
}


def _content_tokens(text: str) -> set[str]:
    return {t for t in tokenize(text) if t not in _STOPWORDS and len(t) > 2}


def describe_trip(intent: str, slots: dict[str, Any]) -> Optional[str]:
    """One-line fact describing the trip in ``slots`` (None if nothing to say)."""
    destination = slots.get("destination")
    if not destination:
        return None
    parts = [f"{intent.replace('_', ' ')}: {destination}"]
    if slots.get("duration_days"):
        parts.append(f"{slots['duration_days']} days")
    if slots.get("budget"):
        parts.append(f"budget {slots.get('currency', '')} {slots['budget']:g}".replace("  ", " "))
    if slots.get("travelers"):
        parts.append(f"{slots['travelers']} travelers")
    return ", ".join(parts)


class CrossSessionMemoryAgent(BaseCapabilityAgent):
    """Recalls and captures trip facts across sessions.

    Args:
        store: Memory store port
        recall_limit: Facts considered per recall
        max_results: Facts returned per recall
    """

    tags = frozenset({CROSS_SESSION_MEMORY, MEMORY_CAPTURE})

    def __init__(self, store: IMemoryStore, recall_limit: int = 50, max_results: int = 3):
        self.store = store
        self.recall_limit = recall_limit
        self.max_results = max_results

    @property
    def mutates_state(self) -> bool:
        return True

    async def handle(self, step: Step, context: StepContext) -> StepResult:
        if step.capability_tag == MEMORY_CAPTURE:
            return await self._capture(step, context)
        return await self._recall(step, context)

    async def _recall(self, step: Step, context: StepContext) -> StepResult:
        query = _content_tokens(context.request.utterance)
        if context.slots.get("destination"):
            query |= _content_tokens(context.slots["destination"])

        facts = await self.store.recall(context.request.user_id, limit=self.recall_limit)
        scored = []
        for fact in facts:
            fact_tokens = set(fact.tags) or _content_tokens(fact.content)
            if not fact_tokens:
                continue
            overlap = len(query & fact_tokens) / len(fact_tokens)
            if overlap > 0:
                scored.append((overlap, fact))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        relevant = [fact.content for _, fact in scored[: self.max_results]]

        text = None
        if relevant:
            text = "Previously discussed: " + "; ".join(relevant)
        return self._succeeded(step, {"facts": relevant, "text": text})

    async def _capture(self, step: Step, context: StepContext) -> StepResult:
        content = describe_trip(context.intent, context.slots)
        if content is None:
            return self._succeeded(step, {"captured": None})

        fact = MemoryFact(
            user_id=context.request.user_id,
            content=content,
            tags=sorted(_content_tokens(content)),
            source_request_id=context.request.request_id,
        )
        await self.store.remember(fact)
        logger.debug(f"Captured memory for {fact.user_id}: {content}")
        return self._succeeded(step, {"captured": content})
