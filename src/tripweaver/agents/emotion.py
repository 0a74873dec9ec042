"""
Emotional state adapter.

Infers how the traveller feels (excited, stressed, tired or neutral) from the
utterance and session, and adapts the tone of the upstream answer.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..domain.capabilities import EMOTIONAL_ADAPTATION
from ..domain.entities import RequestContext, Step, StepContext, StepResult
from ..intent.lexicon import normalize_text, tokenize
from .base import BaseCapabilityAgent

logger = logging.getLogger(__name__)

EMOTION_KEYWORDS: dict[str, set[str]] = {
    "excited": {"excited", "amazing", "thrilled", "love", "wonderful", "great", "happy", "dream"},
    "stressed": {"stressed", "worried", "anxious", "urgent", "asap", "frustrated", "problem", "nervous"},
    "tired": {"tired", "exhausted", "relax", "rest", "slow", "calm", "unwind", "burnout"},
}

_TONE_PREFIX = {
    "excited": "How exciting! ",
    "stressed": "No worries, I've kept this simple and easy to follow. ",
    "tired": "Here's a relaxed version that keeps things easy. ",
    "neutral": "",
}

# Estimated effect of the tone adaptation on the traveller, in [0, 1]
_IMPACT = {
    "excited": 0.9,
    "stressed": 0.8,
    "tired": 0.75,
    "neutral": 0.5,
}


def infer_emotional_state(context: RequestContext) -> str:
    """Return "excited", "stressed", "tired" or "neutral"."""
    declared = context.session_attributes.get("emotional_state")
    if declared in _TONE_PREFIX:
        return declared

    tokens = set(tokenize(context.utterance))
    text = normalize_text(context.utterance)
    scores = {state: len(tokens & words) for state, words in EMOTION_KEYWORDS.items()}
    if "can't wait" in text or "cant wait" in text:
        scores["excited"] += 1
    if text.count("!") >= 2:
        scores["excited"] += 1

    best = max(scores, key=scores.get)
    ranked = sorted(scores.values(), reverse=True)
    if ranked[0] == 0 or ranked[0] == ranked[1]:
        return "neutral"
    return best


class EmotionalStateAdapter(BaseCapabilityAgent):
    """Adapts response tone to the traveller's emotional state."""

    tags = frozenset({EMOTIONAL_ADAPTATION})

    async def handle(self, step: Step, context: StepContext) -> StepResult:
        state = infer_emotional_state(context.request)
        upstream: Optional[str] = context.upstream_text()
        adapted = f"{_TONE_PREFIX[state]}{upstream}" if upstream else None

        logger.debug(f"Emotional state for request {context.request.request_id}: {state}")
        return self._succeeded(
            step,
            {"text": adapted, "emotional_state": state},
            emotional_impact=_IMPACT[state],
        )
