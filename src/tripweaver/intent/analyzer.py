"""
Intent analyzer.

Turns an utterance plus its request context into a weighted set of intent
candidates:

1. Score every lexicon intent from keyword, phrase, slot, conversation and
   session evidence (at most ``width`` candidates survive).
2. Merge candidates whose feature vectors are near-duplicates
   (cosine similarity above ``interference_sensitivity``).
3. Normalize with a reserved uncertainty mass so weak evidence never reaches
   full confidence.
4. Resolve to a single intent when the top weight reaches
   ``coherence_threshold``; otherwise return the top-k candidates unresolved.

   Every set carries the utterance language (Arabic or English), the Arabic
   dialect when there is one, and the intents related to the primary one.

The analyzer never raises. Anything it cannot score becomes the
``general_inquiry`` fallback.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from ..config import IntentConfig
from ..domain.entities import (
    GENERAL_INQUIRY,
    IntentHypothesis,
    IntentHypothesisSet,
    RelatedIntent,
    RequestContext,
)
from ..domain.ports import WeightReader
from .lexicon import (
    INTENT_LEXICON,
    RELATED_INTENTS,
    detect_dialect,
    detect_language,
    extract_slots,
    lexical_features,
    normalize_text,
    tokenize,
)

logger = logging.getLogger(__name__)

# Session attribute naming the intent of the previous turn
LAST_INTENT_ATTRIBUTE = "last_intent"


def intent_key(label: str) -> str:
    """Learning-state key for an intent label."""
    return f"intent:{label}"


def cosine_similarity(a: dict[str, float], b: dict[str, float]) -> float:
    """Cosine similarity of two sparse vectors."""
    if not a or not b:
        return 0.0
    dot = sum(value * b.get(key, 0.0) for key, value in a.items())
    norm_a = math.sqrt(sum(v * v for v in a.values()))
    norm_b = math.sqrt(sum(v * v for v in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class IntentAnalyzer:
    """Weighted-candidate intent classifier.

    Example:
        analyzer = IntentAnalyzer(IntentConfig(), weights=optimizer)
        hypotheses = analyzer.analyze("plan a 5-day trip to Lisbon", context)
        hypotheses.resolved_intent  # "trip_planning"
    """

    def __init__(
        self,
        config: Optional[IntentConfig] = None,
        weights: Optional[WeightReader] = None,
    ):
        """Initialize the analyzer.

        Args:
            config: Intent configuration
            weights: Read-only learned weights (neutral 0.5 when omitted)
        """
        self.config = config or IntentConfig()
        self._weights = weights

    def analyze(self, utterance: Any, context: Optional[RequestContext] = None) -> IntentHypothesisSet:
        """Score an utterance into an intent hypothesis set.

        Args:
            utterance: Free-form request text (non-strings fall back)
            context: Request context supplying history and session attributes

        Returns:
            IntentHypothesisSet (never empty, weights sum to <= 1)
        """
        if not isinstance(utterance, str) or not utterance.strip():
            return self._fallback({})

        try:
            return self._analyze(utterance, context)
        except Exception as e:
            logger.warning(f"Intent scoring failed, using fallback: {e}")
            return self._fallback({})

    # ============================================
    # Scoring
    # ============================================

    def _analyze(self, utterance: str, context: Optional[RequestContext]) -> IntentHypothesisSet:
        slots = extract_slots(utterance)
        language = detect_language(utterance)
        dialect = detect_dialect(utterance)
        features = self._score_features(utterance, slots, context)

        scored = []
        for label, vector in features.items():
            raw = sum(vector.values())
            if raw <= 0:
                continue
            scored.append([label, raw * self._learned_factor(label), vector, []])

        if not scored:
            return self._fallback(slots, language, dialect)

        scored.sort(key=lambda c: c[1], reverse=True)
        candidates = self._interfere(scored[: self.config.width])

        total = sum(c[1] for c in candidates) + self.config.uncertainty_mass
        hypotheses = [
            IntentHypothesis(
                label=label,
                weight=score / total,
                features=dict(vector),
                merged_from=merged,
            )
            for label, score, vector, merged in candidates
        ]
        hypotheses.sort(key=lambda h: h.weight, reverse=True)

        top = hypotheses[0]
        if top.weight >= self.config.coherence_threshold:
            logger.debug(f"Intent resolved: {top.label} ({top.weight:.2f})")
            return IntentHypothesisSet(
                hypotheses=hypotheses,
                coherence=top.weight,
                resolved_intent=top.label,
                slots=slots,
                language=language,
                dialect=dialect,
                related_intents=self._related(top.label, hypotheses),
            )

        logger.debug(
            f"Intent unresolved, candidates: "
            f"{[(h.label, round(h.weight, 2)) for h in hypotheses[: self.config.top_k]]}"
        )
        return IntentHypothesisSet(
            hypotheses=hypotheses[: self.config.top_k],
            coherence=top.weight,
            resolved_intent=None,
            slots=slots,
            language=language,
            dialect=dialect,
            related_intents=self._related(top.label, hypotheses),
        )

    def _score_features(
        self,
        utterance: str,
        slots: dict[str, Any],
        context: Optional[RequestContext],
    ) -> dict[str, dict[str, float]]:
        """Feature vector per intent label (only labels with evidence)."""
        text = normalize_text(utterance)
        tokens = set(tokenize(utterance))
        vectors: dict[str, dict[str, float]] = {}

        for label, lexicon in INTENT_LEXICON.items():
            vector = lexical_features(lexicon, tokens, text)
            if vector:
                for slot, weight in lexicon.slot_features.items():
                    if slot in slots:
                        vector[f"slot:{slot}"] = weight
                vectors[label] = vector

        if context is not None:
            self._add_history_evidence(vectors, context)
            last_intent = context.session_attributes.get(LAST_INTENT_ATTRIBUTE)
            if isinstance(last_intent, str) and last_intent in INTENT_LEXICON:
                vectors.setdefault(last_intent, {})["session:last_intent"] = 0.5

        return vectors

    def _add_history_evidence(
        self, vectors: dict[str, dict[str, float]], context: RequestContext
    ) -> None:
        """Add discounted keyword evidence from recent user turns."""
        window = self.config.context_window
        if window <= 0:
            return
        turns = [t for t in context.conversation_history[-window:] if t.role == "user"]

        for distance, turn in enumerate(reversed(turns), start=1):
            discount = self.config.history_decay ** distance
            if discount < 0.01:
                break
            text = normalize_text(turn.content)
            tokens = set(tokenize(turn.content))
            for label, lexicon in INTENT_LEXICON.items():
                for name, weight in lexical_features(lexicon, tokens, text).items():
                    vector = vectors.setdefault(label, {})
                    vector[name] = vector.get(name, 0.0) + weight * discount

    def _learned_factor(self, label: str) -> float:
        if self._weights is None:
            return 1.0
        learned = self._weights.get_weight(intent_key(label))
        return max(0.0, 1.0 + self.config.learning_bias * (learned - 0.5))

    def _interfere(self, scored: list[list]) -> list[list]:
        """Merge near-duplicate candidates into the stronger one."""
        kept: list[list] = []
        for candidate in scored:
            label, score, vector, merged = candidate
            for survivor in kept:
                if cosine_similarity(vector, survivor[2]) > self.config.interference_sensitivity:
                    survivor[1] += score
                    for name, value in vector.items():
                        survivor[2][name] = max(survivor[2].get(name, 0.0), value)
                    survivor[3].extend([label, *merged])
                    logger.debug(f"Intent '{label}' merged into '{survivor[0]}'")
                    break
            else:
                kept.append(candidate)
        return kept

    def _related(self, label: str, hypotheses: list[IntentHypothesis]) -> list[RelatedIntent]:
        """Intents that usually follow ``label``.

        Strength is the prior correlation plus any weight the related intent
        earned in this utterance; weak correlations are dropped.
        """
        weights = {h.label: h.weight for h in hypotheses}
        related = []
        for other, prior in RELATED_INTENTS.get(label, {}).items():
            strength = min(1.0, prior + weights.get(other, 0.0))
            if strength > self.config.related_threshold:
                related.append(RelatedIntent(label=other, strength=round(strength, 4)))
        related.sort(key=lambda r: r.strength, reverse=True)
        return related

    def _fallback(
        self,
        slots: dict[str, Any],
        language: str = "en",
        dialect: Optional[str] = None,
    ) -> IntentHypothesisSet:
        weight = self.config.fallback_weight
        return IntentHypothesisSet(
            hypotheses=[IntentHypothesis(label=GENERAL_INQUIRY, weight=weight)],
            coherence=weight,
            resolved_intent=None,
            slots=slots,
            is_fallback=True,
            language=language,
            dialect=dialect,
        )


__all__ = ["IntentAnalyzer", "cosine_similarity", "intent_key", "LAST_INTENT_ATTRIBUTE"]
