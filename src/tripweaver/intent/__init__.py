"""Intent analysis: lexicon, slot extraction and the weighted-candidate analyzer."""

from .analyzer import IntentAnalyzer, cosine_similarity, intent_key
from .lexicon import INTENT_LEXICON, extract_slots

__all__ = [
    "IntentAnalyzer",
    "cosine_similarity",
    "intent_key",
    "INTENT_LEXICON",
    "extract_slots",
]
