"""
Intent lexicon and slot extraction.

Each intent is described by weighted keywords (English and Arabic), weighted
phrases and the slots that support it. Slots only add evidence to an intent
that already has lexical evidence, so "to Lisbon" alone never invents a
booking intent.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Optional

# ============================================
# Tokenization
# ============================================

# Letters only, in any script
_TOKEN_RE = re.compile(r"[^\W\d_]+")

_ARABIC_LETTER_RE = re.compile(r"[؀-ۿ]")
_TATWEEL = "ـ"
# Alef variants already lose their hamza or madda in strip_marks
_ARABIC_FOLDS = str.maketrans({"ة": "ه", "ى": "ي"})

# Article and conjunction prefixes, longest first
_ARABIC_PREFIXES = ("وال", "بال", "فال", "كال", "لل", "ال")
_ARABIC_CLITICS = ("و", "ب", "ل", "ف")


def strip_marks(text: str) -> str:
    """Remove combining marks (accents, harakat, hamza) and tatweel."""
    normalized = unicodedata.normalize("NFD", text)
    return "".join(
        ch for ch in normalized if unicodedata.category(ch) != "Mn" and ch != _TATWEEL
    )


def fold_arabic(word: str) -> str:
    """Strip marks and fold ta marbuta and alef maqsura."""
    return strip_marks(word).translate(_ARABIC_FOLDS)


def arabic_variants(token: str) -> list[str]:
    """Folded token plus its forms without an attached article or conjunction."""
    token = fold_arabic(token)
    variants = [token]
    for prefix in _ARABIC_PREFIXES:
        if token.startswith(prefix) and len(token) - len(prefix) >= 2:
            variants.append(token[len(prefix):])
            break
    if len(token) > 3 and token[0] in _ARABIC_CLITICS:
        variants.append(token[1:])
    return variants


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens.

    English tokens lose a plural 's'. Arabic words contribute every form
    from ``arabic_variants``.
    """
    tokens = []
    for token in _TOKEN_RE.findall(strip_marks(text.lower())):
        if _ARABIC_LETTER_RE.match(token):
            tokens.extend(arabic_variants(token))
            continue
        if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
            token = token[:-1]
        tokens.append(token)
    return tokens


def normalize_text(text: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join(text.lower().split())


# ============================================
# Language and Dialect
# ============================================

# Share of Arabic-script characters above which text counts as Arabic
ARABIC_RATIO_THRESHOLD = 0.3

_DIALECT_MARKERS: dict[str, frozenset[str]] = {
    "gulf": frozenset({"شلون", "وين", "شنو", "اوادم"}),
    "levantine": frozenset({"شو", "كيف", "وينك"}),
    "egyptian": frozenset({"ازيك", "عامل", "ايه"}),
}


def detect_language(text: str) -> str:
    """"ar" when Arabic script dominates the text, "en" otherwise."""
    letters = [c for c in text if not c.isspace()]
    if not letters:
        return "en"
    arabic = sum(1 for c in letters if _ARABIC_LETTER_RE.match(c))
    return "ar" if arabic / len(letters) > ARABIC_RATIO_THRESHOLD else "en"


def detect_dialect(text: str) -> Optional[str]:
    """Arabic dialect from marker words; None for non-Arabic text."""
    if detect_language(text) != "ar":
        return None
    words = {fold_arabic(w) for w in _TOKEN_RE.findall(strip_marks(text))}
    for dialect, markers in _DIALECT_MARKERS.items():
        if words & markers:
            return dialect
    return "standard"


# ============================================
# Lexicon
# ============================================


@dataclass(frozen=True)
class IntentLexicon:
    """Lexical evidence for one intent.

    Attributes:
        label: Intent label
        keywords: Single-token keyword -> weight (Arabic keywords folded)
        phrases: Multi-word phrase -> weight
        slot_features: Slot name -> weight added when the slot is present
    """

    label: str
    keywords: dict[str, float] = field(default_factory=dict)
    phrases: dict[str, float] = field(default_factory=dict)
    slot_features: dict[str, float] = field(default_factory=dict)


def _lexicon(
    label: str,
    keywords: dict[str, float],
    arabic: dict[str, float],
    phrases: Optional[dict[str, float]] = None,
    slot_features: Optional[dict[str, float]] = None,
) -> IntentLexicon:
    merged = dict(keywords)
    for word, weight in arabic.items():
        merged[fold_arabic(word)] = weight
    return IntentLexicon(
        label=label,
        keywords=merged,
        phrases=phrases or {},
        slot_features=slot_features or {},
    )


INTENT_LEXICON: dict[str, IntentLexicon] = {
    lex.label: lex
    for lex in (
        _lexicon(
            "trip_planning",
            keywords={
                "plan": 1.0,
                "planning": 1.0,
                "trip": 1.0,
                "itinerary": 1.0,
                "vacation": 0.8,
                "holiday": 0.8,
                "getaway": 0.8,
                "travel": 0.6,
                "journey": 0.6,
                "visit": 0.5,
            },
            arabic={
                "رحلة": 1.0,
                "تخطيط": 1.0,
                "خطة": 0.8,
                "عطلة": 0.8,
                "إجازة": 0.8,
                "سفر": 0.6,
                "سياحة": 0.6,
                "زيارة": 0.5,
            },
            phrases={"road trip": 0.5, "things to do": 0.4},
            slot_features={
                "destination": 0.5,
                "duration_days": 0.5,
                "budget": 0.3,
                "travelers": 0.3,
            },
        ),
        _lexicon(
            "book_flight",
            keywords={
                "flight": 1.0,
                "fly": 0.8,
                "airline": 0.8,
                "plane": 0.6,
                "ticket": 0.6,
                "airport": 0.5,
                "book": 0.4,
                "reserve": 0.4,
            },
            arabic={
                "طيران": 1.0,
                "طائرة": 0.8,
                "تذكرة": 0.6,
                "مطار": 0.5,
                "حجز": 0.4,
            },
            phrases={"one way": 0.5, "round trip": 0.6},
            slot_features={"destination": 0.3, "travelers": 0.2},
        ),
        _lexicon(
            "book_hotel",
            keywords={
                "hotel": 1.0,
                "accommodation": 1.0,
                "hostel": 0.9,
                "room": 0.6,
                "stay": 0.6,
                "inn": 0.6,
                "lodge": 0.6,
                "book": 0.4,
                "reserve": 0.4,
            },
            arabic={
                "فندق": 1.0,
                "فنادق": 1.0,
                "إقامة": 0.8,
                "غرفة": 0.6,
                "شقة": 0.5,
                "حجز": 0.4,
            },
            phrases={"place to stay": 0.8, "check in": 0.4},
            slot_features={"destination": 0.2, "duration_days": 0.3, "travelers": 0.2},
        ),
        _lexicon(
            "budget_inquiry",
            keywords={
                "budget": 1.0,
                "cost": 0.8,
                "price": 0.8,
                "afford": 0.8,
                "cheap": 0.7,
                "expensive": 0.6,
                "save": 0.4,
            },
            arabic={
                "ميزانية": 1.0,
                "تكلفة": 0.8,
                "سعر": 0.8,
                "أسعار": 0.8,
                "رخيص": 0.7,
                "غالي": 0.6,
            },
            phrases={"how much": 1.0, "spend on": 0.5},
            slot_features={"budget": 0.5},
        ),
        _lexicon(
            "get_recommendations",
            keywords={
                "recommend": 1.0,
                "recommendation": 1.0,
                "suggest": 0.9,
                "suggestion": 0.9,
                "advice": 0.7,
                "best": 0.4,
                "idea": 0.5,
            },
            arabic={
                "توصية": 1.0,
                "اقتراح": 0.9,
                "اقترح": 0.9,
                "نصيحة": 0.7,
                "أفضل": 0.4,
            },
            phrases={"where should": 0.8, "what should": 0.6},
            slot_features={"destination": 0.2},
        ),
        _lexicon(
            "check_weather",
            keywords={
                "weather": 1.0,
                "forecast": 1.0,
                "temperature": 0.8,
                "rain": 0.7,
                "sunny": 0.6,
                "snow": 0.6,
                "climate": 0.6,
            },
            arabic={
                "طقس": 1.0,
                "حرارة": 0.8,
                "مطر": 0.7,
                "أمطار": 0.7,
                "ثلج": 0.6,
                "مناخ": 0.6,
            },
            slot_features={"destination": 0.2},
        ),
        _lexicon(
            "find_restaurants",
            keywords={
                "restaurant": 1.0,
                "dining": 0.9,
                "cuisine": 0.9,
                "food": 0.7,
                "eat": 0.7,
                "dinner": 0.6,
                "lunch": 0.6,
                "brunch": 0.6,
            },
            arabic={
                "مطعم": 1.0,
                "مطاعم": 1.0,
                "طعام": 0.7,
                "أكل": 0.7,
                "عشاء": 0.6,
                "غداء": 0.6,
            },
            phrases={"where to eat": 1.0},
            slot_features={"destination": 0.2},
        ),
        _lexicon(
            "cultural_info",
            keywords={
                "culture": 1.0,
                "cultural": 1.0,
                "museum": 0.9,
                "history": 0.8,
                "tradition": 0.8,
                "custom": 0.8,
                "etiquette": 0.8,
                "local": 0.3,
            },
            arabic={
                "ثقافة": 1.0,
                "ثقافي": 1.0,
                "متحف": 0.9,
                "متاحف": 0.9,
                "تاريخ": 0.8,
                "تقاليد": 0.8,
                "عادات": 0.8,
            },
            slot_features={"destination": 0.2},
        ),
        _lexicon(
            "emergency_help",
            keywords={
                "emergency": 1.0,
                "urgent": 0.9,
                "stolen": 0.9,
                "lost": 0.7,
                "stranded": 0.9,
                "cancelled": 0.6,
                "help": 0.4,
            },
            arabic={
                "طوارئ": 1.0,
                "عاجل": 0.9,
                "سرقة": 0.9,
                "مسروق": 0.9,
                "ضائع": 0.7,
                "فقدت": 0.7,
                "مساعدة": 0.4,
            },
            phrases={"missed my": 0.8, "lost my": 0.9},
        ),
    )
}

# Intents that tend to follow each one, with a prior correlation strength
RELATED_INTENTS: dict[str, dict[str, float]] = {
    "trip_planning": {"book_flight": 0.5, "book_hotel": 0.5, "budget_inquiry": 0.35},
    "book_flight": {"book_hotel": 0.5, "check_weather": 0.25},
    "book_hotel": {"find_restaurants": 0.3, "book_flight": 0.35},
    "budget_inquiry": {"get_recommendations": 0.25, "book_hotel": 0.25},
    "get_recommendations": {"check_weather": 0.35, "cultural_info": 0.4},
    "cultural_info": {"find_restaurants": 0.35},
}


def lexical_features(lexicon: IntentLexicon, tokens: set[str], text: str) -> dict[str, float]:
    """Keyword and phrase features of ``lexicon`` present in the text."""
    features: dict[str, float] = {}
    for keyword, weight in lexicon.keywords.items():
        if keyword in tokens:
            features[f"kw:{keyword}"] = weight
    for phrase, weight in lexicon.phrases.items():
        if phrase in text:
            features[f"phrase:{phrase}"] = weight
    return features


# ============================================
# Slot Extraction
# ============================================

_NUMBER_WORDS = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "fourteen": 14,
}

_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP"}
_CURRENCY_WORDS = {
    "usd": "USD",
    "dollar": "USD",
    "dollars": "USD",
    "eur": "EUR",
    "euro": "EUR",
    "euros": "EUR",
    "gbp": "GBP",
    "pound": "GBP",
    "pounds": "GBP",
}

_DESTINATION_RE = re.compile(
    r"\b(?:to|in|visit|visiting|around)\s+"
    r"([A-Z][a-zA-Z\-']+(?:\s+[A-Z][a-zA-Z\-']+){0,2})"
)
_BUDGET_SYMBOL_RE = re.compile(r"([$€£])\s?(\d[\d,]*(?:\.\d+)?)\s?(k)?\b", re.IGNORECASE)
_BUDGET_WORD_RE = re.compile(
    r"\b(\d[\d,]*(?:\.\d+)?)\s?(k)?\s*(usd|dollars?|eur|euros?|gbp|pounds?)\b",
    re.IGNORECASE,
)
_DURATION_RE = re.compile(
    r"\b(\d+|a|an|one|two|three|four|five|six|seven|eight|nine|ten|fourteen)"
    r"[\s-]?(day|night|week|weekend)s?\b",
    re.IGNORECASE,
)
_TRAVELERS_RE = re.compile(
    r"\b(\d+|two|three|four|five|six|seven|eight|nine|ten)\s+"
    r"(?:people|persons|travell?ers|adults|guests|friends|of us)\b",
    re.IGNORECASE,
)
_SOLO_RE = re.compile(r"\b(?:solo|alone|by myself)\b", re.IGNORECASE)
_COUPLE_RE = re.compile(
    r"\b(?:couple|honeymoon|my (?:wife|husband|partner|girlfriend|boyfriend))\b",
    re.IGNORECASE,
)

_NOT_PLACES = {
    "I", "The", "A", "An", "My", "Me", "We", "It", "This", "That",
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
}


def _to_number(token: str) -> Optional[int]:
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS.get(token.lower())


def _parse_amount(amount: str, thousands: Optional[str]) -> float:
    value = float(amount.replace(",", ""))
    if thousands:
        value *= 1000
    return value


def extract_slots(utterance: str) -> dict[str, Any]:
    """Extract destination, budget, currency, duration_days and travelers.

    Example:
        >>> extract_slots("plan a 5-day trip to Lisbon under $1000")
        {'destination': 'Lisbon', 'budget': 1000.0, 'currency': 'USD', 'duration_days': 5}
    """
    slots: dict[str, Any] = {}

    for match in _DESTINATION_RE.finditer(utterance):
        candidate = match.group(1).strip()
        if candidate.split()[0] not in _NOT_PLACES:
            slots["destination"] = candidate
            break

    match = _BUDGET_SYMBOL_RE.search(utterance)
    if match:
        slots["budget"] = _parse_amount(match.group(2), match.group(3))
        slots["currency"] = _CURRENCY_SYMBOLS[match.group(1)]
    else:
        match = _BUDGET_WORD_RE.search(utterance)
        if match:
            slots["budget"] = _parse_amount(match.group(1), match.group(2))
            slots["currency"] = _CURRENCY_WORDS[match.group(3).lower()]

    match = _DURATION_RE.search(utterance)
    if match:
        count = _to_number(match.group(1))
        unit = match.group(2).lower()
        if count:
            if unit == "week":
                slots["duration_days"] = count * 7
            elif unit == "weekend":
                slots["duration_days"] = count * 2
            else:
                slots["duration_days"] = count

    match = _TRAVELERS_RE.search(utterance)
    if match:
        travelers = _to_number(match.group(1))
        if travelers:
            slots["travelers"] = travelers
    elif _SOLO_RE.search(utterance):
        slots["travelers"] = 1
    elif _COUPLE_RE.search(utterance):
        slots["travelers"] = 2

    return slots


__all__ = [
    "INTENT_LEXICON",
    "RELATED_INTENTS",
    "IntentLexicon",
    "arabic_variants",
    "detect_dialect",
    "detect_language",
    "extract_slots",
    "fold_arabic",
    "lexical_features",
    "normalize_text",
    "strip_marks",
    "tokenize",
]
