"""
Tests for the intent analyzer and slot extraction.

Covers resolution, ambiguity, interference merging, the uncertainty mass,
conversational and learned-weight evidence, and the never-raise fallback.
"""

import pytest

from src.tripweaver.config import IntentConfig
from src.tripweaver.domain.entities import GENERAL_INQUIRY, ConversationTurn, RequestContext
from src.tripweaver.intent import IntentAnalyzer, cosine_similarity, extract_slots, intent_key
from src.tripweaver.intent.lexicon import detect_dialect, detect_language, tokenize


class StaticWeights:
    """Read-only weights double."""

    def __init__(self, weights=None):
        self.weights = weights or {}

    def get_weight(self, key):
        return self.weights.get(key, 0.5)


@pytest.fixture
def analyzer():
    return IntentAnalyzer(IntentConfig())


def ctx(utterance="", history=(), **session):
    return RequestContext(
        user_id="alice",
        utterance=utterance,
        conversation_history=tuple(ConversationTurn(role="user", content=h) for h in history),
        session_attributes=session,
    )


# ============================================
# Slot Extraction
# ============================================

class TestExtractSlots:
    """Test slot extraction from utterances."""

    def test_trip_request(self):
        slots = extract_slots("Plan a 5-day trip to Lisbon under $1000")
        assert slots == {
            "destination": "Lisbon",
            "budget": 1000.0,
            "currency": "USD",
            "duration_days": 5,
        }

    def test_weeks_words_and_travelers(self):
        slots = extract_slots("A two week holiday in New York for 3 people, about 2,500 euros")
        assert slots["destination"] == "New York"
        assert slots["duration_days"] == 14
        assert slots["travelers"] == 3
        assert slots["budget"] == 2500.0
        assert slots["currency"] == "EUR"

    def test_thousands_suffix_and_couple(self):
        slots = extract_slots("Honeymoon in Rome, budget £3k")
        assert slots["destination"] == "Rome"
        assert slots["budget"] == 3000.0
        assert slots["currency"] == "GBP"
        assert slots["travelers"] == 2

    def test_month_is_not_a_destination(self):
        assert "destination" not in extract_slots("Something fun to do in May")

    def test_no_slots(self):
        assert extract_slots("hello there") == {}


# ============================================
# Resolution
# ============================================

class TestIntentResolution:
    """Test weighted-candidate resolution."""

    def test_clear_trip_request_resolves(self, analyzer):
        """Keywords plus slot evidence collapse to trip_planning."""
        result = analyzer.analyze("Plan a 5-day trip to Lisbon under $1000", ctx())

        assert result.is_resolved
        assert result.resolved_intent == "trip_planning"
        assert result.coherence == pytest.approx(3.3 / 3.8)
        assert result.slots["destination"] == "Lisbon"
        assert not result.is_fallback

    def test_competing_intents_stay_unresolved(self, analyzer):
        """Two equally supported intents share the weight and do not collapse."""
        result = analyzer.analyze("I need a hotel and a flight", ctx())

        assert not result.is_resolved
        assert set(result.labels()) == {"book_hotel", "book_flight"}
        for hypothesis in result.hypotheses:
            assert hypothesis.weight == pytest.approx(0.4)

    def test_weak_evidence_never_reaches_full_confidence(self, analyzer):
        """The uncertainty mass keeps a single weak candidate below the threshold."""
        result = analyzer.analyze("travel", ctx())

        assert result.top.label == "trip_planning"
        assert result.top.weight == pytest.approx(0.6 / 1.1)
        assert not result.is_resolved

    def test_interference_merges_similar_candidates(self, analyzer):
        """book_hotel overlaps book_flight on 'book' and is absorbed."""
        result = analyzer.analyze("book a ticket", ctx())

        assert result.resolved_intent == "book_flight"
        assert result.top.merged_from == ["book_hotel"]
        assert result.top.weight == pytest.approx(1.4 / 1.9)

    @pytest.mark.parametrize(
        "utterance",
        [
            "Plan a 5-day trip to Lisbon under $1000",
            "I need a hotel and a flight",
            "cheap restaurants and museums, and what's the weather like?",
            "emergency! I lost my passport and missed my flight",
        ],
    )
    def test_weights_never_sum_above_one(self, analyzer, utterance):
        result = analyzer.analyze(utterance, ctx())
        assert 0 < sum(h.weight for h in result.hypotheses) <= 1.0
        assert result.hypotheses == sorted(result.hypotheses, key=lambda h: -h.weight)

    def test_width_bounds_candidates(self):
        analyzer = IntentAnalyzer(IntentConfig(width=1))
        result = analyzer.analyze("I need a hotel and a flight", ctx())
        assert len(result.hypotheses) == 1

    def test_top_k_bounds_unresolved_set(self):
        analyzer = IntentAnalyzer(IntentConfig(top_k=2))
        result = analyzer.analyze(
            "cheap restaurants and museums, and what's the weather like?", ctx()
        )
        assert not result.is_resolved
        assert len(result.hypotheses) <= 2


# ============================================
# Context and Learned Evidence
# ============================================

class TestContextualEvidence:
    """Test conversation history, session and learned weights."""

    def test_history_supplies_evidence(self, analyzer):
        """A follow-up with no keywords leans on the previous user turn."""
        result = analyzer.analyze(
            "what about for three nights?",
            ctx("what about for three nights?", history=["I want to book a hotel in Rome"]),
        )

        assert not result.is_fallback
        assert result.top.label == "book_hotel"

    def test_empty_context_window_ignores_history(self):
        analyzer = IntentAnalyzer(IntentConfig(context_window=0))
        result = analyzer.analyze(
            "what about for three nights?",
            ctx(history=["I want to book a hotel in Rome"]),
        )
        assert result.is_fallback

    @pytest.mark.parametrize("window,expected", [(1, GENERAL_INQUIRY), (2, "book_hotel")])
    def test_oldest_turns_fall_out_of_the_window(self, window, expected):
        """Only the last ``context_window`` turns count; older evidence is dropped."""
        analyzer = IntentAnalyzer(IntentConfig(context_window=window))
        result = analyzer.analyze(
            "what about for three nights?",
            ctx(history=["I want to book a hotel in Rome", "sounds good"]),
        )

        assert result.top.label == expected
        assert result.is_fallback == (expected == GENERAL_INQUIRY)

    def test_session_last_intent(self, analyzer):
        result = analyzer.analyze("sounds good", ctx(last_intent="trip_planning"))
        assert result.top.label == "trip_planning"
        assert result.top.weight == pytest.approx(0.5)

    def test_learned_weights_shift_scores(self):
        weights = StaticWeights({intent_key("book_flight"): 1.0})
        analyzer = IntentAnalyzer(IntentConfig(), weights=weights)

        result = analyzer.analyze("I need a hotel and a flight", ctx())

        assert result.top.label == "book_flight"
        assert result.top.weight > result.hypotheses[1].weight

    def test_analysis_is_pure(self, analyzer):
        first = analyzer.analyze("I need a hotel and a flight", ctx())
        second = analyzer.analyze("I need a hotel and a flight", ctx())
        assert [(h.label, h.weight) for h in first.hypotheses] == [
            (h.label, h.weight) for h in second.hypotheses
        ]


# ============================================
# Arabic Input and Related Intents
# ============================================

class TestArabicInput:
    """Test Arabic tokenization, language and dialect detection."""

    PLAN_LISBON = "أريد التخطيط لرحلة إلى لشبونة لمدة خمسة أيام"

    def test_tokens_lose_article_and_clitic_prefixes(self):
        tokens = tokenize("التخطيط لرحلة بالفندق")

        assert {"تخطيط", "رحله", "فندق"} <= set(tokens)

    def test_diacritics_are_ignored(self):
        assert "رحله" in tokenize("رِحْلَة")

    def test_hamza_alef_folds_to_bare_alef(self):
        assert tokenize("إجازة") == tokenize("اجازه")

    def test_latin_accents_are_stripped(self):
        assert tokenize("Café tour") == ["cafe", "tour"]

    @pytest.mark.parametrize(
        "text,language",
        [
            (PLAN_LISBON, "ar"),
            ("Plan a trip to Lisbon", "en"),
            ("Trip to دبي please, five days", "en"),
            ("", "en"),
        ],
    )
    def test_detect_language(self, text, language):
        assert detect_language(text) == language

    @pytest.mark.parametrize(
        "text,dialect",
        [
            ("شلون أحجز فندق في دبي", "gulf"),
            ("شو أحسن مطعم في بيروت", "levantine"),
            ("ازيك عايز فندق", "egyptian"),
            ("أريد حجز فندق", "standard"),
            ("Book a hotel", None),
        ],
    )
    def test_detect_dialect(self, text, dialect):
        assert detect_dialect(text) == dialect

    def test_arabic_trip_request_resolves(self, analyzer):
        result = analyzer.analyze(self.PLAN_LISBON, ctx(self.PLAN_LISBON))

        assert not result.is_fallback
        assert result.resolved_intent == "trip_planning"
        assert result.language == "ar"
        assert result.dialect == "standard"
        assert "kw:رحله" in result.top.features

    def test_arabic_hotel_request(self, analyzer):
        result = analyzer.analyze("شلون أحجز فندق في دبي")

        assert result.top.label == "book_hotel"
        assert result.dialect == "gulf"

    def test_arabic_history_supplies_evidence(self, analyzer):
        result = analyzer.analyze(
            "what about for three nights?",
            ctx(history=["أبحث عن فندق في القاهرة"]),
        )

        assert result.top.label == "book_hotel"
        assert result.language == "en"


class TestRelatedIntents:
    """Test the intents reported alongside the primary one."""

    def test_trip_planning_relates_to_bookings(self, analyzer):
        result = analyzer.analyze("Plan a 5-day trip to Lisbon under $1000")

        assert [r.label for r in result.related_intents] == [
            "book_flight",
            "book_hotel",
            "budget_inquiry",
        ]
        assert all(r.strength > 0.3 for r in result.related_intents)
        assert all(r.correlation == "sequential" for r in result.related_intents)

    def test_evidence_in_utterance_strengthens_relation(self, analyzer):
        result = analyzer.analyze("Plan a trip to Lisbon and find me a hotel")

        related = {r.label: r.strength for r in result.related_intents}
        assert related["book_hotel"] > related["book_flight"]

    def test_weak_relations_are_dropped(self):
        analyzer = IntentAnalyzer(IntentConfig(related_threshold=0.45))
        result = analyzer.analyze("Plan a 5-day trip to Lisbon under $1000")

        assert "budget_inquiry" not in [r.label for r in result.related_intents]

    def test_no_related_intents_for_fallback(self, analyzer):
        result = analyzer.analyze("hello there")

        assert result.is_fallback
        assert result.related_intents == []

    def test_arabic_request_has_related_intents(self, analyzer):
        result = analyzer.analyze(TestArabicInput.PLAN_LISBON)

        assert "book_hotel" in [r.label for r in result.related_intents]


# ============================================
# Fallback
# ============================================

class TestFallback:
    """The analyzer never raises."""

    @pytest.mark.parametrize("utterance", ["", "   ", None, 42, "qwerty zxcv"])
    def test_unscorable_input_falls_back(self, analyzer, utterance):
        result = analyzer.analyze(utterance, None)

        assert result.is_fallback
        assert result.top.label == GENERAL_INQUIRY
        assert result.top.weight == pytest.approx(0.1)

    def test_internal_error_falls_back(self):
        class BrokenWeights:
            def get_weight(self, key):
                raise RuntimeError("store offline")

        analyzer = IntentAnalyzer(IntentConfig(), weights=BrokenWeights())
        result = analyzer.analyze("Plan a trip to Lisbon", ctx())

        assert result.is_fallback


class TestCosineSimilarity:
    def test_identical_and_disjoint(self):
        assert cosine_similarity({"a": 1.0}, {"a": 2.0}) == pytest.approx(1.0)
        assert cosine_similarity({"a": 1.0}, {"b": 1.0}) == 0.0
        assert cosine_similarity({}, {"a": 1.0}) == 0.0
