"""
Unit Tests for intent routing and relative dates
================================================
"""

from datetime import datetime, timezone

import pytest

from query_guard.dates import RelativeDateRange, detect_date_phrase, resolve_date_range
from query_guard.generator import SQLGenerator
from query_guard.intent import IntentClassifier, Route, complexity_reasons, is_important
from query_guard.llm.mock import MockLLM

NOW = datetime(2026, 10, 18, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier()


class TestClassification:
    """Fast-path classification."""

    @pytest.mark.parametrize(
        "question,intent",
        [
            ("What were my total sales last week?", "sales"),
            ("¿Cuál es mi ticket promedio este mes?", "averageTicket"),
            ("Show me the best sellers today", "topProducts"),
            ("How many reviews did I get yesterday?", "reviews"),
        ],
    )
    def test_canonical_intents(self, classifier: IntentClassifier, question: str, intent: str) -> None:
        match = classifier.classify(question)
        assert match.is_simple_query is True
        assert match.intent == intent
        assert match.shared_query is not None

    def test_date_phrase_raises_confidence(self, classifier: IntentClassifier) -> None:
        """Test that an explicit period gives 0.95, the default period 0.9."""
        assert classifier.classify("total sales today").confidence == pytest.approx(0.95)
        match = classifier.classify("total sales")
        assert match.confidence == pytest.approx(0.9)
        assert match.date_range is RelativeDateRange.THIS_MONTH

    @pytest.mark.parametrize(
        "question,reason",
        [
            ("Compare sales this week versus last week", "comparison"),
            ("Sales during dinner this week", "time_of_day"),
            ("Sales on saturdays", "day_of_week"),
            ("Sales with tips by waiter", "multi_dimension"),
        ],
    )
    def test_complex_questions_skip_fast_path(
        self, classifier: IntentClassifier, question: str, reason: str
    ) -> None:
        """Test that complexity disqualifies the fast path regardless of keywords."""
        assert reason in complexity_reasons(question)
        assert classifier.classify(question).is_simple_query is False

    def test_unmatched_question(self, classifier: IntentClassifier) -> None:
        match = classifier.classify("How many active products do we have?")
        assert match.is_simple_query is False
        assert match.reason == "no intent matched"


class TestRouting:
    def test_routes(self, classifier: IntentClassifier) -> None:
        assert classifier.route("What were my total sales last week?")[0] is Route.FAST_PATH
        assert classifier.route("Compare revenue this month versus last month")[0] is Route.CONSENSUS
        assert classifier.route("How many active products do we have?")[0] is Route.SELF_CORRECTION

    def test_complex_but_unimportant_uses_self_correction(self, classifier: IntentClassifier) -> None:
        """Test that complexity alone does not trigger consensus."""
        question = "Sales during dinner this week"
        assert not is_important(question)
        assert classifier.route(question)[0] is Route.SELF_CORRECTION


class TestDates:
    """Relative date phrases and their effective boundaries."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("sales in the last 7 days", RelativeDateRange.LAST_7_DAYS),
            ("ventas de los últimos 30 días", RelativeDateRange.LAST_30_DAYS),
            ("sales yesterday", RelativeDateRange.YESTERDAY),
            ("ventas de hoy", RelativeDateRange.TODAY),
            ("sales last week", RelativeDateRange.LAST_WEEK),
            ("ventas del mes pasado", RelativeDateRange.LAST_MONTH),
            ("sales", None),
        ],
    )
    def test_detect_phrase(self, text: str, expected) -> None:
        assert detect_date_phrase(text) is expected

    def test_today_spans_the_local_day(self) -> None:
        window = resolve_date_range(RelativeDateRange.TODAY, now=NOW, tz="America/Mexico_City")
        assert window.start.date() == window.end.date()
        assert window.start.hour == 0
        assert window.end.hour == 23
        assert window.start.utcoffset() == window.end.utcoffset()

    def test_yesterday(self) -> None:
        window = resolve_date_range(RelativeDateRange.YESTERDAY, now=NOW)
        assert window.start.date().isoformat() == "2026-10-17"
        assert window.sql_bounds() == ("2026-10-17 00:00:00", "2026-10-17 23:59:59")

    def test_last_week_precedes_this_week(self) -> None:
        last = resolve_date_range(RelativeDateRange.LAST_WEEK, now=NOW)
        this = resolve_date_range(RelativeDateRange.THIS_WEEK, now=NOW)
        assert last.end == this.start

    def test_generation_prompt_uses_fast_path_boundaries(self) -> None:
        """Test that a phrase forced through generation gets the same window as the fast path."""
        generator = SQLGenerator(MockLLM())
        prompt = generator.build_prompt("sales yesterday by waiter", "tenant-a", now=NOW)
        start, end = resolve_date_range(RelativeDateRange.YESTERDAY, now=NOW).sql_bounds()
        assert f"'{start}'" in prompt
        assert f"'{end}'" in prompt
