"""
Intent Classification
=====================

Routes well-known, simple question shapes to prebuilt queries and decides
which generation strategy handles everything else.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from query_guard.dates import RelativeDateRange, detect_date_phrase


class Route(str, Enum):
    """Pipeline chosen for a question."""

    FAST_PATH = "fast_path"
    SELF_CORRECTION = "self_correction"
    CONSENSUS = "consensus"


@dataclass(frozen=True)
class IntentDefinition:
    name: str
    keywords: tuple[str, ...]
    shared_query: str
    priority: int
    default_date_range: RelativeDateRange = RelativeDateRange.THIS_MONTH


INTENTS: tuple[IntentDefinition, ...] = (
    IntentDefinition(
        name="sales",
        keywords=("revenue", "sales", "sell", "sold", "earnings", "income",
                  "ventas", "venta", "vendi", "ingresos", "facturado"),
        shared_query="sales_for_period",
        priority=10,
    ),
    IntentDefinition(
        name="averageTicket",
        keywords=("average ticket", "avg ticket", "average order", "avg order value",
                  "ticket promedio", "ticket medio", "valor promedio"),
        shared_query="average_ticket",
        priority=11,
    ),
    IntentDefinition(
        name="topProducts",
        keywords=("best sellers", "top products", "most sold", "best selling", "popular items",
                  "productos mas vendidos", "top productos", "mas vendido"),
        shared_query="top_products",
        priority=12,
    ),
    IntentDefinition(
        name="staffPerformance",
        keywords=("waiter", "waitress", "best staff", "top seller", "who sold", "staff performance",
                  "mesero", "mesera", "mejor mesero", "quien vendio"),
        shared_query="staff_performance",
        priority=12,
    ),
    IntentDefinition(
        name="reviews",
        keywords=("review", "reviews", "rating", "ratings", "stars",
                  "reseñas", "resenas", "calificacion", "calificaciones", "estrellas"),
        shared_query="review_stats",
        priority=9,
    ),
)

COMPARISON = re.compile(
    r"\b(compare|compared|comparison|vs\.?|versus|difference|better than|worse than"
    r"|comparar|compara|comparado|diferencia|contra)\b"
)
TIME_OF_DAY = re.compile(
    r"\b(morning|afternoon|evening|night|lunch|dinner|breakfast|hour|hours"
    r"|tarde|noche|hora|horas|comida|cena|desayuno)\b|\b\d{1,2}\s*(am|pm)\b|\b\d{1,2}:\d{2}\b"
)
DAY_OF_WEEK = re.compile(
    r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday|weekend|weekday|weekdays"
    r"|lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo|fin de semana)s?\b"
)
MULTI_DIMENSION = re.compile(r"\s(and|with|y|con)\s")

RANKING = re.compile(
    r"\b(top|best|worst|rank|ranking|most|least|highest|lowest|mejor|mejores|peor|peores)\b"
)
DECISION = re.compile(r"\b(should i|should we|deber[ií]a|conviene)\b")
PERFORMANCE = re.compile(
    r"\b(performance|perform|analy[sz]e|analysis|trend|rendimiento|desempe[nñ]o|an[aá]lisis)\b"
)


@dataclass
class IntentMatch:
    """Result of fast-path classification."""

    is_simple_query: bool
    intent: Optional[str] = None
    shared_query: Optional[str] = None
    date_range: Optional[RelativeDateRange] = None
    confidence: float = 0.0
    reason: str = ""


def complexity_reasons(question: str) -> list[str]:
    """Signals that disqualify a question from the fast path."""
    text = f" {question.lower()} "
    reasons = []
    if COMPARISON.search(text):
        reasons.append("comparison")
    if TIME_OF_DAY.search(text):
        reasons.append("time_of_day")
    if DAY_OF_WEEK.search(text):
        reasons.append("day_of_week")
    if MULTI_DIMENSION.search(text):
        reasons.append("multi_dimension")
    return reasons


def is_complex(question: str) -> bool:
    return bool(complexity_reasons(question))


def is_important(question: str) -> bool:
    """Ranking, comparison, decision and performance-analysis questions."""
    text = question.lower()
    return any(
        pattern.search(text) for pattern in (RANKING, COMPARISON, DECISION, PERFORMANCE)
    )


class IntentClassifier:
    """Keyword classifier for the prebuilt query fast path."""

    def __init__(self, intents: tuple[IntentDefinition, ...] = INTENTS) -> None:
        self.intents = sorted(intents, key=lambda i: i.priority, reverse=True)

    def classify(self, question: str) -> IntentMatch:
        """
        Match a question against the canonical intents.

        Complex questions never take the fast path, whatever their keywords.
        """
        reasons = complexity_reasons(question)
        if reasons:
            return IntentMatch(is_simple_query=False, reason=f"complex: {', '.join(reasons)}")

        text = question.lower()
        for intent in self.intents:
            if any(re.search(rf"\b{re.escape(k)}\b", text) for k in intent.keywords):
                date_range = detect_date_phrase(question)
                return IntentMatch(
                    is_simple_query=True,
                    intent=intent.name,
                    shared_query=intent.shared_query,
                    date_range=date_range or intent.default_date_range,
                    confidence=0.95 if date_range else 0.9,
                    reason="keyword match",
                )

        return IntentMatch(is_simple_query=False, reason="no intent matched")

    def route(self, question: str) -> tuple[Route, IntentMatch]:
        """Pick the pipeline for a question."""
        match = self.classify(question)
        if match.is_simple_query:
            return Route.FAST_PATH, match
        if is_complex(question) and is_important(question):
            return Route.CONSENSUS, match
        return Route.SELF_CORRECTION, match
