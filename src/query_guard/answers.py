"""
Answer Composition
==================

Short natural-language summaries of result rows, and follow-up
suggestions.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

MAX_SUMMARY_ROWS = 3

FOLLOW_UPS = {
    "en": [
        "How many 4-star reviews did I get this month?",
        "What were my total sales last week?",
        "Which waiter processed the most payments today?",
        "How many orders did I have in the last 7 days?",
        "What is my average ticket this month?",
    ],
    "es": [
        "¿Cuántas reseñas de 4 estrellas tengo este mes?",
        "¿Cuál fue mi total de ventas la semana pasada?",
        "¿Qué mesero procesó más pagos hoy?",
        "¿Cuántos pedidos tuve en los últimos 7 días?",
        "¿Cuál es mi ticket promedio este mes?",
    ],
}

CLARIFICATION = {
    "en": (
        "I am not confident I understood the question. Could you say which metric "
        "and which period you are interested in?"
    ),
    "es": (
        "No estoy seguro de haber entendido la pregunta. ¿Podrías indicar qué métrica "
        "y qué periodo te interesan?"
    ),
}

_TEMPLATES = {
    "en": {
        "single": "The result is {value}.",
        "row": "Result: {fields}.",
        "many": "Found {count} results. Top results: {items}.",
    },
    "es": {
        "single": "El resultado es {value}.",
        "row": "Resultado: {fields}.",
        "many": "Se encontraron {count} resultados. Principales: {items}.",
    },
}


def format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, (float, Decimal)):
        return f"{float(value):,.2f}"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _fields(row: dict[str, Any]) -> str:
    return ", ".join(f"{key}: {format_value(value)}" for key, value in row.items())


def compose_answer(rows: list[dict[str, Any]], language: str = "en", total_rows: int | None = None) -> str:
    """
    Summarize the first rows of a result.

    Args:
        rows: Rows as delivered to the caller
        language: "en" or "es"
        total_rows: Row count before truncation, when known
    """
    templates = _TEMPLATES.get(language, _TEMPLATES["en"])
    if len(rows) == 1:
        row = rows[0]
        if len(row) == 1:
            return templates["single"].format(value=format_value(next(iter(row.values()))))
        return templates["row"].format(fields=_fields(row))

    items = "; ".join(
        f"{i}) {_fields(row)}" for i, row in enumerate(rows[:MAX_SUMMARY_ROWS], start=1)
    )
    return templates["many"].format(count=total_rows or len(rows), items=items)


def follow_up_suggestions(question: str, language: str = "en", limit: int = 3) -> list[str]:
    """Suggested next questions, skipping ones that open like the current question."""
    options = FOLLOW_UPS.get(language, FOLLOW_UPS["en"])
    words = question.lower().split()
    first = words[0] if words else ""
    return [s for s in options if not (first and first in s.lower())][:limit]


def clarification_message(language: str = "en") -> str:
    return CLARIFICATION.get(language, CLARIFICATION["en"])
