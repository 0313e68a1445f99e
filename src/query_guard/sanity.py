"""
Result Sanity Checker
=====================

Plausibility checks run on executed results before an answer is composed.

Hard failures (the answer is withheld):
- empty or all-null results
- dates beyond the current day
- a "day with the most X" claim the store does not confirm

Confidence penalties (the answer is returned with a warning):
- percentages outside [0, 100]
- negative monetary totals
- magnitude outliers against the trailing average
- comparisons drawn from fewer than three rows
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from query_guard.intent import COMPARISON, RANKING
from query_guard.observability.logging_config import get_logger
from query_guard.store.base import RelationalStore

logger = get_logger(__name__)

NO_DATA_MESSAGES = {
    "en": "No data found for these criteria.",
    "es": "No se encontraron datos para estos criterios.",
}

MONEY_COLUMN = re.compile(
    r"total|revenue|amount|sales|price|tip|subtotal|spent|cost|ticket|venta|ingreso|monto",
    re.IGNORECASE,
)
COUNT_COLUMN = re.compile(r"count|orders|quantity|qty|cantidad", re.IGNORECASE)
PERCENT_COLUMN = re.compile(r"percent|pct|porcentaje", re.IGNORECASE)
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
TOP_DAY_QUESTION = re.compile(
    r"\b(day|d[ií]a)\b.*\b(most|highest|best|m[aá]s|mayor|mejor)\b"
    r"|\b(most|highest|best|m[aá]s|mayor|mejor)\b.*\b(day|d[ií]a)\b",
    re.IGNORECASE,
)

TOP_DAY_CHECK_SQL = """
SELECT
  (SELECT COUNT(*) FROM "Order" WHERE "tenantId" = :tenant_id AND DATE("createdAt") = :day) AS "orderCount",
  (SELECT COALESCE(SUM("total"), 0) FROM "Order" WHERE "tenantId" = :tenant_id AND DATE("createdAt") = :day) AS "orderTotal",
  (SELECT COALESCE(SUM("amount"), 0) FROM "Payment" WHERE "tenantId" = :tenant_id AND DATE("createdAt") = :day) AS "paymentTotal"
"""

OUTLIER_FACTOR = 10
MIN_COMPARISON_ROWS = 3
PERCENT_CONFIDENCE_CAP = 0.4
NEGATIVE_MONEY_CONFIDENCE_CAP = 0.3
OUTLIER_CONFIDENCE_CAP = 0.6
SMALL_SAMPLE_CONFIDENCE_CAP = 0.7


@dataclass
class SanityReport:
    """Outcome of the sanity checks for one result set."""

    passed: bool = True
    hard_failure: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    confidence_cap: Optional[float] = None
    details: dict[str, Any] = field(default_factory=dict)

    def fail(self, message: str) -> "SanityReport":
        self.passed = False
        self.hard_failure = True
        self.errors.append(message)
        return self

    def penalize(self, message: str, cap: float) -> None:
        self.warnings.append(message)
        self.confidence_cap = cap if self.confidence_cap is None else min(self.confidence_cap, cap)

    def apply(self, confidence: float) -> float:
        return confidence if self.confidence_cap is None else min(confidence, self.confidence_cap)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "hardFailure": self.hard_failure,
            "errors": self.errors,
            "warnings": self.warnings,
            "confidenceCap": self.confidence_cap,
        }


def is_money_column(name: str) -> bool:
    return bool(MONEY_COLUMN.search(name)) and not COUNT_COLUMN.search(name)


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and ISO_DATE.match(value):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    return None


class ResultSanityChecker:
    """Checks executed rows for emptiness and implausible values."""

    def __init__(
        self,
        store: Optional[RelationalStore] = None,
        tolerance: float = 0.01,
        language: str = "en",
    ) -> None:
        self.store = store
        self.tolerance = tolerance
        self.language = language

    async def check(
        self,
        question: str,
        rows: list[dict[str, Any]],
        tenant_id: str,
        now: Optional[datetime] = None,
        language: Optional[str] = None,
    ) -> SanityReport:
        """
        Run every check against a result set.

        Args:
            question: The user's question, used to pick question-specific checks
            rows: Executed result rows
            tenant_id: Tenant the cross-check query is scoped to
            now: Reference time for the future-date check
            language: Language of the no-data message

        Returns:
            SanityReport; ``hard_failure`` means no answer may be given
        """
        report = SanityReport()
        today = (now or datetime.now(timezone.utc)).date()

        if not rows or all(all(v is None for v in row.values()) for row in rows):
            return report.fail(NO_DATA_MESSAGES.get(language or self.language, NO_DATA_MESSAGES["en"]))

        future = self._future_dates(rows, today)
        if future:
            report.details["future_dates"] = future
            return report.fail(f"Results contain dates after {today.isoformat()}")

        self._check_percentages(rows, report)
        self._check_negative_money(rows, report)
        self._check_outliers(rows, report)

        lowered = question.lower()
        if (COMPARISON.search(lowered) or RANKING.search(lowered)) and len(rows) < MIN_COMPARISON_ROWS:
            report.penalize(
                f"Comparison drawn from only {len(rows)} row(s)", SMALL_SAMPLE_CONFIDENCE_CAP
            )

        if TOP_DAY_QUESTION.search(question):
            await self._cross_check_top_day(rows, tenant_id, report)

        if report.hard_failure or report.warnings:
            logger.info(
                "sanity_check_completed",
                hard_failure=report.hard_failure,
                warnings=len(report.warnings),
                confidence_cap=report.confidence_cap,
            )
        return report

    @staticmethod
    def _future_dates(rows: list[dict[str, Any]], today: date) -> list[str]:
        found = []
        for row in rows:
            for value in row.values():
                parsed = _as_date(value)
                if parsed is not None and parsed > today:
                    found.append(parsed.isoformat())
        return found

    @staticmethod
    def _check_percentages(rows: list[dict[str, Any]], report: SanityReport) -> None:
        for row in rows:
            for key, value in row.items():
                number = _as_number(value)
                if number is not None and PERCENT_COLUMN.search(key) and not 0 <= number <= 100:
                    report.penalize(f'Percentage "{key}" out of range: {number}', PERCENT_CONFIDENCE_CAP)
                    return

    @staticmethod
    def _check_negative_money(rows: list[dict[str, Any]], report: SanityReport) -> None:
        for row in rows:
            for key, value in row.items():
                number = _as_number(value)
                if number is not None and number < 0 and is_money_column(key):
                    report.penalize(
                        f'Negative monetary value in "{key}"', NEGATIVE_MONEY_CONFIDENCE_CAP
                    )
                    return

    @staticmethod
    def _check_outliers(rows: list[dict[str, Any]], report: SanityReport) -> None:
        if len(rows) < MIN_COMPARISON_ROWS + 1:
            return
        for key in rows[0]:
            if not is_money_column(key):
                continue
            values = [_as_number(row.get(key)) for row in rows]
            for i in range(MIN_COMPARISON_ROWS, len(values)):
                trailing = [v for v in values[:i] if v is not None]
                current = values[i]
                if current is None or not trailing:
                    continue
                average = sum(trailing) / len(trailing)
                if average > 0 and current > OUTLIER_FACTOR * average:
                    report.penalize(
                        f'Value in "{key}" is more than {OUTLIER_FACTOR}x the trailing average',
                        OUTLIER_CONFIDENCE_CAP,
                    )
                    report.details.setdefault("outliers", []).append({"column": key, "row": i})
                    return

    def _claimed_value(self, row: dict[str, Any]) -> Optional[float]:
        for key, value in row.items():
            number = _as_number(value)
            if number is not None and is_money_column(key):
                return number
        return None

    def _within_tolerance(self, claimed: float, actual: float) -> bool:
        if actual == 0:
            return claimed == 0
        return abs(claimed - actual) / abs(actual) <= self.tolerance

    async def _cross_check_top_day(
        self, rows: list[dict[str, Any]], tenant_id: str, report: SanityReport
    ) -> None:
        """Re-query the claimed top day independently and compare."""
        if self.store is None:
            report.warnings.append("Top-day claim was not cross-checked")
            return

        top = rows[0]
        claimed_day = next((d for d in map(_as_date, top.values()) if d is not None), None)
        if claimed_day is None:
            report.fail("Could not identify the claimed day in the result")
            return

        checks = await self.store.execute(
            TOP_DAY_CHECK_SQL, {"tenant_id": tenant_id, "day": claimed_day.isoformat()}
        )
        actual = checks[0] if checks else {}
        order_count = int(actual.get("orderCount") or 0)
        report.details["top_day_check"] = {"day": claimed_day.isoformat(), "orderCount": order_count}

        if order_count == 0:
            report.fail(f"No orders exist on the claimed day {claimed_day.isoformat()}")
            return

        claimed = self._claimed_value(top)
        if claimed is None:
            return
        totals = [float(actual.get("orderTotal") or 0), float(actual.get("paymentTotal") or 0)]
        if not any(self._within_tolerance(claimed, total) for total in totals):
            report.fail(
                f"Claimed total for {claimed_day.isoformat()} does not match an independent recount"
            )
