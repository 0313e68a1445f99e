"""
Relative Date Ranges
====================

Resolves phrases such as "yesterday" or "last month" to concrete
boundaries. The fast path and the generation prompt both go through
``resolve_date_range`` so the same phrase always yields the same window.
"""

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

SQL_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RelativeDateRange(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    THIS_WEEK = "thisWeek"
    LAST_WEEK = "lastWeek"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"


# Checked in order; longer phrases first so "last 7 days" wins over "last week"
DATE_PHRASES: list[tuple[re.Pattern, RelativeDateRange]] = [
    (re.compile(r"\b(last|past)\s+7\s+days\b|[uú]ltimos\s+7\s+d[ií]as"), RelativeDateRange.LAST_7_DAYS),
    (re.compile(r"\b(last|past)\s+30\s+days\b|[uú]ltimos\s+30\s+d[ií]as"), RelativeDateRange.LAST_30_DAYS),
    (re.compile(r"\byesterday\b|\bayer\b"), RelativeDateRange.YESTERDAY),
    (re.compile(r"\btoday\b|\bhoy\b"), RelativeDateRange.TODAY),
    (re.compile(r"\blast\s+week\b|semana\s+pasada"), RelativeDateRange.LAST_WEEK),
    (re.compile(r"\bthis\s+week\b|esta\s+semana"), RelativeDateRange.THIS_WEEK),
    (re.compile(r"\blast\s+month\b|mes\s+pasado"), RelativeDateRange.LAST_MONTH),
    (re.compile(r"\bthis\s+month\b|este\s+mes"), RelativeDateRange.THIS_MONTH),
]


@dataclass(frozen=True)
class DateRange:
    """Inclusive window in the venue's timezone."""

    start: datetime
    end: datetime
    label: RelativeDateRange

    def sql_bounds(self) -> tuple[str, str]:
        """Boundaries as UTC timestamp literals suitable for SQL parameters."""
        return (
            self.start.astimezone(timezone.utc).strftime(SQL_TIMESTAMP_FORMAT),
            self.end.astimezone(timezone.utc).strftime(SQL_TIMESTAMP_FORMAT),
        )

    def sql_filter(self, column: str = '"createdAt"') -> str:
        start, end = self.sql_bounds()
        return f"{column} >= '{start}' AND {column} <= '{end}'"


def detect_date_phrase(text: str) -> Optional[RelativeDateRange]:
    """Return the first relative date phrase found in the text."""
    lowered = text.lower()
    for pattern, date_range in DATE_PHRASES:
        if pattern.search(lowered):
            return date_range
    return None


def resolve_date_range(
    date_range: RelativeDateRange,
    now: Optional[datetime] = None,
    tz: str = "UTC",
) -> DateRange:
    """
    Compute the effective window for a relative date phrase.

    Args:
        date_range: The relative phrase
        now: Reference instant (defaults to the current time)
        tz: Venue timezone name

    Returns:
        DateRange with timezone-aware boundaries
    """
    zone = ZoneInfo(tz)
    now = (now or datetime.now(timezone.utc)).astimezone(zone)
    today = now.date()

    if date_range is RelativeDateRange.TODAY:
        start = datetime.combine(today, time.min, tzinfo=zone)
        end = datetime.combine(today, time.max, tzinfo=zone)
    elif date_range is RelativeDateRange.YESTERDAY:
        day = today - timedelta(days=1)
        start = datetime.combine(day, time.min, tzinfo=zone)
        end = datetime.combine(day, time.max, tzinfo=zone)
    elif date_range in (RelativeDateRange.LAST_7_DAYS, RelativeDateRange.THIS_WEEK):
        start, end = now - timedelta(days=7), now
    elif date_range in (RelativeDateRange.LAST_30_DAYS, RelativeDateRange.THIS_MONTH):
        start, end = now - timedelta(days=30), now
    elif date_range is RelativeDateRange.LAST_WEEK:
        start, end = now - timedelta(days=14), now - timedelta(days=7)
    elif date_range is RelativeDateRange.LAST_MONTH:
        start, end = now - timedelta(days=60), now - timedelta(days=30)
    else:
        raise ValueError(f"Unsupported date range: {date_range}")

    return DateRange(start=start, end=end, label=date_range)
