"""
PII Redaction
=============

Personally Identifiable Information detection and masking for result rows
and SQL text.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Pattern

from query_guard.roles import PII_EXEMPT_ROLES, UserRole

REDACTED = "***REDACTED***"


class PIIType(str, Enum):
    """Types of PII that can be detected."""

    EMAIL = "email"
    PHONE = "phone"
    SSN = "ssn"
    CREDIT_CARD = "credit_card"
    IP_ADDRESS = "ip_address"
    NATIONAL_ID = "national_id"
    ADDRESS = "address"
    NAME = "name"
    SECRET = "secret"


@dataclass
class PIIMatch:
    """A detected PII value inside a string."""

    pii_type: PIIType
    value: str
    start: int
    end: int


@dataclass
class PIIFinding:
    """A PII-bearing field found while scanning rows."""

    field: str
    pii_type: PIIType
    row_index: int
    by_field_name: bool


@dataclass
class RedactionResult:
    """Masked rows plus what was masked."""

    rows: list[dict[str, Any]]
    redacted_fields: list[str] = field(default_factory=list)
    redacted_count: int = 0

    @property
    def pii_found(self) -> bool:
        return self.redacted_count > 0


# Checked in order; card numbers before phones so long digit runs are not split
VALUE_PATTERNS: list[tuple[PIIType, Pattern]] = [
    (PIIType.EMAIL, re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    (PIIType.CREDIT_CARD, re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b")),
    (PIIType.SSN, re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    (PIIType.NATIONAL_ID, re.compile(r"\b[A-Z]{4}\d{6}[HM][A-Z]{5}[A-Z0-9]\d\b")),
    (PIIType.PHONE, re.compile(r"(?:\+\d{1,3}[-.\s]?)?\(?\d{2,3}\)?[-.\s]?\d{3,4}[-.\s]?\d{4}\b")),
    (PIIType.IP_ADDRESS, re.compile(r"\b(?:(?:25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(?:25[0-5]|2[0-4]\d|1?\d?\d)\b")),
]

# Field-name patterns whose values are always masked; searched anywhere in the
# name so prefixed or aliased columns (userPassword, customer_email) match too.
# Checked in order; the first match decides the type.
SENSITIVE_FIELD_PATTERNS: list[tuple[PIIType, Pattern]] = [
    (PIIType.SECRET, re.compile(r"password|passwd|pwd|secret|token|api[_-]?key|auth[_-]?key|private[_-]?key", re.I)),
    (PIIType.SECRET, re.compile(r"stripe[_-]?(?:key|payment[_-]?intent)", re.I)),
    (PIIType.CREDIT_CARD, re.compile(r"credit[_-]?card|card[_-]?number|cvv|last[_-]?4", re.I)),
    (PIIType.SSN, re.compile(r"ssn|social[_-]?security", re.I)),
    (PIIType.NATIONAL_ID, re.compile(r"tax[_-]?id|rfc|curp", re.I)),
    (PIIType.IP_ADDRESS, re.compile(r"ip[_-]?address", re.I)),
    (PIIType.EMAIL, re.compile(r"e[_-]?mail", re.I)),
    (PIIType.PHONE, re.compile(r"phone|mobile", re.I)),
    (PIIType.ADDRESS, re.compile(r"address", re.I)),
]


class PIIRedactor:
    """
    Masks PII in result rows before they leave the engine.

    Fields are masked wholesale when their name is sensitive; other string
    values have embedded PII replaced with typed placeholders such as
    ``[EMAIL_REDACTED]``.
    """

    def __init__(self, exempt_roles: frozenset[UserRole] = PII_EXEMPT_ROLES) -> None:
        self.exempt_roles = exempt_roles

    def should_redact(self, role: UserRole) -> bool:
        return role not in self.exempt_roles

    @staticmethod
    def field_type(name: str) -> PIIType | None:
        for pii_type, pattern in SENSITIVE_FIELD_PATTERNS:
            if pattern.search(name):
                return pii_type
        return None

    def detect(self, text: str) -> list[PIIMatch]:
        """
        Detect PII values in text.

        Overlapping matches are resolved in favour of the pattern listed first.
        """
        matches: list[PIIMatch] = []
        for pii_type, pattern in VALUE_PATTERNS:
            for found in pattern.finditer(text):
                if any(found.start() < m.end and m.start < found.end() for m in matches):
                    continue
                matches.append(PIIMatch(pii_type, found.group(0), found.start(), found.end()))
        return sorted(matches, key=lambda m: m.start)

    def redact_text(self, text: str) -> str:
        result = text
        for match in sorted(self.detect(text), key=lambda m: m.start, reverse=True):
            placeholder = f"[{match.pii_type.value.upper()}_REDACTED]"
            result = result[:match.start] + placeholder + result[match.end:]
        return result

    def _redact_value(self, value: Any) -> tuple[Any, bool]:
        if isinstance(value, str):
            masked = self.redact_text(value)
            return masked, masked != value
        if isinstance(value, dict):
            masked_row, fields = self._redact_row(value)
            return masked_row, bool(fields)
        if isinstance(value, list):
            changed = False
            items = []
            for item in value:
                masked, item_changed = self._redact_value(item)
                items.append(masked)
                changed = changed or item_changed
            return items, changed
        return value, False

    def _redact_row(self, row: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
        masked_row = {}
        fields = []
        for key, value in row.items():
            if self.field_type(key) is not None and value is not None:
                masked_row[key] = REDACTED
                fields.append(key)
                continue
            masked, changed = self._redact_value(value)
            masked_row[key] = masked
            if changed:
                fields.append(key)
        return masked_row, fields

    def redact_rows(self, rows: list[dict[str, Any]], role: UserRole) -> RedactionResult:
        """
        Mask PII in rows for the given role.

        Args:
            rows: Result rows; never modified in place
            role: Requester role; exempt roles get the rows back unchanged

        Returns:
            RedactionResult with the masked copy
        """
        if not self.should_redact(role):
            return RedactionResult(rows=rows)

        out = []
        redacted_fields: list[str] = []
        count = 0
        for row in rows:
            masked, fields = self._redact_row(row)
            out.append(masked)
            count += len(fields)
            redacted_fields.extend(fields)
        return RedactionResult(
            rows=out,
            redacted_fields=list(dict.fromkeys(redacted_fields)),
            redacted_count=count,
        )

    def scan(self, rows: list[dict[str, Any]]) -> list[PIIFinding]:
        """Report PII-bearing fields without modifying the rows."""
        findings = []
        for index, row in enumerate(rows):
            for key, value in row.items():
                by_name = self.field_type(key)
                if by_name is not None and value is not None:
                    findings.append(PIIFinding(key, by_name, index, True))
                elif isinstance(value, str):
                    for match in self.detect(value):
                        findings.append(PIIFinding(key, match.pii_type, index, False))
        return findings

    def sql_references_pii(self, sql: str) -> list[str]:
        """Sensitive column names referenced in the SQL text."""
        found = []
        for token in re.findall(r'"([^"]+)"|\b([A-Za-z_][A-Za-z0-9_]*)\b', sql):
            name = token[0] or token[1]
            if self.field_type(name) is not None:
                found.append(name)
        return list(dict.fromkeys(found))
