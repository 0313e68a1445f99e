"""
Security Audit Log
==================

Append-only JSON Lines trail of every query outcome and security event.

Each record carries:
- Type of event, timestamp, tenant, user and role
- Sanitized question (contact data, card numbers, identifiers and
  credential-like pairs masked)
- SQL text, Fernet-encrypted whenever it references sensitive columns
- Outcome and violation classification
- Integrity hash chained to the previous record
"""

import hashlib
import json
import os
import re
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken

from query_guard.errors import AuditConfigurationError
from query_guard.models import ViolationType
from query_guard.observability.logging_config import get_logger

logger = get_logger(__name__)

ENCRYPTED_PREFIX = "encrypted:"
OMITTED_SQL = "[SENSITIVE_SQL_OMITTED]"
MAX_QUESTION_LENGTH = 500
MAX_QUERY_LIMIT = 1000


class AuditEventType(str, Enum):
    """Types of audit events."""

    QUERY_SUCCESS = "query_success"
    QUERY_BLOCKED = "query_blocked"
    QUERY_FAILED = "query_failed"
    SECURITY_VIOLATION = "security_violation"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    AUTHENTICATION_FAILURE = "authentication_failure"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    PII_ACCESS_ATTEMPT = "pii_access_attempt"
    PROMPT_INJECTION_DETECTED = "prompt_injection_detected"


# (pattern, replacement) applied in order to questions before storage
QUESTION_MASKS = [
    (re.compile(r"\b(password|passwd|pwd|token|secret|api[_-]?key)\s*[=:]\s*\S+", re.IGNORECASE),
     r"\1=[REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE), "[ID]"),
    (re.compile(r"\bc[a-z0-9]{24}\b"), "[ID]"),
    (re.compile(r"(?:\+\d{1,3}[-.\s]?)?\(?\d{2,3}\)?[-.\s]?\d{3,4}[-.\s]?\d{4}\b"), "[PHONE]"),
]

SENSITIVE_SQL = re.compile(
    r"password|passwd|token|secret|api_?key|card|cvv|ssn|social_?security|stripe",
    re.IGNORECASE,
)


def sanitize_question(question: str) -> str:
    """Mask personal and credential-like data and bound the length."""
    sanitized = question
    for pattern, replacement in QUESTION_MASKS:
        sanitized = pattern.sub(replacement, sanitized)
    if len(sanitized) > MAX_QUESTION_LENGTH:
        sanitized = sanitized[:MAX_QUESTION_LENGTH] + "..."
    return sanitized


def sql_hash(sql: str) -> str:
    return hashlib.sha256(sql.encode()).hexdigest()[:16]


def is_sensitive_sql(sql: str) -> bool:
    return bool(SENSITIVE_SQL.search(sql))


@dataclass
class AuditEntry:
    """One appended audit record. Never rewritten once written."""

    event_id: str
    timestamp: str
    event_type: str
    tenant_id: str
    user_id: str
    role: str
    outcome: str
    question: Optional[str] = None
    sql: Optional[str] = None
    sql_hash: Optional[str] = None
    violation_type: Optional[str] = None
    execution_time_ms: Optional[float] = None
    rows_returned: Optional[int] = None
    ip_address: Optional[str] = None
    session_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    # Integrity
    record_hash: Optional[str] = None
    previous_hash: Optional[str] = None

    @property
    def encrypted(self) -> bool:
        return bool(self.sql and self.sql.startswith(ENCRYPTED_PREFIX))

    @property
    def occurred_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(**data)

    def compute_hash(self) -> str:
        data = self.to_dict()
        data["record_hash"] = None
        return hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


@dataclass
class AuditFilter:
    """Filters accepted by ``AuditLogger.query`` and ``statistics``."""

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    event_type: Optional[AuditEventType] = None
    violation_type: Optional[ViolationType] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.tenant_id is not None and entry.tenant_id != self.tenant_id:
            return False
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.event_type is not None and entry.event_type != self.event_type.value:
            return False
        if self.violation_type is not None and entry.violation_type != self.violation_type.value:
            return False
        if self.start is not None and entry.occurred_at < self.start:
            return False
        if self.end is not None and entry.occurred_at > self.end:
            return False
        return True


class AuditLogger:
    """
    Append-only security audit log backed by a JSON Lines file.

    Appends are serialized with a lock so concurrent requests (including
    the three consensus branches) never interleave partial lines. The
    logger fails closed: without an encryption key it refuses to start
    unless encryption is explicitly disabled, in which case sensitive SQL
    is omitted rather than stored in clear text.
    """

    def __init__(
        self,
        path: str | Path,
        key: str | bytes | None = None,
        encrypt_sensitive: bool = True,
        retention_days: int = 30,
    ) -> None:
        """
        Initialize the audit logger.

        Args:
            path: JSON Lines file; parent directories are created
            key: Fernet key used for sensitive SQL
            encrypt_sensitive: Set False to run without a key
            retention_days: Age after which ``rotate`` prunes entries

        Raises:
            AuditConfigurationError: No usable key while encryption is enabled
        """
        self.path = Path(path)
        self.retention_days = retention_days
        self.encrypt_sensitive = encrypt_sensitive
        self._fernet: Optional[Fernet] = None

        if encrypt_sensitive:
            if not key:
                raise AuditConfigurationError(
                    "Audit encryption key is required (set QUERY_GUARD_AUDIT_KEY)"
                )
            try:
                self._fernet = Fernet(key)
            except (ValueError, TypeError) as e:
                raise AuditConfigurationError(f"Invalid audit encryption key: {e}") from e

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._last_hash = self._read_last_hash()

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def _read_last_hash(self) -> Optional[str]:
        if not self.path.exists():
            return None
        last = None
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    last = line
        if last is None:
            return None
        return json.loads(last).get("record_hash")

    def protect_sql(self, sql: Optional[str]) -> Optional[str]:
        """Encrypt SQL that references sensitive columns; pass the rest through."""
        if sql is None or not is_sensitive_sql(sql):
            return sql
        if self._fernet is None:
            return OMITTED_SQL
        return ENCRYPTED_PREFIX + self._fernet.encrypt(sql.encode()).decode()

    def decrypt_sql(self, stored: str) -> str:
        """Recover SQL text for authorized readers."""
        if not stored.startswith(ENCRYPTED_PREFIX):
            return stored
        if self._fernet is None:
            raise AuditConfigurationError("Audit log was opened without an encryption key")
        try:
            return self._fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken as e:
            raise AuditConfigurationError("Audit entry was encrypted with a different key") from e

    def log(
        self,
        event_type: AuditEventType,
        tenant_id: str,
        user_id: str,
        role: str,
        outcome: str,
        question: Optional[str] = None,
        sql: Optional[str] = None,
        violation_type: Optional[ViolationType] = None,
        execution_time_ms: Optional[float] = None,
        rows_returned: Optional[int] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Append one event.

        Returns:
            The entry as written
        """
        entry = AuditEntry(
            event_id=str(uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type.value,
            tenant_id=tenant_id,
            user_id=user_id,
            role=str(getattr(role, "value", role)),
            outcome=outcome,
            question=sanitize_question(question) if question is not None else None,
            sql=self.protect_sql(sql),
            sql_hash=sql_hash(sql) if sql else None,
            violation_type=violation_type.value if violation_type else None,
            execution_time_ms=execution_time_ms,
            rows_returned=rows_returned,
            ip_address=ip_address,
            session_id=session_id,
            details=details or {},
        )

        with self._lock:
            entry.previous_hash = self._last_hash
            entry.record_hash = entry.compute_hash()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), default=str) + "\n")
            self._last_hash = entry.record_hash

        logger.debug(
            "audit_event_written",
            event_type=entry.event_type,
            tenant_id=tenant_id,
            violation_type=entry.violation_type,
            sql_hash=entry.sql_hash,
        )
        return entry

    def entries(self) -> list[AuditEntry]:
        """All entries in append order."""
        if not self.path.exists():
            return []
        with self._lock, open(self.path, encoding="utf-8") as f:
            return [AuditEntry.from_dict(json.loads(line)) for line in f if line.strip()]

    def query(self, filters: Optional[AuditFilter] = None, limit: int = 100) -> list[AuditEntry]:
        """
        Filtered entries, most recent first.

        Args:
            filters: Optional tenant/user/event/violation/date filters
            limit: Maximum entries returned, bounded at 1000
        """
        filters = filters or AuditFilter()
        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        matched = [e for e in reversed(self.entries()) if filters.matches(e)]
        return matched[:limit]

    def statistics(self, filters: Optional[AuditFilter] = None) -> dict[str, Any]:
        """Counts by event type and violation type, plus the most active users."""
        filters = filters or AuditFilter()
        by_event: dict[str, int] = {}
        by_violation: dict[str, int] = {}
        by_user: dict[str, int] = {}
        total = 0
        for entry in self.entries():
            if not filters.matches(entry):
                continue
            total += 1
            by_event[entry.event_type] = by_event.get(entry.event_type, 0) + 1
            if entry.violation_type:
                by_violation[entry.violation_type] = by_violation.get(entry.violation_type, 0) + 1
            by_user[entry.user_id] = by_user.get(entry.user_id, 0) + 1

        top_users = sorted(by_user.items(), key=lambda item: item[1], reverse=True)[:10]
        return {
            "total_events": total,
            "by_event_type": by_event,
            "by_violation_type": by_violation,
            "top_users": [{"user_id": user, "count": count} for user, count in top_users],
        }

    def rotate(self, now: Optional[datetime] = None) -> int:
        """
        Prune entries older than the retention window.

        Returns:
            Number of entries removed
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=self.retention_days)
        if not self.path.exists():
            return 0

        with self._lock:
            with open(self.path, encoding="utf-8") as f:
                lines = [line for line in f if line.strip()]
            kept = [line for line in lines if datetime.fromisoformat(json.loads(line)["timestamp"]) >= cutoff]
            removed = len(lines) - len(kept)
            if removed:
                tmp = self.path.with_suffix(self.path.suffix + ".tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    f.writelines(kept)
                os.replace(tmp, self.path)

        if removed:
            logger.info("audit_log_rotated", removed=removed, retention_days=self.retention_days)
        return removed


def verify_audit_chain(entries: list[AuditEntry]) -> tuple[bool, list[str]]:
    """
    Verify the integrity of an audit chain.

    The first entry's ``previous_hash`` is taken as given, since rotation
    prunes its predecessors.

    Returns:
        Tuple of (is_valid, list of errors)
    """
    errors = []
    previous_hash = entries[0].previous_hash if entries else None

    for i, entry in enumerate(entries):
        if entry.previous_hash != previous_hash:
            errors.append(f"Entry {i} ({entry.event_id}): chain broken")
        if entry.record_hash != entry.compute_hash():
            errors.append(f"Entry {i} ({entry.event_id}): hash mismatch, entry may have been altered")
        previous_hash = entry.record_hash

    return len(errors) == 0, errors
