"""
Unit Tests for the security audit log
=====================================

Encryption, sanitization, querying, retention and chain integrity.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from query_guard.errors import AuditConfigurationError
from query_guard.models import ViolationType
from query_guard.security.audit_log import (
    ENCRYPTED_PREFIX,
    OMITTED_SQL,
    AuditEventType,
    AuditFilter,
    AuditLogger,
    sanitize_question,
    verify_audit_chain,
)

SENSITIVE_SQL = 'SELECT "stripePaymentIntentId" FROM "Payment" WHERE "tenantId" = \'t1\''
PLAIN_SQL = 'SELECT COUNT(*) FROM "Order" WHERE "tenantId" = \'t1\''


def _log(audit: AuditLogger, event_type=AuditEventType.QUERY_SUCCESS, tenant="t1", user="u1", **kwargs):
    return audit.log(event_type, tenant, user, "MANAGER", kwargs.pop("outcome", "success"), **kwargs)


class TestConfiguration:
    def test_fails_closed_without_key(self, tmp_path: Path) -> None:
        with pytest.raises(AuditConfigurationError, match="QUERY_GUARD_AUDIT_KEY"):
            AuditLogger(tmp_path / "audit.log")

    def test_rejects_invalid_key(self, tmp_path: Path) -> None:
        with pytest.raises(AuditConfigurationError, match="Invalid audit encryption key"):
            AuditLogger(tmp_path / "audit.log", key="not-a-fernet-key")

    def test_unencrypted_mode_omits_sensitive_sql(self, tmp_path: Path) -> None:
        audit = AuditLogger(tmp_path / "audit.log", encrypt_sensitive=False)
        entry = _log(audit, sql=SENSITIVE_SQL)
        assert entry.sql == OMITTED_SQL
        assert SENSITIVE_SQL not in (tmp_path / "audit.log").read_text()


class TestWriting:
    """Appending entries."""

    def test_sensitive_sql_is_encrypted(self, audit_logger: AuditLogger) -> None:
        entry = _log(audit_logger, sql=SENSITIVE_SQL)
        assert entry.encrypted
        assert entry.sql.startswith(ENCRYPTED_PREFIX)
        assert audit_logger.decrypt_sql(entry.sql) == SENSITIVE_SQL
        assert "stripePaymentIntentId" not in audit_logger.path.read_text()

    def test_plain_sql_kept(self, audit_logger: AuditLogger) -> None:
        entry = _log(audit_logger, sql=PLAIN_SQL)
        assert entry.sql == PLAIN_SQL
        assert entry.sql_hash is not None

    def test_decrypt_with_other_key_fails(self, audit_logger: AuditLogger, tmp_path: Path) -> None:
        entry = _log(audit_logger, sql=SENSITIVE_SQL)
        other = AuditLogger(tmp_path / "other.log", key=AuditLogger.generate_key())
        with pytest.raises(AuditConfigurationError, match="different key"):
            other.decrypt_sql(entry.sql)

    def test_question_is_sanitized(self, audit_logger: AuditLogger) -> None:
        entry = _log(audit_logger, question="orders for ana@example.com")
        assert entry.question == "orders for [EMAIL]"

    def test_json_lines(self, audit_logger: AuditLogger) -> None:
        _log(audit_logger, violation_type=ViolationType.PROMPT_INJECTION, event_type=AuditEventType.QUERY_BLOCKED)
        _log(audit_logger)
        lines = audit_logger.path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["violation_type"] == "PROMPT_INJECTION"


class TestSanitizeQuestion:
    @pytest.mark.parametrize(
        "question,expected",
        [
            ("login with password=hunter2 please", "login with password=[REDACTED] please"),
            ("card 4111 1111 1111 1111 sales", "card [CARD] sales"),
            ("order 123e4567-e89b-12d3-a456-426614174000", "order [ID]"),
            ("call 555-123-4567", "call [PHONE]"),
        ],
    )
    def test_masks(self, question: str, expected: str) -> None:
        assert sanitize_question(question) == expected

    def test_length_bounded(self) -> None:
        assert len(sanitize_question("x" * 900)) == 503


class TestQuerying:
    """Filtering and statistics."""

    def test_newest_first_with_filters(self, audit_logger: AuditLogger) -> None:
        first = _log(audit_logger, tenant="t1")
        _log(audit_logger, tenant="t2")
        third = _log(audit_logger, tenant="t1", event_type=AuditEventType.QUERY_BLOCKED)

        results = audit_logger.query(AuditFilter(tenant_id="t1"))
        assert [e.event_id for e in results] == [third.event_id, first.event_id]

        blocked = audit_logger.query(AuditFilter(event_type=AuditEventType.QUERY_BLOCKED))
        assert [e.event_id for e in blocked] == [third.event_id]

    def test_limit(self, audit_logger: AuditLogger) -> None:
        for _ in range(5):
            _log(audit_logger)
        assert len(audit_logger.query(limit=2)) == 2
        assert len(audit_logger.query(limit=0)) == 1

    def test_date_window(self, audit_logger: AuditLogger) -> None:
        _log(audit_logger)
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert audit_logger.query(AuditFilter(start=future)) == []
        assert len(audit_logger.query(AuditFilter(end=future))) == 1

    def test_statistics(self, audit_logger: AuditLogger) -> None:
        _log(audit_logger, user="u1")
        _log(audit_logger, user="u2", event_type=AuditEventType.SECURITY_VIOLATION,
             violation_type=ViolationType.CROSS_TENANT_ACCESS)
        _log(audit_logger, user="u2", event_type=AuditEventType.SECURITY_VIOLATION,
             violation_type=ViolationType.CROSS_TENANT_ACCESS)

        stats = audit_logger.statistics()
        assert stats["total_events"] == 3
        assert stats["by_event_type"] == {"query_success": 1, "security_violation": 2}
        assert stats["by_violation_type"] == {"CROSS_TENANT_ACCESS": 2}
        assert stats["top_users"][0] == {"user_id": "u2", "count": 2}


class TestRetentionAndIntegrity:
    def test_rotate_prunes_old_entries(self, audit_logger: AuditLogger) -> None:
        _log(audit_logger)
        assert audit_logger.rotate() == 0
        later = datetime.now(timezone.utc) + timedelta(days=audit_logger.retention_days + 1)
        assert audit_logger.rotate(now=later) == 1
        assert audit_logger.entries() == []

    def test_chain_verifies(self, audit_logger: AuditLogger) -> None:
        for _ in range(3):
            _log(audit_logger)
        entries = audit_logger.entries()
        assert entries[1].previous_hash == entries[0].record_hash
        assert verify_audit_chain(entries) == (True, [])

    def test_tampering_detected(self, audit_logger: AuditLogger) -> None:
        _log(audit_logger)
        _log(audit_logger, outcome="blocked")
        entries = audit_logger.entries()
        entries[1].outcome = "success"
        valid, errors = verify_audit_chain(entries)
        assert valid is False
        assert "hash mismatch" in errors[0]

    def test_chain_resumes_after_restart(self, audit_logger: AuditLogger) -> None:
        first = _log(audit_logger)
        reopened = AuditLogger(audit_logger.path, key=AuditLogger.generate_key())
        second = _log(reopened)
        assert second.previous_hash == first.record_hash
