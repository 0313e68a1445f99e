"""
Pytest Fixtures
===============

Shared fixtures for query safety engine tests.
"""

from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from query_guard.config import EngineConfig
from query_guard.engine import QuerySafetyEngine
from query_guard.llm.mock import MockLLM
from query_guard.models import ValidationVerdict
from query_guard.roles import UserRole
from query_guard.schema_context import SchemaContext
from query_guard.security.audit_log import AuditLogger
from query_guard.store.sqlite import SQLiteStore
from query_guard.validators.ast_security import SQLSecurityAnalyzer
from query_guard.validators.base import ValidationContext

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class RecordingStore(SQLiteStore):
    """SQLite store that remembers every executed statement."""

    def __init__(self, schema: SchemaContext | None = None) -> None:
        super().__init__(schema)
        self.executed: list[str] = []

    async def execute(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        self.executed.append(sql)
        return await super().execute(sql, params)


def candidate(sql: str, confidence: float = 0.9, tables: list[str] | None = None) -> dict:
    """A well-formed oracle payload."""
    return {
        "sql": sql,
        "explanation": "generated for tests",
        "confidence": confidence,
        "tables": tables or [],
        "isReadOnly": True,
    }


@pytest.fixture
def schema() -> SchemaContext:
    """Return the default schema context."""
    return SchemaContext()


@pytest.fixture
def store(schema: SchemaContext) -> RecordingStore:
    """SQLite store seeded with two tenants."""
    store = RecordingStore(schema)
    store.seed("Order", [
        {"id": "o1", "tenantId": TENANT, "orderNumber": "1", "total": 120.0, "status": "COMPLETED",
         "createdAt": "2026-10-01 12:00:00"},
        {"id": "o2", "tenantId": TENANT, "orderNumber": "2", "total": 80.0, "status": "COMPLETED",
         "createdAt": "2026-10-02 13:00:00"},
        {"id": "o3", "tenantId": OTHER_TENANT, "orderNumber": "1", "total": 999.0, "status": "COMPLETED",
         "createdAt": "2026-10-01 12:00:00"},
    ])
    store.seed("Payment", [
        {"id": "p1", "tenantId": TENANT, "orderId": "o1", "amount": 120.0, "method": "CARD",
         "status": "COMPLETED", "createdAt": "2026-10-01 12:05:00"},
        {"id": "p2", "tenantId": TENANT, "orderId": "o2", "amount": 80.0, "method": "CASH",
         "status": "COMPLETED", "createdAt": "2026-10-02 13:05:00"},
    ])
    store.seed("Product", [
        {"id": "pr1", "tenantId": TENANT, "name": "Tacos", "price": 10.0, "active": 1},
        {"id": "pr2", "tenantId": TENANT, "name": "Soup", "price": 8.0, "active": 1},
        {"id": "pr3", "tenantId": TENANT, "name": "Old Dish", "price": 5.0, "active": 0},
    ])
    store.seed("Customer", [
        {"id": "c1", "tenantId": TENANT, "firstName": "Ana", "email": "a@b.com", "phone": "555-123-4567"},
    ])
    yield store
    store.close()


@pytest.fixture
def audit_logger(tmp_path: Path) -> AuditLogger:
    """Encrypted audit logger writing under the test's temp directory."""
    return AuditLogger(tmp_path / "audit" / "security-audit.log", key=AuditLogger.generate_key())


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def make_engine(
    store: RecordingStore,
    schema: SchemaContext,
    audit_logger: AuditLogger,
    config: EngineConfig,
) -> Callable[..., QuerySafetyEngine]:
    """Factory building an engine around a scripted oracle."""

    def _make(responses: dict[str, list[Any]] | None = None, **overrides: Any) -> QuerySafetyEngine:
        engine_config = replace(config, **overrides)
        return QuerySafetyEngine(
            llm=MockLLM(responses),
            store=store,
            config=engine_config,
            schema=schema,
            audit_logger=audit_logger,
        )

    return _make


@pytest.fixture
def analyzer(schema: SchemaContext) -> SQLSecurityAnalyzer:
    return SQLSecurityAnalyzer(schema)


@pytest.fixture
def manager_context() -> ValidationContext:
    """Validation context for a MANAGER of the default tenant."""
    return ValidationContext(tenant_id=TENANT, role=UserRole.MANAGER)


@pytest.fixture
def viewer_context() -> ValidationContext:
    """Validation context for the lowest-privilege role."""
    return ValidationContext(tenant_id=TENANT, role=UserRole.VIEWER)


def assert_verdict_passed(verdict: ValidationVerdict) -> None:
    """Helper assertion for validation verdicts."""
    assert verdict.passed, f"Expected pass, got: {verdict.message}"


def assert_verdict_failed(verdict: ValidationVerdict) -> None:
    """Helper assertion for validation failures."""
    assert not verdict.passed, "Expected failure, got a passing verdict"
