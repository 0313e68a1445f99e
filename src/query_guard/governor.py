"""
Query Execution Governor
========================

Bounds the resources a validated statement may consume: wall-clock time,
delivered rows and serialized payload size. The governor never inspects
query semantics.
"""

import asyncio
import json
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from query_guard.config import EngineConfig
from query_guard.errors import ExecutionError, ExecutionTimeout, PayloadTooLarge
from query_guard.models import ExecutionResult, PageInfo
from query_guard.observability.logging_config import get_logger
from query_guard.observability.metrics import track_execution
from query_guard.roles import UserRole
from query_guard.store.base import RelationalStore, StoreQueryError

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoleLimits:
    timeout_multiplier: float
    max_rows: int


ROLE_LIMITS: dict[UserRole, RoleLimits] = {
    UserRole.SUPERADMIN: RoleLimits(2.0, 5000),
    UserRole.ADMIN: RoleLimits(1.5, 2000),
    UserRole.MANAGER: RoleLimits(1.0, 1000),
    UserRole.VIEWER: RoleLimits(1.0, 100),
}
DEFAULT_ROLE_LIMITS = RoleLimits(1.0, 500)

TRUNCATION_WARNINGS = {
    "en": (
        "Your query returned {total} rows, but only the first {shown} are shown. "
        "Consider adding filters or using pagination to see all results."
    ),
    "es": (
        "Tu consulta devolvió {total} filas, pero solo se muestran las primeras {shown}. "
        "Considera agregar filtros o usar paginación para ver todos los resultados."
    ),
}

PAYLOAD_MESSAGES = {
    "en": "The result is too large to return. Please add filters to narrow your query.",
    "es": "El resultado es demasiado grande. Agrega filtros para acotar tu consulta.",
}


def estimate_payload_bytes(rows: list[dict[str, Any]]) -> int:
    """Serialized-size proxy: two bytes per character of the JSON encoding."""
    return len(json.dumps(rows, default=str)) * 2


def should_suggest_pagination(sql: str) -> bool:
    """True for unbounded reads: no LIMIT and either no WHERE or SELECT *."""
    has_limit = re.search(r"\blimit\s+\d+", sql, re.IGNORECASE) is not None
    has_where = re.search(r"\bwhere\b", sql, re.IGNORECASE) is not None
    select_all = re.search(r"select\s+\*", sql, re.IGNORECASE) is not None
    return not has_limit and (not has_where or select_all)


class QueryExecutionGovernor:
    """
    Executes statements on the store under role-tiered limits.

    Truncation is never silent: a capped result carries a warning with the
    total row count.
    """

    def __init__(
        self,
        store: RelationalStore,
        config: EngineConfig | None = None,
        role_limits: dict[UserRole, RoleLimits] | None = None,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.role_limits = role_limits if role_limits is not None else ROLE_LIMITS

    def limits_for(self, role: UserRole) -> RoleLimits:
        return self.role_limits.get(role, DEFAULT_ROLE_LIMITS)

    def timeout_ms(self, role: UserRole) -> int:
        return int(self.config.timeout_ms * self.limits_for(role).timeout_multiplier)

    def max_rows(self, role: UserRole) -> int:
        return self.limits_for(role).max_rows

    async def _run(
        self, sql: str, role: UserRole, params: Optional[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], float]:
        timeout_ms = self.timeout_ms(role)
        start = time.perf_counter()
        try:
            rows = await asyncio.wait_for(self.store.execute(sql, params), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning("execution_timeout", timeout_ms=timeout_ms, role=role.value)
            raise ExecutionTimeout(
                f"Query execution exceeded timeout of {timeout_ms}ms",
                details={"timeout_ms": timeout_ms},
            ) from None
        except StoreQueryError as e:
            raise ExecutionError(f"Query execution failed: {e}") from e
        return rows, (time.perf_counter() - start) * 1000

    def _check_payload(self, rows: list[dict[str, Any]], language: str) -> None:
        size = estimate_payload_bytes(rows)
        if size > self.config.max_payload_bytes:
            logger.warning(
                "payload_too_large",
                estimated_bytes=size,
                limit_bytes=self.config.max_payload_bytes,
                row_count=len(rows),
            )
            raise PayloadTooLarge(
                PAYLOAD_MESSAGES.get(language, PAYLOAD_MESSAGES["en"]),
                details={"estimated_bytes": size, "limit_bytes": self.config.max_payload_bytes},
            )

    async def execute(
        self,
        sql: str,
        role: UserRole,
        params: Optional[dict[str, Any]] = None,
        language: str = "en",
    ) -> ExecutionResult:
        """
        Execute under the role's timeout, payload ceiling and row cap.

        Args:
            sql: Validated statement
            role: Requester role, selects the limit tier
            params: Optional bound parameters
            language: Language of the truncation warning

        Returns:
            ExecutionResult with at most the role's row cap

        Raises:
            ExecutionTimeout: Store did not answer within the role's budget
            ExecutionError: Store rejected the statement
            PayloadTooLarge: Serialized result exceeds the ceiling
        """
        rows, elapsed_ms = await self._run(sql, role, params)
        self._check_payload(rows, language)

        cap = self.max_rows(role)
        total = len(rows)
        truncated = total > cap
        warning = None
        if truncated:
            rows = rows[:cap]
            warning = TRUNCATION_WARNINGS.get(language, TRUNCATION_WARNINGS["en"]).format(
                total=total, shown=cap
            )
            logger.warning("results_truncated", total_rows=total, max_rows=cap, role=role.value)

        track_execution(elapsed_ms / 1000, truncated, role.value)
        return ExecutionResult(
            rows=rows,
            row_count=len(rows),
            execution_time_ms=elapsed_ms,
            truncated=truncated,
            truncation_warning=warning,
            total_rows=total,
        )

    async def execute_paginated(
        self,
        sql: str,
        role: UserRole,
        page: int = 1,
        page_size: Optional[int] = None,
        params: Optional[dict[str, Any]] = None,
        language: str = "en",
    ) -> ExecutionResult:
        """Execute and return a single page instead of a capped prefix."""
        rows, elapsed_ms = await self._run(sql, role, params)
        self._check_payload(rows, language)
        result = self.paginate(rows, page, page_size)
        result.execution_time_ms = elapsed_ms
        track_execution(elapsed_ms / 1000, False, role.value)
        return result

    def paginate(
        self, rows: list[dict[str, Any]], page: int = 1, page_size: Optional[int] = None
    ) -> ExecutionResult:
        page = max(1, page)
        size = page_size or self.config.default_page_size
        size = min(max(1, size), self.config.max_page_size)

        total = len(rows)
        total_pages = math.ceil(total / size)
        start = (page - 1) * size
        data = rows[start:start + size]
        return ExecutionResult(
            rows=data,
            row_count=len(data),
            execution_time_ms=0.0,
            total_rows=total,
            page=PageInfo(
                page=page,
                page_size=size,
                total_rows=total,
                total_pages=total_pages,
                has_more=page < total_pages,
            ),
        )
