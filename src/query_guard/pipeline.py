"""
Candidate Pipeline
==================

One generate, validate, authorize and execute pass for a request. The
self-correction controller runs it sequentially; the consensus voter runs
three of them side by side. Every failure is returned as a value on the
``AttemptRecord``, never raised.
"""

from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from query_guard.config import EngineConfig
from query_guard.errors import ErrorKind, GenerationFailed, QueryGuardError
from query_guard.generator import SQLGenerator
from query_guard.governor import QueryExecutionGovernor
from query_guard.models import AttemptRecord, AttemptState, QueryRequest, ViolationType
from query_guard.observability.logging_config import get_logger
from query_guard.sanity import ResultSanityChecker
from query_guard.schema_context import SchemaContext
from query_guard.security.access_control import TableAccessControl
from query_guard.validators.base import ValidationChain, ValidationContext
from query_guard.validators.schema import is_system_table

logger = get_logger(__name__)


def referenced_tables(sql: str, schema: SchemaContext, dialect: str = "postgres") -> list[str]:
    """Canonical names of the real tables a statement reads (CTEs excluded)."""
    try:
        statements = [s for s in sqlglot.parse(sql, read=dialect) if s is not None]
    except SqlglotError:
        return []
    tables = []
    for tree in statements:
        ctes = {cte.alias_or_name.lower() for cte in tree.find_all(exp.CTE)}
        for table in tree.find_all(exp.Table):
            if table.name.lower() in ctes or is_system_table(table):
                continue
            tables.append(schema.resolve_table(table.name) or table.name)
    return list(dict.fromkeys(tables))


class CandidatePipeline:
    """Runs one candidate through every layer between generation and rows."""

    def __init__(
        self,
        generator: SQLGenerator,
        chain: ValidationChain,
        access_control: TableAccessControl,
        governor: QueryExecutionGovernor,
        sanity: ResultSanityChecker | None = None,
        config: EngineConfig | None = None,
        schema: SchemaContext | None = None,
    ) -> None:
        self.generator = generator
        self.sanity = sanity
        self.chain = chain
        self.access_control = access_control
        self.governor = governor
        self.config = config or EngineConfig()
        self.schema = schema or SchemaContext()

    def context_for(self, request: QueryRequest) -> ValidationContext:
        return ValidationContext(
            tenant_id=request.tenant_id,
            role=request.role,
            strict_mode=self.config.strict_mode,
            max_depth=self.config.max_subquery_depth,
            deep_validation=self.config.deep_validation,
        )

    async def run(
        self,
        request: QueryRequest,
        attempt_number: int,
        error_context: Optional[str] = None,
        previous_sql: Optional[str] = None,
        framing: Optional[str] = None,
    ) -> AttemptRecord:
        """
        Produce and execute one candidate.

        Args:
            request: The authenticated request
            attempt_number: 1-based attempt counter
            error_context: Failure text from the previous attempt
            previous_sql: SQL of the previous attempt
            framing: Optional prompt framing (consensus candidates)

        Returns:
            AttemptRecord in SUCCEEDED state, or with ``error_kind`` set
        """
        record = AttemptRecord(attempt_number=attempt_number, state=AttemptState.GENERATING)

        try:
            record.generation = await self.generator.generate(
                request,
                attempt_number,
                error_context=error_context,
                previous_sql=previous_sql,
                framing=framing,
            )
        except GenerationFailed as e:
            return record.fail(ErrorKind.GENERATION_FAILED, e.message)

        sql = record.generation.sql
        record.state = AttemptState.VALIDATING
        failing, verdicts = await self.chain.run(sql, self.context_for(request))
        record.verdicts = verdicts
        for verdict in verdicts:
            record.warnings.extend(verdict.warnings)

        if failing is not None:
            verdict = verdicts[-1]
            violation = verdict.details.get("violation_type")
            if failing.error_kind is ErrorKind.SECURITY_VALIDATION_FAILED and violation is None:
                violation = ViolationType.MISSING_TENANT_FILTER
            logger.info(
                "attempt_failed",
                attempt=attempt_number,
                layer=failing.name,
                error_kind=failing.error_kind.value,
            )
            return record.fail(failing.error_kind, verdict.message, violation)

        tables = referenced_tables(sql, self.schema) or record.generation.tables
        decision = self.access_control.validate_access(tables, request.role, request.language)
        if not decision.allowed:
            logger.warning(
                "access_denied",
                attempt=attempt_number,
                role=request.role.value,
                denied_tables=decision.denied_tables,
            )
            record.denied_tables = decision.denied_tables
            return record.fail(ErrorKind.ACCESS_DENIED, decision.message, decision.violation_type)

        if record.generation.confidence < self.config.clarification_threshold:
            record.needs_clarification = True
            logger.info(
                "clarification_needed",
                attempt=attempt_number,
                confidence=record.generation.confidence,
            )
            return record

        record.state = AttemptState.EXECUTING
        try:
            record.execution = await self.governor.execute(sql, request.role, language=request.language)
        except QueryGuardError as e:
            logger.info("attempt_failed", attempt=attempt_number, error_kind=e.kind.value)
            return record.fail(e.kind, e.message)

        if record.execution.truncation_warning:
            record.warnings.append(record.execution.truncation_warning)

        if self.sanity is not None:
            record.sanity = await self.sanity.check(
                request.question, record.execution.rows, request.tenant_id, language=request.language
            )
            record.warnings.extend(record.sanity.warnings)
            if record.sanity.hard_failure:
                return record.fail(ErrorKind.RESULT_VALIDATION_FAILED, "; ".join(record.sanity.errors))

        record.state = AttemptState.SUCCEEDED
        return record
