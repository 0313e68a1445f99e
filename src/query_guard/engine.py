"""
Query Safety Engine
===================

Entry point that turns an authenticated natural-language question into a
safe, audited answer.

The engine:
1. Short-circuits rate-limited requests
2. Screens the question for prompt injection
3. Routes simple questions to prebuilt queries (fast path)
4. Sends complex, important questions to the consensus voter
5. Sends everything else through the self-correction loop
6. Redacts PII, composes the answer and writes the audit trail
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

from query_guard.answers import clarification_message, compose_answer, follow_up_suggestions
from query_guard.config import EngineConfig
from query_guard.consensus import FRAMINGS, ConsensusVoter
from query_guard.correction import FALLBACK_MESSAGES, SelfCorrectionController
from query_guard.dates import resolve_date_range
from query_guard.errors import ErrorKind
from query_guard.generator import SQLGenerator
from query_guard.governor import QueryExecutionGovernor
from query_guard.intent import IntentClassifier, IntentMatch, Route
from query_guard.llm.base import LLMInterface
from query_guard.models import (
    AttemptRecord,
    ConfidenceLevel,
    QueryRequest,
    QueryResponse,
    ResponseMetadata,
    ViolationType,
)
from query_guard.observability.logging_config import get_logger
from query_guard.observability.metrics import track_query_metrics
from query_guard.pipeline import CandidatePipeline
from query_guard.roles import UserRole
from query_guard.sanity import ResultSanityChecker
from query_guard.schema_context import SchemaContext
from query_guard.security.access_control import TableAccessControl
from query_guard.security.audit_log import AuditEventType, AuditLogger, sql_hash
from query_guard.security.injection_detector import InjectionType, PromptInjectionDetector
from query_guard.security.pii_detector import PIIRedactor
from query_guard.security.responses import security_response
from query_guard.shared_queries import SHARED_QUERY_TABLES, SharedQueries
from query_guard.store.base import RelationalStore
from query_guard.validators import (
    ASTSecurityValidator,
    DryRunValidator,
    SchemaValidator,
    SQLSecurityAnalyzer,
    ValidationChain,
)

logger = get_logger(__name__)

CONFIDENCE_SCORES = {
    ConfidenceLevel.CRITICAL: 1.0,
    ConfidenceLevel.HIGH: 0.9,
    ConfidenceLevel.MEDIUM: 0.7,
    ConfidenceLevel.LOW: 0.4,
}
FALLBACK_CONFIDENCE = 0.1

PII_MASKED_WARNING = {
    "en": "Some personal data in the result was masked.",
    "es": "Algunos datos personales del resultado fueron ocultados.",
}


@dataclass
class _Outcome:
    """Per-request bookkeeping for metrics."""

    kind: str = "success"
    attempts: int = 0
    self_corrected: bool = False
    violation_type: Optional[str] = None
    failed_layers: list[str] = field(default_factory=list)
    consensus_agreement: Optional[float] = None


class QuerySafetyEngine:
    """Composes every safety layer around the text-generation oracle."""

    def __init__(
        self,
        llm: LLMInterface,
        store: RelationalStore,
        config: EngineConfig | None = None,
        schema: SchemaContext | None = None,
        audit_logger: AuditLogger | None = None,
        access_control: TableAccessControl | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            llm: Text-generation oracle
            store: Relational store used for dry runs and execution
            config: Engine settings (defaults to ``EngineConfig()``)
            schema: Schema context for prompts and validation
            audit_logger: Audit trail; built from the config when omitted
            access_control: Table policies; defaults to the built-in policies

        Raises:
            AuditConfigurationError: No audit logger given and no key configured
        """
        self.config = config or EngineConfig()
        self.schema = schema or SchemaContext()
        self.store = store

        self.detector = PromptInjectionDetector()
        self.classifier = IntentClassifier()
        self.shared_queries = SharedQueries(store)
        self.access_control = access_control or TableAccessControl()
        self.redactor = PIIRedactor()
        self.audit = audit_logger or AuditLogger(
            self.config.audit_log_path,
            key=self.config.audit_key,
            retention_days=self.config.audit_retention_days,
        )

        self.generator = SQLGenerator(llm, self.schema, timezone=self.config.timezone)
        self.chain = ValidationChain([
            SchemaValidator(self.schema),
            DryRunValidator(store),
            ASTSecurityValidator(SQLSecurityAnalyzer(self.schema)),
        ])
        self.governor = QueryExecutionGovernor(store, self.config)
        self.sanity = ResultSanityChecker(
            store, tolerance=self.config.consensus_tolerance, language=self.config.language
        )
        self.pipeline = CandidatePipeline(
            self.generator,
            self.chain,
            self.access_control,
            self.governor,
            sanity=self.sanity,
            config=self.config,
            schema=self.schema,
        )
        self.controller = SelfCorrectionController(self.pipeline, self.config.max_attempts)
        self.voter = ConsensusVoter(
            self.pipeline,
            tolerance=self.config.consensus_tolerance,
            framings=FRAMINGS[: self.config.consensus_candidates],
        )

    async def process_query(
        self,
        question: str,
        tenant_id: str,
        user_id: str,
        role: UserRole | str,
        ip_address: Optional[str] = None,
        rate_limited: bool = False,
        session_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> QueryResponse:
        """
        Answer one question for an authenticated tenant user.

        Args:
            question: Natural-language question
            tenant_id: Authenticated tenant; every statement is bound to it
            user_id: Authenticated user
            role: User role, as enum or string
            ip_address: Optional client address, recorded in the audit trail
            rate_limited: Upstream rate limiter verdict
            session_id: Optional session id (generated when omitted)
            language: "en" or "es" (defaults to the configured language)

        Returns:
            QueryResponse; blocked and failed requests are responses, not exceptions
        """
        start = time.perf_counter()
        request_args: dict[str, Any] = {
            "question": question,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "role": UserRole.parse(role),
            "ip_address": ip_address,
            "rate_limited": rate_limited,
            "language": language or self.config.language,
        }
        if session_id:
            request_args["session_id"] = session_id
        request = QueryRequest(**request_args)

        outcome = _Outcome()
        response = await self._process(request, outcome)

        elapsed = time.perf_counter() - start
        response.metadata.execution_time_ms = round(elapsed * 1000, 2)
        track_query_metrics(
            outcome=outcome.kind,
            attempts=outcome.attempts,
            duration_seconds=elapsed,
            self_corrected=outcome.self_corrected,
            violation_type=outcome.violation_type,
            failed_layers=outcome.failed_layers,
            consensus_agreement=outcome.consensus_agreement,
        )
        return response

    async def _process(self, request: QueryRequest, outcome: _Outcome) -> QueryResponse:
        log = logger.bind(tenant_id=request.tenant_id, user_id=request.user_id, session_id=request.session_id)

        if request.rate_limited:
            log.warning("rate_limited")
            self._audit(request, AuditEventType.RATE_LIMIT_EXCEEDED, "blocked",
                        violation_type=ViolationType.RATE_LIMIT_EXCEEDED)
            return self._blocked(request, ViolationType.RATE_LIMIT_EXCEEDED, outcome)

        injection = self.detector.check(request.question)
        if injection.should_block:
            violation = (
                ViolationType.SCHEMA_DISCOVERY
                if injection.matched_types == [InjectionType.SCHEMA_DISCOVERY.value]
                else ViolationType.PROMPT_INJECTION
            )
            log.warning(
                "injection_blocked",
                risk_score=injection.risk_score,
                characteristic_score=injection.characteristic_score,
                matched_types=injection.matched_types,
            )
            self._audit(
                request,
                AuditEventType.QUERY_BLOCKED,
                "blocked",
                violation_type=violation,
                details={
                    "matched_types": injection.matched_types,
                    "risk_score": injection.risk_score,
                    "characteristics": injection.characteristics,
                    "confidence": injection.confidence.value,
                },
            )
            return self._blocked(request, violation, outcome)

        route, match = self.classifier.route(request.question)
        log.info("question_routed", route=route.value, reason=match.reason)

        if route is Route.FAST_PATH:
            return await self._fast_path(request, match, outcome)
        if route is Route.CONSENSUS:
            return await self._consensus(request, outcome)
        return await self._self_correction(request, outcome)

    async def _fast_path(
        self, request: QueryRequest, match: IntentMatch, outcome: _Outcome
    ) -> QueryResponse:
        tables = list(SHARED_QUERY_TABLES.get(match.shared_query, ()))
        decision = self.access_control.validate_access(tables, request.role, request.language)
        if not decision.allowed:
            self._audit(
                request,
                AuditEventType.UNAUTHORIZED_ACCESS,
                "blocked",
                violation_type=decision.violation_type,
                details={"denied_tables": decision.denied_tables, "route": Route.FAST_PATH.value},
            )
            return self._blocked(request, decision.violation_type, outcome, message=decision.message)

        window = resolve_date_range(match.date_range, tz=self.config.timezone)
        rows = await self.shared_queries.run(match.shared_query, request.tenant_id, window)
        rows, warnings = self._redact(request, rows, f"shared:{match.shared_query}")

        outcome.kind = "fast_path"
        self._audit(
            request,
            AuditEventType.QUERY_SUCCESS,
            "success",
            sql=f"shared:{match.shared_query}",
            rows_returned=len(rows),
            details={"intent": match.intent, "date_range": window.label.value},
        )
        return QueryResponse(
            answer=compose_answer(rows, request.language),
            confidence=match.confidence,
            rows=rows,
            metadata=ResponseMetadata(
                warnings=warnings,
                rows_returned=len(rows),
                fast_path=True,
                routed_to=Route.FAST_PATH.value,
            ),
            suggestions=follow_up_suggestions(request.question, request.language),
        )

    async def _self_correction(self, request: QueryRequest, outcome: _Outcome) -> QueryResponse:
        result = await self.controller.run(request)
        outcome.attempts = result.attempt_count
        outcome.self_corrected = result.self_corrected
        self._audit_failed_attempts(request, result.records, outcome)

        final = result.final
        metadata = ResponseMetadata(
            attempt_count=result.attempt_count,
            self_corrected=result.self_corrected,
            routed_to=Route.SELF_CORRECTION.value,
            warnings=result.warnings,
        )

        if result.succeeded:
            return self._answer(request, final, final.generation.confidence, metadata, outcome)
        if final.needs_clarification:
            return self._clarify(request, final, metadata, outcome)
        if final.error_kind is not None and final.error_kind.terminal:
            return self._blocked_attempt(request, final, metadata, outcome)
        if final.error_kind is ErrorKind.RESULT_VALIDATION_FAILED:
            return self._no_reliable_answer(request, final, metadata, outcome, final.error_message)

        return self._no_reliable_answer(
            request,
            final,
            metadata,
            outcome,
            result.fallback_message or FALLBACK_MESSAGES.get(request.language, FALLBACK_MESSAGES["en"]),
        )

    async def _consensus(self, request: QueryRequest, outcome: _Outcome) -> QueryResponse:
        result = await self.voter.vote(request)
        records = [c.record for c in result.candidates if c.record is not None]
        outcome.attempts = len(result.candidates)
        outcome.consensus_agreement = result.agreement if not result.failed else 0.0
        self._audit_failed_attempts(request, records, outcome)

        warnings = list(dict.fromkeys(w for r in records for w in r.warnings))
        metadata = ResponseMetadata(
            attempt_count=len(result.candidates),
            routed_to=Route.CONSENSUS.value,
            consensus=result.to_dict(),
            warnings=warnings,
        )

        if result.failed:
            terminal = next(
                (r for r in records if r.error_kind is not None and r.error_kind.terminal), None
            )
            if terminal is not None:
                return self._blocked_attempt(request, terminal, metadata, outcome)
            clarify = next((r for r in records if r.needs_clarification), None)
            if clarify is not None:
                return self._clarify(request, clarify, metadata, outcome)
            last = records[-1] if records else None
            return self._no_reliable_answer(
                request,
                last,
                metadata,
                outcome,
                FALLBACK_MESSAGES.get(request.language, FALLBACK_MESSAGES["en"]),
            )

        confidence = CONFIDENCE_SCORES[result.confidence]
        response = self._answer(request, result.chosen.record, confidence, metadata, outcome)
        if result.caveat:
            response.answer = f"{response.answer}\n\n{result.caveat}"
        return response

    def _answer(
        self,
        request: QueryRequest,
        record: AttemptRecord,
        confidence: float,
        metadata: ResponseMetadata,
        outcome: _Outcome,
    ) -> QueryResponse:
        execution = record.execution
        rows, warnings = self._redact(request, execution.rows, record.sql)
        if record.sanity is not None:
            confidence = record.sanity.apply(confidence)
            metadata.sanity = record.sanity.to_dict()

        metadata.warnings = list(dict.fromkeys(metadata.warnings + warnings))
        metadata.rows_returned = len(rows)
        metadata.truncated = execution.truncated

        outcome.kind = "success"
        self._audit(
            request,
            AuditEventType.QUERY_SUCCESS,
            "success",
            sql=record.sql,
            execution_time_ms=round(execution.execution_time_ms, 2),
            rows_returned=len(rows),
            details={"attempt": record.attempt_number, "warnings": metadata.warnings},
        )
        return QueryResponse(
            answer=compose_answer(rows, request.language, total_rows=execution.total_rows),
            confidence=round(confidence, 3),
            sql=record.sql,
            rows=rows,
            metadata=metadata,
            suggestions=follow_up_suggestions(request.question, request.language),
        )

    def _redact(
        self, request: QueryRequest, rows: list[dict[str, Any]], sql: Optional[str]
    ) -> tuple[list[dict[str, Any]], list[str]]:
        redaction = self.redactor.redact_rows(rows, request.role)
        if not redaction.pii_found:
            return redaction.rows, []

        self._audit(
            request,
            AuditEventType.PII_ACCESS_ATTEMPT,
            "redacted",
            sql=sql,
            violation_type=ViolationType.PII_ACCESS_ATTEMPT,
            details={
                "redacted_fields": redaction.redacted_fields,
                "redacted_count": redaction.redacted_count,
                "sql_pii_columns": self.redactor.sql_references_pii(sql or ""),
            },
        )
        return redaction.rows, [PII_MASKED_WARNING.get(request.language, PII_MASKED_WARNING["en"])]

    def _clarify(
        self,
        request: QueryRequest,
        record: AttemptRecord,
        metadata: ResponseMetadata,
        outcome: _Outcome,
    ) -> QueryResponse:
        outcome.kind = "clarification"
        metadata.needs_clarification = True
        self._audit(
            request,
            AuditEventType.QUERY_FAILED,
            "clarification_requested",
            sql=record.sql,
            details={"confidence": record.generation.confidence if record.generation else None},
        )
        return QueryResponse(
            answer=clarification_message(request.language),
            confidence=record.generation.confidence if record.generation else 0.0,
            metadata=metadata,
            suggestions=follow_up_suggestions(request.question, request.language),
        )

    def _no_reliable_answer(
        self,
        request: QueryRequest,
        record: Optional[AttemptRecord],
        metadata: ResponseMetadata,
        outcome: _Outcome,
        message: str,
    ) -> QueryResponse:
        outcome.kind = "failed"
        metadata.error_kind = record.error_kind if record else None
        if record is not None and record.sanity is not None:
            metadata.sanity = record.sanity.to_dict()
        self._audit(
            request,
            AuditEventType.QUERY_FAILED,
            "failed",
            sql=record.sql if record else None,
            details={"error_kind": metadata.error_kind.value if metadata.error_kind else None},
        )
        return QueryResponse(
            answer=message,
            confidence=FALLBACK_CONFIDENCE,
            metadata=metadata,
            suggestions=follow_up_suggestions(request.question, request.language),
        )

    def _blocked_attempt(
        self,
        request: QueryRequest,
        record: AttemptRecord,
        metadata: ResponseMetadata,
        outcome: _Outcome,
    ) -> QueryResponse:
        violation = record.violation_type or ViolationType.UNAUTHORIZED_TABLE
        self._audit(
            request,
            AuditEventType.QUERY_BLOCKED,
            "blocked",
            sql=record.sql,
            violation_type=violation,
            details={"denied_tables": record.denied_tables, "error_kind": record.error_kind.value},
        )
        response = self._blocked(request, violation, outcome, message=record.error_message)
        metadata.blocked = True
        metadata.violation_type = violation
        metadata.error_kind = record.error_kind
        response.metadata = metadata
        return response

    def _blocked(
        self,
        request: QueryRequest,
        violation: ViolationType,
        outcome: _Outcome,
        message: Optional[str] = None,
    ) -> QueryResponse:
        outcome.kind = "blocked"
        outcome.violation_type = violation.value
        reply = security_response(violation, request.language)
        return QueryResponse(
            answer=message or reply.message,
            confidence=0.0,
            metadata=ResponseMetadata(blocked=True, violation_type=violation),
            suggestions=reply.suggestions,
        )

    def _audit_failed_attempts(
        self, request: QueryRequest, records: list[AttemptRecord], outcome: _Outcome
    ) -> None:
        """One audit entry per failed attempt; security-relevant kinds carry a violation type."""
        for record in records:
            if record.error_kind is None:
                continue
            layer = record.verdicts[-1].layer if record.verdicts and not record.verdicts[-1].passed else None
            if layer:
                outcome.failed_layers.append(layer)
            security = record.error_kind.security_relevant
            if record.error_kind is ErrorKind.ACCESS_DENIED:
                event = AuditEventType.UNAUTHORIZED_ACCESS
            elif security:
                event = AuditEventType.SECURITY_VIOLATION
            else:
                event = AuditEventType.QUERY_FAILED
            self._audit(
                request,
                event,
                "attempt_failed",
                sql=record.sql,
                violation_type=record.violation_type if security else None,
                details={
                    "attempt": record.attempt_number,
                    "error_kind": record.error_kind.value,
                    "layer": layer,
                    "warnings": record.warnings,
                },
            )

    def _audit(
        self,
        request: QueryRequest,
        event_type: AuditEventType,
        outcome: str,
        sql: Optional[str] = None,
        violation_type: Optional[ViolationType] = None,
        execution_time_ms: Optional[float] = None,
        rows_returned: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.audit.log(
            event_type,
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            role=request.role.value,
            outcome=outcome,
            question=request.question,
            sql=sql,
            violation_type=violation_type,
            execution_time_ms=execution_time_ms,
            rows_returned=rows_returned,
            ip_address=request.ip_address,
            session_id=request.session_id,
            details=details,
        )
        if sql:
            logger.debug("audit_recorded", event_type=event_type.value, sql_hash=sql_hash(sql))
