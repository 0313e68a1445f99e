"""
Self-Correction Controller
==========================

Sequential retry state machine around the candidate pipeline:

    IDLE -> GENERATING -> VALIDATING -> EXECUTING -> SUCCEEDED
                 ^                                    |
                 +------------- RETRYING <------------+ (retryable failure)

Each retry feeds the previous failure text back into generation. Terminal
failures (access denied) abort immediately; the attempt cap ends in
EXHAUSTED with a graceful fallback message.
"""

from dataclasses import dataclass, field
from typing import Optional

from query_guard.models import AttemptRecord, AttemptState, QueryRequest
from query_guard.observability.logging_config import get_logger
from query_guard.pipeline import CandidatePipeline

logger = get_logger(__name__)

FALLBACK_MESSAGES = {
    "en": (
        "I could not produce a reliable answer to that question. "
        "Try rephrasing it or asking about a more specific period or metric."
    ),
    "es": (
        "No pude obtener una respuesta confiable a esa pregunta. "
        "Intenta reformularla o pregunta por un periodo o métrica más específicos."
    ),
}


@dataclass
class CorrectionOutcome:
    """All attempts made for one request and how the loop ended."""

    state: AttemptState
    records: list[AttemptRecord] = field(default_factory=list)
    fallback_message: Optional[str] = None

    @property
    def final(self) -> Optional[AttemptRecord]:
        return self.records[-1] if self.records else None

    @property
    def succeeded(self) -> bool:
        return self.state is AttemptState.SUCCEEDED

    @property
    def attempt_count(self) -> int:
        return len(self.records)

    @property
    def self_corrected(self) -> bool:
        return self.attempt_count > 1

    @property
    def warnings(self) -> list[str]:
        seen: list[str] = []
        for record in self.records:
            seen.extend(record.warnings)
        return list(dict.fromkeys(seen))


class SelfCorrectionController:
    """Runs up to ``max_attempts`` candidates, retrying with error context."""

    def __init__(self, pipeline: CandidatePipeline, max_attempts: int = 3) -> None:
        self.pipeline = pipeline
        self.max_attempts = max_attempts

    async def run(self, request: QueryRequest) -> CorrectionOutcome:
        """
        Drive the retry loop for one request.

        Args:
            request: The authenticated request

        Returns:
            CorrectionOutcome in SUCCEEDED, ABORTED or EXHAUSTED state
        """
        records: list[AttemptRecord] = []
        error_context: Optional[str] = None
        previous_sql: Optional[str] = None

        for attempt_number in range(1, self.max_attempts + 1):
            record = await self.pipeline.run(
                request,
                attempt_number,
                error_context=error_context,
                previous_sql=previous_sql,
            )
            records.append(record)

            if record.succeeded:
                if attempt_number > 1:
                    logger.info("self_corrected", attempts=attempt_number)
                return CorrectionOutcome(state=AttemptState.SUCCEEDED, records=records)

            kind = record.error_kind
            if kind is None or kind.terminal or not kind.retryable:
                record.state = AttemptState.ABORTED
                logger.info(
                    "correction_aborted",
                    attempt=attempt_number,
                    error_kind=kind.value if kind else None,
                )
                return CorrectionOutcome(state=AttemptState.ABORTED, records=records)

            if attempt_number == self.max_attempts:
                record.state = AttemptState.EXHAUSTED
                break

            record.state = AttemptState.RETRYING
            error_context = record.error_message
            previous_sql = record.sql or previous_sql
            logger.info("attempt_retrying", attempt=attempt_number, error_kind=kind.value)

        logger.warning("attempts_exhausted", attempts=len(records))
        return CorrectionOutcome(
            state=AttemptState.EXHAUSTED,
            records=records,
            fallback_message=FALLBACK_MESSAGES.get(request.language, FALLBACK_MESSAGES["en"]),
        )
