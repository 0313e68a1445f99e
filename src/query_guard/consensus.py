"""
Consensus Voter
===============

Runs independent candidates for complex, important questions and returns
the answer most of them agree on.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from query_guard.models import ConfidenceLevel, ConsensusCandidate, QueryRequest
from query_guard.observability.logging_config import get_logger
from query_guard.pipeline import CandidatePipeline

logger = get_logger(__name__)

# Candidates differ only in framing; tenant scope and every safety layer are identical
FRAMINGS = (
    "Answer the question directly with the simplest query that computes it.",
    "Think about which tables hold the underlying facts, then aggregate from the most detailed one.",
    "Compute the answer step by step, using a common table expression for intermediate results.",
)

CAVEATS = {
    "en": "The independent calculations for this question did not agree, so treat this figure with caution.",
    "es": "Los cálculos independientes para esta pregunta no coincidieron, así que toma esta cifra con cautela.",
}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    return None


def values_agree(a: Any, b: Any, tolerance: float) -> bool:
    """Numbers agree within a relative tolerance; anything else must be equal."""
    x, y = _number(a), _number(b)
    if x is None or y is None:
        return a == b
    scale = max(abs(x), abs(y))
    if scale == 0:
        return True
    return abs(x - y) / scale <= tolerance


def results_agree(
    rows_a: list[dict[str, Any]], rows_b: list[dict[str, Any]], tolerance: float = 0.01
) -> bool:
    """
    Compare two result sets row by row.

    Columns are compared by position, since independent framings may alias
    the same figure differently.
    """
    if len(rows_a) != len(rows_b):
        return False
    for row_a, row_b in zip(rows_a, rows_b):
        values_a, values_b = list(row_a.values()), list(row_b.values())
        if len(values_a) != len(values_b):
            return False
        if not all(values_agree(x, y, tolerance) for x, y in zip(values_a, values_b)):
            return False
    return True


@dataclass
class ConsensusResult:
    """Decision over all candidates."""

    candidates: list[ConsensusCandidate]
    confidence: Optional[ConfidenceLevel] = None
    agreement: float = 0.0
    chosen: Optional[ConsensusCandidate] = None
    agreeing: list[int] = field(default_factory=list)
    caveat: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.chosen is None

    @property
    def successful(self) -> list[ConsensusCandidate]:
        return [c for c in self.candidates if c.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence": self.confidence.value if self.confidence else None,
            "agreementPercent": self.agreement,
            "candidateCount": len(self.candidates),
            "successfulCandidates": len(self.successful),
            "agreeingCandidates": self.agreeing,
            "chosenCandidate": self.chosen.index if self.chosen else None,
            "caveat": self.caveat,
        }


class ConsensusVoter:
    """
    Fans out one candidate per framing and votes on their results.

    All branches settle before the vote; a failing branch never cancels
    the others.
    """

    def __init__(
        self,
        pipeline: CandidatePipeline,
        tolerance: float = 0.01,
        framings: tuple[str, ...] = FRAMINGS,
    ) -> None:
        self.pipeline = pipeline
        self.tolerance = tolerance
        self.framings = framings

    async def _candidate(self, index: int, framing: str, request: QueryRequest) -> ConsensusCandidate:
        record = await self.pipeline.run(request, attempt_number=1, framing=framing)
        return ConsensusCandidate(
            index=index,
            framing=framing,
            record=record,
            error=None if record.succeeded else record.error_message,
        )

    async def gather(self, request: QueryRequest) -> list[ConsensusCandidate]:
        outcomes = await asyncio.gather(
            *(self._candidate(i, framing, request) for i, framing in enumerate(self.framings)),
            return_exceptions=True,
        )
        candidates = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                logger.error("consensus_candidate_crashed", candidate=index, error=str(outcome))
                candidates.append(
                    ConsensusCandidate(index=index, framing=self.framings[index], error=str(outcome))
                )
            else:
                candidates.append(outcome)
        return candidates

    def decide(self, candidates: list[ConsensusCandidate], language: str = "en") -> ConsensusResult:
        """
        Apply the decision rule to settled candidates.

        - every candidate agrees: HIGH, 100%
        - a majority agrees: HIGH, the majority's result
        - no agreement: LOW, the first successful candidate with a caveat
        - nothing succeeded: failure, nothing chosen
        """
        result = ConsensusResult(candidates=candidates)
        successful = result.successful
        if not successful:
            logger.warning("consensus_failed", candidates=len(candidates))
            return result

        best: list[ConsensusCandidate] = []
        for candidate in successful:
            group = [
                other for other in successful
                if results_agree(candidate.rows, other.rows, self.tolerance)
            ]
            if len(group) > len(best):
                best = group

        total = len(candidates)
        if len(best) * 2 > total:
            result.confidence = ConfidenceLevel.HIGH
            result.chosen = best[0]
            result.agreeing = [c.index for c in best]
            result.agreement = round(len(best) / total * 100, 1)
        else:
            result.confidence = ConfidenceLevel.LOW
            result.chosen = successful[0]
            result.agreeing = [successful[0].index]
            result.agreement = round(1 / total * 100, 1)
            result.caveat = CAVEATS.get(language, CAVEATS["en"])

        logger.info(
            "consensus_decided",
            confidence=result.confidence.value,
            agreement=result.agreement,
            successful=len(successful),
        )
        return result

    async def vote(self, request: QueryRequest) -> ConsensusResult:
        candidates = await self.gather(request)
        return self.decide(candidates, request.language)
