"""
Data Models
===========

Core data structures for the query safety engine.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from query_guard.errors import ErrorKind
from query_guard.roles import UserRole

if TYPE_CHECKING:
    from query_guard.sanity import SanityReport


class ConfidenceLevel(str, Enum):
    """Confidence tiers shared by injection scoring and consensus voting."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ViolationType(str, Enum):
    """Security violation classifications used for alerting."""

    CROSS_TENANT_ACCESS = "CROSS_TENANT_ACCESS"
    SCHEMA_DISCOVERY = "SCHEMA_DISCOVERY"
    SENSITIVE_TABLE_ACCESS = "SENSITIVE_TABLE_ACCESS"
    SQL_INJECTION_ATTEMPT = "SQL_INJECTION_ATTEMPT"
    PROMPT_INJECTION = "PROMPT_INJECTION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    MISSING_TENANT_FILTER = "MISSING_TENANT_FILTER"
    UNAUTHORIZED_TABLE = "UNAUTHORIZED_TABLE"
    PII_ACCESS_ATTEMPT = "PII_ACCESS_ATTEMPT"
    DANGEROUS_OPERATION = "DANGEROUS_OPERATION"


class AttemptState(Enum):
    """States of the self-correction state machine."""

    IDLE = "idle"
    GENERATING = "generating"
    VALIDATING = "validating"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass(frozen=True)
class QueryRequest:
    """An authenticated question. Immutable once created."""

    question: str
    tenant_id: str
    user_id: str
    role: UserRole
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ip_address: Optional[str] = None
    rate_limited: bool = False
    language: str = "en"


@dataclass
class GenerationAttempt:
    """One candidate produced by the text-generation oracle."""

    attempt_number: int
    sql: str
    explanation: str
    confidence: float
    tables: list[str] = field(default_factory=list)
    is_read_only: bool = True
    error_context: Optional[str] = None


@dataclass
class ValidationVerdict:
    """Outcome of one validation layer."""

    layer: str
    passed: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return self.passed

    @property
    def message(self) -> str:
        if self.errors:
            return f"{self.layer}: {'; '.join(self.errors)}"
        return f"{self.layer}: passed"


@dataclass
class PageInfo:
    """Pagination metadata for paged consumption of a result set."""

    page: int
    page_size: int
    total_rows: int
    total_pages: int
    has_more: bool


@dataclass
class ExecutionResult:
    """Rows returned by the governor for a single statement."""

    rows: list[dict[str, Any]]
    row_count: int
    execution_time_ms: float
    truncated: bool = False
    truncation_warning: Optional[str] = None
    total_rows: Optional[int] = None
    page: Optional[PageInfo] = None


@dataclass
class AttemptRecord:
    """Everything that happened during one generate/validate/execute pass."""

    attempt_number: int
    state: AttemptState = AttemptState.IDLE
    generation: Optional[GenerationAttempt] = None
    verdicts: list[ValidationVerdict] = field(default_factory=list)
    execution: Optional[ExecutionResult] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    violation_type: Optional[ViolationType] = None
    warnings: list[str] = field(default_factory=list)
    denied_tables: list[str] = field(default_factory=list)
    sanity: Optional["SanityReport"] = None
    needs_clarification: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is AttemptState.SUCCEEDED

    @property
    def sql(self) -> Optional[str]:
        return self.generation.sql if self.generation else None

    def fail(
        self,
        kind: ErrorKind,
        message: str,
        violation_type: Optional[ViolationType] = None,
    ) -> "AttemptRecord":
        """Mark the attempt failed and return it."""
        self.error_kind = kind
        self.error_message = message
        self.violation_type = violation_type
        return self


@dataclass
class ConsensusCandidate:
    """One independently produced and executed candidate in a consensus vote."""

    index: int
    framing: str
    record: Optional[AttemptRecord] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.record is not None and self.record.succeeded

    @property
    def rows(self) -> list[dict[str, Any]]:
        if self.succeeded and self.record.execution:
            return self.record.execution.rows
        return []


@dataclass
class ResponseMetadata:
    """Metadata returned alongside every answer."""

    blocked: bool = False
    violation_type: Optional[ViolationType] = None
    warnings: list[str] = field(default_factory=list)
    execution_time_ms: float = 0.0
    rows_returned: int = 0
    attempt_count: int = 0
    self_corrected: bool = False
    fast_path: bool = False
    routed_to: Optional[str] = None
    truncated: bool = False
    needs_clarification: bool = False
    consensus: Optional[dict[str, Any]] = None
    sanity: Optional[dict[str, Any]] = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class QueryResponse:
    """Final answer handed back to the embedding layer."""

    answer: str
    confidence: float
    sql: Optional[str] = None
    rows: Optional[list[dict[str, Any]]] = None
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        meta = data["metadata"]
        for key in ("violation_type", "error_kind"):
            if meta[key] is not None:
                meta[key] = meta[key].value
        return data


@dataclass
class LLMResponse:
    """Raw response from the text-generation oracle."""

    content: str
    model: str
    tokens_used: int = 0
