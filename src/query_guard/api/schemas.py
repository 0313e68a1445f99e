"""
API Schemas
===========

Pydantic models for API request/response validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Request body for a natural-language question."""

    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Natural language business question",
        examples=["What were my total sales last week?"],
    )
    language: Literal["en", "es"] | None = Field(
        default=None,
        description="Answer language (default: the service language)",
    )


class ResponseMetadata(BaseModel):
    """Metadata describing how the answer was produced."""

    blocked: bool = Field(False, description="Whether the request was refused")
    violation_type: str | None = Field(None, description="Security classification of a refusal")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")
    execution_time_ms: float = Field(0.0, description="End-to-end engine time")
    rows_returned: int = Field(0, description="Rows delivered after the role cap")
    attempt_count: int = Field(0, description="Generation attempts made")
    self_corrected: bool = Field(False, description="Whether a retry produced the answer")
    fast_path: bool = Field(False, description="Answered by a prebuilt query")
    routed_to: str | None = Field(None, description="fast_path, consensus or self_correction")
    truncated: bool = Field(False, description="Whether rows were cut at the role cap")
    needs_clarification: bool = Field(False, description="Whether the question should be rephrased")
    consensus: dict[str, Any] | None = Field(None, description="Consensus vote summary")
    sanity: dict[str, Any] | None = Field(None, description="Result sanity report")
    error_kind: str | None = Field(None, description="Failure classification")


class QueryResponse(BaseModel):
    """Response body for a question."""

    answer: str = Field(..., description="Natural language answer or refusal")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence in the answer")
    sql: str | None = Field(None, description="Executed SQL (privileged roles only)")
    rows: list[dict[str, Any]] | None = Field(None, description="Result rows, PII redacted")
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
    suggestions: list[str] = Field(default_factory=list, description="Follow-up or alternative questions")
    request_id: str = Field(..., description="Unique request identifier")


class AuditEntryResponse(BaseModel):
    """Single audit trail entry."""

    event_id: str
    timestamp: str = Field(..., description="ISO 8601 timestamp (UTC)")
    event_type: str
    tenant_id: str
    user_id: str
    role: str
    outcome: str
    question: str | None = Field(None, description="Sanitized question")
    sql: str | None = Field(None, description="SQL text, or its encrypted form")
    sql_hash: str | None = None
    violation_type: str | None = None
    execution_time_ms: float | None = None
    rows_returned: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class AuditQueryResponse(BaseModel):
    """Filtered audit entries, most recent first."""

    entries: list[AuditEntryResponse]
    count: int = Field(..., description="Number of entries returned")


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual component health checks",
    )


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to handle requests")
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual readiness checks",
    )


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    request_id: str | None = Field(None, description="Request ID if available")
    details: dict[str, Any] | None = Field(None, description="Additional error details")
