"""
Prometheus Metrics
==================

Engine and HTTP metrics for monitoring and alerting.
"""

import time
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

REGISTRY = CollectorRegistry()

APP_INFO = Info(
    "query_guard",
    "Query safety engine information",
    registry=REGISTRY,
)

QUERIES_TOTAL = Counter(
    "query_guard_queries_total",
    "Questions processed, by outcome",
    ["outcome"],  # success, fast_path, blocked, failed, clarification
    registry=REGISTRY,
)

QUERY_DURATION = Histogram(
    "query_guard_query_duration_seconds",
    "End-to-end question processing duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
    registry=REGISTRY,
)

QUERY_ATTEMPTS = Histogram(
    "query_guard_query_attempts",
    "Generation attempts per question",
    buckets=[1, 2, 3, 4, 5],
    registry=REGISTRY,
)

SELF_CORRECTIONS = Counter(
    "query_guard_self_corrections_total",
    "Questions answered only after at least one retry",
    registry=REGISTRY,
)

BLOCKED_TOTAL = Counter(
    "query_guard_blocked_total",
    "Blocked questions by violation type",
    ["violation_type"],
    registry=REGISTRY,
)

VALIDATION_FAILURES = Counter(
    "query_guard_validation_failures_total",
    "Validation failures by layer",
    ["layer"],
    registry=REGISTRY,
)

CONSENSUS_AGREEMENT = Histogram(
    "query_guard_consensus_agreement_percent",
    "Agreement percentage of consensus votes",
    buckets=[0, 34, 67, 100],
    registry=REGISTRY,
)

EXECUTION_DURATION = Histogram(
    "query_guard_execution_duration_seconds",
    "Store execution time of governed statements",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

TRUNCATIONS = Counter(
    "query_guard_truncations_total",
    "Result sets truncated to the role row cap",
    ["role"],
    registry=REGISTRY,
)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

ACTIVE_QUERIES = Gauge(
    "query_guard_active_queries",
    "Questions currently being processed",
    registry=REGISTRY,
)


def setup_metrics(app: FastAPI, version: str, environment: str = "development") -> None:
    """
    Set up Prometheus metrics for the FastAPI application.

    Args:
        app: FastAPI application instance
        version: Reported application version
        environment: Reported deployment environment
    """
    APP_INFO.info({"version": version, "environment": environment})

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        is_query_endpoint = request.url.path == "/api/v1/query"
        if is_query_endpoint:
            ACTIVE_QUERIES.inc()

        try:
            response = await call_next(request)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code,
            ).inc()
            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=request.url.path,
            ).observe(time.perf_counter() - start_time)
            return response
        finally:
            if is_query_endpoint:
                ACTIVE_QUERIES.dec()


def track_query_metrics(
    outcome: str,
    attempts: int,
    duration_seconds: float,
    self_corrected: bool = False,
    violation_type: Optional[str] = None,
    failed_layers: list[str] | None = None,
    consensus_agreement: Optional[float] = None,
) -> None:
    """
    Track metrics for one processed question.

    Args:
        outcome: success, fast_path, blocked, failed or clarification
        attempts: Generation attempts made (0 for fast path and early blocks)
        duration_seconds: Total processing time
        self_corrected: Whether a retry produced the answer
        violation_type: Violation classification when blocked
        failed_layers: Validator names that rejected a candidate
        consensus_agreement: Agreement percentage when consensus ran
    """
    QUERIES_TOTAL.labels(outcome=outcome).inc()
    QUERY_DURATION.observe(duration_seconds)
    if attempts:
        QUERY_ATTEMPTS.observe(attempts)
    if self_corrected:
        SELF_CORRECTIONS.inc()
    if violation_type:
        BLOCKED_TOTAL.labels(violation_type=violation_type).inc()
    for layer in failed_layers or []:
        VALIDATION_FAILURES.labels(layer=layer).inc()
    if consensus_agreement is not None:
        CONSENSUS_AGREEMENT.observe(consensus_agreement)


def track_execution(duration_seconds: float, truncated: bool, role: str) -> None:
    EXECUTION_DURATION.observe(duration_seconds)
    if truncated:
        TRUNCATIONS.labels(role=role).inc()


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics in text exposition format."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
