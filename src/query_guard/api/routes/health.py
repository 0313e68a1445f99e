"""
Health Check Routes
===================

Kubernetes-compatible health and readiness endpoints.
"""

import os
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from query_guard import __version__
from query_guard.api.schemas import HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the service",
)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint for load balancers and monitoring.

    Returns:
        HealthResponse with current service status
    """
    engine = getattr(request.app.state, "engine", None)
    checks = {
        "api": True,
        "engine": engine is not None,
    }

    status = HealthStatus.HEALTHY if all(checks.values()) else HealthStatus.DEGRADED
    return HealthResponse(
        status=status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Returns whether the service is ready to handle requests",
)
async def readiness_check(request: Request) -> ReadinessResponse:
    """
    Readiness check for Kubernetes.

    Ready once the engine is built and the audit log directory is writable.
    """
    engine = getattr(request.app.state, "engine", None)
    audit_dir = engine.audit.path.parent if engine is not None else None
    checks = {
        "engine_loaded": engine is not None,
        "audit_log_writable": audit_dir is not None and os.access(audit_dir, os.W_OK),
    }

    return ReadinessResponse(
        ready=all(checks.values()),
        checks=checks,
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Simple liveness probe",
)
async def liveness_check() -> dict:
    return {"status": "ok"}
