"""API Routes."""

from query_guard.api.routes.audit import router as audit_router
from query_guard.api.routes.health import router as health_router
from query_guard.api.routes.query import router as query_router

__all__ = ["audit_router", "health_router", "query_router"]
