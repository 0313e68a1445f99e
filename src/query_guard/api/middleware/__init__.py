"""API middleware."""

from query_guard.api.middleware.telemetry import TelemetryMiddleware

__all__ = ["TelemetryMiddleware"]
