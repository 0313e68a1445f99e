"""
Observability Module
====================

Structured logging and Prometheus metrics.
"""

from query_guard.observability.logging_config import bind_context, clear_context, get_logger, setup_logging
from query_guard.observability.metrics import setup_metrics, track_execution, track_query_metrics

__all__ = [
    "bind_context",
    "clear_context",
    "get_logger",
    "setup_logging",
    "setup_metrics",
    "track_execution",
    "track_query_metrics",
]
