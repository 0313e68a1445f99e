"""HTTP embedding of the query safety engine."""

from query_guard.api.main import create_app

__all__ = ["create_app"]
