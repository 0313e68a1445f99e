"""
Query Guard
===========

Query safety engine: turns untrusted natural-language questions into
read-only, tenant-isolated SQL, executes it under role-based limits and
returns a sanitized, audited answer.
"""

from query_guard.config import EngineConfig
from query_guard.engine import QuerySafetyEngine
from query_guard.errors import ErrorKind, QueryGuardError
from query_guard.llm import LLMInterface, MockLLM
from query_guard.models import (
    AttemptRecord,
    AttemptState,
    ConfidenceLevel,
    QueryRequest,
    QueryResponse,
    ResponseMetadata,
    ViolationType,
)
from query_guard.roles import UserRole
from query_guard.schema_context import SchemaContext
from query_guard.store import RelationalStore, SQLiteStore

__version__ = "0.1.0"

__all__ = [
    # Engine
    "QuerySafetyEngine",
    "EngineConfig",
    # Models
    "QueryRequest",
    "QueryResponse",
    "ResponseMetadata",
    "AttemptRecord",
    "AttemptState",
    "ConfidenceLevel",
    "ViolationType",
    "UserRole",
    # Errors
    "ErrorKind",
    "QueryGuardError",
    # Collaborators
    "SchemaContext",
    "RelationalStore",
    "SQLiteStore",
    "LLMInterface",
    "MockLLM",
]
