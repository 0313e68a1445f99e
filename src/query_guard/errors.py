"""
Error Taxonomy
==============

Every failure the engine can report, classified for retry and alerting.

Expected validation failures travel through the controllers as
``AttemptRecord`` values tagged with an ``ErrorKind``. The exception classes
below are raised at collaborator boundaries (generator adapter, execution
governor, audit logger) and converted into those records by the controllers.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of failure produced by the pipeline."""

    INJECTION_DETECTED = "InjectionDetected"
    GENERATION_FAILED = "GenerationFailed"
    SCHEMA_VALIDATION_FAILED = "SchemaValidationFailed"
    SYNTAX_ERROR = "SyntaxError"
    SECURITY_VALIDATION_FAILED = "SecurityValidationFailed"
    ACCESS_DENIED = "AccessDenied"
    EXECUTION_TIMEOUT = "ExecutionTimeout"
    EXECUTION_ERROR = "ExecutionError"
    RESULT_VALIDATION_FAILED = "ResultValidationFailed"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"

    @property
    def terminal(self) -> bool:
        """Terminal kinds end the request; retrying cannot change the outcome."""
        return self in _TERMINAL

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def security_relevant(self) -> bool:
        """Security-relevant kinds are tagged with a violation type in the audit log."""
        return self in _SECURITY_RELEVANT


_TERMINAL = frozenset({ErrorKind.INJECTION_DETECTED, ErrorKind.ACCESS_DENIED})

_RETRYABLE = frozenset(
    {
        ErrorKind.GENERATION_FAILED,
        ErrorKind.SCHEMA_VALIDATION_FAILED,
        ErrorKind.SYNTAX_ERROR,
        ErrorKind.SECURITY_VALIDATION_FAILED,
        ErrorKind.EXECUTION_ERROR,
        ErrorKind.EXECUTION_TIMEOUT,
        ErrorKind.PAYLOAD_TOO_LARGE,
    }
)

_SECURITY_RELEVANT = frozenset(
    {
        ErrorKind.INJECTION_DETECTED,
        ErrorKind.SECURITY_VALIDATION_FAILED,
        ErrorKind.ACCESS_DENIED,
    }
)


class QueryGuardError(Exception):
    """Base class for all query engine errors."""

    kind: ErrorKind

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InjectionDetected(QueryGuardError):
    kind = ErrorKind.INJECTION_DETECTED


class GenerationFailed(QueryGuardError):
    kind = ErrorKind.GENERATION_FAILED


class SchemaValidationFailed(QueryGuardError):
    kind = ErrorKind.SCHEMA_VALIDATION_FAILED


class SQLSyntaxError(QueryGuardError):
    kind = ErrorKind.SYNTAX_ERROR


class SecurityValidationFailed(QueryGuardError):
    kind = ErrorKind.SECURITY_VALIDATION_FAILED


class AccessDenied(QueryGuardError):
    kind = ErrorKind.ACCESS_DENIED


class ExecutionTimeout(QueryGuardError):
    kind = ErrorKind.EXECUTION_TIMEOUT


class ExecutionError(QueryGuardError):
    kind = ErrorKind.EXECUTION_ERROR


class ResultValidationFailed(QueryGuardError):
    kind = ErrorKind.RESULT_VALIDATION_FAILED


class PayloadTooLarge(QueryGuardError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE


class AuditConfigurationError(RuntimeError):
    """Raised when the audit logger cannot guarantee encrypted storage."""
