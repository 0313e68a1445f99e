"""Security layers: injection detection, access control, PII redaction, audit."""

from query_guard.security.access_control import AccessDecision, TableAccessControl
from query_guard.security.audit_log import AuditEntry, AuditEventType, AuditFilter, AuditLogger
from query_guard.security.injection_detector import InjectionCheckResult, PromptInjectionDetector
from query_guard.security.pii_detector import PIIRedactor, RedactionResult
from query_guard.security.responses import SecurityResponse, security_response

__all__ = [
    "AccessDecision",
    "TableAccessControl",
    "AuditEntry",
    "AuditEventType",
    "AuditFilter",
    "AuditLogger",
    "InjectionCheckResult",
    "PromptInjectionDetector",
    "PIIRedactor",
    "RedactionResult",
    "SecurityResponse",
    "security_response",
]
