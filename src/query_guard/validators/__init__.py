"""
Validators Module
=================

Layered SQL validation: static schema check, dry-run parse check and
AST security analysis.
"""

from query_guard.validators.base import ValidationChain, ValidationContext, Validator
from query_guard.validators.schema import SchemaValidator
from query_guard.validators.dry_run import DryRunValidator
from query_guard.validators.ast_security import ASTSecurityValidator, SQLSecurityAnalyzer

__all__ = [
    "Validator",
    "ValidationChain",
    "ValidationContext",
    "SchemaValidator",
    "DryRunValidator",
    "ASTSecurityValidator",
    "SQLSecurityAnalyzer",
]
