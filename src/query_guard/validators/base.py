"""
Base Validator Classes
======================

Abstract validator and the ordered validation chain.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from query_guard.errors import ErrorKind
from query_guard.models import ValidationVerdict
from query_guard.roles import UserRole


@dataclass(frozen=True)
class ValidationContext:
    """Per-request inputs shared by every validation layer."""

    tenant_id: str
    role: UserRole
    strict_mode: bool = False
    max_depth: int = 3
    deep_validation: str = "always"
    allowed_tables: Optional[frozenset[str]] = None


class Validator(ABC):
    """Base class for all validation layers."""

    # Error kind reported when this layer fails
    error_kind: ErrorKind = ErrorKind.SCHEMA_VALIDATION_FAILED

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this validator."""
        pass

    @abstractmethod
    async def validate(self, sql: str, context: ValidationContext) -> ValidationVerdict:
        """
        Validate the SQL against this layer's rules.

        Args:
            sql: Candidate SQL statement
            context: Tenant, role and policy settings for the request

        Returns:
            ValidationVerdict with errors and warnings
        """
        pass


class ValidationChain:
    """Runs validators in order, stopping at the first failure."""

    def __init__(self, validators: list[Validator]) -> None:
        self.validators = validators

    async def run(
        self, sql: str, context: ValidationContext
    ) -> tuple[Optional[Validator], list[ValidationVerdict]]:
        """
        Run all validators.

        Returns:
            Tuple of (failing validator or None, verdicts collected so far)
        """
        verdicts = []

        for validator in self.validators:
            verdict = await validator.validate(sql, context)
            verdicts.append(verdict)

            if not verdict.passed:
                return validator, verdicts

        return None, verdicts
