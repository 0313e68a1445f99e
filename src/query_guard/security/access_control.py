"""
Table Access Control
====================

Per-role table and column policies evaluated against the tables a
validated statement references.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from query_guard.models import ViolationType
from query_guard.roles import UserRole, is_superadmin


class AccessLevel(str, Enum):
    PUBLIC = "PUBLIC"
    RESTRICTED = "RESTRICTED"
    FORBIDDEN = "FORBIDDEN"


@dataclass(frozen=True)
class TablePolicy:
    """Who may read a table, and which of its columns stay hidden."""

    level: AccessLevel
    allowed_roles: frozenset[UserRole]
    forbidden_columns: frozenset[str] = frozenset()
    reason: str = ""


ALL_ROLES = frozenset(UserRole)
MANAGEMENT = frozenset({UserRole.SUPERADMIN, UserRole.ADMIN, UserRole.MANAGER})
SUPERADMIN_ONLY = frozenset({UserRole.SUPERADMIN})


def _restricted(reason: str, forbidden: tuple[str, ...] = ()) -> TablePolicy:
    return TablePolicy(AccessLevel.RESTRICTED, MANAGEMENT, frozenset(forbidden), reason)


def _forbidden(reason: str) -> TablePolicy:
    return TablePolicy(AccessLevel.FORBIDDEN, SUPERADMIN_ONLY, frozenset(), reason)


TABLE_POLICIES: dict[str, TablePolicy] = {
    # Operational, visible to every role
    "Menu": TablePolicy(AccessLevel.PUBLIC, ALL_ROLES),
    "MenuCategory": TablePolicy(AccessLevel.PUBLIC, ALL_ROLES),
    "Product": TablePolicy(
        AccessLevel.PUBLIC, ALL_ROLES, frozenset({"internalCost", "profitMargin"})
    ),
    "OrderItem": TablePolicy(AccessLevel.PUBLIC, ALL_ROLES - {UserRole.VIEWER}),
    "Shift": TablePolicy(AccessLevel.PUBLIC, ALL_ROLES - {UserRole.VIEWER}),
    # Inventory
    "RawMaterial": TablePolicy(
        AccessLevel.PUBLIC,
        ALL_ROLES - {UserRole.CASHIER, UserRole.WAITER},
        frozenset({"cost", "supplierCost"}),
    ),
    "Recipe": TablePolicy(
        AccessLevel.PUBLIC,
        frozenset({UserRole.SUPERADMIN, UserRole.ADMIN, UserRole.MANAGER, UserRole.KITCHEN, UserRole.VIEWER}),
    ),
    "RecipeLine": TablePolicy(
        AccessLevel.PUBLIC,
        frozenset({UserRole.SUPERADMIN, UserRole.ADMIN, UserRole.MANAGER, UserRole.KITCHEN, UserRole.VIEWER}),
    ),
    "StockBatch": TablePolicy(
        AccessLevel.PUBLIC,
        frozenset({UserRole.SUPERADMIN, UserRole.ADMIN, UserRole.MANAGER, UserRole.VIEWER}),
    ),
    # Financial and customer data
    "Order": _restricted("Financial data"),
    "Payment": _restricted("Payment data", ("stripePaymentIntentId", "metadata")),
    "Customer": _restricted("Customer personal data", ("email", "phone", "address")),
    "Venue": _restricted("Venue configuration"),
    "Review": _restricted("Customer feedback"),
    "RawMaterialMovement": _restricted("Inventory movements"),
    # Identity and platform internals
    "Staff": _forbidden("Employee personal data"),
    "StaffVenue": _forbidden("Employee assignments"),
    "Organization": _forbidden("Organization configuration"),
    "User": _forbidden("User accounts"),
    "Session": _forbidden("Authentication sessions"),
    "AuditLog": _forbidden("Audit records"),
    "WebhookEvent": _forbidden("Integration events"),
    # System catalogs: nobody
    "information_schema": TablePolicy(AccessLevel.FORBIDDEN, frozenset(), reason="System catalog"),
    "pg_catalog": TablePolicy(AccessLevel.FORBIDDEN, frozenset(), reason="System catalog"),
    "pg_tables": TablePolicy(AccessLevel.FORBIDDEN, frozenset(), reason="System catalog"),
}

DENIAL_MESSAGES = {
    "en": (
        "For security reasons, your role cannot access the information needed to answer "
        "this question. Please ask an administrator if you need this data."
    ),
    "es": (
        "Por razones de seguridad, tu rol no puede acceder a la informacion necesaria para "
        "responder esta pregunta. Pide a un administrador si necesitas estos datos."
    ),
}


@dataclass
class AccessViolation:
    table: str
    reason: str
    violation_type: ViolationType
    required_role: Optional[UserRole]
    user_role: UserRole


@dataclass
class AccessDecision:
    """Outcome of an access check."""

    allowed: bool
    denied_tables: list[str] = field(default_factory=list)
    violations: list[AccessViolation] = field(default_factory=list)
    message: str = ""

    @property
    def violation_type(self) -> Optional[ViolationType]:
        return self.violations[0].violation_type if self.violations else None


class TableAccessControl:
    """
    Evaluates per-role table policies.

    SUPERADMIN bypasses the check. Tables without a policy are denied to
    every other role.
    """

    def __init__(self, policies: dict[str, TablePolicy] | None = None) -> None:
        self.policies = policies if policies is not None else TABLE_POLICIES
        self._by_lower = {name.lower(): name for name in self.policies}

    def policy_for(self, table: str) -> Optional[TablePolicy]:
        canonical = self._by_lower.get(table.lower())
        return self.policies[canonical] if canonical else None

    def can_access(self, role: UserRole, table: str) -> bool:
        if is_superadmin(role):
            return True
        policy = self.policy_for(table)
        return policy is not None and role in policy.allowed_roles

    def validate_access(
        self, tables: list[str], role: UserRole, language: str = "en"
    ) -> AccessDecision:
        """
        Check every referenced table against the role.

        Args:
            tables: Table names referenced by the statement
            role: Requester role
            language: Language of the denial message

        Returns:
            AccessDecision; the message never names tables or columns
        """
        if is_superadmin(role):
            return AccessDecision(allowed=True)

        denied = []
        violations = []
        for table in dict.fromkeys(tables):
            if self.can_access(role, table):
                continue
            policy = self.policy_for(table)
            denied.append(table)
            violations.append(
                AccessViolation(
                    table=table,
                    reason=policy.reason if policy else "Unknown table",
                    violation_type=(
                        ViolationType.UNAUTHORIZED_TABLE
                        if policy is not None and policy.level is AccessLevel.RESTRICTED
                        else ViolationType.SENSITIVE_TABLE_ACCESS
                    ),
                    required_role=self.minimum_required_role(table),
                    user_role=role,
                )
            )

        if denied:
            return AccessDecision(
                allowed=False,
                denied_tables=denied,
                violations=violations,
                message=self.format_denial_message(language),
            )
        return AccessDecision(allowed=True)

    def minimum_required_role(self, table: str) -> Optional[UserRole]:
        """Least privileged role that can read the table, if any."""
        policy = self.policy_for(table)
        if policy is None or not policy.allowed_roles:
            return None
        return min(policy.allowed_roles, key=lambda r: r.rank)

    def is_column_forbidden(self, table: str, column: str, role: UserRole) -> bool:
        if is_superadmin(role):
            return False
        policy = self.policy_for(table)
        if policy is None:
            return True
        return column.lower() in {c.lower() for c in policy.forbidden_columns}

    def accessible_tables(self, role: UserRole) -> list[str]:
        return [name for name in self.policies if self.can_access(role, name)]

    @staticmethod
    def format_denial_message(language: str = "en") -> str:
        return DENIAL_MESSAGES.get(language, DENIAL_MESSAGES["en"])
