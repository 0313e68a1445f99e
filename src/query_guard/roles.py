"""
Role Tiers
==========

Ordered privilege scale shared by access control, the execution governor
and the PII redactor.
"""

from enum import Enum


class UserRole(str, Enum):
    """Tenant user roles, declared from most to least privileged."""

    SUPERADMIN = "SUPERADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    CASHIER = "CASHIER"
    WAITER = "WAITER"
    KITCHEN = "KITCHEN"
    VIEWER = "VIEWER"

    @property
    def rank(self) -> int:
        """Higher rank means more privilege. VIEWER is 0."""
        members = list(UserRole)
        return len(members) - 1 - members.index(self)

    @classmethod
    def parse(cls, value: "str | UserRole") -> "UserRole":
        if isinstance(value, UserRole):
            return value
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None


# Roles allowed to use subqueries and set operations (subject to depth limits)
PRIVILEGED_ROLES = frozenset({UserRole.SUPERADMIN, UserRole.ADMIN, UserRole.MANAGER})

# Roles whose results are returned without PII masking
PII_EXEMPT_ROLES = frozenset({UserRole.SUPERADMIN, UserRole.ADMIN})


def is_privileged(role: UserRole) -> bool:
    return role in PRIVILEGED_ROLES


def is_low_privilege(role: UserRole) -> bool:
    """Roles below MANAGER always get deep SQL validation."""
    return role.rank < UserRole.MANAGER.rank


def is_superadmin(role: UserRole) -> bool:
    return role is UserRole.SUPERADMIN
