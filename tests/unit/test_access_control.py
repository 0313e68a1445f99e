"""
Unit Tests for table access control
"""

import pytest

from query_guard.models import ViolationType
from query_guard.roles import UserRole
from query_guard.security.access_control import DENIAL_MESSAGES, TableAccessControl


@pytest.fixture
def access_control() -> TableAccessControl:
    return TableAccessControl()


class TestValidateAccess:
    def test_viewer_denied_payment(self, access_control: TableAccessControl) -> None:
        decision = access_control.validate_access(["Payment"], UserRole.VIEWER)
        assert decision.allowed is False
        assert decision.denied_tables == ["Payment"]
        assert decision.violation_type is ViolationType.UNAUTHORIZED_TABLE
        assert decision.violations[0].required_role is UserRole.MANAGER

    def test_only_denied_tables_are_listed(self, access_control: TableAccessControl) -> None:
        decision = access_control.validate_access(["Product", "Order", "Order"], UserRole.WAITER)
        assert decision.denied_tables == ["Order"]

    def test_manager_reads_financial_tables(self, access_control: TableAccessControl) -> None:
        assert access_control.validate_access(["Order", "Payment"], UserRole.MANAGER).allowed

    def test_forbidden_table(self, access_control: TableAccessControl) -> None:
        decision = access_control.validate_access(["Staff"], UserRole.ADMIN)
        assert decision.allowed is False
        assert decision.violation_type is ViolationType.SENSITIVE_TABLE_ACCESS

    def test_superadmin_bypass(self, access_control: TableAccessControl) -> None:
        assert access_control.validate_access(["Staff", "AuditLog", "Unlisted"], UserRole.SUPERADMIN).allowed

    def test_unknown_table_denied(self, access_control: TableAccessControl) -> None:
        decision = access_control.validate_access(["Unlisted"], UserRole.ADMIN)
        assert decision.violations[0].reason == "Unknown table"
        assert decision.violations[0].required_role is None

    def test_message_names_no_tables(self, access_control: TableAccessControl) -> None:
        """Test that the denial message stays generic."""
        decision = access_control.validate_access(["Payment"], UserRole.VIEWER, language="es")
        assert decision.message == DENIAL_MESSAGES["es"]
        assert "Payment" not in decision.message

    def test_unknown_language_falls_back_to_english(self) -> None:
        assert TableAccessControl.format_denial_message("fr") == DENIAL_MESSAGES["en"]


class TestPolicies:
    @pytest.mark.parametrize(
        "table,role",
        [("Product", UserRole.VIEWER), ("Order", UserRole.MANAGER), ("Staff", UserRole.SUPERADMIN)],
    )
    def test_minimum_required_role(self, access_control: TableAccessControl, table, role) -> None:
        assert access_control.minimum_required_role(table) is role

    def test_system_catalog_has_no_readers(self, access_control: TableAccessControl) -> None:
        assert access_control.minimum_required_role("information_schema") is None

    def test_forbidden_columns(self, access_control: TableAccessControl) -> None:
        assert access_control.is_column_forbidden("Customer", "Email", UserRole.MANAGER)
        assert not access_control.is_column_forbidden("Customer", "firstName", UserRole.MANAGER)
        assert not access_control.is_column_forbidden("Customer", "email", UserRole.SUPERADMIN)

    def test_accessible_tables(self, access_control: TableAccessControl) -> None:
        tables = access_control.accessible_tables(UserRole.VIEWER)
        assert "Product" in tables
        assert "Payment" not in tables
        assert "Order" not in tables
