"""
Unit Tests for the validation chain
===================================

Schema, dry-run and AST security layers.
"""

import pytest

from conftest import OTHER_TENANT, TENANT, RecordingStore, assert_verdict_failed, assert_verdict_passed
from query_guard.errors import ErrorKind
from query_guard.models import ViolationType
from query_guard.roles import UserRole
from query_guard.validators.ast_security import (
    ASTSecurityValidator,
    SQLSecurityAnalyzer,
    needs_deep_validation,
)
from query_guard.validators.base import ValidationChain, ValidationContext
from query_guard.validators.dry_run import DryRunValidator, classify_store_error
from query_guard.validators.schema import SchemaValidator

SAFE = f'SELECT COUNT(*) FROM "Product" WHERE "tenantId" = \'{TENANT}\' AND "active" = 1'


class TestSchemaValidator:
    """Static checks with no I/O."""

    @pytest.fixture
    def validator(self, schema) -> SchemaValidator:
        return SchemaValidator(schema)

    async def test_known_references_pass(self, validator, manager_context) -> None:
        assert_verdict_passed(await validator.validate(SAFE, manager_context))

    async def test_unknown_column(self, validator, manager_context) -> None:
        verdict = await validator.validate(
            'SELECT COUNT(*) FROM "Product" WHERE "isActive" = 1', manager_context
        )
        assert_verdict_failed(verdict)
        assert 'Unknown column "isActive"' in verdict.errors

    async def test_unknown_qualified_column(self, validator, manager_context) -> None:
        verdict = await validator.validate('SELECT p."cost" FROM "Product" p', manager_context)
        assert 'Unknown column "cost" on table "Product"' in verdict.errors

    async def test_unknown_table(self, validator, manager_context) -> None:
        verdict = await validator.validate('SELECT * FROM "Ghost"', manager_context)
        assert verdict.errors == ['Unknown table "Ghost"']

    async def test_aliases_are_not_columns(self, validator, manager_context) -> None:
        sql = 'SELECT COUNT(*) AS "activeProducts" FROM "Product" ORDER BY "activeProducts"'
        assert_verdict_passed(await validator.validate(sql, manager_context))

    @pytest.mark.parametrize(
        "sql,error",
        [
            ('DELETE FROM "Order"', "DELETE statement is not allowed"),
            ('UPDATE "Order" SET "total" = 0', "UPDATE statement is not allowed"),
            ('DROP TABLE "Order"', "DROP operation is not allowed"),
        ],
    )
    async def test_forbidden_verbs(self, validator, manager_context, sql: str, error: str) -> None:
        verdict = await validator.validate(sql, manager_context)
        assert error in verdict.errors
        assert "Only SELECT statements are allowed" in verdict.errors

    async def test_keywords_inside_literals_are_ignored(self, validator, manager_context) -> None:
        sql = 'SELECT "id" FROM "Product" WHERE "name" = \'Drop Table Special\''
        assert_verdict_passed(await validator.validate(sql, manager_context))

    async def test_tenant_literal_is_well_formed(self, validator, manager_context) -> None:
        """Test that closed literals, including doubled quotes, are not reported as unterminated."""
        sql = (
            f'SELECT "id" FROM "Product" WHERE "tenantId" = \'{TENANT}\' '
            'AND "name" = \'Chef\'\'s "Big" Special\''
        )
        assert_verdict_passed(await validator.validate(sql, manager_context))

    async def test_unterminated_literal(self, validator, manager_context) -> None:
        verdict = await validator.validate("SELECT * FROM \"Product\" WHERE \"name\" = 'x", manager_context)
        assert verdict.errors == ["Unterminated string literal"]

    async def test_empty(self, validator, manager_context) -> None:
        assert (await validator.validate("  ", manager_context)).errors == ["Empty SQL statement"]


class TestDryRunValidator:
    """Planning against SQLite without executing."""

    async def test_plans_without_executing(self, store: RecordingStore, manager_context) -> None:
        verdict = await DryRunValidator(store).validate(SAFE, manager_context)
        assert_verdict_passed(verdict)
        assert store.executed == []

    async def test_syntax_error(self, store: RecordingStore, manager_context) -> None:
        verdict = await DryRunValidator(store).validate('SELEC * FROM "Product"', manager_context)
        assert_verdict_failed(verdict)
        assert verdict.details["error_category"] == "syntax"
        assert verdict.errors[0].startswith("SQL syntax error:")

    async def test_unknown_column(self, store: RecordingStore, manager_context) -> None:
        verdict = await DryRunValidator(store).validate('SELECT nope FROM "Product"', manager_context)
        assert verdict.details["error_category"] == "unknown_column"

    @pytest.mark.parametrize(
        "message,category",
        [
            ("no such table: Ghost", "unknown_table"),
            ('relation "ghost" does not exist', "unknown_table"),
            ("no such function: MEDIAN", "unknown_function"),
            ("something odd happened", "other"),
        ],
    )
    def test_classify_store_error(self, message: str, category: str) -> None:
        assert classify_store_error(message)[0] == category


class TestTenantIsolation:
    """Tenant filter rules on the syntax tree."""

    def test_correct_filter_passes(self, analyzer: SQLSecurityAnalyzer) -> None:
        verdict = analyzer.validate_query(SAFE, TENANT, UserRole.MANAGER)
        assert_verdict_passed(verdict)
        assert verdict.details["has_tenant_filter"] is True
        assert verdict.details["tables_accessed"] == ["Product"]

    def test_or_between_tenants_is_rejected(self, analyzer: SQLSecurityAnalyzer) -> None:
        """Test that an OR across tenant ids never passes, even with the right tenant in it."""
        sql = 'SELECT * FROM "Product" WHERE "tenantId"=\'A\' OR "tenantId"=\'B\''
        verdict = analyzer.validate_query(sql, "A", UserRole.MANAGER)
        assert verdict.passed is False
        assert "Query contains OR conditions which may bypass the tenant filter" in verdict.warnings

    def test_missing_filter(self, analyzer: SQLSecurityAnalyzer) -> None:
        verdict = analyzer.validate_query('SELECT * FROM "Product"', TENANT, UserRole.MANAGER)
        assert_verdict_failed(verdict)
        assert verdict.details["violation_type"] is ViolationType.MISSING_TENANT_FILTER

    def test_wrong_tenant(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT * FROM "Product" WHERE "tenantId" = \'{OTHER_TENANT}\''
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert "Tenant filter value does not match the authenticated tenant" in verdict.errors
        assert verdict.details["violation_type"] is ViolationType.CROSS_TENANT_ACCESS

    def test_filter_must_appear_once(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT * FROM "Product" WHERE "tenantId" = \'{TENANT}\' AND "tenantId" = \'{TENANT}\''
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert "Tenant filter must appear exactly once (found 2 references)" in verdict.errors

    def test_filter_against_subquery(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = 'SELECT * FROM "Product" WHERE "tenantId" = (SELECT MAX("tenantId") FROM "Venue")'
        verdict = analyzer.validate_query(sql, TENANT, UserRole.SUPERADMIN)
        assert_verdict_failed(verdict)
        assert verdict.details["violation_type"] is ViolationType.CROSS_TENANT_ACCESS

    def test_subquery_with_own_filter_for_manager(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = (
            f'SELECT * FROM "Order" WHERE "tenantId" = \'{TENANT}\' AND "total" > '
            f'(SELECT AVG("total") FROM "Order" WHERE "tenantId" = \'{TENANT}\')'
        )
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert_verdict_passed(verdict)
        assert verdict.details["subquery_depth"] == 1


class TestJoinTenantBinding:
    """Every joined tenant-scoped table is tied to the filtered rows."""

    KEY_JOIN = (
        'SELECT p."amount" FROM "Order" o JOIN "Payment" p ON p."orderId" = o."id" '
        f'WHERE o."tenantId" = \'{TENANT}\''
    )

    @pytest.mark.parametrize("on", ["1 = 1", "TRUE", 'p."id" = p."id"', '(p."orderId" = o."id" OR 1 = 1)'])
    def test_always_true_join_is_rejected(self, analyzer: SQLSecurityAnalyzer, on: str) -> None:
        sql = (
            f'SELECT p."id", p."tenantId", p."amount" FROM "Order" o JOIN "Payment" p ON {on} '
            f'WHERE o."tenantId" = \'{TENANT}\''
        )
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert_verdict_failed(verdict)
        assert verdict.details["violation_type"] is ViolationType.SQL_INJECTION_ATTEMPT

    def test_unrelated_join_condition_is_rejected(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = (
            'SELECT p."amount" FROM "Order" o JOIN "Payment" p ON p."amount" = o."total" '
            f'WHERE o."tenantId" = \'{TENANT}\''
        )
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert 'JOIN on "Payment" must match a key column or the tenant column of the joined rows' in verdict.errors
        assert verdict.details["violation_type"] is ViolationType.CROSS_TENANT_ACCESS

    def test_key_join_passes_with_warning(self, analyzer: SQLSecurityAnalyzer) -> None:
        verdict = analyzer.validate_query(self.KEY_JOIN, TENANT, UserRole.MANAGER)
        assert_verdict_passed(verdict)
        assert "JOIN condition does not include the tenant column" in verdict.warnings

    def test_tenant_join_passes(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = self.KEY_JOIN.replace('o."id"', 'o."id" AND p."tenantId" = o."tenantId"')
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert_verdict_passed(verdict)
        assert verdict.warnings == []

    def test_join_tenant_literal_must_match(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = self.KEY_JOIN.replace('o."id"', f'o."id" AND p."tenantId" = \'{OTHER_TENANT}\'')
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert "JOIN tenant condition does not match the authenticated tenant" in verdict.errors


class TestForbiddenConstructs:
    """Statement shapes rejected regardless of the tenant filter."""

    def test_stacked_statements(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT * FROM "Product" WHERE "tenantId" = \'{TENANT}\'; DROP TABLE "Product"'
        verdict = analyzer.validate_query(sql, TENANT, UserRole.SUPERADMIN)
        assert "Multiple statements are not allowed (stacked query)" in verdict.errors
        assert verdict.details["violation_type"] is ViolationType.SQL_INJECTION_ATTEMPT

    def test_comment_inside_statement(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT * FROM "Product" /* hidden */ WHERE "tenantId" = \'{TENANT}\''
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert "Comment inside statement may truncate filters" in verdict.errors

    def test_dangerous_function(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT pg_sleep(5) FROM "Product" WHERE "tenantId" = \'{TENANT}\''
        verdict = analyzer.validate_query(sql, TENANT, UserRole.SUPERADMIN)
        assert "Dangerous function pg_sleep is not allowed" in verdict.errors

    def test_system_catalog(self, analyzer: SQLSecurityAnalyzer) -> None:
        verdict = analyzer.validate_query("SELECT * FROM information_schema.tables", TENANT, UserRole.SUPERADMIN)
        assert_verdict_failed(verdict)
        assert verdict.details["violation_type"] is ViolationType.SCHEMA_DISCOVERY

    def test_union_denied_for_viewer(self, analyzer: SQLSecurityAnalyzer) -> None:
        part = f'SELECT "name" FROM "Product" WHERE "tenantId" = \'{TENANT}\''
        verdict = analyzer.validate_query(f"{part} UNION {part}", TENANT, UserRole.VIEWER)
        assert "Subqueries and UNION are not permitted for this role" in verdict.errors

    def test_union_allowed_for_manager(self, analyzer: SQLSecurityAnalyzer) -> None:
        part = f'SELECT "name" FROM "Product" WHERE "tenantId" = \'{TENANT}\''
        verdict = analyzer.validate_query(f"{part} UNION {part}", TENANT, UserRole.MANAGER)
        assert_verdict_passed(verdict)
        assert "Query uses UNION or another set operation" in verdict.warnings

    def test_join_without_on(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT * FROM "Order" o CROSS JOIN "Payment" p WHERE o."tenantId" = \'{TENANT}\''
        verdict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        assert "JOIN without ON condition (cartesian product) is not allowed" in verdict.errors

    def test_tautology(self, analyzer: SQLSecurityAnalyzer) -> None:
        verdict = analyzer.validate_query(f"{SAFE} AND 1 = 1", TENANT, UserRole.MANAGER)
        assert_verdict_failed(verdict)
        assert verdict.details["violation_type"] is ViolationType.SQL_INJECTION_ATTEMPT

    def test_strict_mode_promotes_warnings(self, analyzer: SQLSecurityAnalyzer) -> None:
        sql = f'SELECT * FROM "Product" WHERE "tenantId" = \'{TENANT}\' AND NOT "active" = 1'
        lenient = analyzer.validate_query(sql, TENANT, UserRole.MANAGER)
        strict = analyzer.validate_query(sql, TENANT, UserRole.MANAGER, strict_mode=True)
        assert_verdict_passed(lenient)
        assert "NOT condition in WHERE clause may invert filters" in lenient.warnings
        assert "NOT condition in WHERE clause may invert filters" in strict.errors

    def test_allowed_tables_whitelist(self, analyzer: SQLSecurityAnalyzer) -> None:
        verdict = analyzer.validate_query(SAFE, TENANT, UserRole.MANAGER, allowed_tables=frozenset({"Order"}))
        assert verdict.details["violation_type"] is ViolationType.UNAUTHORIZED_TABLE


class TestSelectiveValidation:
    def test_low_privilege_always_validated(self) -> None:
        assert needs_deep_validation('SELECT 1 FROM "Product"', UserRole.VIEWER)
        assert not needs_deep_validation('SELECT 1 FROM "Product"', UserRole.MANAGER)
        assert needs_deep_validation('SELECT 1 FROM "Order" JOIN "Payment" ON 1', UserRole.MANAGER)

    async def test_selective_skip(self, analyzer: SQLSecurityAnalyzer) -> None:
        context = ValidationContext(tenant_id=TENANT, role=UserRole.MANAGER, deep_validation="selective")
        verdict = await ASTSecurityValidator(analyzer).validate('SELECT * FROM "Product"', context)
        assert verdict.details == {"skipped": True}


class TestValidationChain:
    async def test_stops_at_first_failure(self, schema, store, analyzer, manager_context) -> None:
        """Test that the dry run never sees SQL the static check rejected."""
        chain = ValidationChain([SchemaValidator(schema), DryRunValidator(store), ASTSecurityValidator(analyzer)])
        failing, verdicts = await chain.run('SELECT "isActive" FROM "Product"', manager_context)
        assert failing.error_kind is ErrorKind.SCHEMA_VALIDATION_FAILED
        assert [v.layer for v in verdicts] == ["SchemaValidator"]

    async def test_all_layers_pass(self, schema, store, analyzer, manager_context) -> None:
        chain = ValidationChain([SchemaValidator(schema), DryRunValidator(store), ASTSecurityValidator(analyzer)])
        failing, verdicts = await chain.run(SAFE, manager_context)
        assert failing is None
        assert len(verdicts) == 3
