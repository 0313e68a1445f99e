"""
AST Security Validator
======================

Structural security analysis of candidate SQL on a parsed syntax tree.

Checks, independent of surface formatting:
- exactly one read-only top-level statement
- tenant isolation: in every SELECT scope that reads tenant-scoped tables,
  the tenant column is compared by equality, exactly once, against the
  requester's tenant id, reachable only through AND
- no OR at the top of a WHERE clause
- every JOIN of a tenant-scoped table matches a key or the tenant column,
  and no JOIN condition is always true
- subqueries and set operations only for privileged roles, bounded depth
- no system catalogs, dangerous functions, tautologies, mid-statement
  comments, or cartesian joins
"""

import re
from typing import Iterator, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from query_guard.errors import ErrorKind
from query_guard.models import ValidationVerdict, ViolationType
from query_guard.observability.logging_config import get_logger
from query_guard.roles import UserRole, is_low_privilege, is_privileged
from query_guard.schema_context import SchemaContext
from query_guard.validators.base import ValidationContext, Validator
from query_guard.validators.schema import is_system_table

logger = get_logger(__name__)

SET_OPERATIONS = (exp.Union, exp.Intersect, exp.Except)
WRITE_NODES = (exp.Insert, exp.Update, exp.Delete, exp.Drop, exp.Create, exp.Command, exp.Merge)

DANGEROUS_FUNCTIONS = frozenset(
    {
        "pg_sleep",
        "pg_read_file",
        "pg_read_binary_file",
        "pg_ls_dir",
        "pg_stat_file",
        "lo_import",
        "lo_export",
        "dblink",
        "dblink_exec",
        "pg_terminate_backend",
        "pg_cancel_backend",
        "set_config",
    }
)

# Cheap textual pre-check for selective mode
COMPLEX_STATEMENT = re.compile(
    r"\bUNION\b|\bINTERSECT\b|\bEXCEPT\b|\bJOIN\b|information_schema|pg_catalog|;",
    re.IGNORECASE,
)


def needs_deep_validation(sql: str, role: UserRole) -> bool:
    """
    Whether the selective policy would run AST validation for this statement.

    Complex statements (set operations, joins, several SELECTs, catalog
    references) and low-privilege roles always qualify.
    """
    if is_low_privilege(role):
        return True
    if COMPLEX_STATEMENT.search(sql):
        return True
    return len(re.findall(r"\bSELECT\b", sql, re.IGNORECASE)) > 1


def _nearest_select(node: exp.Expression) -> Optional[exp.Expression]:
    parent = node.parent
    while parent is not None and not isinstance(parent, exp.Select):
        parent = parent.parent
    return parent


def _owned_by(node: exp.Expression, select: exp.Select) -> bool:
    return _nearest_select(node) is select


def _select_depth(select: exp.Select) -> int:
    depth = 0
    parent = _nearest_select(select)
    while parent is not None:
        depth += 1
        parent = _nearest_select(parent)
    return depth


def _is_key_name(name: str) -> bool:
    """Primary key (`id`) or a camelCase or snake_case foreign key."""
    return name.lower() == "id" or name.endswith(("Id", "_id", "ID"))


def _conjuncts(condition: exp.Expression) -> Iterator[exp.Expression]:
    """Yield the predicates joined by AND, looking through parentheses only."""
    node = condition.unnest()
    if isinstance(node, exp.And):
        yield from _conjuncts(node.left)
        yield from _conjuncts(node.right)
    else:
        yield node


class SQLSecurityAnalyzer:
    """Parses SQL and evaluates tenant isolation and forbidden constructs."""

    def __init__(self, schema: SchemaContext | None = None, dialect: str = "postgres") -> None:
        self.schema = schema or SchemaContext()
        self.dialect = dialect

    @property
    def tenant_column(self) -> str:
        return self.schema.tenant_column

    def _is_tenant_column(self, node: exp.Expression) -> bool:
        return isinstance(node, exp.Column) and node.name.lower() == self.tenant_column.lower()

    def _requires_tenant_filter(self, table: exp.Table) -> bool:
        """Unknown tables are treated as tenant-scoped."""
        if is_system_table(table):
            return False
        return not self.schema.has_table(table.name) or self.schema.is_tenant_scoped(table.name)

    def validate_query(
        self,
        sql: str,
        tenant_id: str,
        role: UserRole,
        allowed_tables: Optional[frozenset[str]] = None,
        max_depth: int = 3,
        strict_mode: bool = False,
    ) -> ValidationVerdict:
        """
        Run the full structural analysis.

        Args:
            sql: Candidate statement
            tenant_id: Authenticated tenant the statement must be bound to
            role: Requester role (subqueries and UNION need a privileged role)
            allowed_tables: Optional whitelist of table names
            max_depth: Maximum subquery nesting for privileged roles
            strict_mode: Promote suspicious-pattern warnings to errors

        Returns:
            ValidationVerdict; ``details`` carries tables_accessed,
            has_tenant_filter, subquery_depth and the violation type
        """
        errors: list[str] = []
        warnings: list[str] = []
        violations: list[ViolationType] = []
        details: dict = {"tables_accessed": [], "has_tenant_filter": False}

        def verdict() -> ValidationVerdict:
            if violations:
                details["violation_type"] = violations[0]
            return ValidationVerdict(
                layer="ASTSecurityValidator",
                passed=not errors,
                errors=list(dict.fromkeys(errors)),
                warnings=list(dict.fromkeys(warnings)),
                details=details,
            )

        # Comments: token level, before the parser discards them
        try:
            tokens = sqlglot.tokenize(sql, read=self.dialect)
        except SqlglotError as e:
            errors.append(f"Could not tokenize SQL: {e}")
            return verdict()
        for index, token in enumerate(tokens):
            if not token.comments:
                continue
            if index < len(tokens) - 1:
                errors.append("Comment inside statement may truncate filters")
                violations.append(ViolationType.SQL_INJECTION_ATTEMPT)
            else:
                warnings.append("Trailing comment in statement")

        try:
            statements = [s for s in sqlglot.parse(sql, read=self.dialect) if s is not None]
        except SqlglotError as e:
            errors.append(f"Could not parse SQL: {e}")
            return verdict()

        details["statement_count"] = len(statements)
        if not statements:
            errors.append("Empty SQL statement")
            return verdict()
        if len(statements) > 1:
            errors.append("Multiple statements are not allowed (stacked query)")
            violations.append(ViolationType.SQL_INJECTION_ATTEMPT)
            return verdict()

        root = statements[0]
        if not isinstance(root, (exp.Select, *SET_OPERATIONS)):
            errors.append(f"Only SELECT statements are allowed (found {root.key.upper()})")
            violations.append(ViolationType.DANGEROUS_OPERATION)
            return verdict()

        if any(True for _ in root.find_all(*WRITE_NODES)):
            errors.append("Data-modifying statements are not allowed")
            violations.append(ViolationType.DANGEROUS_OPERATION)
        for select in root.find_all(exp.Select):
            if select.args.get("into"):
                errors.append("SELECT INTO is not allowed")
                violations.append(ViolationType.DANGEROUS_OPERATION)
            if select.args.get("locks"):
                errors.append("Row locking clauses are not allowed")
                violations.append(ViolationType.DANGEROUS_OPERATION)

        self._check_tables(root, allowed_tables, errors, violations, details)
        self._check_functions(root, errors, violations)
        self._check_nesting(root, role, max_depth, errors, warnings, details)
        self._check_joins(root, tenant_id, errors, warnings, violations)

        selects = list(root.find_all(exp.Select))
        cte_names = {cte.alias_or_name.lower() for cte in root.find_all(exp.CTE)}
        filtered_scopes = 0
        for select in selects:
            scope_tables = [
                t for t in select.find_all(exp.Table)
                if _owned_by(t, select) and t.name.lower() not in cte_names
            ]
            if not any(self._requires_tenant_filter(t) for t in scope_tables):
                continue
            if self._check_tenant_filter(select, tenant_id, errors, violations):
                filtered_scopes += 1
            self._check_where_patterns(select, strict_mode, errors, warnings, violations)

        details["has_tenant_filter"] = filtered_scopes > 0
        if not details["tables_accessed"]:
            errors.append("Query must read at least one tenant-scoped table")

        if errors:
            logger.info(
                "ast_validation_failed",
                errors=errors,
                violation=violations[0].value if violations else None,
            )
        return verdict()

    def quick_validate(self, sql: str, tenant_id: str) -> bool:
        """Fast yes/no check with the most restrictive role."""
        return self.validate_query(sql, tenant_id, UserRole.VIEWER).passed

    def _check_tables(
        self,
        root: exp.Expression,
        allowed_tables: Optional[frozenset[str]],
        errors: list[str],
        violations: list[ViolationType],
        details: dict,
    ) -> None:
        cte_names = {cte.alias_or_name.lower() for cte in root.find_all(exp.CTE)}
        accessed = []
        for table in root.find_all(exp.Table):
            if table.name.lower() in cte_names:
                continue
            if is_system_table(table):
                errors.append("System catalog access is not allowed")
                violations.append(ViolationType.SCHEMA_DISCOVERY)
                continue
            canonical = self.schema.resolve_table(table.name) or table.name
            accessed.append(canonical)
            if allowed_tables is not None and canonical not in allowed_tables:
                errors.append(f'Table "{canonical}" is not in the allowed list')
                violations.append(ViolationType.UNAUTHORIZED_TABLE)
        details["tables_accessed"] = list(dict.fromkeys(accessed))

    def _check_functions(
        self, root: exp.Expression, errors: list[str], violations: list[ViolationType]
    ) -> None:
        for func in root.find_all(exp.Func):
            name = func.name if isinstance(func, exp.Anonymous) else func.sql_name()
            if name and name.lower() in DANGEROUS_FUNCTIONS:
                errors.append(f"Dangerous function {name.lower()} is not allowed")
                violations.append(ViolationType.DANGEROUS_OPERATION)

    def _check_nesting(
        self,
        root: exp.Expression,
        role: UserRole,
        max_depth: int,
        errors: list[str],
        warnings: list[str],
        details: dict,
    ) -> None:
        selects = list(root.find_all(exp.Select))
        has_set_operation = any(True for _ in root.find_all(*SET_OPERATIONS))
        depth = max((_select_depth(s) for s in selects), default=0)
        details["subquery_depth"] = depth

        if has_set_operation:
            warnings.append("Query uses UNION or another set operation")
        if depth > 0:
            warnings.append("Query uses a subquery; each subquery must carry its own tenant filter")

        if (has_set_operation or depth > 0) and not is_privileged(role):
            errors.append("Subqueries and UNION are not permitted for this role")
        elif depth > max_depth:
            errors.append(f"Subquery depth {depth} exceeds the maximum of {max_depth}")

    def _check_joins(
        self,
        root: exp.Expression,
        tenant_id: str,
        errors: list[str],
        warnings: list[str],
        violations: list[ViolationType],
    ) -> None:
        cte_names = {cte.alias_or_name.lower() for cte in root.find_all(exp.CTE)}
        for join in root.find_all(exp.Join):
            on = join.args.get("on")
            using = join.args.get("using")
            if on is None and not using:
                errors.append("JOIN without ON condition (cartesian product) is not allowed")
                violations.append(ViolationType.CROSS_TENANT_ACCESS)
                continue

            if on is not None and self._has_tautology(on):
                errors.append(f"Always-true condition in JOIN ON clause ({on.sql()})")
                violations.append(ViolationType.SQL_INJECTION_ATTEMPT)
                continue

            joined = join.this
            if not isinstance(joined, exp.Table) or joined.name.lower() in cte_names:
                # Derived sources carry their own tenant filter
                continue
            if not self._requires_tenant_filter(joined):
                continue

            if using:
                names = [u.name for u in using]
                bound = any(_is_key_name(n) for n in names)
                tenant_bound = any(n.lower() == self.tenant_column.lower() for n in names)
            else:
                bound, tenant_bound = self._join_binding(on, joined.alias_or_name, tenant_id, errors, violations)

            if not bound:
                errors.append(
                    f'JOIN on "{joined.name}" must match a key column or the tenant column '
                    "of the joined rows"
                )
                violations.append(ViolationType.CROSS_TENANT_ACCESS)
            elif not tenant_bound:
                warnings.append("JOIN condition does not include the tenant column")

    def _has_tautology(self, condition: exp.Expression) -> bool:
        node = condition.unnest()
        if isinstance(node, exp.Literal) or (isinstance(node, exp.Boolean) and node.this is True):
            return True
        for predicate in condition.find_all(exp.EQ, exp.GTE, exp.LTE, exp.Boolean):
            if isinstance(predicate, exp.Boolean):
                if predicate.this is True and isinstance(predicate.parent, (exp.And, exp.Or, exp.Paren)):
                    return True
            elif predicate.left.unnest() == predicate.right.unnest():
                return True
        return False

    def _join_binding(
        self,
        on: exp.Expression,
        joined_name: str,
        tenant_id: str,
        errors: list[str],
        violations: list[ViolationType],
    ) -> tuple[bool, bool]:
        """
        Inspect the AND-ed equalities of a JOIN ON clause.

        Returns (bound, tenant_bound): whether some conjunct ties the joined
        table to another source through a key or its tenant column, and
        whether the tenant column takes part.
        """
        joined_name = joined_name.lower()
        bound = tenant_bound = False
        for predicate in _conjuncts(on):
            if not isinstance(predicate, exp.EQ):
                continue
            left, right = predicate.left.unnest(), predicate.right.unnest()

            if isinstance(left, exp.Column) and isinstance(right, exp.Column):
                sides = {left.table.lower(), right.table.lower()}
                if left.table and right.table and (joined_name not in sides or len(sides) == 1):
                    continue
                if self._is_tenant_column(left) and self._is_tenant_column(right):
                    bound = tenant_bound = True
                elif _is_key_name(left.name) or _is_key_name(right.name):
                    bound = True
                continue

            column, value = (left, right) if isinstance(left, exp.Column) else (right, left)
            if not (self._is_tenant_column(column) and column.table.lower() in ("", joined_name)):
                continue
            if isinstance(value, exp.Literal) and str(value.this) == str(tenant_id):
                bound = tenant_bound = True
            else:
                errors.append("JOIN tenant condition does not match the authenticated tenant")
                violations.append(ViolationType.CROSS_TENANT_ACCESS)
        return bound, tenant_bound

    def _check_tenant_filter(
        self,
        select: exp.Select,
        tenant_id: str,
        errors: list[str],
        violations: list[ViolationType],
    ) -> bool:
        """Validate the tenant predicate of one SELECT scope. True when it is correct."""
        where = select.args.get("where")
        if where is None:
            errors.append(f'Missing tenant filter: "{self.tenant_column}" must be filtered by equality')
            violations.append(ViolationType.MISSING_TENANT_FILTER)
            return False

        references = [
            c for c in where.find_all(exp.Column)
            if self._is_tenant_column(c) and _owned_by(c, select)
        ]
        predicates = [
            p for p in _conjuncts(where.this)
            if isinstance(p, exp.EQ) and (self._is_tenant_column(p.left) or self._is_tenant_column(p.right))
        ]

        if not predicates:
            errors.append(
                f'Missing tenant filter: "{self.tenant_column}" must be compared by equality '
                "and combined with AND"
            )
            violations.append(ViolationType.MISSING_TENANT_FILTER)
            return False

        ok = True
        if len(references) != 1:
            errors.append(
                f"Tenant filter must appear exactly once (found {len(references)} references)"
            )
            violations.append(ViolationType.CROSS_TENANT_ACCESS)
            ok = False

        for predicate in predicates:
            value = predicate.right if self._is_tenant_column(predicate.left) else predicate.left
            value = value.unnest()
            if not isinstance(value, exp.Literal):
                errors.append("Tenant filter must compare against a literal value, not an expression or subquery")
                violations.append(ViolationType.CROSS_TENANT_ACCESS)
                ok = False
            elif str(value.this) != str(tenant_id):
                errors.append("Tenant filter value does not match the authenticated tenant")
                violations.append(ViolationType.CROSS_TENANT_ACCESS)
                ok = False
        return ok

    def _check_where_patterns(
        self,
        select: exp.Select,
        strict_mode: bool,
        errors: list[str],
        warnings: list[str],
        violations: list[ViolationType],
    ) -> None:
        where = select.args.get("where")
        if where is None:
            return

        suspicious = []
        condition = where.this.unnest()
        owned_ors = [o for o in where.find_all(exp.Or) if _owned_by(o, select)]
        if owned_ors:
            warnings.append("Query contains OR conditions which may bypass the tenant filter")
        if isinstance(condition, exp.Or):
            errors.append("Top-level OR condition could widen matched rows beyond the tenant filter")
            violations.append(ViolationType.CROSS_TENANT_ACCESS)
        elif owned_ors:
            suspicious.append("Nested OR condition in WHERE clause")

        for node in where.find_all(exp.EQ, exp.NEQ, exp.GTE, exp.LTE, exp.Boolean):
            if not _owned_by(node, select):
                continue
            if isinstance(node, exp.Boolean):
                # Only a bare TRUE predicate, not an operand such as "active" = TRUE
                if node.this is True and isinstance(node.parent, (exp.Where, exp.And, exp.Or, exp.Paren)):
                    errors.append("Always-true boolean literal in WHERE clause")
                    violations.append(ViolationType.SQL_INJECTION_ATTEMPT)
            elif isinstance(node, (exp.EQ, exp.GTE, exp.LTE)) and node.left == node.right:
                errors.append(f"Always-true condition ({node.sql()}) in WHERE clause")
                violations.append(ViolationType.SQL_INJECTION_ATTEMPT)

        if any(_owned_by(n, select) for n in where.find_all(exp.Not)):
            suspicious.append("NOT condition in WHERE clause may invert filters")
        for in_node in where.find_all(exp.In):
            if _owned_by(in_node, select) and in_node.args.get("query") is not None:
                suspicious.append("IN with subquery in WHERE clause")

        if strict_mode:
            errors.extend(suspicious)
        else:
            warnings.extend(suspicious)


class ASTSecurityValidator(Validator):
    """Validation-chain layer around SQLSecurityAnalyzer."""

    error_kind = ErrorKind.SECURITY_VALIDATION_FAILED

    def __init__(self, analyzer: SQLSecurityAnalyzer | None = None) -> None:
        self.analyzer = analyzer or SQLSecurityAnalyzer()

    @property
    def name(self) -> str:
        return "ASTSecurityValidator"

    async def validate(self, sql: str, context: ValidationContext) -> ValidationVerdict:
        if context.deep_validation == "selective" and not needs_deep_validation(sql, context.role):
            return ValidationVerdict(layer=self.name, passed=True, details={"skipped": True})

        return self.analyzer.validate_query(
            sql,
            tenant_id=context.tenant_id,
            role=context.role,
            allowed_tables=context.allowed_tables,
            max_depth=context.max_depth,
            strict_mode=context.strict_mode,
        )
