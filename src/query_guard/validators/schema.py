"""
Static Schema Validator
=======================

Instant checks with no I/O: statement verb, quoting, and table/column
references against the schema context.
"""

import re

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from query_guard.errors import ErrorKind
from query_guard.models import ValidationVerdict
from query_guard.schema_context import SchemaContext
from query_guard.validators.base import ValidationContext, Validator

STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
QUOTED_IDENTIFIER = re.compile(r'"(?:[^"]|"")*"')

FORBIDDEN_VERBS = [
    (r"\bINSERT\s+INTO\b", "INSERT statement"),
    (r"\bUPDATE\s+\S+\s+SET\b", "UPDATE statement"),
    (r"\bDELETE\s+FROM\b", "DELETE statement"),
    (r"\bDROP\s+(?:TABLE|DATABASE|SCHEMA|INDEX|VIEW)\b", "DROP operation"),
    (r"\bTRUNCATE\b", "TRUNCATE operation"),
    (r"\bALTER\s+(?:TABLE|DATABASE|SCHEMA|ROLE|USER)\b", "ALTER operation"),
    (r"\bCREATE\s+(?:TABLE|DATABASE|SCHEMA|INDEX|VIEW|FUNCTION|ROLE|USER)\b", "CREATE operation"),
    (r"\bGRANT\b", "GRANT operation"),
    (r"\bREVOKE\b", "REVOKE operation"),
    (r"\bMERGE\s+INTO\b", "MERGE statement"),
    (r"\bCOPY\b", "COPY operation"),
    (r"\bEXEC(?:UTE)?\b", "Dynamic SQL execution"),
    (r"\bCALL\b", "Procedure call"),
]

# Schemas and prefixes left to the security layer, which classifies them
SYSTEM_SCHEMAS = frozenset({"information_schema", "pg_catalog", "sys", "mysql", "performance_schema"})
SYSTEM_TABLE_PREFIXES = ("pg_", "sqlite_")


def strip_literals(sql: str) -> str:
    """Blank out string literals so keywords inside them are ignored."""
    return STRING_LITERAL.sub("''", sql)


def is_system_table(table: exp.Table) -> bool:
    name = table.name.lower()
    schema = (table.db or "").lower()
    return (
        schema in SYSTEM_SCHEMAS
        or name in SYSTEM_SCHEMAS
        or name.startswith(SYSTEM_TABLE_PREFIXES)
    )


class SchemaValidator(Validator):
    """Rejects non-SELECT verbs, malformed quoting, and unknown tables or columns."""

    error_kind = ErrorKind.SCHEMA_VALIDATION_FAILED

    def __init__(self, schema: SchemaContext | None = None, dialect: str = "postgres") -> None:
        self.schema = schema or SchemaContext()
        self.dialect = dialect

    @property
    def name(self) -> str:
        return "SchemaValidator"

    def _check_quoting(self, sql: str) -> list[str]:
        errors = []
        without_strings = STRING_LITERAL.sub("", sql)
        if "'" in without_strings:
            errors.append("Unterminated string literal")
        if '"' in QUOTED_IDENTIFIER.sub("", without_strings):
            errors.append("Unterminated quoted identifier")
        return errors

    def _check_verbs(self, sql: str) -> list[str]:
        text = QUOTED_IDENTIFIER.sub('""', strip_literals(sql))
        errors = [
            f"{description} is not allowed"
            for pattern, description in FORBIDDEN_VERBS
            if re.search(pattern, text, re.IGNORECASE)
        ]
        if not re.match(r"^\s*(\(\s*)*(SELECT|WITH)\b", text, re.IGNORECASE):
            errors.append("Only SELECT statements are allowed")
        return errors

    def _check_references(self, sql: str) -> list[str]:
        try:
            statements = [s for s in sqlglot.parse(sql, read=self.dialect) if s is not None]
        except SqlglotError:
            # Syntax problems are reported by the dry-run layer
            return []

        errors = []
        for tree in statements:
            derived = {cte.alias_or_name.lower() for cte in tree.find_all(exp.CTE)}
            has_derived_sources = bool(derived) or any(
                isinstance(s.parent, (exp.From, exp.Join)) for s in tree.find_all(exp.Subquery)
            )

            sources: dict[str, str] = {}
            referenced = []
            for table in tree.find_all(exp.Table):
                if table.name.lower() in derived or is_system_table(table):
                    continue
                canonical = self.schema.resolve_table(table.name)
                if canonical is None:
                    errors.append(f'Unknown table "{table.name}"')
                    continue
                referenced.append(canonical)
                sources[table.alias_or_name.lower()] = canonical
                sources[table.name.lower()] = canonical

            aliases = {a.alias.lower() for a in tree.find_all(exp.Alias) if a.alias}

            for column in tree.find_all(exp.Column):
                name = column.name
                if not name or name == "*" or name.lower() in aliases:
                    continue
                qualifier = column.table.lower() if column.table else ""
                if qualifier:
                    table = sources.get(qualifier)
                    if table is not None and not self.schema.has_column(table, name):
                        errors.append(f'Unknown column "{name}" on table "{table}"')
                elif referenced and not has_derived_sources:
                    if not any(self.schema.has_column(t, name) for t in referenced):
                        errors.append(f'Unknown column "{name}"')

        # Keep order, drop duplicates
        return list(dict.fromkeys(errors))

    async def validate(self, sql: str, context: ValidationContext) -> ValidationVerdict:
        if not sql or not sql.strip():
            return ValidationVerdict(layer=self.name, passed=False, errors=["Empty SQL statement"])

        errors = self._check_quoting(sql)
        if not errors:
            errors = self._check_verbs(sql) + self._check_references(sql)

        return ValidationVerdict(
            layer=self.name,
            passed=not errors,
            errors=errors,
        )
