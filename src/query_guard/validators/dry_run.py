"""
Dry-Run Validator
=================

Asks the store to plan the statement without executing it, catching
syntax and reference errors before any data is touched.
"""

import re

from query_guard.errors import ErrorKind
from query_guard.models import ValidationVerdict
from query_guard.store.base import RelationalStore, StoreQueryError
from query_guard.validators.base import ValidationContext, Validator

# (pattern, category, hint) checked in order against the store's error text
ERROR_CATEGORIES = [
    (r"syntax error|incomplete input|unrecognized token", "syntax",
     "Check the SQL syntax: keywords, commas and parentheses"),
    (r"no such column|column .* does not exist", "unknown_column",
     "Use only columns listed in the schema, double-quoted"),
    (r"no such table|relation .* does not exist", "unknown_table",
     "Use only tables listed in the schema, double-quoted"),
    (r"no such function|function .* does not exist", "unknown_function",
     "Use only standard aggregate and date functions"),
    (r"type|operator does not exist|datatype mismatch", "type",
     "Check that compared values have matching types"),
    (r"one statement at a time|multiple statements", "multiple_statements",
     "Return exactly one statement"),
]


def classify_store_error(message: str) -> tuple[str, str]:
    """Map a store error message to (category, hint)."""
    lowered = message.lower()
    for pattern, category, hint in ERROR_CATEGORIES:
        if re.search(pattern, lowered):
            return category, hint
    return "other", "Simplify the query"


class DryRunValidator(Validator):
    """Validates SQL by planning it on the store (EXPLAIN), never executing it."""

    error_kind = ErrorKind.SYNTAX_ERROR

    def __init__(self, store: RelationalStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "DryRunValidator"

    async def validate(self, sql: str, context: ValidationContext) -> ValidationVerdict:
        try:
            await self.store.explain(sql)
        except StoreQueryError as e:
            category, hint = classify_store_error(str(e))
            return ValidationVerdict(
                layer=self.name,
                passed=False,
                errors=[f"SQL {category.replace('_', ' ')} error: {e!s}. {hint}"],
                details={"error_category": category, "error_message": str(e)},
            )

        return ValidationVerdict(layer=self.name, passed=True)
