"""
Base Store Interface
====================

Contract for the relational store the engine executes against.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class StoreQueryError(Exception):
    """
    The store rejected a statement (syntax, unknown relation or column, type error).

    Anything else a store raises, such as a lost connection, is treated as an
    unexpected fault and propagates.
    """


class RelationalStore(ABC):
    """Abstract interface for a read-only relational store client."""

    @abstractmethod
    async def execute(
        self, sql: str, params: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        """
        Execute a statement and return its rows.

        Args:
            sql: Statement to run
            params: Named parameters referenced as :name

        Returns:
            List of rows as column/value dictionaries
        """
        pass

    @abstractmethod
    async def explain(self, sql: str) -> None:
        """
        Ask the store to plan a statement without executing it.

        Raises:
            StoreQueryError: If the statement cannot be planned
        """
        pass
