"""
Remote store abstract interface.

The sync engine talks to the shared store through this contract only.
Rows are plain dicts keyed by column name; the store assigns ids and
maintains ``created_at`` / ``updated_at``.
"""

from abc import ABC, abstractmethod
from typing import Any

# Equality filters; a list/tuple/set value means "column IN values"
Filters = dict[str, Any]


class RemoteStore(ABC):
    """Abstract table-oriented remote store.

    All methods raise RemoteError on network or API failure.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        since: str | None = None,
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows matching filters.

        Args:
            table: Table name
            filters: Equality / membership filters
            since: Only rows with ``updated_at >= since``
            columns: Column list in PostgREST select syntax
            limit: Maximum number of rows
        """
        ...

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored (with its assigned id)."""
        ...

    @abstractmethod
    async def update(
        self, table: str, row_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Update a row by id. Returns the stored row, or None if it is gone."""
        ...

    @abstractmethod
    async def upsert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert or update a row by id and return it as stored."""
        ...

    @abstractmethod
    async def delete(self, table: str, filters: Filters) -> None:
        """Delete rows matching filters. Empty filters are rejected."""
        ...

    async def close(self) -> None:
        """Release resources. Default: nothing to release."""
        return None
