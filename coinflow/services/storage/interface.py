"""
Abstract Storage Interfaces

DESIGN DECISION: The engine talks to two kinds of storage through small
interfaces:
1. A remote relational store holding the per-owner tables (authoritative for
   signed-in users)
2. A local key-value cache holding one serialized snapshot per scope
   (authoritative for anonymous use)

The remote interface is a generic table API (select / insert / update /
delete with equality filters), not a per-entity repository. Ownership
filtering is the caller's job; implementations apply exactly the filters they
are given.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence


# Logical table names and their columns
TABLE_COLUMNS: dict[str, list[str]] = {
    "profiles": ["id", "user_id", "email", "created_at", "updated_at"],
    "cashbooks": ["id", "name", "currency", "owner_id", "created_at", "updated_at"],
    "categories": ["id", "name", "owner_id", "created_at", "updated_at"],
    "modes": ["id", "name", "owner_id", "created_at", "updated_at"],
    "transactions": [
        "id",
        "cashbook_id",
        "type",
        "amount",
        "description",
        "category_id",
        "mode_id",
        "transaction_datetime",
        "recorded_by_user_id",
        "created_at",
        "updated_at",
    ],
}

# (owner column, name column) uniqueness enforced per table
UNIQUE_CONSTRAINTS: dict[str, tuple[str, ...]] = {
    "profiles": ("user_id",),
    "cashbooks": ("owner_id", "name"),
    "categories": ("owner_id", "name"),
    "modes": ("owner_id", "name"),
}

Row = dict[str, Any]
Order = tuple[str, bool]  # (column, descending)


class RemoteStoreInterface(ABC):
    """
    Abstract interface for the remote relational store.

    Every method raises a ``StorageError`` subclass on failure.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        order: Optional[Order] = None,
    ) -> list[Row]:
        """
        Return rows of `table` whose columns equal every filter value.

        Args:
            table: Logical table name
            filters: Column equality filters
            order: Optional (column, descending) sort

        Returns:
            List of matching rows
        """
        pass

    @abstractmethod
    async def insert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        """
        Insert rows.

        Args:
            table: Logical table name
            rows: Rows to insert
            on_conflict: When given, rows whose values for these columns
                match an existing row update that row instead (upsert)

        Returns:
            The stored rows

        Raises:
            DuplicateError: If a uniqueness constraint is violated
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        patch: Row,
        filters: dict[str, Any],
    ) -> list[Row]:
        """
        Apply `patch` to every row matching `filters`.

        Returns:
            The updated rows (empty when nothing matched)
        """
        pass

    @abstractmethod
    async def delete(
        self,
        table: str,
        filters: dict[str, Any],
    ) -> int:
        """
        Delete every row matching `filters`.

        Returns:
            Number of rows deleted
        """
        pass


class LocalCacheInterface(ABC):
    """
    Abstract interface for the local durable cache.

    Blobs are opaque strings keyed by scope key.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the blob stored under `key`, or None."""
        pass

    @abstractmethod
    def set(self, key: str, blob: str) -> None:
        """Store `blob` under `key`, replacing any previous value."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Table or entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a row violating a uniqueness constraint."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def unique_key(table: str, row: Row, columns: Optional[Sequence[str]] = None) -> Optional[tuple]:
    """Key used to detect uniqueness conflicts, or None when `table` has none."""
    cols = tuple(columns) if columns else UNIQUE_CONSTRAINTS.get(table)
    if not cols:
        return None
    return tuple(row.get(c) for c in cols)


def row_matches(row: Row, filters: dict[str, Any]) -> bool:
    """True when every filter column equals the row's value (compared as text)."""
    return all(str(row.get(col)) == str(value) for col, value in filters.items())


def check_table(table: str) -> None:
    if table not in TABLE_COLUMNS:
        raise NotFoundError(f"Unknown table: {table}")
