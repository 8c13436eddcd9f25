"""
In-Memory Storage Implementations

Used for offline runs and for tests. The remote store enforces the same
uniqueness constraints as the hosted database, so duplicate-name behaviour
can be exercised without a network.
"""

import copy
from typing import Any, Optional, Sequence

from coinflow.services.storage.interface import (
    TABLE_COLUMNS,
    UNIQUE_CONSTRAINTS,
    DuplicateError,
    LocalCacheInterface,
    Order,
    RemoteStoreInterface,
    Row,
    StorageError,
    check_table,
    row_matches,
    unique_key,
)


class InMemoryRemoteStore(RemoteStoreInterface):
    """
    Dict-of-lists implementation of the remote table API.

    `fail_on` lets tests make specific (table, action) calls raise.
    """

    def __init__(self):
        self._tables: dict[str, list[Row]] = {name: [] for name in TABLE_COLUMNS}
        self.fail_on: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str, Any]] = []

    def rows(self, table: str) -> list[Row]:
        """Copy of every row in `table`."""
        return copy.deepcopy(self._tables[table])

    def _maybe_fail(self, table: str, action: str) -> None:
        if (table, action) in self.fail_on or ("*", action) in self.fail_on:
            raise StorageError(f"Simulated {action} failure on {table}")

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        order: Optional[Order] = None,
    ) -> list[Row]:
        check_table(table)
        self.calls.append((table, "select", dict(filters)))
        self._maybe_fail(table, "select")

        rows = [copy.deepcopy(r) for r in self._tables[table] if row_matches(r, filters)]
        if order:
            column, descending = order
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=descending)
        return rows

    async def insert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        check_table(table)
        self.calls.append((table, "insert", [dict(r) for r in rows]))
        self._maybe_fail(table, "insert")

        stored = []
        existing = self._tables[table]
        for row in rows:
            new_row = {col: row.get(col) for col in TABLE_COLUMNS[table]}
            conflict_key = unique_key(table, new_row, on_conflict)
            match = None
            if conflict_key is not None:
                match = next(
                    (r for r in existing if unique_key(table, r, on_conflict) == conflict_key),
                    None,
                )
            if match is not None:
                if on_conflict is None:
                    raise DuplicateError(
                        f"Duplicate {table} row for {dict(zip(UNIQUE_CONSTRAINTS[table], conflict_key))}"
                    )
                # Upsert keeps the stored identifier
                match.update({k: v for k, v in new_row.items() if k != "id" and v is not None})
                stored.append(copy.deepcopy(match))
                continue
            if any(r.get("id") == new_row.get("id") for r in existing):
                raise DuplicateError(f"Duplicate {table} id: {new_row.get('id')}")
            existing.append(new_row)
            stored.append(copy.deepcopy(new_row))
        return stored

    async def update(
        self,
        table: str,
        patch: Row,
        filters: dict[str, Any],
    ) -> list[Row]:
        check_table(table)
        self.calls.append((table, "update", dict(filters)))
        self._maybe_fail(table, "update")

        updated = []
        for row in self._tables[table]:
            if row_matches(row, filters):
                candidate = {**row, **patch}
                key = unique_key(table, candidate)
                if key is not None and any(
                    other is not row and unique_key(table, other) == key
                    for other in self._tables[table]
                ):
                    raise DuplicateError(f"Duplicate {table} row for {key}")
                row.update(patch)
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(
        self,
        table: str,
        filters: dict[str, Any],
    ) -> int:
        check_table(table)
        self.calls.append((table, "delete", dict(filters)))
        self._maybe_fail(table, "delete")

        before = len(self._tables[table])
        self._tables[table] = [r for r in self._tables[table] if not row_matches(r, filters)]
        return before - len(self._tables[table])


class InMemoryCache(LocalCacheInterface):
    """Process-local cache; contents vanish with the process."""

    def __init__(self):
        self._blobs: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    def set(self, key: str, blob: str) -> None:
        self._blobs[key] = blob
