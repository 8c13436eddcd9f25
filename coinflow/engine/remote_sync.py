"""
Background propagation of in-memory changes to the remote store.

Three pieces:

- ``ScopedWrites`` turns engine changes into ``RemoteWrite`` steps. It is the
  only place that builds filters and rows, and it always adds the owner
  column, so no write can reach another user's rows.
- ``RemoteSync`` executes a chain of steps in order and turns the first
  failure into a ``RemoteWriteFailure`` carrying the unapplied steps.
- ``BackgroundWriter`` runs chains as asyncio tasks, one at a time, in
  submission order.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Sequence

import structlog

from coinflow.audit import AuditLogger
from coinflow.engine.codec import (
    cashbook_to_row,
    named_to_row,
    transaction_patch,
    transaction_to_row,
)
from coinflow.models.ledger import Cashbook, Category, PaymentMode, Scope, Transaction
from coinflow.models.sync import RemoteWrite, RemoteWriteFailure, WriteAction
from coinflow.services.storage.interface import RemoteStoreInterface


logger = structlog.get_logger(__name__)

# Column that ties each table's rows to their owner
OWNER_COLUMNS: dict[str, str] = {
    "cashbooks": "owner_id",
    "categories": "owner_id",
    "modes": "owner_id",
    "transactions": "recorded_by_user_id",
}

# Transaction column referencing each table's ids
REFERENCE_COLUMNS: dict[str, str] = {
    "cashbooks": "cashbook_id",
    "categories": "category_id",
    "modes": "mode_id",
}


class ScopedWrites:
    """Builds owner-scoped write steps for one authenticated user."""

    def __init__(self, scope: Scope):
        if not scope.is_authenticated:
            raise ValueError("Remote writes need an authenticated scope")
        self._user_id = scope.user_id

    def scoped(self, table: str, filters: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """`filters` plus the owner filter for `table`."""
        return {**(filters or {}), OWNER_COLUMNS[table]: self._user_id}

    def select_filters(self, table: str) -> dict[str, Any]:
        return self.scoped(table)

    def remap_ids(self, table: str, pairs: Sequence[tuple[str, str]]) -> list[RemoteWrite]:
        """
        Move rows stored under non-canonical ids to their canonical ids.

        Transactions referencing a moved row are repointed in the same chain.
        """
        writes = []
        column = REFERENCE_COLUMNS.get(table)
        for old_id, new_id in pairs:
            writes.append(
                RemoteWrite(
                    table=table,
                    action=WriteAction.UPDATE,
                    patch={"id": new_id},
                    filters=self.scoped(table, {"id": old_id}),
                )
            )
            if column is not None:
                writes.append(
                    RemoteWrite(
                        table="transactions",
                        action=WriteAction.UPDATE,
                        patch={column: new_id},
                        filters=self.scoped("transactions", {column: old_id}),
                    )
                )
        return writes

    # Cashbooks

    def insert_cashbook(self, cashbook: Cashbook) -> list[RemoteWrite]:
        return [
            RemoteWrite(
                table="cashbooks",
                action=WriteAction.INSERT,
                rows=[cashbook_to_row(cashbook, self._user_id)],
            )
        ]

    def update_cashbook(self, cashbook_id: str, patch: dict[str, Any]) -> list[RemoteWrite]:
        return [
            RemoteWrite(
                table="cashbooks",
                action=WriteAction.UPDATE,
                patch=patch,
                filters=self.scoped("cashbooks", {"id": cashbook_id}),
            )
        ]

    def delete_cashbook(self, cashbook_id: str) -> list[RemoteWrite]:
        """Delete the cashbook's transactions, then the cashbook."""
        return [
            RemoteWrite(
                table="transactions",
                action=WriteAction.DELETE,
                filters=self.scoped("transactions", {"cashbook_id": cashbook_id}),
            ),
            RemoteWrite(
                table="cashbooks",
                action=WriteAction.DELETE,
                filters=self.scoped("cashbooks", {"id": cashbook_id}),
            ),
        ]

    # Categories and payment modes

    def insert_named(
        self,
        table: str,
        records: Sequence[Category | PaymentMode],
        upsert: bool = False,
    ) -> list[RemoteWrite]:
        if not records:
            return []
        owner = OWNER_COLUMNS[table]
        return [
            RemoteWrite(
                table=table,
                action=WriteAction.UPSERT if upsert else WriteAction.INSERT,
                rows=[named_to_row(r, self._user_id) for r in records],
                on_conflict=(owner, "name") if upsert else None,
            )
        ]

    def delete_named(self, table: str, record_id: str) -> list[RemoteWrite]:
        """Delete every transaction referencing the record, then the record."""
        return [
            RemoteWrite(
                table="transactions",
                action=WriteAction.DELETE,
                filters=self.scoped("transactions", {REFERENCE_COLUMNS[table]: record_id}),
            ),
            RemoteWrite(
                table=table,
                action=WriteAction.DELETE,
                filters=self.scoped(table, {"id": record_id}),
            ),
        ]

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> list[RemoteWrite]:
        return [
            RemoteWrite(
                table="transactions",
                action=WriteAction.INSERT,
                rows=[transaction_to_row(transaction, self._user_id)],
            )
        ]

    def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> list[RemoteWrite]:
        patch = transaction_patch(changes)
        if not patch:
            return []
        return [
            RemoteWrite(
                table="transactions",
                action=WriteAction.UPDATE,
                patch=patch,
                filters=self.scoped("transactions", {"id": transaction_id}),
            )
        ]

    def delete_transaction(self, transaction_id: str) -> list[RemoteWrite]:
        return [
            RemoteWrite(
                table="transactions",
                action=WriteAction.DELETE,
                filters=self.scoped("transactions", {"id": transaction_id}),
            )
        ]


class RemoteSync:
    """Executes write chains against the remote store."""

    def __init__(self, store: RemoteStoreInterface, audit_logger: AuditLogger):
        self._store = store
        self._audit = audit_logger

    @property
    def store(self) -> RemoteStoreInterface:
        return self._store

    async def apply(self, write: RemoteWrite) -> None:
        if write.action is WriteAction.INSERT:
            await self._store.insert(write.table, write.rows)
        elif write.action is WriteAction.UPSERT:
            await self._store.insert(write.table, write.rows, on_conflict=write.on_conflict)
        elif write.action is WriteAction.UPDATE:
            await self._store.update(write.table, write.patch, write.filters)
        elif write.action is WriteAction.DELETE:
            await self._store.delete(write.table, write.filters)
        else:
            raise ValueError(f"Unsupported write action: {write.action}")

    async def run_chain(
        self,
        scope_key: str,
        operation: str,
        writes: Sequence[RemoteWrite],
    ) -> Optional[RemoteWriteFailure]:
        """
        Apply `writes` in order, stopping at the first failure.

        Returns None when every write succeeded, otherwise the failure record.
        Never raises: the in-memory state has already moved on and there is
        no caller waiting for the result.
        """
        for index, write in enumerate(writes):
            try:
                await self.apply(write)
            except Exception as e:
                remaining = tuple(writes[index:])
                self._audit.log_remote_write_failed(
                    scope_key=scope_key,
                    table=write.table,
                    action=write.action.value,
                    error_message=str(e),
                    skipped=len(remaining) - 1,
                )
                return RemoteWriteFailure(
                    scope_key=scope_key,
                    operation=operation,
                    error_message=str(e),
                    pending=remaining,
                )
        return None


class BackgroundWriter:
    """
    Runs submitted jobs in the background, strictly one after another.

    With a running event loop a job starts as a task right away. Without one
    it is queued until ``drain()`` is awaited.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._queued: Deque[Callable[[], Awaitable[None]]] = deque()
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def pending(self) -> int:
        return len(self._tasks) + len(self._queued)

    def _serial_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def _run(self, job: Callable[[], Awaitable[None]]) -> None:
        async with self._serial_lock():
            await job()

    def submit(self, job: Callable[[], Awaitable[None]]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queued.append(job)
            return

        task = loop.create_task(self._run(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every submitted and queued job has finished."""
        while self._queued or self._tasks:
            if self._tasks:
                results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
                for result in results:
                    if isinstance(result, Exception):
                        logger.error("background_job_failed", error=str(result))
            while self._queued:
                job = self._queued.popleft()
                await self._run(job)
