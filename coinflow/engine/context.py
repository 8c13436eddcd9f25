"""
Cashbook Context - the application's handle on the ledger.

Every mutation follows the same steps:
1. Validate the input (``ValidationError`` before anything changes)
2. Build the next snapshot from the current one
3. Recompute balances and last activity
4. Publish the snapshot
5. Queue the remote writes when a user is signed in

Remote writes are optimistic. A failed write is logged and kept as a
``RemoteWriteFailure`` for the caller to inspect, retry or clear; the
published snapshot is never rolled back.

Operations addressing an existing record by id return a ``MutationResult``
so a missing record is reported the same way for every entity kind.
"""

import asyncio
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from coinflow.audit import AuditLogger
from coinflow.constants.currencies import DEFAULT_CURRENCY
from coinflow.engine.derive import recompute
from coinflow.engine.remote_sync import BackgroundWriter, RemoteSync, ScopedWrites
from coinflow.engine.resolver import resolve_by_name
from coinflow.engine.store import LoadOutcome, SnapshotStore
from coinflow.errors import ValidationError
from coinflow.models.audit import AuditEventType
from coinflow.models.ledger import (
    Cashbook,
    CashbookUpdate,
    Category,
    MutationResult,
    PaymentMode,
    ResolveResult,
    Scope,
    Snapshot,
    Transaction,
    TransactionInput,
    TransactionUpdate,
    utcnow,
)
from coinflow.models.sync import LoadFailure, RemoteWrite, RemoteWriteFailure
from coinflow.services.identity import SessionState
from coinflow.services.storage.interface import LocalCacheInterface, RemoteStoreInterface


FailureListener = Callable[[RemoteWriteFailure], None]


def _validate(model: type[BaseModel], data: Any) -> Any:
    """Validate `data` as `model`, reporting problems as ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        message = f"{field}: {first['msg']}" if field else first["msg"]
        raise ValidationError(message, field=field) from e


class CashbookContext:
    """
    In-memory ledger for the active scope plus its mutation operations.

    Build one per session with ``create_app_components()`` (or directly in
    tests) and pass it to whatever needs the ledger.
    """

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        remote: Optional[RemoteStoreInterface] = None,
        cache: Optional[LocalCacheInterface] = None,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        self._audit = audit_logger or AuditLogger()
        self._store = SnapshotStore(
            self._audit,
            remote=remote,
            cache=cache,
            default_currency=default_currency,
        )
        self._sync = RemoteSync(remote, self._audit) if remote is not None else None
        self._writer = BackgroundWriter()
        self._failures: list[RemoteWriteFailure] = []
        self._failure_listeners: list[FailureListener] = []
        self._load_failures: list[LoadFailure] = []
        self._load_tasks: set[asyncio.Task] = set()

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def snapshot(self) -> Snapshot:
        return self._store.snapshot

    @property
    def scope(self) -> Scope:
        return self._store.snapshot.scope

    def subscribe(self, listener: Callable[[Snapshot], None]) -> Callable[[], None]:
        return self._store.subscribe(listener)

    def get_cashbook(self, cashbook_id: str) -> Optional[Cashbook]:
        return self.snapshot.get_cashbook(cashbook_id)

    def transactions_for(self, cashbook_id: str) -> list[Transaction]:
        return self.snapshot.transactions_for(cashbook_id)

    # =========================================================================
    # SESSION & LOADING
    # =========================================================================

    def bind_session(self, session: SessionState) -> Callable[[], None]:
        """
        Follow `session`: every scope change supersedes in-flight loads and,
        inside a running event loop, starts a load of the new scope.
        """
        return session.subscribe(self._on_scope_change)

    def _on_scope_change(self, scope: Scope) -> None:
        self._store.activate(scope)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.load(scope))
        self._load_tasks.add(task)
        task.add_done_callback(self._load_tasks.discard)

    async def load(self, scope: Optional[Scope] = None) -> Snapshot:
        """
        Load `scope` (default: the active scope) and return its snapshot.

        Defaults and repaired references added during the load are upserted
        remotely in the background, unless the remote read itself failed.
        Remote rows whose ids were replaced by canonical ones are rewritten
        first, so later updates and deletes address them.
        """
        scope = scope or self._store.active_scope
        outcome: LoadOutcome = await self._store.load(scope)
        if outcome.failure is not None:
            self._load_failures.append(outcome.failure)

        if outcome.published and outcome.failure is None:
            scoped = self._scoped(scope)
            if scoped is not None:
                if outcome.source == "remote":
                    remaps: list[RemoteWrite] = []
                    for table, pairs in outcome.remapped_ids.items():
                        remaps += scoped.remap_ids(table, pairs)
                    self._dispatch(scope, "remap_ids", remaps)
                writes = scoped.insert_named("categories", outcome.new_categories, upsert=True)
                writes += scoped.insert_named("modes", outcome.new_modes, upsert=True)
                self._dispatch(scope, "seed_defaults", writes)
        return outcome.snapshot

    @property
    def load_failures(self) -> list[LoadFailure]:
        return list(self._load_failures)

    # =========================================================================
    # REMOTE WRITE FAILURES
    # =========================================================================

    @property
    def pending_failures(self) -> list[RemoteWriteFailure]:
        """Remote writes that failed and have not been retried or cleared."""
        return list(self._failures)

    def subscribe_failures(self, listener: FailureListener) -> Callable[[], None]:
        """Call `listener` with every new ``RemoteWriteFailure``."""
        self._failure_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._failure_listeners:
                self._failure_listeners.remove(listener)

        return unsubscribe

    def clear_failures(self) -> None:
        self._failures.clear()

    async def retry_failed_writes(self) -> list[RemoteWriteFailure]:
        """
        Replay every pending failure from its failed write onwards.

        Returns the failures that failed again; they replace the retried ones
        in ``pending_failures``.
        """
        await self.drain()
        if self._sync is None:
            return []

        retrying, self._failures = self._failures, []
        still_failing = []
        for failure in retrying:
            result = await self._sync.run_chain(failure.scope_key, failure.operation, failure.pending)
            self._audit.log_remote_write_retried(failure.scope_key, failure.failure_id, result is None)
            if result is not None:
                still_failing.append(result)
                self._record_failure(result)
        return still_failing

    def _record_failure(self, failure: RemoteWriteFailure) -> None:
        self._failures.append(failure)
        for listener in list(self._failure_listeners):
            try:
                listener(failure)
            except Exception as e:
                self._audit.log_subscriber_failed(str(e), channel="failure")

    async def drain(self) -> None:
        """Wait for in-flight loads and every queued remote write."""
        while self._load_tasks:
            await asyncio.gather(*list(self._load_tasks))
        await self._writer.drain()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _scoped(self, scope: Scope) -> Optional[ScopedWrites]:
        if self._sync is None or not scope.is_authenticated:
            return None
        return ScopedWrites(scope)

    def _dispatch(self, scope: Scope, operation: str, writes: list[RemoteWrite]) -> None:
        if not writes or self._sync is None or not scope.is_authenticated:
            return
        sync = self._sync

        async def job() -> None:
            failure = await sync.run_chain(scope.key, operation, writes)
            if failure is not None:
                self._record_failure(failure)

        self._writer.submit(job)

    def _commit(self, snapshot: Snapshot) -> Snapshot:
        snapshot = recompute(snapshot)
        self._store.publish(snapshot)
        return snapshot

    def _log(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        self._audit.log_change(
            event_type=event_type,
            scope_key=self.scope.key,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details,
        )

    def _not_found(self, entity: str, entity_id: str, operation: str) -> MutationResult:
        self._audit.log_not_found(self.scope.key, entity, entity_id, operation)
        return MutationResult.not_found(entity, entity_id)

    def _check_cashbook_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        for cashbook in self.snapshot.cashbooks:
            if cashbook.id != exclude_id and cashbook.name == name:
                raise ValidationError(f"A cashbook named '{name}' already exists.", field="name")

    # =========================================================================
    # CASHBOOKS
    # =========================================================================

    def create_cashbook(self, name: str, currency: Optional[str] = None) -> Cashbook:
        """
        Create an empty cashbook.

        Raises:
            ValidationError: If the name is empty or already used in this scope
        """
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Cashbook name cannot be empty.", field="name")
        self._check_cashbook_name(clean)

        snap = self.snapshot
        cashbook = _validate(
            Cashbook,
            {"name": clean, "currency": (currency or "").strip() or snap.primary_currency},
        )
        self._commit(snap.model_copy(update={"cashbooks": (*snap.cashbooks, cashbook)}))
        self._log(
            AuditEventType.CASHBOOK_CREATED,
            "cashbook",
            cashbook.id,
            f"Created cashbook '{cashbook.name}'",
            {"currency": cashbook.currency},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            self._dispatch(snap.scope, "create_cashbook", scoped.insert_cashbook(cashbook))
        return cashbook

    def update_cashbook(
        self,
        cashbook_id: str,
        changes: Union[CashbookUpdate, dict],
    ) -> MutationResult[Cashbook]:
        """Rename a cashbook or change its currency. Unrecognised fields are ignored."""
        update: CashbookUpdate = _validate(CashbookUpdate, changes)
        snap = self.snapshot
        cashbook = snap.get_cashbook(cashbook_id)
        if cashbook is None:
            return self._not_found("Cashbook", cashbook_id, "update_cashbook")

        patch = {
            field: value
            for field, value in update.model_dump(exclude_none=True).items()
            if getattr(cashbook, field) != value
        }
        if not patch:
            return MutationResult.found("Cashbook", cashbook, changed=False)
        if "name" in patch:
            self._check_cashbook_name(patch["name"], exclude_id=cashbook_id)

        updated = cashbook.model_copy(update={**patch, "updated_at": utcnow()})
        self._commit(
            snap.model_copy(
                update={
                    "cashbooks": tuple(
                        updated if c.id == cashbook_id else c for c in snap.cashbooks
                    )
                }
            )
        )
        self._log(
            AuditEventType.CASHBOOK_UPDATED,
            "cashbook",
            cashbook_id,
            f"Updated cashbook '{updated.name}'",
            {"fields": sorted(patch)},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            row_patch = {**patch, "updated_at": updated.updated_at.isoformat()}
            self._dispatch(snap.scope, "update_cashbook", scoped.update_cashbook(cashbook_id, row_patch))
        # Derived fields are not part of an update; hand back the published record
        return MutationResult.found("Cashbook", self.snapshot.get_cashbook(cashbook_id))

    def delete_cashbook(self, cashbook_id: str) -> MutationResult[Cashbook]:
        """Delete a cashbook together with all of its transactions."""
        snap = self.snapshot
        cashbook = snap.get_cashbook(cashbook_id)
        if cashbook is None:
            return self._not_found("Cashbook", cashbook_id, "delete_cashbook")

        remaining = tuple(t for t in snap.transactions if t.cashbook_id != cashbook_id)
        self._commit(
            snap.model_copy(
                update={
                    "cashbooks": tuple(c for c in snap.cashbooks if c.id != cashbook_id),
                    "transactions": remaining,
                }
            )
        )
        self._log(
            AuditEventType.CASHBOOK_DELETED,
            "cashbook",
            cashbook_id,
            f"Deleted cashbook '{cashbook.name}'",
            {"transactions_removed": len(snap.transactions) - len(remaining)},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            self._dispatch(snap.scope, "delete_cashbook", scoped.delete_cashbook(cashbook_id))
        return MutationResult.found("Cashbook", cashbook)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def add_transaction(
        self,
        cashbook_id: str,
        data: Union[TransactionInput, dict],
    ) -> Transaction:
        """
        Record a transaction in a cashbook.

        The category and mode names are resolved (or created) before the
        transaction is built. Remotely, new categories and modes are written
        first; if one of those writes fails the transaction write is skipped
        and kept on the failure.

        Raises:
            ValidationError: If the input is invalid or the cashbook does not exist
        """
        tx_input: TransactionInput = _validate(TransactionInput, data)
        snap = self.snapshot
        if snap.get_cashbook(cashbook_id) is None:
            raise ValidationError(f"Cashbook not found: {cashbook_id}", field="cashbook_id")

        category, categories = resolve_by_name(snap.categories, tx_input.category, Category, "category")
        mode, modes = resolve_by_name(snap.payment_modes, tx_input.mode, PaymentMode, "payment mode")

        transaction = Transaction(
            cashbook_id=cashbook_id,
            type=tx_input.type,
            amount=tx_input.amount,
            description=tx_input.description,
            category_id=category.id,
            category=category.name,
            mode_id=mode.id,
            mode=mode.name,
            date=tx_input.date,
        )
        self._commit(
            snap.model_copy(
                update={
                    "transactions": (*snap.transactions, transaction),
                    "categories": categories,
                    "payment_modes": modes,
                }
            )
        )
        self._log(
            AuditEventType.TRANSACTION_ADDED,
            "transaction",
            transaction.id,
            f"{transaction.type.label} of {transaction.amount} added",
            {
                "cashbook_id": cashbook_id,
                "category_created": category.created,
                "mode_created": mode.created,
            },
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            writes = self._created_writes(scoped, category, mode)
            writes += scoped.insert_transaction(transaction)
            self._dispatch(snap.scope, "add_transaction", writes)
        return transaction

    def update_transaction(
        self,
        transaction_id: str,
        changes: Union[TransactionUpdate, dict],
    ) -> MutationResult[Transaction]:
        """
        Apply a partial update to a transaction.

        Moving a transaction to another cashbook recomputes both cashbooks.

        Raises:
            ValidationError: If a field is invalid, the target cashbook does
                not exist, or a category/mode name is blank
        """
        update: TransactionUpdate = _validate(TransactionUpdate, changes)
        snap = self.snapshot
        current = snap.get_transaction(transaction_id)
        if current is None:
            return self._not_found("Transaction", transaction_id, "update_transaction")

        fields = update.model_dump(exclude_none=True)
        if "cashbook_id" in fields and snap.get_cashbook(fields["cashbook_id"]) is None:
            raise ValidationError(
                f"Cashbook not found: {fields['cashbook_id']}", field="cashbook_id"
            )

        categories, modes = snap.categories, snap.payment_modes
        category = mode = None
        if "category" in fields:
            category, categories = resolve_by_name(categories, fields.pop("category"), Category, "category")
            fields.update(category_id=category.id, category=category.name)
        if "mode" in fields:
            mode, modes = resolve_by_name(modes, fields.pop("mode"), PaymentMode, "payment mode")
            fields.update(mode_id=mode.id, mode=mode.name)

        patch = {k: v for k, v in fields.items() if getattr(current, k) != v}
        created = (category is not None and category.created) or (mode is not None and mode.created)
        if not patch and not created:
            return MutationResult.found("Transaction", current, changed=False)

        updated = current.model_copy(update=patch)
        self._commit(
            snap.model_copy(
                update={
                    "transactions": tuple(
                        updated if t.id == transaction_id else t for t in snap.transactions
                    ),
                    "categories": categories,
                    "payment_modes": modes,
                }
            )
        )
        self._log(
            AuditEventType.TRANSACTION_UPDATED,
            "transaction",
            transaction_id,
            "Transaction updated",
            {"fields": sorted(patch)},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            writes = self._created_writes(scoped, category, mode)
            writes += scoped.update_transaction(transaction_id, patch)
            self._dispatch(snap.scope, "update_transaction", writes)
        return MutationResult.found("Transaction", updated)

    def delete_transaction(self, transaction_id: str) -> MutationResult[Transaction]:
        snap = self.snapshot
        transaction = snap.get_transaction(transaction_id)
        if transaction is None:
            return self._not_found("Transaction", transaction_id, "delete_transaction")

        self._commit(
            snap.model_copy(
                update={
                    "transactions": tuple(t for t in snap.transactions if t.id != transaction_id)
                }
            )
        )
        self._log(
            AuditEventType.TRANSACTION_DELETED,
            "transaction",
            transaction_id,
            "Transaction deleted",
            {"cashbook_id": transaction.cashbook_id},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            self._dispatch(snap.scope, "delete_transaction", scoped.delete_transaction(transaction_id))
        return MutationResult.found("Transaction", transaction)

    @staticmethod
    def _created_writes(
        scoped: ScopedWrites,
        category: Optional[ResolveResult],
        mode: Optional[ResolveResult],
    ) -> list[RemoteWrite]:
        writes: list[RemoteWrite] = []
        if category is not None and category.created:
            writes += scoped.insert_named("categories", [Category(id=category.id, name=category.name)])
        if mode is not None and mode.created:
            writes += scoped.insert_named("modes", [PaymentMode(id=mode.id, name=mode.name)])
        return writes

    # =========================================================================
    # CATEGORIES & PAYMENT MODES
    # =========================================================================

    def add_category(self, name: str) -> ResolveResult:
        """Find a category by name (case-insensitive) or create it."""
        snap = self.snapshot
        result, categories = resolve_by_name(snap.categories, name, Category, "category")
        if result.created:
            self._commit(snap.model_copy(update={"categories": categories}))
            self._log(AuditEventType.CATEGORY_ADDED, "category", result.id, f"Added category '{result.name}'")
            scoped = self._scoped(snap.scope)
            if scoped is not None:
                self._dispatch(snap.scope, "add_category", self._created_writes(scoped, result, None))
        return result

    def add_payment_mode(self, name: str) -> ResolveResult:
        """Find a payment mode by name (case-insensitive) or create it."""
        snap = self.snapshot
        result, modes = resolve_by_name(snap.payment_modes, name, PaymentMode, "payment mode")
        if result.created:
            self._commit(snap.model_copy(update={"payment_modes": modes}))
            self._log(
                AuditEventType.PAYMENT_MODE_ADDED, "payment_mode", result.id, f"Added payment mode '{result.name}'"
            )
            scoped = self._scoped(snap.scope)
            if scoped is not None:
                self._dispatch(snap.scope, "add_payment_mode", self._created_writes(scoped, None, result))
        return result

    def remove_category(self, category_id: str) -> MutationResult[Category]:
        """
        Remove a category and every transaction that references it.

        The transactions are deleted, not reassigned.
        """
        snap = self.snapshot
        category = next((c for c in snap.categories if c.id == category_id), None)
        if category is None:
            return self._not_found("Category", category_id, "remove_category")

        remaining = tuple(t for t in snap.transactions if t.category_id != category_id)
        self._commit(
            snap.model_copy(
                update={
                    "categories": tuple(c for c in snap.categories if c.id != category_id),
                    "transactions": remaining,
                }
            )
        )
        self._log(
            AuditEventType.CATEGORY_REMOVED,
            "category",
            category_id,
            f"Removed category '{category.name}'",
            {"transactions_removed": len(snap.transactions) - len(remaining)},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            self._dispatch(snap.scope, "remove_category", scoped.delete_named("categories", category_id))
        return MutationResult.found("Category", category)

    def remove_payment_mode(self, mode_id: str) -> MutationResult[PaymentMode]:
        """Remove a payment mode and every transaction that references it."""
        snap = self.snapshot
        mode = next((m for m in snap.payment_modes if m.id == mode_id), None)
        if mode is None:
            return self._not_found("PaymentMode", mode_id, "remove_payment_mode")

        remaining = tuple(t for t in snap.transactions if t.mode_id != mode_id)
        self._commit(
            snap.model_copy(
                update={
                    "payment_modes": tuple(m for m in snap.payment_modes if m.id != mode_id),
                    "transactions": remaining,
                }
            )
        )
        self._log(
            AuditEventType.PAYMENT_MODE_REMOVED,
            "payment_mode",
            mode_id,
            f"Removed payment mode '{mode.name}'",
            {"transactions_removed": len(snap.transactions) - len(remaining)},
        )

        scoped = self._scoped(snap.scope)
        if scoped is not None:
            self._dispatch(snap.scope, "remove_payment_mode", scoped.delete_named("modes", mode_id))
        return MutationResult.found("PaymentMode", mode)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def set_primary_currency(self, currency: str) -> Snapshot:
        """Set the workspace currency used as the default for new cashbooks."""
        code = (currency or "").strip().upper()
        if not code:
            raise ValidationError("Currency code cannot be empty.", field="currency")
        snap = self.snapshot
        if code == snap.primary_currency:
            return snap
        return self._commit(snap.model_copy(update={"primary_currency": code}))
