"""
Snapshot store.

Holds the published snapshot for the active scope, loads scopes from the
remote store or the local cache, and notifies subscribers on every publish.

DESIGN DECISION: Each load is tagged with a generation number. Activating a
scope (sign-in, sign-out, or a newer load) bumps the generation, and a load
that finishes under an older generation is discarded instead of published.
This keeps a slow load for one user from overwriting another user's view.
"""

from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from coinflow.audit import AuditLogger
from coinflow.constants.currencies import DEFAULT_CURRENCY
from coinflow.engine.codec import snapshot_from_blob, snapshot_from_rows, snapshot_to_blob
from coinflow.engine.derive import recompute
from coinflow.engine.normalize import IdNormalizer, repair_references
from coinflow.engine.remote_sync import ScopedWrites
from coinflow.engine.seeding import seed_defaults
from coinflow.models.ledger import Category, PaymentMode, Scope, Snapshot
from coinflow.models.sync import LoadFailure
from coinflow.services.storage.interface import (
    LocalCacheInterface,
    RemoteStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[Snapshot], None]


def _replaced(before, after) -> tuple[tuple[str, str], ...]:
    """(old id, new id) pairs for records whose id changed; blank ids have no row to address."""
    return tuple(
        (old.id, new.id) for old, new in zip(before, after) if old.id and old.id != new.id
    )


class LoadOutcome(BaseModel):
    """
    Result of one ``SnapshotStore.load`` call.

    ``new_categories`` and ``new_modes`` are records the load added on top of
    what the source held (default seeding and reference repair); the caller
    propagates them to the remote store. ``remapped_ids`` lists, per table,
    the ``(source id, canonical id)`` pairs the load replaced, so rows read
    from the remote store can be rewritten under their new ids.
    """
    model_config = ConfigDict(frozen=True)

    snapshot: Snapshot
    source: str
    published: bool
    failure: Optional[LoadFailure] = None
    new_categories: tuple[Category, ...] = ()
    new_modes: tuple[PaymentMode, ...] = ()
    remapped_ids: dict[str, tuple[tuple[str, str], ...]] = Field(default_factory=dict)


class SnapshotStore:
    """Current snapshot, its subscribers, and scope loading."""

    def __init__(
        self,
        audit_logger: AuditLogger,
        remote: Optional[RemoteStoreInterface] = None,
        cache: Optional[LocalCacheInterface] = None,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        self._audit = audit_logger
        self._remote = remote
        self._cache = cache
        self._default_currency = default_currency
        self._snapshot = Snapshot(primary_currency=default_currency)
        self._active_scope = self._snapshot.scope
        self._generation = 0
        self._subscribers: list[SnapshotListener] = []
        self._normalizers: dict[str, IdNormalizer] = {}

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def active_scope(self) -> Scope:
        return self._active_scope

    @property
    def remote(self) -> Optional[RemoteStoreInterface]:
        return self._remote

    @property
    def cache(self) -> Optional[LocalCacheInterface]:
        return self._cache

    def empty_snapshot(self, scope: Scope) -> Snapshot:
        return Snapshot(scope=scope, primary_currency=self._default_currency)

    # =========================================================================
    # PUBLICATION
    # =========================================================================

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register `listener` for every published snapshot; returns an unsubscribe function."""
        self._subscribers.append(listener)

        def unsubscribe() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return unsubscribe

    def publish(self, snapshot: Snapshot, persist: bool = True) -> None:
        """
        Make `snapshot` current, mirror it to the cache and notify subscribers.

        Cache and subscriber failures are logged; they never undo the publish.
        """
        self._snapshot = snapshot

        if persist and self._cache is not None:
            try:
                self._cache.set(snapshot.scope.key, snapshot_to_blob(snapshot))
            except StorageError as e:
                self._audit.log_cache_write_failed(snapshot.scope.key, str(e))

        for listener in list(self._subscribers):
            try:
                listener(snapshot)
            except Exception as e:
                self._audit.log_subscriber_failed(str(e), channel="snapshot")

    def activate(self, scope: Scope) -> int:
        """
        Make `scope` the active scope and invalidate in-flight loads.

        When the scope differs from the current snapshot's, an empty snapshot
        for the new scope is published (without touching the cache) so no
        data from the previous scope stays visible.

        Returns:
            The generation a load for `scope` must still hold to publish
        """
        self._generation += 1
        self._active_scope = scope
        if self._snapshot.scope != scope:
            self.publish(self.empty_snapshot(scope), persist=False)
        return self._generation

    def normalizer_for(self, scope: Scope) -> IdNormalizer:
        if scope.key not in self._normalizers:
            self._normalizers[scope.key] = IdNormalizer()
        return self._normalizers[scope.key]

    # =========================================================================
    # LOADING
    # =========================================================================

    async def load(self, scope: Scope) -> LoadOutcome:
        """
        Load `scope` from its authoritative source and publish it.

        Signed-in scopes read the remote store, anonymous scopes the local
        cache. A failed read is recorded on the outcome and replaced by an
        empty snapshot, which then receives the default categories and modes.
        That fallback is published but not written to the cache, so a read
        that failed never destroys the stored data.
        """
        generation = self.activate(scope)
        use_remote = scope.is_authenticated and self._remote is not None
        source = "remote" if use_remote else "cache"
        failure: Optional[LoadFailure] = None

        try:
            if use_remote:
                raw = await self._read_remote(scope)
            else:
                raw = self._read_cache(scope)
        except (StorageError, ValueError, KeyError) as e:
            failure = LoadFailure(scope_key=scope.key, source=source, error_message=str(e))
            self._audit.log_load_failed(scope.key, source, str(e))
            raw = None

        if raw is None:
            raw = self.empty_snapshot(scope)
            if failure is None:
                source = "empty"

        snapshot, new_categories, new_modes, remapped_ids = self.prepare(raw)

        if generation != self._generation:
            self._audit.log_stale_load(scope.key, self._active_scope.key)
            return LoadOutcome(snapshot=snapshot, source=source, published=False, failure=failure)

        # A fallback after a failed read must not replace what the cache holds
        self.publish(snapshot, persist=failure is None)
        self._audit.log_snapshot_loaded(
            scope.key,
            source,
            {
                "cashbooks": len(snapshot.cashbooks),
                "transactions": len(snapshot.transactions),
                "categories": len(snapshot.categories),
                "payment_modes": len(snapshot.payment_modes),
            },
        )
        return LoadOutcome(
            snapshot=snapshot,
            source=source,
            published=True,
            failure=failure,
            new_categories=new_categories,
            new_modes=new_modes,
            remapped_ids=remapped_ids,
        )

    def prepare(
        self,
        raw: Snapshot,
    ) -> tuple[
        Snapshot,
        tuple[Category, ...],
        tuple[PaymentMode, ...],
        dict[str, tuple[tuple[str, str], ...]],
    ]:
        """
        Normalise ids, seed defaults, repair references and recompute.

        Returns the ready snapshot, the categories and modes it gained, and
        the replaced record ids per table.
        """
        scope_key = raw.scope.key
        snapshot, remapped = self.normalizer_for(raw.scope).normalize(raw)
        remapped_ids = {
            table: pairs
            for table, pairs in (
                ("cashbooks", _replaced(raw.cashbooks, snapshot.cashbooks)),
                ("categories", _replaced(raw.categories, snapshot.categories)),
                ("modes", _replaced(raw.payment_modes, snapshot.payment_modes)),
                ("transactions", _replaced(raw.transactions, snapshot.transactions)),
            )
            if pairs
        }
        if remapped:
            self._audit.log_ids_remapped(scope_key, remapped)
        known_categories = {c.id for c in snapshot.categories}
        known_modes = {m.id for m in snapshot.payment_modes}

        snapshot, seeded_categories, seeded_modes = seed_defaults(snapshot)
        if seeded_categories or seeded_modes:
            self._audit.log_defaults_seeded(
                scope_key,
                [c.name for c in seeded_categories],
                [m.name for m in seeded_modes],
            )

        snapshot, dropped = repair_references(snapshot)
        if dropped:
            logger.warning("orphan_transactions_dropped", scope_key=scope_key, count=dropped)

        new_categories = tuple(c for c in snapshot.categories if c.id not in known_categories)
        new_modes = tuple(m for m in snapshot.payment_modes if m.id not in known_modes)
        return recompute(snapshot), new_categories, new_modes, remapped_ids

    async def _read_remote(self, scope: Scope) -> Snapshot:
        scoped = ScopedWrites(scope)
        cashbooks = await self._remote.select(
            "cashbooks", scoped.select_filters("cashbooks"), order=("created_at", False)
        )
        categories = await self._remote.select("categories", scoped.select_filters("categories"))
        modes = await self._remote.select("modes", scoped.select_filters("modes"))
        transactions = await self._remote.select(
            "transactions",
            scoped.select_filters("transactions"),
            order=("transaction_datetime", True),
        )
        return snapshot_from_rows(
            scope, cashbooks, categories, modes, transactions, self._default_currency
        )

    def _read_cache(self, scope: Scope) -> Optional[Snapshot]:
        if self._cache is None:
            return None
        blob = self._cache.get(scope.key)
        if blob is None:
            return None
        return snapshot_from_blob(blob, scope, self._default_currency)
