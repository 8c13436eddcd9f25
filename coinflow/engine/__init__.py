"""
State reconciliation engine.

``CashbookContext`` is the entry point; the other modules are the pure
pieces it is built from (derivation, resolution, normalisation, seeding,
row/blob codecs) and the remote write machinery.
"""

from coinflow.engine.context import CashbookContext
from coinflow.engine.derive import calculate_balance, latest_activity, recompute
from coinflow.engine.normalize import IdNormalizer, is_canonical_id, repair_references
from coinflow.engine.remote_sync import BackgroundWriter, RemoteSync, ScopedWrites
from coinflow.engine.resolver import find_by_name, name_key, resolve_by_name
from coinflow.engine.seeding import (
    DEFAULT_CATEGORY_NAMES,
    DEFAULT_PAYMENT_MODE_NAMES,
    seed_defaults,
)
from coinflow.engine.store import LoadOutcome, SnapshotStore

__all__ = [
    "BackgroundWriter",
    "CashbookContext",
    "DEFAULT_CATEGORY_NAMES",
    "DEFAULT_PAYMENT_MODE_NAMES",
    "IdNormalizer",
    "LoadOutcome",
    "RemoteSync",
    "ScopedWrites",
    "SnapshotStore",
    "calculate_balance",
    "find_by_name",
    "is_canonical_id",
    "latest_activity",
    "name_key",
    "recompute",
    "repair_references",
    "resolve_by_name",
    "seed_defaults",
]
