"""
Identifier normalisation and reference repair.

Records loaded from older caches may carry short local ids such as
``"cat-1"``. Every id that is not a canonical UUID is replaced by a generated
UUID; the ``IdNormalizer`` remembers each replacement so that the same source
value maps to the same UUID wherever it appears (a cashbook's id and a
transaction's ``cashbook_id``, a category's id and ``category_id``).
"""

import re
from typing import Optional

from coinflow.engine.resolver import find_by_name, resolve_by_name
from coinflow.models.ledger import Category, PaymentMode, Snapshot, Transaction, new_id


_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

UNCATEGORIZED = "Uncategorized"
UNSPECIFIED_MODE = "Unspecified"


def is_canonical_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_UUID_RE.match(value))


class IdNormalizer:
    """
    Scope-local mapping from non-canonical ids to generated UUIDs.

    One instance must be kept per scope for as long as that scope is loaded.
    """

    def __init__(self):
        self._mapping: dict[str, str] = {}

    @property
    def mapping(self) -> dict[str, str]:
        return dict(self._mapping)

    def canonical(self, value: Optional[str]) -> str:
        """Canonical id for `value`; missing values get a fresh id each time."""
        if not value:
            return new_id()
        if is_canonical_id(value):
            return value.lower()
        if value not in self._mapping:
            self._mapping[value] = new_id()
        return self._mapping[value]

    def normalize(self, snapshot: Snapshot) -> tuple[Snapshot, int]:
        """
        Rewrite every id and id reference in `snapshot`.

        Returns the new snapshot and how many record ids were replaced.
        """
        remapped = 0

        def fix(value: Optional[str]) -> str:
            nonlocal remapped
            if not is_canonical_id(value):
                remapped += 1
            return self.canonical(value)

        cashbooks = tuple(c.model_copy(update={"id": fix(c.id)}) for c in snapshot.cashbooks)
        categories = tuple(c.model_copy(update={"id": fix(c.id)}) for c in snapshot.categories)
        modes = tuple(m.model_copy(update={"id": fix(m.id)}) for m in snapshot.payment_modes)
        transactions = tuple(
            t.model_copy(
                update={
                    "id": fix(t.id),
                    "cashbook_id": self.canonical(t.cashbook_id) if t.cashbook_id else "",
                    "category_id": self.canonical(t.category_id) if t.category_id else "",
                    "mode_id": self.canonical(t.mode_id) if t.mode_id else "",
                }
            )
            for t in snapshot.transactions
        )

        normalized = snapshot.model_copy(
            update={
                "cashbooks": cashbooks,
                "categories": categories,
                "payment_modes": modes,
                "transactions": transactions,
            }
        )
        return normalized, remapped


def repair_references(snapshot: Snapshot) -> tuple[Snapshot, int]:
    """
    Make every transaction point at live records.

    - Transactions whose cashbook is missing are dropped
    - A category or mode id that matches nothing is resolved by the stored
      name, creating the record when needed
    - Stored names are refreshed from the referenced records

    Returns the repaired snapshot and the number of dropped transactions.
    """
    cashbook_ids = {c.id for c in snapshot.cashbooks}
    categories: tuple[Category, ...] = snapshot.categories
    modes: tuple[PaymentMode, ...] = snapshot.payment_modes

    kept: list[Transaction] = []
    dropped = 0
    for t in snapshot.transactions:
        if t.cashbook_id not in cashbook_ids:
            dropped += 1
            continue

        category = next((c for c in categories if c.id == t.category_id), None)
        if category is None:
            resolved, categories = resolve_by_name(
                categories, t.category or UNCATEGORIZED, Category, kind="category"
            )
            category = find_by_name(categories, resolved.name)

        mode = next((m for m in modes if m.id == t.mode_id), None)
        if mode is None:
            resolved, modes = resolve_by_name(
                modes, t.mode or UNSPECIFIED_MODE, PaymentMode, kind="payment mode"
            )
            mode = find_by_name(modes, resolved.name)

        if (t.category_id, t.category, t.mode_id, t.mode) != (
            category.id, category.name, mode.id, mode.name
        ):
            t = t.model_copy(
                update={
                    "category_id": category.id,
                    "category": category.name,
                    "mode_id": mode.id,
                    "mode": mode.name,
                }
            )
        kept.append(t)

    repaired = snapshot.model_copy(
        update={
            "transactions": tuple(kept),
            "categories": categories,
            "payment_modes": modes,
        }
    )
    return repaired, dropped
