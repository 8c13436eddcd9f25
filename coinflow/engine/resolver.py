"""
Find-or-create resolution for categories and payment modes.

Names are trimmed and compared case-insensitively. Resolving the same name
twice, in any casing, yields the same record and never grows the collection
on the second call.
"""

from typing import Callable, Optional, Sequence, TypeVar, Union

from coinflow.errors import ValidationError
from coinflow.models.ledger import Category, PaymentMode, ResolveResult


NamedRecord = TypeVar("NamedRecord", bound=Union[Category, PaymentMode])


def name_key(name: str) -> str:
    """Comparison key for a category or payment mode name."""
    return name.strip().casefold()


def find_by_name(records: Sequence[NamedRecord], name: str) -> Optional[NamedRecord]:
    key = name_key(name)
    return next((r for r in records if name_key(r.name) == key), None)


def resolve_by_name(
    records: Sequence[NamedRecord],
    name: Optional[str],
    factory: Callable[..., NamedRecord],
    kind: str = "category",
) -> tuple[ResolveResult, tuple[NamedRecord, ...]]:
    """
    Find a record by name or build a new one with `factory`.

    Returns the resolution and the (possibly extended) record tuple. The input
    sequence is never modified.

    Raises:
        ValidationError: If the trimmed name is empty
    """
    clean = (name or "").strip()
    if not clean:
        raise ValidationError(f"{kind.capitalize()} name cannot be empty.", field=kind)

    existing = find_by_name(records, clean)
    if existing is not None:
        return ResolveResult(id=existing.id, name=existing.name, created=False), tuple(records)

    record = factory(name=clean)
    return ResolveResult(id=record.id, name=record.name, created=True), (*records, record)
