"""
Conversions between engine records and storage shapes.

Remote rows follow the table layout in ``TABLE_COLUMNS``: decimals and
timestamps are text, ownership columns are stamped from the scope. Cache
blobs are the JSON form of ``CachedState``.
"""

import json
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from coinflow.models.ledger import (
    CachedState,
    Cashbook,
    Category,
    PaymentMode,
    Snapshot,
    Scope,
    Transaction,
    TransactionType,
)
from coinflow.services.storage.interface import Row


logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# REMOTE ROWS
# =============================================================================

def cashbook_to_row(cashbook: Cashbook, owner_id: str) -> Row:
    return {
        "id": cashbook.id,
        "name": cashbook.name,
        "currency": cashbook.currency,
        "owner_id": owner_id,
        "created_at": _iso(cashbook.created_at),
        "updated_at": _iso(cashbook.updated_at),
    }


def named_to_row(record: Category | PaymentMode, owner_id: str) -> Row:
    return {
        "id": record.id,
        "name": record.name,
        "owner_id": owner_id,
    }


def transaction_to_row(transaction: Transaction, user_id: str) -> Row:
    return {
        "id": transaction.id,
        "cashbook_id": transaction.cashbook_id,
        "type": transaction.type.value,
        "amount": str(transaction.amount),
        "description": transaction.description,
        "category_id": transaction.category_id,
        "mode_id": transaction.mode_id,
        "transaction_datetime": _iso(transaction.date),
        "recorded_by_user_id": user_id,
    }


def transaction_patch(changes: dict[str, Any]) -> Row:
    """Translate changed Transaction fields into a row patch."""
    columns = {
        "cashbook_id": "cashbook_id",
        "type": "type",
        "amount": "amount",
        "description": "description",
        "category_id": "category_id",
        "mode_id": "mode_id",
        "date": "transaction_datetime",
    }
    patch: Row = {}
    for field, value in changes.items():
        column = columns.get(field)
        if column is None:
            continue
        if isinstance(value, TransactionType):
            value = value.value
        elif isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        patch[column] = value
    return patch


def row_to_cashbook(row: Row, default_currency: str) -> Cashbook:
    data: dict[str, Any] = {
        "id": row.get("id") or "",
        "name": row["name"],
        "currency": row.get("currency") or default_currency,
    }
    for column in ("created_at", "updated_at"):
        if row.get(column):
            data[column] = row[column]
    return Cashbook.model_validate(data)


def row_to_category(row: Row) -> Category:
    return Category(id=row.get("id") or "", name=row["name"])


def row_to_payment_mode(row: Row) -> PaymentMode:
    return PaymentMode(id=row.get("id") or "", name=row["name"])


def row_to_transaction(
    row: Row,
    category_names: dict[str, str],
    mode_names: dict[str, str],
) -> Transaction:
    category_id = row.get("category_id") or ""
    mode_id = row.get("mode_id") or ""
    return Transaction.model_validate(
        {
            "id": row.get("id") or "",
            "cashbook_id": row.get("cashbook_id") or "",
            "type": row["type"],
            "amount": Decimal(str(row["amount"])),
            "description": row.get("description") or "",
            "category_id": category_id,
            "category": category_names.get(category_id, ""),
            "mode_id": mode_id,
            "mode": mode_names.get(mode_id, ""),
            "date": row["transaction_datetime"],
        }
    )


def snapshot_from_rows(
    scope: Scope,
    cashbook_rows: list[Row],
    category_rows: list[Row],
    mode_rows: list[Row],
    transaction_rows: list[Row],
    default_currency: str,
) -> Snapshot:
    categories = tuple(row_to_category(r) for r in category_rows)
    modes = tuple(row_to_payment_mode(r) for r in mode_rows)
    category_names = {c.id: c.name for c in categories}
    mode_names = {m.id: m.name for m in modes}
    return Snapshot(
        scope=scope,
        cashbooks=tuple(row_to_cashbook(r, default_currency) for r in cashbook_rows),
        categories=categories,
        payment_modes=modes,
        transactions=tuple(
            row_to_transaction(r, category_names, mode_names) for r in transaction_rows
        ),
        primary_currency=default_currency,
    )


# =============================================================================
# CACHE BLOBS
# =============================================================================

# Key names used by blobs written before the snake_case layout
_LEGACY_KEYS = {
    "cashbookId": "cashbook_id",
    "lastActivity": "last_activity",
    "paymentModes": "payment_modes",
    "primaryCurrency": "primary_currency",
    "categoryId": "category_id",
    "modeId": "mode_id",
}


def _snake(item: dict) -> dict:
    return {_LEGACY_KEYS.get(k, k): v for k, v in item.items()}


def snapshot_to_blob(snapshot: Snapshot) -> str:
    state = CachedState(
        cashbooks=[c.model_dump(mode="json") for c in snapshot.cashbooks],
        transactions=[t.model_dump(mode="json") for t in snapshot.transactions],
        categories=[c.model_dump(mode="json") for c in snapshot.categories],
        payment_modes=[m.model_dump(mode="json") for m in snapshot.payment_modes],
        primary_currency=snapshot.primary_currency,
    )
    return state.model_dump_json()


def _legacy_amount(value: Any) -> Any:
    # Older caches stored unrounded floats such as 12.345
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return value


def _parse_records(items: list[dict], model: type[BaseModel], kind: str, prepare) -> list:
    """Validate each cached record on its own; malformed ones are logged and skipped."""
    records = []
    for item in items:
        try:
            records.append(model.model_validate(prepare(_snake(item))))
        except (PydanticValidationError, TypeError) as e:
            logger.warning(
                "cached_record_skipped",
                kind=kind,
                record_id=item.get("id"),
                error=str(e),
            )
    return records


def _cached_cashbook(item: dict, default_currency: str) -> dict:
    item = {"currency": default_currency, **item}
    item.setdefault("id", "")
    return item


def _cached_transaction(item: dict) -> dict:
    item = {
        "id": "",
        "category_id": "",
        "mode_id": "",
        **item,
    }
    if "transaction_datetime" in item and "date" not in item:
        item["date"] = item.pop("transaction_datetime")
    if "amount" in item:
        item["amount"] = _legacy_amount(item["amount"])
    return item


def snapshot_from_blob(blob: str, scope: Scope, default_currency: str) -> Snapshot:
    """
    Parse a cache blob.

    Older blobs store transactions with category and mode names only; the
    missing ids are left empty for ``repair_references`` to resolve. Records
    are validated one at a time: a malformed record is skipped (and logged)
    instead of failing the whole blob, and legacy amounts are rounded to
    cents.

    Raises:
        ValueError: If the blob is not valid JSON or not a cached state object
    """
    state = CachedState.model_validate(_snake(json.loads(blob)))

    return Snapshot(
        scope=scope,
        cashbooks=tuple(
            _parse_records(
                state.cashbooks,
                Cashbook,
                "cashbook",
                lambda item: _cached_cashbook(item, default_currency),
            )
        ),
        transactions=tuple(
            _parse_records(state.transactions, Transaction, "transaction", _cached_transaction)
        ),
        categories=tuple(
            _parse_records(state.categories, Category, "category", lambda c: {"id": "", **c})
        ),
        payment_modes=tuple(
            _parse_records(state.payment_modes, PaymentMode, "payment_mode", lambda m: {"id": "", **m})
        ),
        primary_currency=state.primary_currency,
    )
