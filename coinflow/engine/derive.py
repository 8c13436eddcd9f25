"""
Derived-field computation.

``balance`` and ``last_activity`` on a cashbook are functions of the
transaction set. Everything here is pure: same input, same output, and
``recompute(recompute(s)) == recompute(s)``.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from coinflow.models.ledger import Cashbook, Snapshot, Transaction


def calculate_balance(cashbook_id: str, transactions: Iterable[Transaction]) -> Decimal:
    """Sum of CASH_IN amounts minus CASH_OUT amounts for one cashbook."""
    return sum(
        (t.signed_amount for t in transactions if t.cashbook_id == cashbook_id),
        Decimal("0"),
    )


def latest_activity(cashbook_id: str, transactions: Iterable[Transaction]) -> Optional[datetime]:
    """Most recent transaction date for one cashbook, or None."""
    dates = [t.date for t in transactions if t.cashbook_id == cashbook_id]
    return max(dates) if dates else None


def recompute_cashbooks(
    cashbooks: Iterable[Cashbook],
    transactions: Iterable[Transaction],
) -> tuple[Cashbook, ...]:
    """
    Return cashbooks with balance and last activity recomputed.

    A cashbook without transactions keeps its previous ``last_activity``.
    Unchanged cashbooks are returned as the same objects.
    """
    balances: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    latest: dict[str, datetime] = {}
    for t in transactions:
        balances[t.cashbook_id] += t.signed_amount
        if t.cashbook_id not in latest or t.date > latest[t.cashbook_id]:
            latest[t.cashbook_id] = t.date

    result = []
    for cashbook in cashbooks:
        balance = balances.get(cashbook.id, Decimal("0"))
        activity = latest.get(cashbook.id, cashbook.last_activity)
        if cashbook.balance == balance and cashbook.last_activity == activity:
            result.append(cashbook)
        else:
            result.append(cashbook.model_copy(update={"balance": balance, "last_activity": activity}))
    return tuple(result)


def recompute(snapshot: Snapshot) -> Snapshot:
    """Recalculate every cashbook's derived fields from the snapshot's transactions."""
    cashbooks = recompute_cashbooks(snapshot.cashbooks, snapshot.transactions)
    if all(a is b for a, b in zip(cashbooks, snapshot.cashbooks)):
        return snapshot
    return snapshot.model_copy(update={"cashbooks": cashbooks})
