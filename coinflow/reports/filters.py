"""
Report filtering and summaries.

Reports read a published snapshot; nothing here mutates state.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from coinflow.models.ledger import Transaction, TransactionType


class ReportType(str, Enum):
    ALL = "ALL"
    CASH_IN = "CASH_IN"
    CASH_OUT = "CASH_OUT"

    @property
    def label(self) -> str:
        if self is ReportType.ALL:
            return "All"
        return TransactionType(self.value).label


class ReportFilters(BaseModel):
    """
    Selection criteria for a report.

    Both dates are optional and inclusive: ``end_date`` covers the whole day.
    ``cashbook_id=None`` selects every cashbook.
    """
    model_config = ConfigDict(frozen=True)

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    type: ReportType = ReportType.ALL
    cashbook_id: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self) -> "ReportFilters":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @classmethod
    def current_month(cls, today: Optional[date] = None) -> "ReportFilters":
        """Filters covering the calendar month containing `today`."""
        today = today or date.today()
        start = today.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return cls(start_date=start, end_date=next_month - timedelta(days=1))

    def matches(self, transaction: Transaction) -> bool:
        if self.start_date and transaction.date < datetime.combine(self.start_date, datetime.min.time()):
            return False
        if self.end_date:
            day_after = datetime.combine(self.end_date + timedelta(days=1), datetime.min.time())
            if transaction.date >= day_after:
                return False
        if self.type is not ReportType.ALL and transaction.type.value != self.type.value:
            return False
        if self.cashbook_id is not None and transaction.cashbook_id != self.cashbook_id:
            return False
        return True


class ReportSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_cash_in: Decimal = Decimal("0")
    total_cash_out: Decimal = Decimal("0")
    net_balance: Decimal = Decimal("0")
    count: int = 0


def filter_transactions(
    transactions: Iterable[Transaction],
    filters: ReportFilters,
) -> list[Transaction]:
    """Transactions matching `filters`, newest first."""
    selected = [t for t in transactions if filters.matches(t)]
    selected.sort(key=lambda t: t.date, reverse=True)
    return selected


def summarize(transactions: Iterable[Transaction]) -> ReportSummary:
    """Cash-in and cash-out totals and their difference."""
    cash_in = Decimal("0")
    cash_out = Decimal("0")
    count = 0
    for t in transactions:
        count += 1
        if t.type is TransactionType.CASH_IN:
            cash_in += t.amount
        else:
            cash_out += t.amount
    return ReportSummary(
        total_cash_in=cash_in,
        total_cash_out=cash_out,
        net_balance=cash_in - cash_out,
        count=count,
    )
