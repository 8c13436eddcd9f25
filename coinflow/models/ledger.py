"""
Ledger Data Models for Coinflow

These models describe every record the reconciliation engine holds in memory:
cashbooks, categories, payment modes, transactions and the snapshot that
bundles them for one scope.

DESIGN DECISION: Records are frozen. A mutation never edits a record in place,
it builds a replacement with ``model_copy(update=...)`` and publishes a new
snapshot. Subscribers can therefore keep a snapshot reference without it
changing underneath them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Generic, Optional, TypeVar
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from coinflow.constants.currencies import DEFAULT_CURRENCY
from coinflow.errors import NotFoundError


ANONYMOUS_SCOPE = "anonymous"
STORAGE_KEY_PREFIX = "coinflow:data"


def new_id() -> str:
    """Generate a canonical record identifier."""
    return str(uuid4())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form every record stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime) -> datetime:
    # Remote rows carry offsets, cached and user input usually do not.
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_to_naive_utc)]


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction. The amount itself is always positive."""
    CASH_IN = "CASH_IN"
    CASH_OUT = "CASH_OUT"

    @property
    def label(self) -> str:
        return "Cash In" if self is TransactionType.CASH_IN else "Cash Out"


# =============================================================================
# RECORDS
# =============================================================================

class Cashbook(BaseModel):
    """
    A named ledger owned by one user.

    ``balance`` and ``last_activity`` are derived from the transaction set and
    are overwritten on every recompute.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    currency: str = Field(default=DEFAULT_CURRENCY)
    balance: Decimal = Field(default=Decimal("0"))
    last_activity: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class Category(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)


class PaymentMode(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)


class Transaction(BaseModel):
    """
    A single cash movement inside a cashbook.

    Category and mode are stored both as resolved identifiers and as the
    canonical record names at the time of resolution.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    cashbook_id: str
    type: TransactionType
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = ""
    category_id: str
    category: str = ""
    mode_id: str
    mode: str = ""
    date: UtcDatetime

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type is TransactionType.CASH_IN else -self.amount


# =============================================================================
# INPUTS
# =============================================================================

class TransactionInput(BaseModel):
    """User-supplied fields for a new transaction. Category and mode are names."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = Field(default="", max_length=500)
    category: str = Field(..., min_length=1, max_length=100)
    mode: str = Field(..., min_length=1, max_length=100)
    date: UtcDatetime = Field(default_factory=utcnow)


class TransactionUpdate(BaseModel):
    """Partial transaction update. Unset fields are left untouched."""
    model_config = ConfigDict(str_strip_whitespace=True)

    cashbook_id: Optional[str] = None
    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    mode: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[UtcDatetime] = None


class CashbookUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)


# =============================================================================
# SCOPE & SNAPSHOT
# =============================================================================

class Scope(BaseModel):
    """Partition key for all records: an authenticated user or anonymous."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def key(self) -> str:
        return f"{STORAGE_KEY_PREFIX}:{self.user_id or ANONYMOUS_SCOPE}"

    @classmethod
    def anonymous(cls) -> "Scope":
        return cls()


class Snapshot(BaseModel):
    """Immutable view of every record in one scope."""
    model_config = ConfigDict(frozen=True)

    scope: Scope = Field(default_factory=Scope)
    cashbooks: tuple[Cashbook, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    categories: tuple[Category, ...] = ()
    payment_modes: tuple[PaymentMode, ...] = ()
    primary_currency: str = DEFAULT_CURRENCY

    def get_cashbook(self, cashbook_id: str) -> Optional[Cashbook]:
        return next((c for c in self.cashbooks if c.id == cashbook_id), None)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def transactions_for(self, cashbook_id: str) -> list[Transaction]:
        """Transactions of one cashbook, newest first."""
        items = [t for t in self.transactions if t.cashbook_id == cashbook_id]
        items.sort(key=lambda t: t.date, reverse=True)
        return items


class CachedState(BaseModel):
    """Serialized form of a snapshot in the local durable cache."""

    cashbooks: list[dict] = Field(default_factory=list)
    transactions: list[dict] = Field(default_factory=list)
    categories: list[dict] = Field(default_factory=list)
    payment_modes: list[dict] = Field(default_factory=list)
    primary_currency: str = DEFAULT_CURRENCY

    @field_validator("primary_currency", mode="before")
    @classmethod
    def default_currency_when_blank(cls, v: Optional[str]) -> str:
        return v or DEFAULT_CURRENCY


# =============================================================================
# OPERATION RESULTS
# =============================================================================

T = TypeVar("T")


class ResolveResult(BaseModel):
    """Outcome of a find-or-create lookup by name."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    created: bool


class MutationResult(BaseModel, Generic[T]):
    """
    Outcome of an operation addressing an existing record by id.

    Either ``value`` holds the affected record, or ``missing_id`` names the id
    that matched nothing. ``changed`` is False for no-op updates.
    """
    model_config = ConfigDict(frozen=True)

    entity: str
    value: Optional[T] = None
    missing_id: Optional[str] = None
    changed: bool = False

    @property
    def ok(self) -> bool:
        return self.missing_id is None

    def unwrap(self) -> T:
        if self.missing_id is not None:
            raise NotFoundError(self.entity, self.missing_id)
        return self.value

    @classmethod
    def found(cls, entity: str, value: T, changed: bool = True) -> "MutationResult[T]":
        return cls(entity=entity, value=value, changed=changed)

    @classmethod
    def not_found(cls, entity: str, missing_id: str) -> "MutationResult[T]":
        return cls(entity=entity, missing_id=missing_id)
