"""
Data Models Package

This package contains all Pydantic models used by the Coinflow engine.
"""

from coinflow.models.ledger import (
    CachedState,
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
    TransactionType,
    TransactionUpdate,
)
from coinflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from coinflow.models.sync import (
    LoadFailure,
    RemoteWrite,
    RemoteWriteFailure,
    WriteAction,
)

__all__ = [
    # Ledger models
    "CachedState",
    "Cashbook",
    "CashbookUpdate",
    "Category",
    "MutationResult",
    "PaymentMode",
    "ResolveResult",
    "Scope",
    "Snapshot",
    "Transaction",
    "TransactionInput",
    "TransactionType",
    "TransactionUpdate",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Sync models
    "LoadFailure",
    "RemoteWrite",
    "RemoteWriteFailure",
    "WriteAction",
]
