"""
Audit Models for Coinflow

Every state change and every failed interaction with a storage backend is
described by an ``AuditEvent``. Events go to the structured log; the engine
never reads them back.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from coinflow.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Loading
    SNAPSHOT_LOADED = "snapshot_loaded"
    LOAD_FAILED = "load_failed"
    STALE_LOAD_DISCARDED = "stale_load_discarded"
    DEFAULTS_SEEDED = "defaults_seeded"
    IDS_REMAPPED = "ids_remapped"

    # Cashbooks
    CASHBOOK_CREATED = "cashbook_created"
    CASHBOOK_UPDATED = "cashbook_updated"
    CASHBOOK_DELETED = "cashbook_deleted"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Categories and payment modes
    CATEGORY_ADDED = "category_added"
    CATEGORY_REMOVED = "category_removed"
    PAYMENT_MODE_ADDED = "payment_mode_added"
    PAYMENT_MODE_REMOVED = "payment_mode_removed"

    # Lookups
    RECORD_NOT_FOUND = "record_not_found"

    # Persistence
    REMOTE_WRITE_FAILED = "remote_write_failed"
    REMOTE_WRITE_RETRIED = "remote_write_retried"
    CACHE_WRITE_FAILED = "cache_write_failed"

    # System events
    SUBSCRIBER_FAILED = "subscriber_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what record and which scope
    scope_key: Optional[str] = Field(
        default=None,
        description="Scope key the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'cashbook', 'transaction', 'category')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "scope_key": self.scope_key,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.snapshot_loaded(scope_key, "cache", {"cashbooks": 2})
        event = AuditEventBuilder.remote_write_failed(scope_key, "transactions", "insert", err)
    """

    @staticmethod
    def snapshot_loaded(
        scope_key: str,
        source: str,
        counts: dict[str, int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_LOADED,
            scope_key=scope_key,
            description=f"Snapshot loaded from {source}",
            details={"source": source, **counts},
        )

    @staticmethod
    def load_failed(
        scope_key: str,
        source: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAD_FAILED,
            severity=AuditSeverity.WARNING,
            scope_key=scope_key,
            description=f"Load from {source} failed, using default snapshot",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def stale_load_discarded(
        scope_key: str,
        active_scope_key: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_LOAD_DISCARDED,
            scope_key=scope_key,
            description="Load finished after the active scope changed",
            details={"active_scope_key": active_scope_key},
        )

    @staticmethod
    def defaults_seeded(
        scope_key: str,
        categories: list[str],
        payment_modes: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULTS_SEEDED,
            scope_key=scope_key,
            description=(
                f"Seeded {len(categories)} categories and "
                f"{len(payment_modes)} payment modes"
            ),
            details={"categories": categories, "payment_modes": payment_modes},
        )

    @staticmethod
    def ids_remapped(scope_key: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IDS_REMAPPED,
            scope_key=scope_key,
            description=f"Remapped {count} non-canonical identifiers",
            details={"count": count},
        )

    @staticmethod
    def record_changed(
        event_type: AuditEventType,
        scope_key: str,
        entity_type: str,
        entity_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            scope_key=scope_key,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def record_not_found(
        scope_key: str,
        entity_type: str,
        entity_id: str,
        operation: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_NOT_FOUND,
            severity=AuditSeverity.WARNING,
            scope_key=scope_key,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{operation}: {entity_type} not found",
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def remote_write_failed(
        scope_key: str,
        table: str,
        action: str,
        error_message: str,
        skipped: int = 0,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            scope_key=scope_key,
            entity_type=table,
            description=f"Remote {action} on {table} failed",
            error_message=error_message,
            details={"action": action, "skipped_writes": skipped},
        )

    @staticmethod
    def remote_write_retried(
        scope_key: str,
        failure_id: UUID,
        succeeded: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_WRITE_RETRIED,
            severity=AuditSeverity.INFO if succeeded else AuditSeverity.WARNING,
            scope_key=scope_key,
            description="Retried failed remote write",
            details={"failure_id": str(failure_id), "succeeded": succeeded},
            is_user_action=True,
        )

    @staticmethod
    def cache_write_failed(scope_key: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_WRITE_FAILED,
            severity=AuditSeverity.WARNING,
            scope_key=scope_key,
            description="Local cache write failed",
            error_message=error_message,
        )

    @staticmethod
    def subscriber_failed(error_message: str, channel: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIBER_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"A {channel} subscriber raised",
            error_message=error_message,
            details={"channel": channel},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        scope_key: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            scope_key=scope_key,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
