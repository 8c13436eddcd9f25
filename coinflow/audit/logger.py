"""
Audit Logger

Every significant action in the engine is logged as a structured event:
loads, seeding, each mutation, and every failed interaction with the remote
store or the local cache.

The audit logger:
- Is synchronous, so it can run on the mutation path
- Never raises into the caller
- Tags every event with the scope key it belongs to
"""

import logging
from typing import Optional
from uuid import UUID

import structlog

from coinflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )


class AuditLogger:
    """
    Central audit logging service for the reconciliation engine.
    """

    def __init__(self, logger_name: str = "coinflow.audit"):
        self._logger = structlog.get_logger(logger_name)
        self._events: list[AuditEvent] = []
        self._keep_history = False

    def keep_history(self, enabled: bool = True) -> None:
        """Retain emitted events in memory (used by tests and diagnostics)."""
        self._keep_history = enabled
        if not enabled:
            self._events.clear()

    @property
    def history(self) -> list[AuditEvent]:
        return list(self._events)

    def log(self, event: AuditEvent) -> None:
        """
        Log an audit event at the level matching its severity.
        """
        if self._keep_history:
            self._events.append(event)

        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # A broken log handler must not break a mutation
            logging.getLogger(__name__).warning("audit log write failed: %s", e)

    def log_snapshot_loaded(self, scope_key: str, source: str, counts: dict[str, int]) -> None:
        self.log(AuditEventBuilder.snapshot_loaded(scope_key, source, counts))

    def log_load_failed(self, scope_key: str, source: str, error_message: str) -> None:
        self.log(AuditEventBuilder.load_failed(scope_key, source, error_message))

    def log_stale_load(self, scope_key: str, active_scope_key: Optional[str]) -> None:
        self.log(AuditEventBuilder.stale_load_discarded(scope_key, active_scope_key))

    def log_defaults_seeded(
        self,
        scope_key: str,
        categories: list[str],
        payment_modes: list[str],
    ) -> None:
        self.log(AuditEventBuilder.defaults_seeded(scope_key, categories, payment_modes))

    def log_ids_remapped(self, scope_key: str, count: int) -> None:
        self.log(AuditEventBuilder.ids_remapped(scope_key, count))

    def log_change(
        self,
        event_type: AuditEventType,
        scope_key: str,
        entity_type: str,
        entity_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a user-driven change to a record."""
        self.log(
            AuditEventBuilder.record_changed(
                event_type=event_type,
                scope_key=scope_key,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
                details=details,
            )
        )

    def log_not_found(
        self,
        scope_key: str,
        entity_type: str,
        entity_id: str,
        operation: str,
    ) -> None:
        self.log(AuditEventBuilder.record_not_found(scope_key, entity_type, entity_id, operation))

    def log_remote_write_failed(
        self,
        scope_key: str,
        table: str,
        action: str,
        error_message: str,
        skipped: int = 0,
    ) -> None:
        self.log(
            AuditEventBuilder.remote_write_failed(
                scope_key, table, action, error_message, skipped=skipped
            )
        )

    def log_remote_write_retried(self, scope_key: str, failure_id: UUID, succeeded: bool) -> None:
        self.log(AuditEventBuilder.remote_write_retried(scope_key, failure_id, succeeded))

    def log_cache_write_failed(self, scope_key: str, error_message: str) -> None:
        self.log(AuditEventBuilder.cache_write_failed(scope_key, error_message))

    def log_subscriber_failed(self, error_message: str, channel: str) -> None:
        self.log(AuditEventBuilder.subscriber_failed(error_message, channel))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        scope_key: Optional[str] = None,
    ) -> None:
        """Log an unexpected error."""
        self.log(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
                scope_key=scope_key,
            )
        )
