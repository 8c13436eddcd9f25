"""Audit logging package."""

from coinflow.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
