"""
Remote synchronisation records.

A mutation produces a chain of ``RemoteWrite`` steps that run in order in the
background. When a step fails, the failed step and every step after it are
kept on a ``RemoteWriteFailure`` so the caller can inspect or retry them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from coinflow.models.ledger import utcnow


class WriteAction(str, Enum):
    INSERT = "insert"
    UPSERT = "upsert"
    UPDATE = "update"
    DELETE = "delete"


class RemoteWrite(BaseModel):
    """One call against the remote store."""
    model_config = ConfigDict(frozen=True)

    table: str
    action: WriteAction
    rows: list[dict[str, Any]] = Field(default_factory=list)
    patch: dict[str, Any] = Field(default_factory=dict)
    filters: dict[str, Any] = Field(default_factory=dict)
    on_conflict: Optional[tuple[str, ...]] = None

    def describe(self) -> str:
        return f"{self.action.value} {self.table}"


class RemoteWriteFailure(BaseModel):
    """
    A background write that did not reach the remote store.

    The in-memory snapshot already reflects the change; ``pending`` holds the
    writes that were not applied, starting with the one that failed.
    """
    model_config = ConfigDict(frozen=True)

    failure_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=utcnow)
    scope_key: str
    operation: str
    error_message: str
    pending: tuple[RemoteWrite, ...] = ()

    @property
    def failed_write(self) -> Optional[RemoteWrite]:
        return self.pending[0] if self.pending else None


class LoadFailure(BaseModel):
    """A load that could not read its source and fell back to defaults."""
    model_config = ConfigDict(frozen=True)

    occurred_at: datetime = Field(default_factory=utcnow)
    scope_key: str
    source: str
    error_message: str
