"""
Domain errors raised by the reconciliation engine.

Storage-level failures live in ``coinflow.services.storage.interface``;
these exceptions describe problems with the caller's request.
"""


class CoinflowError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(CoinflowError, ValueError):
    """
    User input failed a precondition.

    Raised before any state is touched, so a caller that catches it can
    assume the snapshot is unchanged.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(CoinflowError, LookupError):
    """An operation addressed an id that is not in the current snapshot."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id
