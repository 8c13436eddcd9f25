"""Services package."""

from coinflow.services.identity import SessionState
from coinflow.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    InMemoryCache,
    InMemoryRemoteStore,
    JsonFileCache,
    LocalCacheInterface,
    NotFoundError,
    RemoteStoreInterface,
    StorageError,
)

__all__ = [
    # Identity
    "SessionState",
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "InMemoryCache",
    "InMemoryRemoteStore",
    "JsonFileCache",
    "LocalCacheInterface",
    "NotFoundError",
    "RemoteStoreInterface",
    "StorageError",
]
