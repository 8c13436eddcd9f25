"""
Storage Services Package

Provides the remote store and local cache interfaces plus their
implementations: Google Sheets (remote), in-memory (remote and cache) and
JSON files (cache).
"""

from coinflow.services.storage.interface import (
    TABLE_COLUMNS,
    ConnectionError,
    DuplicateError,
    LocalCacheInterface,
    NotFoundError,
    RemoteStoreInterface,
    StorageError,
)
from coinflow.services.storage.memory import InMemoryCache, InMemoryRemoteStore
from coinflow.services.storage.local_cache import JsonFileCache
from coinflow.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
)

__all__ = [
    # Interfaces
    "LocalCacheInterface",
    "RemoteStoreInterface",
    "TABLE_COLUMNS",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "InMemoryCache",
    "InMemoryRemoteStore",
    "JsonFileCache",
]
