"""Configuration package."""

from coinflow.config.settings import (
    AppSettings,
    LocalCacheSettings,
    RemoteStoreSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LocalCacheSettings",
    "RemoteStoreSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
