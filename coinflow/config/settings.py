"""
Configuration Management for Coinflow

Settings are read from environment variables with pydantic-settings.

DESIGN DECISION: All configuration is centralized here. The remote store and
the local cache are both optional; ``validate_all_settings`` reports which of
them can be built so the application factory can pick a fallback.
"""

import warnings
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coinflow.constants.currencies import DEFAULT_CURRENCY


class RemoteStoreSettings(BaseSettings):
    """Google Sheets backed remote store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the spreadsheet holding the ledger tables"
    )

    # One worksheet per table
    cashbooks_sheet_name: str = Field(default="cashbooks")
    categories_sheet_name: str = Field(default="categories")
    modes_sheet_name: str = Field(default="modes")
    transactions_sheet_name: str = Field(default="transactions")
    profiles_sheet_name: str = Field(default="profiles")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Missing credentials only warn; anonymous use needs no remote store."""
        if not Path(v).exists():
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before connecting to the remote store."
            )
        return v

    def sheet_name_for(self, table: str) -> str:
        """Worksheet name for a logical table name."""
        return getattr(self, f"{table}_sheet_name", table)


class LocalCacheSettings(BaseSettings):
    """Local durable cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="COINFLOW_CACHE_",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Mirror published snapshots to the local cache"
    )
    directory: Path = Field(
        default=Path.home() / ".coinflow",
        description="Directory holding one JSON blob per scope"
    )


class AppSettings(BaseSettings):
    """
    General application settings.

    Read from the environment, then from a .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )
    default_currency: str = Field(
        default=DEFAULT_CURRENCY,
        min_length=3,
        max_length=3,
        description="Currency assigned to new cashbooks and snapshots"
    )
    report_title: str = Field(
        default="SmartCash Ledger Report",
        description="Heading printed on PDF reports"
    )

    @field_validator('default_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Sub-settings are exposed as properties.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are built on access so a missing remote configuration
    # does not prevent anonymous use.

    @property
    def remote_store(self) -> RemoteStoreSettings:
        return RemoteStoreSettings()

    @property
    def local_cache(self) -> LocalCacheSettings:
        return LocalCacheSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings instance.

    Tests call get_settings.cache_clear() after changing the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every settings section.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error` entries
    for the sections that failed.
    """
    results = {}

    settings = get_settings()

    sections = {
        "remote_store": lambda: settings.remote_store,
        "local_cache": lambda: settings.local_cache,
        "app": lambda: settings.app,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
