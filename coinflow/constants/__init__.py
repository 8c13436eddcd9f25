"""Constants package."""

from coinflow.constants.currencies import (
    DEFAULT_CURRENCY,
    SUPPORTED_CURRENCIES,
    format_currency,
    format_signed,
)

__all__ = [
    "DEFAULT_CURRENCY",
    "SUPPORTED_CURRENCIES",
    "format_currency",
    "format_signed",
]
