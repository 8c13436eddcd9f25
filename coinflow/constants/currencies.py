"""Currency codes offered to users and display formatting."""

from decimal import Decimal
from typing import Union


SUPPORTED_CURRENCIES: dict[str, str] = {
    "USD": "US Dollar (USD)",
    "EUR": "Euro (EUR)",
    "GBP": "British Pound (GBP)",
    "NGN": "Nigerian Naira (NGN)",
    "KES": "Kenyan Shilling (KES)",
    "GHS": "Ghanaian Cedi (GHS)",
    "UGX": "Ugandan Shilling (UGX)",
    "ZAR": "South African Rand (ZAR)",
    "INR": "Indian Rupee (INR)",
    "JPY": "Japanese Yen (JPY)",
}

DEFAULT_CURRENCY = "USD"

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "NGN": "₦",
    "KES": "KSh ",
    "GHS": "GH₵",
    "UGX": "USh ",
    "ZAR": "R ",
    "INR": "₹",
    "JPY": "¥",
}

# Currencies displayed without minor units
ZERO_DECIMAL_CURRENCIES = {"JPY", "UGX"}


def format_currency(amount: Union[Decimal, float], currency: str = DEFAULT_CURRENCY) -> str:
    """Format an amount for display, e.g. '$1,234.56' or '-€12.00'.

    Unknown codes fall back to the code itself as a prefix.
    """
    code = (currency or DEFAULT_CURRENCY).upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    places = 0 if code in ZERO_DECIMAL_CURRENCIES else 2
    value = Decimal(str(amount))
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.{places}f}"


def format_signed(amount: Union[Decimal, float], currency: str = DEFAULT_CURRENCY) -> str:
    """Format with an explicit +/- sign."""
    value = Decimal(str(amount))
    sign = "+" if value >= 0 else "-"
    return f"{sign}{format_currency(abs(value), currency)}"
