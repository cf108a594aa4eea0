"""
Currency metadata for cart display.

Amounts are never converted here: a cart is priced in one currency and
this module only knows how to print it.
"""
from typing import Dict, Literal

from pydantic import BaseModel, Field

from cartkit.services.money import Number, number_format

# Currency symbols mapping
CURRENCY_SYMBOLS: Dict[str, str] = {
    "USD": "$",
    "RUB": "₽",
    "EUR": "€",
    "UAH": "₴",
    "TRY": "₺",
    "INR": "₹",
    "AED": "د.إ",
    "GBP": "£",
    "CNY": "¥",
    "JPY": "¥",
    "KRW": "₩",
    "BRL": "R$",
}

# Currencies that should be displayed as integers (no decimals)
INTEGER_CURRENCIES = {"RUB", "UAH", "TRY", "INR", "JPY", "KRW"}

# Currencies whose symbol goes before the amount
SYMBOL_BEFORE = {"USD", "GBP", "CNY", "JPY", "KRW", "BRL", "INR"}


class Currency(BaseModel):
    """Display settings for a currency."""
    code: str = "USD"
    symbol: str = "$"
    decimals: int = Field(default=2, ge=0, le=8)
    place: Literal["before", "after"] = "before"

    def format(self, formatted_value: str) -> str:
        """Attach the symbol to an already formatted amount."""
        if self.place == "before":
            return f"{self.symbol} {formatted_value}"
        return f"{formatted_value} {self.symbol}"


def get_currency(code: str) -> Currency:
    """Build Currency for an ISO code, falling back to the code as symbol."""
    code = (code or "USD").upper()
    return Currency(
        code=code,
        symbol=CURRENCY_SYMBOLS.get(code, code),
        decimals=0 if code in INTEGER_CURRENCIES else 2,
        place="before" if code in SYMBOL_BEFORE else "after",
    )


def format_money(
    value: Number,
    currency: Currency,
    decimal_point: str = ".",
    thousands_separator: str = ",",
) -> str:
    """
    Format monetary value with currency symbol.

    >>> format_money(1234.5, get_currency("EUR"), ",", ".")
    '1.234,50 €'
    """
    formatted = number_format(value, currency.decimals, decimal_point, thousands_separator)
    return currency.format(formatted)
