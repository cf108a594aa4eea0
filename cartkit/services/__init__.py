"""Shared services: money arithmetic and currency display."""
from .currency import Currency, get_currency, format_money
from .money import to_decimal, round_money, number_format

__all__ = [
    "Currency",
    "get_currency",
    "format_money",
    "to_decimal",
    "round_money",
    "number_format",
]
