"""
Money Utilities - Safe Decimal operations for monetary values.

Avoids float precision issues by using Decimal throughout.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

Number = Union[str, int, float, Decimal]

# Default precision for money operations (2 decimal places)
MONEY_PRECISION = Decimal("0.01")

# Precision for integer currencies (JPY, KRW, etc.)
INTEGER_PRECISION = Decimal("1")


def to_decimal(value: Union[Number, None]) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        # Convert via string to avoid float precision issues
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def parse_decimal(value: object) -> Optional[Decimal]:
    """
    Strict variant of to_decimal for user input.

    Returns None instead of zero when the value is not a finite number,
    so callers can reject it.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, float):
        d = Decimal(str(value))
    elif isinstance(value, (int, str)):
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    if d.is_nan() or d.is_infinite():
        return None
    return d


def round_money(value: Number) -> Decimal:
    """
    Round monetary value to cents.

    Args:
        value: Value to round

    Returns:
        Rounded Decimal value
    """
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def round_to(value: Number, decimals: int) -> Decimal:
    """Round to an arbitrary number of decimal places (HALF_UP)."""
    precision = Decimal(1).scaleb(-decimals) if decimals > 0 else INTEGER_PRECISION
    return to_decimal(value).quantize(precision, rounding=ROUND_HALF_UP)


def multiply(value: Number, factor: Number) -> Decimal:
    """Safe multiplication of monetary value by a factor."""
    return to_decimal(value) * to_decimal(factor)


def divide(value: Number, divisor: Number) -> Decimal:
    """Safe division of monetary value."""
    d = to_decimal(divisor)
    if d == 0:
        return Decimal("0")
    return to_decimal(value) / d


def percent(value: Number, percent_value: Number) -> Decimal:
    """Calculate percentage of a monetary value."""
    return multiply(value, divide(percent_value, 100))


def number_format(
    value: Number,
    decimals: int = 2,
    decimal_point: str = ".",
    thousands_separator: str = ",",
) -> str:
    """
    Format a number with grouped thousands.

    >>> number_format(Decimal("1234.5"), 2, ",", ".")
    '1.234,50'
    """
    rounded = round_to(value, decimals)
    formatted = f"{rounded:,.{max(decimals, 0)}f}"
    integer_part, _, fraction = formatted.partition(".")
    integer_part = integer_part.replace(",", thousands_separator)
    if not fraction:
        return integer_part
    return f"{integer_part}{decimal_point}{fraction}"
