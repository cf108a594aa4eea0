"""
Cart configuration.

Settings are read from environment variables (a local `.env` file is
loaded first if present):

- CART_TAX_RATE             default tax rate in percent (21)
- CART_DISCOUNT_RATE        default discount rate in percent (0)
- CART_CURRENCY             ISO currency code used for display (USD)
- CART_DECIMALS             override of the currency's decimal places
- CART_DECIMAL_POINT        decimal separator for formatted amounts (".")
- CART_THOUSANDS_SEPARATOR  thousands separator for formatted amounts (",")
- CART_DB_TABLE             durable store table name (shoppingcart)
- CART_SESSION_TTL          session store TTL in seconds (86400)
"""
import os
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from cartkit.services.currency import Currency, get_currency
from cartkit.services.money import to_decimal

DEFAULT_INSTANCE = "default"
DEFAULT_TABLE = "shoppingcart"


class CartSettings(BaseModel):
    """Read-only cart configuration consumed at construction and formatting time."""
    tax_rate: Decimal = Decimal("21")
    discount_rate: Decimal = Decimal("0")
    currency_code: str = "USD"
    decimals: Optional[int] = Field(default=None, ge=0, le=8)
    decimal_point: str = "."
    thousands_separator: str = ","
    db_table: str = DEFAULT_TABLE
    session_ttl: int = Field(default=86400, gt=0)

    @field_validator("tax_rate", "discount_rate", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return to_decimal(v)

    @property
    def currency(self) -> Currency:
        currency = get_currency(self.currency_code)
        if self.decimals is not None:
            currency = currency.model_copy(update={"decimals": self.decimals})
        return currency


def load_settings(env_file: Optional[str] = None) -> CartSettings:
    """Build CartSettings from the environment."""
    load_dotenv(env_file)

    values = {
        "tax_rate": os.environ.get("CART_TAX_RATE"),
        "discount_rate": os.environ.get("CART_DISCOUNT_RATE"),
        "currency_code": os.environ.get("CART_CURRENCY"),
        "decimals": os.environ.get("CART_DECIMALS"),
        "decimal_point": os.environ.get("CART_DECIMAL_POINT"),
        "thousands_separator": os.environ.get("CART_THOUSANDS_SEPARATOR"),
        "db_table": os.environ.get("CART_DB_TABLE"),
        "session_ttl": os.environ.get("CART_SESSION_TTL"),
    }
    return CartSettings(**{k: v for k, v in values.items() if v is not None and v != ""})
