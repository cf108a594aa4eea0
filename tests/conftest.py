"""Pytest configuration and fixtures"""
import os
from decimal import Decimal
from typing import Any, List, Tuple
from unittest.mock import Mock

import pytest

# Keep test runs independent from a developer's .env
os.environ.setdefault("CART_TAX_RATE", "21")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from cartkit.cart import (  # noqa: E402
    CartManager,
    CartStore,
    EventDispatcher,
    InMemoryDurableStore,
    InMemorySessionStore,
)
from cartkit.config import CartSettings  # noqa: E402


class Product:
    """Buyable catalog entry used across the tests."""

    catalog = {}

    def __init__(self, id: Any, name: str, price: str) -> None:
        self.id = id
        self.name = name
        self.price = Decimal(price)
        Product.catalog[id] = self

    def buyable_identifier(self, options=None):
        return self.id

    def buyable_description(self, options=None):
        return self.name

    def buyable_price(self, options=None):
        return self.price

    @classmethod
    def find(cls, id):
        return cls.catalog.get(id)


class Customer:
    """InstanceIdentifier implementation."""

    def __init__(self, email: str, discount: int = 0) -> None:
        self.email = email
        self.discount = discount

    def instance_identifier(self) -> str:
        return self.email

    def instance_global_discount(self):
        return self.discount


class RecordingObserver:
    """Observer that keeps every notification."""

    def __init__(self) -> None:
        self.events: List[Tuple[Any, Any]] = []

    def notify(self, event, payload) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> List[Any]:
        return [event for event, _ in self.events]


@pytest.fixture
def settings():
    """Cart settings with 21% tax, no discount, USD"""
    return CartSettings(tax_rate=21, discount_rate=0, currency_code="USD")


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def durable_store():
    return InMemoryDurableStore()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def dispatcher(observer):
    return EventDispatcher([observer])


@pytest.fixture
def cart(session_store, durable_store, dispatcher, settings) -> CartStore:
    """Default cart instance on in-memory stores"""
    return CartStore(session_store, durable_store, "default", dispatcher, settings)


@pytest.fixture
def manager(session_store, durable_store, dispatcher, settings) -> CartManager:
    return CartManager(session_store, durable_store, dispatcher, settings)


@pytest.fixture
def product():
    return Product(101, "Espresso Machine", "250.00")


@pytest.fixture
def product_factory():
    return Product


@pytest.fixture
def customer_factory():
    return Customer


@pytest.fixture
def customer():
    return Customer("jane@example.com")


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client with a chainable table query"""
    client = Mock()

    table_mock = Mock()
    table_mock.select.return_value = table_mock
    table_mock.upsert.return_value = table_mock
    table_mock.delete.return_value = table_mock
    table_mock.eq.return_value = table_mock
    table_mock.limit.return_value = table_mock
    table_mock.execute.return_value = Mock(data=[])

    client.table.return_value = table_mock
    return client


@pytest.fixture
def mock_redis():
    """Mock Upstash Redis client backed by a dict"""
    data = {}
    redis = Mock()
    redis.get.side_effect = lambda key: data.get(key)
    redis.set.side_effect = lambda key, value, ex=None: data.__setitem__(key, value)
    redis.delete.side_effect = lambda key: data.pop(key, None)
    redis.data = data
    return redis
