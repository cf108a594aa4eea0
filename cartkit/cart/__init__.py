"""Cart package: models, storage, events and the cart store service."""
from .events import CartEvent, CartObserver, EventDispatcher
from .models import (
    Buyable,
    FromArray,
    FromAttributes,
    FromEntityReference,
    InstanceIdentifier,
    LineItem,
)
from .service import CartManager, CartStore, create_cart_manager
from .storage import (
    InMemoryDurableStore,
    InMemorySessionStore,
    RedisSessionStore,
    StoredCart,
    SupabaseDurableStore,
)

__all__ = [
    "CartEvent",
    "CartObserver",
    "EventDispatcher",
    "Buyable",
    "FromArray",
    "FromAttributes",
    "FromEntityReference",
    "InstanceIdentifier",
    "LineItem",
    "CartManager",
    "CartStore",
    "create_cart_manager",
    "InMemoryDurableStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "StoredCart",
    "SupabaseDurableStore",
]
