"""
cartkit - session-scoped shopping cart

This package contains:
- cart: line items, cart store service, session/durable storage, events
- services: Decimal money helpers and currency display
- config: settings loaded from the environment
- db: Supabase and Upstash Redis clients
- errors / logging: shared error types and logging setup

Note: Imports are lazy so that importing cartkit does not pull in the
storage clients until a cart is actually used.
"""

__all__ = [
    "CartManager",
    "CartStore",
    "create_cart_manager",
    "load_settings",
]


def __getattr__(name):
    """Lazy attribute access."""
    if name in ("CartManager", "CartStore", "create_cart_manager"):
        from cartkit.cart import service
        return getattr(service, name)
    elif name == "load_settings":
        from cartkit.config import load_settings
        return load_settings
    raise AttributeError(f"module 'cartkit' has no attribute '{name}'")
