"""
Database Module - Supabase and Redis Clients

Provides lazily created sync clients:
- Supabase client for the durable cart table
- Upstash Redis client for session cart content
"""

import os
from typing import Optional

from supabase import create_client, Client
from upstash_redis import Redis


# Singleton instances
_supabase_client: Optional[Client] = None
_redis_client: Optional[Redis] = None


def get_supabase_sync() -> Client:
    """
    Get synchronous Supabase client (singleton).

    Requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY.
    """
    global _supabase_client

    if _supabase_client is None:
        url = os.environ.get("SUPABASE_URL", "")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(url, key)

    return _supabase_client


def get_redis_sync() -> Redis:
    """
    Get sync Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        url = os.environ.get("UPSTASH_REDIS_REST_URL", "")
        token = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")
        if not url or not token:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = Redis(url=url, token=token)

    return _redis_client


class RedisKeys:
    """Redis key prefixes for cart data."""

    CART = "cart:"  # cart:{session_id}:{instance}

    @staticmethod
    def cart_key(session_id: str, instance: str) -> str:
        return f"{RedisKeys.CART}{session_id}:{instance}"


class TTL:
    """Time-to-live constants for Redis keys (seconds)."""

    CART = 86400  # 24 hours
