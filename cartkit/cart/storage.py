"""
Cart persistence: session store (per-request content) and durable store
(carts saved against an identifier).

Both are full-overwrite stores. Content travels as a JSON array of item
dicts so insertion order survives the round trip.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

from pydantic import BaseModel

from cartkit.db import RedisKeys, TTL, get_redis_sync, get_supabase_sync
from cartkit.errors import CartUnavailableError
from cartkit.logging import get_logger, sanitize_id_for_logging
from .models import LineItem

logger = get_logger(__name__)

Content = Dict[str, LineItem]


def encode_content(content: Content) -> str:
    """Serialize ordered content to a JSON string."""
    return json.dumps([item.to_dict() for item in content.values()])


def decode_content(blob: str) -> Content:
    """Restore content produced by encode_content."""
    content: Content = {}
    for data in json.loads(blob):
        item = LineItem.from_dict(data)
        content[item.row_id] = item
    return content


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -- session store ---------------------------------------------------------


class SessionStore(Protocol):
    """Per-session content keyed by instance key (`cart.<instance>`)."""

    def load(self, key: str) -> Optional[Content]:
        ...

    def save(self, key: str, content: Content) -> None:
        ...

    def forget(self, key: str) -> None:
        ...


class InMemorySessionStore:
    """Session store kept in process memory (tests, CLI tools)."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> Optional[Content]:
        blob = self._data.get(key)
        if blob is None:
            return None
        return decode_content(blob)

    def save(self, key: str, content: Content) -> None:
        self._data[key] = encode_content(content)

    def forget(self, key: str) -> None:
        self._data.pop(key, None)


class RedisSessionStore:
    """
    Session store on Upstash Redis.

    One Redis key per (session, instance) with a sliding TTL for
    abandoned carts.
    """

    def __init__(self, session_id: str, redis=None, ttl: int = TTL.CART) -> None:
        self.session_id = session_id
        self.ttl = ttl
        self._redis = redis  # Lazy initialization

    @property
    def redis(self):
        if self._redis is None:
            try:
                self._redis = get_redis_sync()
            except ValueError as e:
                raise CartUnavailableError("Redis not available", e)
        return self._redis

    def _key(self, key: str) -> str:
        return RedisKeys.cart_key(self.session_id, key)

    def load(self, key: str) -> Optional[Content]:
        redis_key = self._key(key)
        try:
            data = self.redis.get(redis_key)
        except CartUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to get cart from Redis: %s", type(e).__name__)
            raise CartUnavailableError(cause=e)

        if not data:
            return None

        try:
            return decode_content(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            # Corrupted data - drop it and start over
            logger.warning(
                "Corrupted cart data for session %s: %s",
                sanitize_id_for_logging(self.session_id),
                type(e).__name__,
            )
            self.forget(key)
            return None

    def save(self, key: str, content: Content) -> None:
        try:
            self.redis.set(self._key(key), encode_content(content), ex=self.ttl)
        except CartUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to save cart to Redis: %s", type(e).__name__)
            raise CartUnavailableError(cause=e)

    def forget(self, key: str) -> None:
        try:
            self.redis.delete(self._key(key))
        except CartUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to clear cart from Redis: %s", type(e).__name__)
            raise CartUnavailableError(cause=e)


# -- durable store ---------------------------------------------------------


class StoredCart(BaseModel):
    """Row of the durable cart table."""
    identifier: str
    instance: str
    content: str
    created_at: datetime
    updated_at: datetime

    class Config:
        extra = "ignore"  # Ignore unknown fields from DB

    def items(self) -> Content:
        return decode_content(self.content)


class DurableStore(Protocol):
    """Carts saved under a unique (identifier, instance) pair."""

    def upsert(
        self,
        identifier: str,
        instance: str,
        content: Content,
        created_at: datetime,
        updated_at: datetime,
    ) -> None:
        ...

    def fetch(self, identifier: str, instance: str) -> Optional[StoredCart]:
        ...

    def delete(self, identifier: str, instance: str) -> None:
        ...

    def exists(self, identifier: str, instance: str) -> bool:
        ...


class InMemoryDurableStore:
    """Durable store backed by a dict."""

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], StoredCart] = {}

    def upsert(self, identifier, instance, content, created_at, updated_at) -> None:
        self._rows[(identifier, instance)] = StoredCart(
            identifier=identifier,
            instance=instance,
            content=encode_content(content),
            created_at=created_at,
            updated_at=updated_at,
        )

    def fetch(self, identifier: str, instance: str) -> Optional[StoredCart]:
        return self._rows.get((identifier, instance))

    def delete(self, identifier: str, instance: str) -> None:
        self._rows.pop((identifier, instance), None)

    def exists(self, identifier: str, instance: str) -> bool:
        return (identifier, instance) in self._rows

    def __len__(self) -> int:
        return len(self._rows)


class SupabaseDurableStore:
    """
    Durable store on a Supabase (PostgreSQL) table.

    Expected schema:
        identifier text, instance text, content text,
        created_at timestamptz, updated_at timestamptz,
        primary key (identifier, instance)
    """

    def __init__(self, client=None, table: str = "shoppingcart") -> None:
        self._client = client
        self.table = table

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = get_supabase_sync()
            except ValueError as e:
                raise CartUnavailableError("Supabase not available", e)
        return self._client

    def _where(self, query, identifier: str, instance: str):
        return query.eq("identifier", identifier).eq("instance", instance)

    def _execute(self, action: str, build) -> Any:
        try:
            return build().execute()
        except CartUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to %s stored cart: %s", action, type(e).__name__, exc_info=True)
            raise CartUnavailableError(cause=e)

    def upsert(self, identifier, instance, content, created_at, updated_at) -> None:
        data = {
            "identifier": identifier,
            "instance": instance,
            "content": encode_content(content),
            "created_at": created_at.isoformat(),
            "updated_at": updated_at.isoformat(),
        }
        self._execute(
            "upsert",
            lambda: self.client.table(self.table).upsert(data, on_conflict="identifier,instance"),
        )

    def fetch(self, identifier: str, instance: str) -> Optional[StoredCart]:
        result = self._execute(
            "fetch",
            lambda: self._where(self.client.table(self.table).select("*"), identifier, instance).limit(1),
        )
        return StoredCart(**result.data[0]) if result.data else None

    def delete(self, identifier: str, instance: str) -> None:
        self._execute(
            "delete",
            lambda: self._where(self.client.table(self.table).delete(), identifier, instance),
        )

    def exists(self, identifier: str, instance: str) -> bool:
        result = self._execute(
            "check",
            lambda: self._where(self.client.table(self.table).select("identifier"), identifier, instance).limit(1),
        )
        return bool(result.data)
