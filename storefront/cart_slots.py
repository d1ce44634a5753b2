"""
Cart Slot Storage

Client-local persisted state for the Cart Store: one named slot per visitor
holding the serialized cart. The slot is read when a Cart Store starts and
overwritten on every mutation.

Slot backends:
    - RedisCartSlot: key "cart:{visitor_id}", JSON list of line items, 24h TTL
      reset on every write so abandoned carts expire on their own
    - MemoryCartSlot: process-local fallback used when no Redis is configured

Data Format (Redis):
    Key: "cart:visitor-123"
    Value: '[
        {"product_id": "p-1", "name": "Portfolio Kit", "unit_price": "29.99", "quantity": 1, ...},
        {"product_id": "p-2", "name": "Todo App", "unit_price": "10.00", "quantity": 2, ...}
    ]'

Any redis error is translated to StorageUnavailable here; the Cart Store
decides what to do with it.
"""

import logging
import threading
from typing import Dict, Optional

import redis

from storefront.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class CartSlot:
    """A single named slot holding one serialized cart."""

    def read(self) -> Optional[str]:
        raise NotImplementedError

    def write(self, payload: str) -> None:
        raise NotImplementedError

    def delete(self) -> None:
        raise NotImplementedError


class RedisCartSlot(CartSlot):
    """Cart slot stored under a Redis key."""

    CART_KEY_PREFIX = "cart:"
    CART_TTL = 86400  # 24 hours

    def __init__(self, redis_client: redis.Redis, visitor_id: str, ttl: Optional[int] = None):
        self.redis = redis_client
        self.key = f"{self.CART_KEY_PREFIX}{visitor_id}"
        self.ttl = ttl or self.CART_TTL

    def read(self) -> Optional[str]:
        try:
            return self.redis.get(self.key)
        except redis.RedisError as e:
            raise StorageUnavailable(f"Cannot read {self.key}: {e}") from e

    def write(self, payload: str) -> None:
        try:
            self.redis.set(self.key, payload, ex=self.ttl)
        except redis.RedisError as e:
            raise StorageUnavailable(f"Cannot write {self.key}: {e}") from e

    def delete(self) -> None:
        try:
            self.redis.delete(self.key)
        except redis.RedisError as e:
            raise StorageUnavailable(f"Cannot delete {self.key}: {e}") from e


class MemoryCartSlot(CartSlot):
    """Cart slot kept in a dict owned by the caller, keyed like the Redis slot."""

    _lock = threading.Lock()

    def __init__(self, visitor_id: str, store: Dict[str, str]):
        self.key = f"{RedisCartSlot.CART_KEY_PREFIX}{visitor_id}"
        self.store = store

    def read(self) -> Optional[str]:
        with self._lock:
            return self.store.get(self.key)

    def write(self, payload: str) -> None:
        with self._lock:
            self.store[self.key] = payload

    def delete(self) -> None:
        with self._lock:
            self.store.pop(self.key, None)
