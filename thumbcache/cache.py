"""
Key-value stores for rendered thumbnails.

RedisCacheStore is the production store (Redis or Valkey); entries expire
server-side after the TTL given on write. MemoryCacheStore keeps the same
contract inside the process and is used for development and tests.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Dict, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from thumbcache.errors import CacheStoreError

logger = logging.getLogger(__name__)


class CacheStore:
    """
    Interface shared by the stores.

    get/set_with_ttl block; the *_async variants run them in the default
    executor so the event loop is never held by store I/O.
    """

    def init(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        return True

    async def get_async(self, key: str) -> Optional[bytes]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.get, key)

    async def set_with_ttl_async(self, key: str, value: bytes, ttl_seconds: int) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.set_with_ttl, key, value, ttl_seconds)


class RedisCacheStore(CacheStore):
    """Thumbnail store backed by Redis/Valkey (GET / SETEX)."""

    def __init__(self, url: str = "redis://localhost:6379", client: Redis | None = None):
        self.url = url
        self.client = client

    def init(self) -> None:
        """Create the client. Connection happens lazily on first command."""
        if self.client is None:
            self.client = Redis.from_url(self.url, decode_responses=False)
        logger.info(f"Redis cache store initialized: {self.url}")

    def shutdown(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def _require_client(self) -> Redis:
        if self.client is None:
            raise CacheStoreError("Redis cache store is not initialized")
        return self.client

    def get(self, key: str) -> Optional[bytes]:
        client = self._require_client()
        try:
            return client.get(key)
        except RedisError as e:
            raise CacheStoreError(f"Redis GET failed for '{key}': {e}") from e

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        client = self._require_client()
        try:
            client.setex(key, ttl_seconds, value)
        except RedisError as e:
            raise CacheStoreError(f"Redis SETEX failed for '{key}': {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self._require_client().ping())
        except (RedisError, CacheStoreError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


class MemoryCacheStore(CacheStore):
    """
    In-process store with per-entry expiry.

    When full, the entry closest to expiry is dropped to make room.
    """

    def __init__(self, max_items: int = 1000, clock=time.monotonic):
        self.max_items = max_items
        self._clock = clock
        self._entries: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                # Expired, remove from cache
                self._entries.pop(key, None)
                return None
            return value

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_items:
                oldest_key = min(self._entries.items(), key=lambda x: x[1][1])[0]
                self._entries.pop(oldest_key, None)
            self._entries[key] = (bytes(value), self._clock() + ttl_seconds)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._entries), "max_size": self.max_items}


def create_cache_store(backend: str, url: str, max_items: int = 1000) -> CacheStore:
    """Build the store named by configuration."""
    if backend == "memory":
        return MemoryCacheStore(max_items=max_items)
    if backend == "redis":
        return RedisCacheStore(url)
    raise ValueError(f"Unknown cache store backend: {backend}")
