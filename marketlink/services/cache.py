"""
Key-value cache used for OAuth state tokens and cached marketplace views.

Two backends share one small async interface:
- RedisCache: redis.asyncio, for multi-process deployments
- MemoryCache: in-process TTL dictionary, for single-process runs and tests
"""

import asyncio
import logging
import math
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from marketlink.core.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)


class KeyValueCache(Protocol):

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def pop(self, key: str) -> Optional[str]:
        """Read and delete in one step; a second pop of the same key returns None."""
        ...

    async def incr(self, key: str) -> int:
        """Atomically add one to a counter that never expires; a missing key counts from 0."""
        ...

    async def close(self) -> None: ...


class RedisCache:

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisCache":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise CacheUnavailableError(f"Cache read failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise CacheUnavailableError(f"Cache write failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise CacheUnavailableError(f"Cache delete failed: {e}") from e

    async def pop(self, key: str) -> Optional[str]:
        try:
            return await self.client.getdel(key)
        except RedisError as e:
            raise CacheUnavailableError(f"Cache pop failed: {e}") from e

    async def incr(self, key: str) -> int:
        try:
            return await self.client.incr(key)
        except RedisError as e:
            raise CacheUnavailableError(f"Cache increment failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCache:
    """In-process cache with per-key expiry. Not shared between processes."""

    def __init__(self, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._timer() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live_value(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        async with self._lock:
            self._entries[key] = (value, self._timer() + ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def pop(self, key: str) -> Optional[str]:
        async with self._lock:
            value = self._live_value(key)
            self._entries.pop(key, None)
            return value

    async def incr(self, key: str) -> int:
        async with self._lock:
            value = int(self._live_value(key) or 0) + 1
            self._entries[key] = (str(value), math.inf)
            return value

    async def close(self) -> None:
        async with self._lock:
            self._entries.clear()


def create_cache(redis_url: str) -> KeyValueCache:
    if redis_url:
        logger.info("Using Redis cache")
        return RedisCache.from_url(redis_url)
    logger.info("REDIS_URL not set, using in-process cache")
    return MemoryCache()
