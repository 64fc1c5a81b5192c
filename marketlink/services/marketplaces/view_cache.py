"""
Per-user cache of the computed marketplace list.

The cache is an optimisation only: read errors count as a miss, write and
invalidate errors are logged and dropped.

Each user has a generation counter next to the cached view. Invalidation
bumps it, and a view is only served when it was built under the current
generation. A listing that read the store before a concurrent write and
stores its result afterwards therefore never becomes visible.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from marketlink.core.exceptions import CacheUnavailableError
from marketlink.schemas.marketplace import ConnectionView
from marketlink.services.cache import KeyValueCache

logger = logging.getLogger(__name__)

VIEW_KEY_PREFIX = "marketplaces:view:"
GENERATION_KEY_PREFIX = "marketplaces:view-generation:"
VIEW_TTL_SECONDS = 300


class CachedMarketplaceView(BaseModel):
    generation: int
    views: List[ConnectionView]


class MarketplaceViewCache:

    def __init__(self, cache: KeyValueCache, ttl_seconds: int = VIEW_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{VIEW_KEY_PREFIX}{user_id}"

    @staticmethod
    def _generation_key(user_id: str) -> str:
        return f"{GENERATION_KEY_PREFIX}{user_id}"

    async def generation(self, user_id: str) -> Optional[int]:
        """
        Current generation for the user; capture it before reading the store.

        Returns:
            None when the cache cannot be read, in which case nothing should be cached
        """
        try:
            raw = await self.cache.get(self._generation_key(user_id))
        except CacheUnavailableError as e:
            logger.warning(f"Marketplace view generation read failed for user {user_id}: {e}")
            return None
        try:
            return int(raw or 0)
        except ValueError:
            logger.warning(f"Unreadable marketplace view generation for user {user_id}: {raw!r}")
            return None

    async def get(self, user_id: str) -> Optional[List[ConnectionView]]:
        try:
            raw = await self.cache.get(self._key(user_id))
        except CacheUnavailableError as e:
            logger.warning(f"Marketplace view cache read failed for user {user_id}, falling back to store: {e}")
            return None

        if raw is None:
            return None

        try:
            entry = CachedMarketplaceView.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Dropping unreadable marketplace view for user {user_id}: {e}")
            await self.invalidate(user_id)
            return None

        current = await self.generation(user_id)
        if current is None or entry.generation != current:
            logger.debug(f"Ignoring stale marketplace view for user {user_id}")
            return None
        return entry.views

    async def set(
        self,
        user_id: str,
        views: List[ConnectionView],
        generation: int,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        payload = CachedMarketplaceView(generation=generation, views=views).model_dump_json()
        try:
            await self.cache.set(self._key(user_id), payload, ttl_seconds or self.ttl_seconds)
        except CacheUnavailableError as e:
            logger.warning(f"Could not cache marketplace view for user {user_id}: {e}")

    async def invalidate(self, user_id: str) -> None:
        try:
            await self.cache.incr(self._generation_key(user_id))
        except CacheUnavailableError as e:
            logger.error(f"Could not bump marketplace view generation for user {user_id}: {e}")
        try:
            await self.cache.delete(self._key(user_id))
        except CacheUnavailableError as e:
            logger.error(f"Could not invalidate marketplace view for user {user_id}: {e}")
