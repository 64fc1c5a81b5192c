"""
OAuth `state` parameter handling.

A state token is random, bound to the user who asked for the authorization
URL, valid for ten minutes and usable once. The user id only ever comes
from the cache entry, never from the token text.
"""

import json
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable

from marketlink.core.exceptions import InvalidStateError
from marketlink.core.utils import utc_now
from marketlink.services.cache import KeyValueCache

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "oauth:state:"
STATE_TTL_SECONDS = 600
STATE_TOKEN_BYTES = 32

# token_urlsafe output only; anything else is rejected before a cache lookup
_STATE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22,128}$")


class StateTokenService:

    def __init__(
        self,
        cache: KeyValueCache,
        ttl_seconds: int = STATE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    @staticmethod
    def _key(state: str) -> str:
        return f"{STATE_KEY_PREFIX}{state}"

    async def issue(self, user_id: str) -> str:
        """
        Create and store a new state token for the user.

        Cache failures propagate: no authorization URL goes out without a
        stored state behind it.
        """
        if not user_id:
            raise ValueError("user_id is required to issue an OAuth state")

        state = secrets.token_urlsafe(STATE_TOKEN_BYTES)
        entry = json.dumps({
            "user_id": user_id,
            "created_at": self.clock().isoformat(),
        })
        await self.cache.set(self._key(state), entry, self.ttl_seconds)
        logger.debug(f"Issued OAuth state for user {user_id}")
        return state

    async def consume(self, state: str) -> str:
        """
        Redeem a state token.

        Returns:
            The user id the state was issued for

        Raises:
            InvalidStateError: missing, malformed, expired or already used
        """
        if not state or not _STATE_PATTERN.match(state):
            raise InvalidStateError("Missing or malformed OAuth state")

        raw = await self.cache.pop(self._key(state))
        if raw is None:
            raise InvalidStateError("OAuth state is unknown, expired or already used")

        try:
            entry = json.loads(raw)
            user_id = entry["user_id"]
            created_at = datetime.fromisoformat(entry["created_at"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable OAuth state entry: {e}")
            raise InvalidStateError("OAuth state entry is corrupt") from e

        if not isinstance(user_id, str) or not user_id:
            raise InvalidStateError("OAuth state entry is corrupt")

        if self.clock() - created_at > timedelta(seconds=self.ttl_seconds):
            logger.info(f"Rejected expired OAuth state for user {user_id}")
            raise InvalidStateError("OAuth state has expired")

        return user_id
