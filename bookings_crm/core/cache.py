import logging
from typing import Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class CacheService:
    """Thin wrapper around an async Redis client.

    If *redis_client* is ``None`` (Redis unavailable), every operation
    reports "unavailable" instead of raising, and callers fall back to
    process memory.
    """

    def __init__(self, redis_client: Optional[Redis] = None) -> None:
        self._redis: Optional[Redis] = redis_client

    # ------------------------------------------------------------------
    # Atomic claim, used by the duplicate-request guard
    # ------------------------------------------------------------------

    async def set_if_absent(self, key: str, value: str, ttl: int) -> Optional[bool]:
        """Atomically store *value* unless *key* already exists.

        Returns ``True`` when the key was claimed, ``False`` when it was
        already present, and ``None`` if Redis is unavailable so the
        caller can fall back to an in-process map.
        """
        if self._redis is None:
            return None
        try:
            claimed = await self._redis.set(key, value, ex=ttl, nx=True)
            return bool(claimed)
        except Exception:
            logger.warning("Redis SET NX failed for key %s", key)
            return None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_available(self) -> bool:
        """Return ``True`` if a Redis client is configured."""
        return self._redis is not None
