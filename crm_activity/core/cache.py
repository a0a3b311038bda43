import json
import logging
from typing import Any, Dict, Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class CacheService:
    """Short-lived JSON cache for overview totals, backed by async Redis.

    Keys are namespaced per purpose and user (``totals:overview:<user>``).
    If *redis_client* is ``None`` every call is a miss / no-op, so the
    summary service works unchanged without Redis.
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        *,
        namespace: str = "crm-activity",
    ) -> None:
        self._redis: Optional[Redis] = redis_client
        self._namespace = namespace

    @property
    def is_available(self) -> bool:
        return self._redis is not None

    def key(self, *parts: str) -> str:
        return ":".join((self._namespace, *parts))

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the cached document for *key*, or ``None`` on miss/failure."""
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(key)
        except Exception:
            logger.warning("Redis GET failed for key %s", key)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid JSON in cache key %s", key)
            return None

    async def set_json(self, key: str, data: Dict[str, Any], ttl: int) -> None:
        """Store *data* under *key* for *ttl* seconds (best-effort)."""
        if self._redis is None:
            return
        try:
            payload = json.dumps(data, default=str)
        except (TypeError, ValueError):
            logger.warning("Failed to serialise data for cache key %s", key)
            return
        try:
            await self._redis.setex(key, ttl, payload)
        except Exception:
            logger.warning("Redis SETEX failed for key %s", key)

    async def invalidate(self, key: str) -> None:
        """Drop *key* after a mutation so the next read is fresh."""
        if self._redis is None:
            return
        try:
            await self._redis.delete(key)
        except Exception:
            logger.warning("Redis DELETE failed for key %s", key)
