"""
Redis cache for dashboard reads.
Entries are indexed by the table they were read from so a change event on
that table can drop them. Each table also has an in-process generation,
bumped on every invalidation, so a read that raced an invalidation is not
cached. Redis problems never fail a request.
"""

import json
from typing import Any, Optional

import structlog
from redis import asyncio as aioredis

from config import settings
from models.records import ChangeEvent

logger = structlog.get_logger(__name__)


class CacheService:
    """Read-through JSON cache invalidated by backend change events."""

    def __init__(self, redis_url: Optional[str] = None, ttl: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.ttl = ttl or settings.redis_cache_ttl
        self._redis: aioredis.Redis | None = None
        self._generations: dict[str, int] = {}

    async def _get_redis(self) -> aioredis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    @staticmethod
    def _index_key(table: str) -> str:
        return f"cache-index:{table}"

    @staticmethod
    def make_key(table: str, *parts: Any) -> str:
        """Build a cache key scoped to a table."""
        suffix = ":".join(str(p) if p is not None else "all" for p in parts)
        return f"cache:{table}:{suffix}" if suffix else f"cache:{table}"

    async def get_json(self, key: str) -> Any:
        """Return the cached value, or None on miss or Redis failure."""
        try:
            redis = await self._get_redis()
            raw = await redis.get(key)
            if raw is None:
                return None
            return json.loads(raw)

        except Exception as e:
            logger.warning("cache_get_error", key=key, error=str(e))
            return None

    def generation(self, table: str) -> int:
        """Invalidation count for a table; read it before loading the value to cache."""
        return self._generations.get(table, 0)

    async def set_json(self, table: str, key: str, value: Any, generation: Optional[int] = None) -> None:
        """
        Store a value and index it under its table.

        When generation is given and the table has been invalidated since it
        was read, the value is stale and is not kept.
        """
        if generation is not None and generation != self.generation(table):
            logger.debug("cache_set_skipped_stale", key=key)
            return

        try:
            redis = await self._get_redis()
            await redis.set(key, json.dumps(value, default=str), ex=self.ttl)
            await redis.sadd(self._index_key(table), key)
            await redis.expire(self._index_key(table), self.ttl)

            # An invalidation that ran during the writes above may have missed this key
            if generation is not None and generation != self.generation(table):
                await redis.delete(key)

        except Exception as e:
            logger.warning("cache_set_error", key=key, error=str(e))

    async def invalidate_table(self, table: str) -> int:
        """
        Drop every cached entry read from a table.

        Returns:
            Number of keys removed
        """
        self._generations[table] = self.generation(table) + 1
        try:
            redis = await self._get_redis()
            index_key = self._index_key(table)
            keys = await redis.smembers(index_key)
            if not keys:
                return 0

            await redis.delete(*keys, index_key)
            logger.debug("cache_invalidated", table=table, keys=len(keys))
            return len(keys)

        except Exception as e:
            logger.warning("cache_invalidate_error", table=table, error=str(e))
            return 0

    async def handle_change(self, event: ChangeEvent) -> None:
        """Change feed subscriber: any change on a table invalidates its entries."""
        await self.invalidate_table(event.table)

    async def ping(self) -> bool:
        """True if Redis answers."""
        try:
            redis = await self._get_redis()
            return bool(await redis.ping())
        except Exception as e:
            logger.warning("cache_ping_error", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


# Singleton instance
cache_service = CacheService()
