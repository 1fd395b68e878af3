"""Redis cache for user profile lookups, degrading to no-cache when Redis is down."""

import json
from typing import Any, Optional
from redis import asyncio as aioredis
from app.config import settings
from app.logger import logger

# ==================== Cache Keys ====================

USER_BY_ID_PREFIX = "journal:user:id"


def make_cache_key(prefix: str, identifier: Any) -> str:
    """Namespaced cache key, e.g. ``journal:user:id:123``."""
    return f"{prefix}:{identifier}"

# ==================== Cache Manager ====================


class CacheManager:
    """Manages the Redis connection and cache operations.

    If Redis is unavailable every operation is a silent miss, so callers fall
    through to the database.
    """

    def __init__(self):
        self._redis: Optional[aioredis.Redis] = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self):
        """Open the connection pool and verify it with a ping."""
        if self._redis is None:
            try:
                self._redis = await aioredis.from_url(
                    settings.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                )
                await self._redis.ping()
                logger.info("[cache] Connected to Redis")
            except Exception as e:
                logger.error(f"[cache] Failed to connect to Redis: {e}")
                self._redis = None

    async def disconnect(self):
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("[cache] Disconnected from Redis")

    async def get(self, key: str) -> Optional[dict]:
        """Cached dict for ``key``, or None on miss or error."""
        if not self._redis:
            return None

        try:
            value = await self._redis.get(key)
            if value:
                logger.debug(f"[cache] HIT: {key}")
                return json.loads(value)
            logger.debug(f"[cache] MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"[cache] Error getting key {key}: {e}")
            return None

    async def set(self, key: str, value: dict, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable dict. Returns False when not stored."""
        if not self._redis:
            return False

        try:
            ttl = ttl or settings.CACHE_TTL
            await self._redis.setex(key, ttl, json.dumps(value, default=str))
            logger.debug(f"[cache] SET: {key} (TTL={ttl}s)")
            return True
        except Exception as e:
            logger.error(f"[cache] Error setting key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if not self._redis:
            return False

        try:
            await self._redis.delete(key)
            logger.debug(f"[cache] DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"[cache] Error deleting key {key}: {e}")
            return False

    async def health_check(self) -> bool:
        if not self._redis:
            return False

        try:
            await self._redis.ping()
            return True
        except Exception:
            return False

# ==================== Global Instance ====================

cache_manager = CacheManager()
