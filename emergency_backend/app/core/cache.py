"""
Redis cache layer — async Redis client with JSON helpers.

Only used to memoise reverse-geocoding results. The cache is never
authoritative for emergency events: every event read goes through the
event store.

Provides:
    • Lazy async connection
    • JSON serialisation get/set with TTL and namespace prefix
    • Graceful degradation — any Redis error is a cache miss

Usage:
    cache = RedisCache(settings.REDIS_URL, prefix="geocode", default_ttl=86400)
    await cache.set("13.0827,80.2707", "Near Chennai")
    cached = await cache.get("13.0827,80.2707")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisCache:
    """Namespaced JSON cache on top of ``redis.asyncio``."""

    def __init__(self, url: str, *, prefix: str = "cache", default_ttl: int = 300):
        self._url = url
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._client: Optional[aioredis.Redis] = None

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis client created: %s", self._url.split("@")[-1])
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        """Get a cached value by key. Returns None on miss or error."""
        try:
            raw = await self._get_client().get(self._key(key))
            if raw is not None:
                return json.loads(raw)
        except Exception as e:
            logger.warning("Cache GET error for %s: %s", key, e)
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a cached value with optional TTL (seconds)."""
        try:
            serialised = json.dumps(value, default=str)
            await self._get_client().set(
                self._key(key), serialised, ex=ttl or self._default_ttl,
            )
            return True
        except Exception as e:
            logger.warning("Cache SET error for %s: %s", key, e)
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")
