"""
TTL cache for catalog provider responses (locations, menus, categories).

Values are the provider's raw JSON payloads, not value objects, so the same
entry can be shared through Redis by every worker. Keys start with a scope
(business or restaurant id), so one scope can be invalidated on its own.
"""
from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Optional

from config import config

logger = logging.getLogger(__name__)


def catalog_key(scope: str, resource: str, *parts: str) -> str:
    return ":".join([scope or "-", resource, *[p or "-" for p in parts]])


class RedisCatalogCache:
    def __init__(self, redis_client, ttl_seconds: int = 300, prefix: str = "catalog:"):
        self.redis = redis_client
        self.ttl = ttl_seconds
        self.prefix = prefix

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.redis.get(self.prefix + key)
        except Exception as e:
            # A cache outage only costs a provider round trip
            logger.debug("Catalog cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping unreadable catalog cache entry %s", key)
            return None

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.redis.set(self.prefix + key, json.dumps(value, ensure_ascii=False), ex=self.ttl)
        except Exception as e:
            logger.warning("Catalog cache write failed for %s: %s", key, e)

    async def invalidate(self, scope: Optional[str] = None) -> int:
        """Drop one scope's entries (or all of them). Returns how many went."""
        pattern = f"{self.prefix}{scope}:*" if scope else f"{self.prefix}*"
        removed = 0
        try:
            async for redis_key in self.redis.scan_iter(match=pattern, count=200):
                removed += await self.redis.delete(redis_key)
        except Exception as e:
            logger.warning("Catalog cache invalidation failed (%s): %s", pattern, e)
        return removed

    async def clear(self) -> None:
        await self.invalidate()


class MemoryCatalogCache:
    """Per-process fallback: bounded, oldest entries evicted first."""

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 1024):
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (time.monotonic() + self.ttl, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def invalidate(self, scope: Optional[str] = None) -> int:
        if scope is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        stale = [k for k in self._entries if k.startswith(f"{scope}:")]
        for key in stale:
            del self._entries[key]
        return len(stale)

    async def clear(self) -> None:
        await self.invalidate()


async def init_cache(redis_client=None, ttl_seconds: Optional[int] = None) -> RedisCatalogCache | MemoryCatalogCache:
    """Redis cache when Redis answers, memory otherwise."""
    ttl = ttl_seconds if ttl_seconds is not None else config.CATALOG_CACHE_TTL
    if redis_client:
        try:
            await redis_client.ping()
            logger.info("Catalog responses cached in Redis (ttl=%ss)", ttl)
            return RedisCatalogCache(redis_client, ttl_seconds=ttl)
        except Exception as e:
            logger.warning("Redis not available for the catalog cache, using memory: %s", e)

    logger.info("Catalog responses cached in memory (ttl=%ss)", ttl)
    return MemoryCatalogCache(ttl_seconds=ttl)
