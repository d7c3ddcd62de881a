"""
Per-conversation mutual exclusion.

RedisKeyLock works across worker processes (SET NX PX plus a token-checked
release). MemoryKeyLock is the single-process fallback. Both bound how long
a caller waits and how long a holder may keep the key.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from services.errors import SessionLockTimeout

logger = logging.getLogger(__name__)

# Delete only if the caller still owns the key
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisKeyLock:
    def __init__(
        self,
        redis_client,
        hold_timeout: float = 30.0,
        wait_timeout: float = 10.0,
        key_prefix: str = "order_lock:",
        poll_interval: float = 0.05,
    ):
        self.redis = redis_client
        self.hold_timeout = hold_timeout
        self.wait_timeout = wait_timeout
        self.key_prefix = key_prefix
        self.poll_interval = poll_interval

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    @asynccontextmanager
    async def hold(self, key: str):
        redis_key = self._key(key)
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.wait_timeout
        ttl_ms = int(self.hold_timeout * 1000)
        while True:
            if await self.redis.set(redis_key, token, nx=True, px=ttl_ms):
                break
            if time.monotonic() >= deadline:
                raise SessionLockTimeout(f"lock {key} busy for {self.wait_timeout}s")
            await asyncio.sleep(self.poll_interval)
        try:
            # The key expires on its own; the body must not outlive it
            async with asyncio.timeout(self.hold_timeout):
                yield
        finally:
            try:
                await self.redis.eval(_RELEASE_SCRIPT, 1, redis_key, token)
            except Exception as e:
                logger.warning("Lock release failed for %s (expires by TTL): %s", key, e)


class MemoryKeyLock:
    def __init__(self, hold_timeout: float = 30.0, wait_timeout: float = 10.0):
        self.hold_timeout = hold_timeout
        self.wait_timeout = wait_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_timeout)
            except asyncio.TimeoutError:
                raise SessionLockTimeout(f"lock {key} busy for {self.wait_timeout}s")
            try:
                async with asyncio.timeout(self.hold_timeout):
                    yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                # Nobody waiting: drop the entry so the dict stays bounded
                self._users.pop(key, None)
                self._locks.pop(key, None)


def conversation_key(business_id: str, phone_number: str) -> str:
    return f"{business_id}:{phone_number}"


async def create_key_lock(
    redis_client=None,
    hold_timeout: float = 30.0,
    wait_timeout: float = 10.0,
) -> RedisKeyLock | MemoryKeyLock:
    """Redis-backed lock when Redis answers, in-process lock otherwise."""
    if redis_client:
        try:
            await redis_client.ping()
            return RedisKeyLock(redis_client, hold_timeout, wait_timeout)
        except Exception as e:
            logger.warning("Redis not available for conversation locks, using memory: %s", e)

    return MemoryKeyLock(hold_timeout, wait_timeout)
