"""
Per-customer rate limiting, backed by Redis for multi-instance deployments.
"""
from collections import defaultdict
from typing import Callable, Dict, Any, Awaitable
import time
import logging

from keyboards.instructions import TextPrompt
from services.webhook_parser import InboundEvent

logger = logging.getLogger(__name__)

RATE_LIMIT_TEXT = "⚠️ Too many requests. Please wait a moment."


async def _refuse(event: InboundEvent, data: Dict[str, Any]) -> None:
    engine = data.get("engine")
    if engine is not None:
        await engine.reply(event, [TextPrompt(RATE_LIMIT_TEXT)])


class RedisRateLimitMiddleware:
    """Request limit kept in Redis."""

    def __init__(
        self,
        redis_client,
        max_calls: int = 30,
        period: float = 60.0,
        key_prefix: str = "rate_limit:"
    ):
        """
        Args:
            redis_client: async Redis client
            max_calls: events allowed per period
            period: period in seconds
            key_prefix: Redis key prefix
        """
        self.redis = redis_client
        self.max_calls = max_calls
        self.period = int(period)
        self.key_prefix = key_prefix

    def _key(self, event: InboundEvent) -> str:
        return f"{self.key_prefix}{event.business_id}:{event.phone_number}"

    async def __call__(
        self,
        handler: Callable[[InboundEvent, Dict[str, Any]], Awaitable[Any]],
        event: InboundEvent,
        data: Dict[str, Any]
    ) -> Any:
        if not event.phone_number:
            return await handler(event, data)

        try:
            key = self._key(event)
            # INCR + EXPIRE keeps the window atomic per key
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, self.period)
        except Exception as e:
            logger.warning("Rate limit error for %s: %s", event.phone_number, e)
            # Redis failure lets the event through
            return await handler(event, data)

        if current > self.max_calls:
            logger.info("Rate limit hit for %s (%s events)", event.phone_number, current)
            if current == self.max_calls + 1:
                await _refuse(event, data)
            return None

        return await handler(event, data)


class MemoryRateLimitMiddleware:
    """In-memory rate limiting (fallback)."""

    def __init__(self, max_calls: int = 30, period: float = 60.0):
        self.max_calls = max_calls
        self.period = period
        self.calls = defaultdict(list)
        self.warned = set()

    async def __call__(
        self,
        handler: Callable[[InboundEvent, Dict[str, Any]], Awaitable[Any]],
        event: InboundEvent,
        data: Dict[str, Any]
    ) -> Any:
        if not event.phone_number:
            return await handler(event, data)

        now = time.time()
        key = (event.business_id, event.phone_number)
        user_calls = self.calls[key]
        # Drop calls outside the window
        user_calls[:] = [t for t in user_calls if now - t < self.period]

        if len(user_calls) >= self.max_calls:
            logger.info("Rate limit hit for %s", event.phone_number)
            if key not in self.warned:
                self.warned.add(key)
                await _refuse(event, data)
            return None

        self.warned.discard(key)
        user_calls.append(now)
        return await handler(event, data)


async def create_rate_limit_middleware(
    redis_client=None,
    max_calls: int = 30,
    period: float = 60.0
) -> RedisRateLimitMiddleware | MemoryRateLimitMiddleware:
    """
    Build the rate limiting middleware.

    Args:
        redis_client: optional Redis client
        max_calls: events allowed per period
        period: period in seconds

    Returns:
        Redis-backed middleware when Redis answers, memory-backed otherwise
    """
    if redis_client:
        try:
            await redis_client.ping()
            return RedisRateLimitMiddleware(redis_client, max_calls, period)
        except Exception as e:
            logger.warning("Redis not available for rate limiting, using memory: %s", e)

    return MemoryRateLimitMiddleware(max_calls, period)
