import asyncio
import logging

import pytest

from keyboards.instructions import TextPrompt
from middlewares.logging_middleware import LoggingMiddleware
from middlewares.rate_limit import (
    RATE_LIMIT_TEXT,
    MemoryRateLimitMiddleware,
    RedisRateLimitMiddleware,
    create_rate_limit_middleware,
)
from services.webhook_parser import EventKind, InboundEvent


class FakeRedis:
    """Just enough of redis.asyncio for INCR/EXPIRE counters."""

    def __init__(self, broken=False):
        self.counters = {}
        self.expiry = {}
        self.broken = broken

    async def ping(self):
        if self.broken:
            raise ConnectionError("refused")
        return True

    async def incr(self, key):
        if self.broken:
            raise ConnectionError("refused")
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key, seconds):
        self.expiry[key] = seconds


class ReplyRecorder:
    def __init__(self):
        self.replies = []

    async def reply(self, event, prompts):
        self.replies.append((event.phone_number, prompts))


def event(phone="234", text="hi"):
    return InboundEvent("biz", phone, EventKind.TEXT, text, message_id=f"wamid.{phone}.{text}")


def drive(middleware, events):
    handled = []
    engine = ReplyRecorder()

    async def handler(evt, data):
        handled.append(evt.content)
        return "done"

    async def scenario():
        for evt in events:
            await middleware(handler, evt, {"engine": engine})

    asyncio.run(scenario())
    return handled, engine.replies


def test_memory_limiter_warns_once_per_window():
    limiter = MemoryRateLimitMiddleware(max_calls=2, period=60)
    handled, replies = drive(limiter, [event(text=str(n)) for n in range(5)] + [event("999", "other")])
    assert handled == ["0", "1", "other"]
    assert replies == [("234", [TextPrompt(RATE_LIMIT_TEXT)])]


def test_memory_limiter_window_slides():
    limiter = MemoryRateLimitMiddleware(max_calls=1, period=60)
    limiter.calls[("biz", "234")] = [0.0]
    handled, replies = drive(limiter, [event(text="late")])
    assert handled == ["late"]
    assert replies == []


def test_redis_limiter_counts_per_customer():
    redis = FakeRedis()
    limiter = RedisRateLimitMiddleware(redis, max_calls=2, period=30)
    handled, replies = drive(limiter, [event(text=str(n)) for n in range(4)])
    assert handled == ["0", "1"]
    assert len(replies) == 1
    assert redis.counters == {"rate_limit:biz:234": 4}
    assert redis.expiry == {"rate_limit:biz:234": 30}


def test_redis_failure_lets_events_through():
    limiter = RedisRateLimitMiddleware(FakeRedis(broken=True), max_calls=1)
    handled, replies = drive(limiter, [event(text="a"), event(text="b")])
    assert handled == ["a", "b"]
    assert replies == []


def test_factory_prefers_redis_when_it_answers():
    async def scenario():
        assert isinstance(await create_rate_limit_middleware(FakeRedis()), RedisRateLimitMiddleware)
        assert isinstance(await create_rate_limit_middleware(FakeRedis(broken=True)), MemoryRateLimitMiddleware)
        assert isinstance(await create_rate_limit_middleware(None), MemoryRateLimitMiddleware)

    asyncio.run(scenario())


def test_logging_middleware_tags_and_reraises(caplog):
    middleware = LoggingMiddleware()
    seen = {}

    async def ok(evt, data):
        seen.update(data)
        return "ok"

    async def broken(evt, data):
        raise RuntimeError("boom")

    async def scenario():
        assert await middleware(ok, event(), {}) == "ok"
        with pytest.raises(RuntimeError):
            await middleware(broken, event(), {})

    with caplog.at_level(logging.INFO, logger="middlewares.logging_middleware"):
        asyncio.run(scenario())
    assert seen["trace_id"] == "wamid.234.hi"
    assert any(r.levelno == logging.ERROR and "boom" in r.getMessage() for r in caplog.records)
