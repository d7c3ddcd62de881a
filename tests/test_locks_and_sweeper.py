import asyncio
from datetime import timedelta

import pytest

from services.clock import utcnow
from services.dedup import MemoryMessageLog
from services.errors import SessionConflictError, SessionLockTimeout
from services.locks import MemoryKeyLock, conversation_key, create_key_lock
from services.session_store import MemorySessionStore
from services.sweeper import prune_message_ids, sweep_once
from states.order_states import OrderState


def test_same_key_is_serialized():
    lock = MemoryKeyLock()
    trace = []

    async def turn(name):
        async with lock.hold("biz:234"):
            trace.append(f"{name} in")
            await asyncio.sleep(0.01)
            trace.append(f"{name} out")

    async def scenario():
        await asyncio.gather(turn("a"), turn("b"))

    asyncio.run(scenario())
    assert trace == ["a in", "a out", "b in", "b out"]
    assert not lock.is_locked("biz:234")
    assert lock._locks == {}


def test_different_keys_run_side_by_side():
    lock = MemoryKeyLock()
    trace = []

    async def turn(key):
        async with lock.hold(key):
            trace.append(f"{key} in")
            await asyncio.sleep(0.01)
            trace.append(f"{key} out")

    async def scenario():
        await asyncio.gather(turn("one"), turn("two"))

    asyncio.run(scenario())
    assert trace[:2] == ["one in", "two in"]


def test_waiting_too_long_times_out():
    lock = MemoryKeyLock(wait_timeout=0.05)

    async def scenario():
        async with lock.hold("k"):
            with pytest.raises(SessionLockTimeout):
                async with lock.hold("k"):
                    pass
        # Released normally afterwards
        async with lock.hold("k"):
            assert lock.is_locked("k")

    asyncio.run(scenario())


def test_holder_cannot_outlive_the_hold_timeout():
    lock = MemoryKeyLock(hold_timeout=0.05)

    async def scenario():
        with pytest.raises(TimeoutError):
            async with lock.hold("k"):
                await asyncio.sleep(1)
        assert not lock.is_locked("k")

    asyncio.run(scenario())


def test_lock_falls_back_to_memory_without_redis():
    class DeadRedis:
        async def ping(self):
            raise ConnectionError("refused")

    async def scenario():
        assert isinstance(await create_key_lock(None), MemoryKeyLock)
        assert isinstance(await create_key_lock(DeadRedis()), MemoryKeyLock)

    asyncio.run(scenario())
    assert conversation_key("biz", "234") == "biz:234"


def test_store_rejects_stale_saves():
    store = MemorySessionStore()

    async def scenario():
        created = await store.create("biz", "234", "Ada")
        assert created.is_new
        with pytest.raises(SessionConflictError):
            await store.create("biz", "234")

        first = await store.get("biz", "234")
        second = await store.get("biz", "234")
        assert not first.is_new
        first.notes = "no onions"
        await store.save(first)
        assert first.version == 1
        second.notes = "stale"
        with pytest.raises(SessionConflictError):
            await store.save(second)
        assert (await store.get("biz", "234")).notes == "no onions"

        assert await store.delete("biz", "234")
        assert not await store.delete("biz", "234")

    asyncio.run(scenario())


def age(store, key, minutes):
    store._rows[key]["last_interaction"] = utcnow() - timedelta(minutes=minutes)


def test_sweep_removes_idle_and_cancelled_sessions():
    store = MemorySessionStore()
    lock = MemoryKeyLock()

    async def scenario():
        await store.create("biz", "idle")
        await store.create("biz", "active")
        cancelled = await store.create("biz", "cancelled")
        cancelled.state = OrderState.CANCELLED
        await store.save(cancelled)
        age(store, ("biz", "idle"), 90)

        assert await sweep_once(store, lock, timedelta(minutes=60)) == 2
        assert await store.get("biz", "active") is not None
        assert await store.get("biz", "idle") is None
        assert await store.get("biz", "cancelled") is None

    asyncio.run(scenario())


def test_sweep_rechecks_before_deleting():
    class StaleListing(MemorySessionStore):
        async def list_expired(self, idle_before):
            return list(self._rows)

    store = StaleListing()

    async def scenario():
        await store.create("biz", "fresh")
        assert await sweep_once(store, MemoryKeyLock(), timedelta(minutes=60)) == 0
        assert await store.get("biz", "fresh") is not None

    asyncio.run(scenario())


def test_sweep_skips_busy_conversations():
    store = MemorySessionStore()
    lock = MemoryKeyLock(wait_timeout=0.02)

    async def scenario():
        await store.create("biz", "idle")
        age(store, ("biz", "idle"), 90)
        async with lock.hold(conversation_key("biz", "idle")):
            assert await sweep_once(store, lock, timedelta(minutes=60)) == 0
        assert await store.get("biz", "idle") is not None
        assert await sweep_once(store, lock, timedelta(minutes=60)) == 1

    asyncio.run(scenario())


def test_old_message_ids_are_forgotten():
    log = MemoryMessageLog()

    async def scenario():
        await log.remember("wamid.old", "biz", "234")
        await log.remember("wamid.new", "biz", "234")
        log._seen["wamid.old"] = utcnow() - timedelta(days=10)

        assert await prune_message_ids(log, timedelta(days=7)) == 1
        assert not await log.seen("wamid.old")
        assert await log.seen("wamid.new")
        assert await prune_message_ids(log, timedelta(days=7)) == 0

    asyncio.run(scenario())
