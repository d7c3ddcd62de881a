"""
Background cleanup of idle and cancelled conversations, and of old handled
message ids.

Each delete happens under the conversation lock and only after the
condition is checked again, so an event that arrives meanwhile keeps its
session.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from services.clock import as_utc, utcnow
from services.errors import SessionLockTimeout
from services.locks import conversation_key
from states.order_states import OrderState

logger = logging.getLogger(__name__)

# Background task (cancelled on shutdown)
_sweep_task: Optional[asyncio.Task] = None


async def _delete_if(store, lock, key, should_delete) -> bool:
    business_id, phone_number = key
    try:
        async with lock.hold(conversation_key(business_id, phone_number)):
            session = await store.get(business_id, phone_number)
            if session is None or not should_delete(session):
                return False
            return await store.delete(business_id, phone_number)
    except SessionLockTimeout:
        logger.info("Sweep skipped busy conversation %s/%s", business_id, phone_number)
        return False


async def prune_message_ids(message_log, retention: timedelta, now: Optional[datetime] = None) -> int:
    """Forget handled message ids received more than `retention` ago."""
    now = now or utcnow()
    pruned = await message_log.prune(now - retention)
    if pruned:
        logger.info("Message log: pruned %d ids older than %s", pruned, retention)
    return pruned


async def sweep_once(store, lock, idle_timeout: timedelta, now: Optional[datetime] = None) -> int:
    """One pass. Returns the number of sessions deleted."""
    now = now or utcnow()
    cutoff = now - idle_timeout

    def is_idle(session) -> bool:
        return session.last_interaction is not None and as_utc(session.last_interaction) < cutoff

    def is_cancelled(session) -> bool:
        return session.state == OrderState.CANCELLED

    deleted = 0
    for key in await store.list_expired(cutoff):
        if await _delete_if(store, lock, key, is_idle):
            deleted += 1
    for key in await store.list_cancelled():
        if await _delete_if(store, lock, key, is_cancelled):
            deleted += 1
    if deleted:
        logger.info("Session sweep: deleted %d sessions", deleted)
    return deleted


async def _sweep_loop(store, lock, idle_timeout: timedelta, interval: int, message_log, retention: timedelta):
    logger.info("Session sweeper started (interval=%ds, idle=%s)", interval, idle_timeout)
    while True:
        try:
            await sweep_once(store, lock, idle_timeout)
            if message_log is not None:
                await prune_message_ids(message_log, retention)
        except asyncio.CancelledError:
            logger.info("Session sweeper stopped")
            return
        except Exception as e:
            logger.error("Session sweep iteration error: %s", e, exc_info=True)
        await asyncio.sleep(interval)


def start_sweeper(
    store,
    lock,
    idle_minutes: int = 60,
    interval: int = 300,
    message_log=None,
    retention_days: int = 7,
) -> None:
    """Start the background sweep (called from main.py)."""
    global _sweep_task
    _sweep_task = asyncio.create_task(_sweep_loop(
        store, lock, timedelta(minutes=idle_minutes), interval, message_log, timedelta(days=retention_days),
    ))


def stop_sweeper() -> None:
    global _sweep_task
    if _sweep_task and not _sweep_task.done():
        _sweep_task.cancel()
    _sweep_task = None
