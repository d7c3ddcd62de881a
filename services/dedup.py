"""
Duplicate delivery suppression: every provider message id is handled once.

The engine asks `seen()` under the conversation lock and calls `remember()`
only after the turn went through, so a turn that failed can be redelivered.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import InboundMessage
from services.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


class MessageLog(ABC):
    @abstractmethod
    async def seen(self, message_id: str) -> bool:
        """True when the id was handled before."""

    @abstractmethod
    async def remember(self, message_id: str, business_id: str, phone_number: str) -> bool:
        """Record a handled id; False when it was already recorded."""

    @abstractmethod
    async def prune(self, older_than: datetime) -> int:
        """Forget ids received before `older_than`. Returns how many."""


class MemoryMessageLog(MessageLog):
    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._seen: "OrderedDict[str, datetime]" = OrderedDict()

    async def seen(self, message_id):
        return message_id in self._seen

    async def remember(self, message_id, business_id, phone_number):
        if message_id in self._seen:
            return False
        if len(self._seen) >= self.max_size:
            self._seen.popitem(last=False)
        self._seen[message_id] = utcnow()
        return True

    async def prune(self, older_than):
        cutoff = as_utc(older_than)
        stale = [m for m, received in self._seen.items() if received < cutoff]
        for message_id in stale:
            del self._seen[message_id]
        return len(stale)


class SqlMessageLog(MessageLog):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def seen(self, message_id):
        async with self.session_maker() as db:
            found = await db.scalar(select(InboundMessage.id).where(InboundMessage.message_id == message_id))
        return found is not None

    async def remember(self, message_id, business_id, phone_number):
        async with self.session_maker() as db:
            db.add(InboundMessage(
                message_id=message_id,
                business_id=business_id,
                phone_number=phone_number,
                received_at=utcnow(),
            ))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Message %s from %s was already recorded", message_id, phone_number)
                return False
        return True

    async def prune(self, older_than):
        async with self.session_maker() as db:
            result = await db.execute(delete(InboundMessage).where(InboundMessage.received_at < older_than))
            await db.commit()
        return result.rowcount or 0
