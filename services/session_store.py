"""
Session persistence.

SqlSessionStore keeps one row per (business, phone) in `order_sessions`;
MemorySessionStore is the in-process twin used by tests and local runs.
Both reject a save whose version no longer matches the stored one.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import OrderSessionRecord
from services.clock import utcnow
from services.errors import SessionConflictError
from services.session import OrderSession
from states.order_states import OrderState

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


class SessionStore(ABC):
    @abstractmethod
    async def get(self, business_id: str, phone_number: str) -> Optional[OrderSession]:
        ...

    @abstractmethod
    async def create(self, business_id: str, phone_number: str, customer_name: str = "") -> OrderSession:
        ...

    @abstractmethod
    async def save(self, session: OrderSession) -> None:
        """Compare-and-swap on session.version; bumps it on success."""

    @abstractmethod
    async def delete(self, business_id: str, phone_number: str) -> bool:
        ...

    @abstractmethod
    async def list_expired(self, idle_before: datetime) -> List[SessionKey]:
        ...

    @abstractmethod
    async def list_cancelled(self) -> List[SessionKey]:
        ...


class MemorySessionStore(SessionStore):
    """Rows are kept as dicts so callers never share live objects with the store."""

    def __init__(self):
        self._rows: Dict[SessionKey, dict] = {}

    async def get(self, business_id, phone_number):
        row = self._rows.get((business_id, phone_number))
        return OrderSession.from_dict(row) if row else None

    async def create(self, business_id, phone_number, customer_name=""):
        key = (business_id, phone_number)
        if key in self._rows:
            raise SessionConflictError(business_id, phone_number, 0)
        session = OrderSession(
            business_id=business_id,
            phone_number=phone_number,
            customer_name=customer_name or "",
            last_interaction=utcnow(),
        )
        self._rows[key] = session.to_dict()
        session.is_new = True
        return session

    async def save(self, session):
        row = self._rows.get(session.key)
        if row is None or row["version"] != session.version:
            raise SessionConflictError(session.business_id, session.phone_number, session.version)
        session.version += 1
        session.last_interaction = utcnow()
        self._rows[session.key] = session.to_dict()

    async def delete(self, business_id, phone_number):
        return self._rows.pop((business_id, phone_number), None) is not None

    async def list_expired(self, idle_before):
        return [key for key, row in self._rows.items() if row["last_interaction"] < idle_before]

    async def list_cancelled(self):
        return [key for key, row in self._rows.items() if row["state"] == OrderState.CANCELLED.value]


_COLUMNS = (
    "state", "customer_name", "cart_data", "pending_parents", "pending_toppings",
    "location_id", "restaurant_id", "tax_exclusive", "help_email", "help_phone",
    "delivery_method", "delivery_address", "delivery_contact_phone", "delivery_charge_id",
    "discount_data", "notes", "is_editing", "editing_group_id", "editing_quantity",
    "edit_children", "current_pack_id", "menu_level", "current_category_group",
    "current_subcategory", "small_catalog",
)


def _record_to_dict(record: OrderSessionRecord) -> dict:
    data = {name: getattr(record, name) for name in _COLUMNS}
    data.update(
        business_id=record.business_id,
        phone_number=record.phone_number,
        version=record.version,
        last_interaction=record.last_interaction,
    )
    return data


class SqlSessionStore(SessionStore):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get(self, business_id, phone_number):
        async with self.session_maker() as db:
            record = await db.scalar(
                select(OrderSessionRecord).where(
                    OrderSessionRecord.business_id == business_id,
                    OrderSessionRecord.phone_number == phone_number,
                )
            )
            return OrderSession.from_dict(_record_to_dict(record)) if record else None

    async def create(self, business_id, phone_number, customer_name=""):
        session = OrderSession(
            business_id=business_id,
            phone_number=phone_number,
            customer_name=customer_name or "",
            last_interaction=utcnow(),
        )
        values = session.to_dict()
        async with self.session_maker() as db:
            db.add(OrderSessionRecord(
                business_id=business_id,
                phone_number=phone_number,
                version=0,
                last_interaction=session.last_interaction,
                **{name: values[name] for name in _COLUMNS},
            ))
            try:
                await db.commit()
            except IntegrityError:
                # Another worker created the row first
                await db.rollback()
                raise SessionConflictError(business_id, phone_number, 0)
        session.is_new = True
        return session

    async def save(self, session):
        values = session.to_dict()
        now = utcnow()
        async with self.session_maker() as db:
            result = await db.execute(
                update(OrderSessionRecord)
                .where(
                    OrderSessionRecord.business_id == session.business_id,
                    OrderSessionRecord.phone_number == session.phone_number,
                    OrderSessionRecord.version == session.version,
                )
                .values(
                    version=session.version + 1,
                    last_interaction=now,
                    **{name: values[name] for name in _COLUMNS},
                )
            )
            if result.rowcount != 1:
                await db.rollback()
                raise SessionConflictError(session.business_id, session.phone_number, session.version)
            await db.commit()
        session.version += 1
        session.last_interaction = now

    async def delete(self, business_id, phone_number):
        async with self.session_maker() as db:
            result = await db.execute(
                delete(OrderSessionRecord).where(
                    OrderSessionRecord.business_id == business_id,
                    OrderSessionRecord.phone_number == phone_number,
                )
            )
            await db.commit()
            return result.rowcount > 0

    async def list_expired(self, idle_before):
        async with self.session_maker() as db:
            rows = await db.execute(
                select(OrderSessionRecord.business_id, OrderSessionRecord.phone_number)
                .where(OrderSessionRecord.last_interaction < idle_before)
            )
            return [(r.business_id, r.phone_number) for r in rows]

    async def list_cancelled(self):
        async with self.session_maker() as db:
            rows = await db.execute(
                select(OrderSessionRecord.business_id, OrderSessionRecord.phone_number)
                .where(OrderSessionRecord.state == OrderState.CANCELLED.value)
            )
            return [(r.business_id, r.phone_number) for r in rows]
