"""
Customer profile: saved delivery addresses and the contact phone for riders.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import CustomerProfile

logger = logging.getLogger(__name__)

MAX_SAVED_ADDRESSES = 5


def _merge_address(addresses: List[str], address: str) -> List[str]:
    """Most recent first, no duplicates (case-insensitive), capped."""
    address = address.strip()
    rest = [a for a in addresses if a.strip().lower() != address.lower()]
    return ([address] + rest)[:MAX_SAVED_ADDRESSES]


def _load_addresses(raw) -> List[str]:
    if not raw:
        return []
    try:
        rows = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("Saved addresses unreadable, ignoring them: %s", e)
        return []
    if not isinstance(rows, list):
        return []
    return [str(a) for a in rows if a]


class ProfileStore(ABC):
    @abstractmethod
    async def get_addresses(self, business_id: str, phone_number: str) -> List[str]:
        ...

    @abstractmethod
    async def add_address(self, business_id: str, phone_number: str, address: str) -> List[str]:
        ...

    @abstractmethod
    async def get_contact_phone(self, business_id: str, phone_number: str) -> Optional[str]:
        ...

    @abstractmethod
    async def save_contact_phone(self, business_id: str, phone_number: str, contact_phone: str) -> None:
        ...


class MemoryProfileStore(ProfileStore):
    def __init__(self):
        self._addresses: Dict[Tuple[str, str], List[str]] = {}
        self._phones: Dict[Tuple[str, str], str] = {}

    async def get_addresses(self, business_id, phone_number):
        return list(self._addresses.get((business_id, phone_number), []))

    async def add_address(self, business_id, phone_number, address):
        key = (business_id, phone_number)
        self._addresses[key] = _merge_address(self._addresses.get(key, []), address)
        return list(self._addresses[key])

    async def get_contact_phone(self, business_id, phone_number):
        return self._phones.get((business_id, phone_number))

    async def save_contact_phone(self, business_id, phone_number, contact_phone):
        self._phones[(business_id, phone_number)] = contact_phone


class SqlProfileStore(ProfileStore):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @staticmethod
    async def _get(db: AsyncSession, business_id: str, phone_number: str) -> Optional[CustomerProfile]:
        return await db.scalar(
            select(CustomerProfile).where(
                CustomerProfile.business_id == business_id,
                CustomerProfile.phone_number == phone_number,
            )
        )

    async def _get_or_create(self, db: AsyncSession, business_id: str, phone_number: str) -> CustomerProfile:
        profile = await self._get(db, business_id, phone_number)
        if profile is None:
            profile = CustomerProfile(business_id=business_id, phone_number=phone_number, saved_addresses="[]")
            db.add(profile)
        return profile

    async def get_addresses(self, business_id, phone_number):
        async with self.session_maker() as db:
            profile = await self._get(db, business_id, phone_number)
            return _load_addresses(profile.saved_addresses) if profile else []

    async def add_address(self, business_id, phone_number, address):
        async with self.session_maker() as db:
            profile = await self._get_or_create(db, business_id, phone_number)
            addresses = _merge_address(_load_addresses(profile.saved_addresses), address)
            profile.saved_addresses = json.dumps(addresses, ensure_ascii=False)
            try:
                await db.commit()
            except IntegrityError:
                # Created concurrently; the next save lands on the existing row
                await db.rollback()
                logger.warning("Profile %s/%s created concurrently, address not saved", business_id, phone_number)
            return addresses

    async def get_contact_phone(self, business_id, phone_number):
        async with self.session_maker() as db:
            profile = await self._get(db, business_id, phone_number)
            return profile.contact_phone if profile else None

    async def save_contact_phone(self, business_id, phone_number, contact_phone):
        async with self.session_maker() as db:
            profile = await self._get_or_create(db, business_id, phone_number)
            profile.contact_phone = contact_phone
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning("Profile %s/%s created concurrently, phone not saved", business_id, phone_number)
