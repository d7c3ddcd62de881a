import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

import database.models  # noqa: F401  (registers the tables)
from database.models import InboundMessage
from database.core import Base, build_engine, build_session_maker
from services.cart import Cart, CartItem
from services.catalog_models import OrderLine, OrderRequest, OrderResult
from services.clock import utcnow
from services.dedup import SqlMessageLog
from services.errors import SessionConflictError
from services.order_service import SqlOrderRecorder
from services.profile_service import SqlProfileStore
from services.session_store import SqlSessionStore
from states.order_states import OrderState


def run_with_db(tmp_path, scenario):
    async def run():
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.sqlite3'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        maker = build_session_maker(engine)
        try:
            await scenario(maker)
        finally:
            await engine.dispose()
    asyncio.run(run())


def test_session_rows_round_trip_with_version_checks(tmp_path):
    async def scenario(maker):
        store = SqlSessionStore(maker)
        assert await store.get("biz", "234") is None
        created = await store.create("biz", "234", "Ada")
        assert created.is_new and created.version == 0
        with pytest.raises(SessionConflictError):
            await store.create("biz", "234")

        session = await store.get("biz", "234")
        session.state = OrderState.ITEM_SELECTION
        session.cart = Cart([CartItem("jollof", "Jollof Rice", Decimal("2500"), quantity=2)])
        session.notes = ""
        stale = await store.get("biz", "234")
        await store.save(session)
        assert session.version == 1

        stale.notes = "late"
        with pytest.raises(SessionConflictError):
            await store.save(stale)

        loaded = await store.get("biz", "234")
        assert loaded.version == 1
        assert loaded.state == OrderState.ITEM_SELECTION
        assert loaded.customer_name == "Ada"
        assert loaded.notes == ""
        assert loaded.cart.items[0].quantity == 2
        assert loaded.cart.items[0].price == Decimal("2500")

        assert await store.delete("biz", "234")
        assert await store.get("biz", "234") is None

    run_with_db(tmp_path, scenario)


def test_sweeper_queries(tmp_path):
    async def scenario(maker):
        store = SqlSessionStore(maker)
        await store.create("biz", "a")
        cancelled = await store.create("biz", "b")
        cancelled.state = OrderState.CANCELLED
        await store.save(cancelled)

        assert await store.list_expired(utcnow() - timedelta(hours=1)) == []
        assert set(await store.list_expired(utcnow() + timedelta(minutes=1))) == {("biz", "a"), ("biz", "b")}
        assert await store.list_cancelled() == [("biz", "b")]

    run_with_db(tmp_path, scenario)


def test_message_ids_are_recorded_once_and_pruned(tmp_path):
    async def scenario(maker):
        log = SqlMessageLog(maker)
        assert not await log.seen("wamid.1")
        assert await log.remember("wamid.1", "biz", "234")
        assert await log.seen("wamid.1")
        assert not await log.remember("wamid.1", "biz", "234")

        async with maker() as db:
            db.add(InboundMessage(
                message_id="wamid.old", business_id="biz", phone_number="234",
                received_at=utcnow() - timedelta(days=10),
            ))
            await db.commit()
        assert await log.prune(utcnow() - timedelta(days=7)) == 1
        assert not await log.seen("wamid.old")
        assert await log.seen("wamid.1")

    run_with_db(tmp_path, scenario)


def test_profiles_keep_recent_unique_addresses(tmp_path):
    async def scenario(maker):
        profiles = SqlProfileStore(maker)
        assert await profiles.get_addresses("biz", "234") == []
        assert await profiles.get_contact_phone("biz", "234") is None

        for n in range(6):
            await profiles.add_address("biz", "234", f"{n} Allen Avenue, Ikeja")
        addresses = await profiles.add_address("biz", "234", "3 ALLEN AVENUE, IKEJA")
        assert addresses[0] == "3 ALLEN AVENUE, IKEJA"
        assert len(addresses) == 5
        assert "0 Allen Avenue, Ikeja" not in addresses
        assert await profiles.get_addresses("biz", "234") == addresses

        await profiles.save_contact_phone("biz", "234", "08012345678")
        assert await profiles.get_contact_phone("biz", "234") == "08012345678"
        assert await profiles.get_addresses("biz", "other") == []

    run_with_db(tmp_path, scenario)


def test_orders_are_recorded_with_items(tmp_path):
    request = OrderRequest(
        business_id="biz",
        phone_number="234",
        customer_name="Ada",
        location_id="L1",
        restaurant_id="R1",
        service_type="Pickup",
        address="PICKUP",
        adjustments="",
        lines=[
            OrderLine("combo", "Combo Meal", 1, Decimal("5000"), Decimal("5000"), grouping_id="g1"),
            OrderLine("coke", "Coke", 1, Decimal("0"), Decimal("0"), grouping_id="g1", parent_item_id="drinks"),
        ],
        subtotal=Decimal("5000.00"),
        tax_id=None,
        tax_rate=Decimal("0"),
        tax=Decimal("0.00"),
        charge_ids=[],
        charges=Decimal("0.00"),
        discount_code=None,
        discount=Decimal("0.00"),
        total=Decimal("5000.00"),
    )
    result = OrderResult("WA-12345678", "First Bank", "0123456789", "Mama's Kitchen", Decimal("5000.00"))

    async def scenario(maker):
        recorder = SqlOrderRecorder(maker)
        await recorder.record(request, result, notes="", contact_phone=None)
        order = await recorder.get_order_with_items("WA-12345678")
        assert order.total == Decimal("5000.00")
        assert order.bank_name == "First Bank"
        assert [(i.product_id, i.parent_item_id) for i in order.items] == [("combo", None), ("coke", "drinks")]
        assert await recorder.get_order_with_items("missing") is None

    run_with_db(tmp_path, scenario)
