import asyncio
from decimal import Decimal

from conftest import FakeCatalog
from services.cart import Cart, CartItem
from services.catalog_models import DiscountKind, Tax
from services.order_service import (
    PICKUP_ADDRESS,
    MemoryOrderRecorder,
    OrderService,
    build_order_request,
    order_lines,
)
from services.pricing import AppliedDiscount, price_cart
from services.session import DeliveryMethod, OrderSession


def combo_session(**fields):
    session = OrderSession(
        "biz", "234", customer_name="Ada", location_id="L1", restaurant_id="R1",
        cart=Cart([
            CartItem("combo", "Combo Meal", Decimal("5000"), grouping_id="g1"),
            CartItem("coke", "Coke", Decimal("300"), grouping_id="g1", parent_item_id="drinks"),
            CartItem("cheese", "Cheese", Decimal("500"), grouping_id="g1", is_topping=True, main_item_id="combo"),
        ]),
        **fields,
    )
    return session


def test_options_are_sent_without_an_amount():
    lines = order_lines(combo_session())
    assert [(l.item_id, l.amount) for l in lines] == [
        ("combo", Decimal("5000")),
        ("coke", Decimal("0")),
        ("cheese", Decimal("500")),
    ]
    assert lines[2].is_topping


def test_pickup_request():
    session = combo_session(delivery_method=DeliveryMethod.PICKUP, notes="")
    breakdown = price_cart(session.cart, tax_rate=Decimal("7.5"), tax_exclusive=True)
    request = build_order_request(session, breakdown, [Tax("vat", "VAT", Decimal("7.5"))])
    assert request.service_type == "Pickup"
    assert request.address == PICKUP_ADDRESS
    assert request.adjustments == ""
    assert request.tax_id == "vat"
    assert request.subtotal == Decimal("5500.00")
    assert request.total == breakdown.total


def test_delivery_request_appends_the_contact_phone():
    session = combo_session(
        delivery_method=DeliveryMethod.DELIVERY,
        delivery_address="1 Allen Avenue, Ikeja",
        delivery_contact_phone="08012345678",
        notes="",
        discount=AppliedDiscount("FLAT500", DiscountKind.AMOUNT, Decimal("500")),
    )
    breakdown = price_cart(session.cart, discount=session.discount)
    request = build_order_request(session, breakdown)
    assert request.address == "1 Allen Avenue, Ikeja"
    assert request.adjustments == "08012345678"
    assert request.discount_code == "FLAT500"
    assert request.discount == Decimal("500.00")
    assert request.tax_id is None


def test_pickup_ignores_a_stale_contact_phone():
    session = combo_session(delivery_method=DeliveryMethod.PICKUP, delivery_contact_phone="0801", notes="Hot")
    request = build_order_request(session, price_cart(session.cart))
    assert request.adjustments == "Hot"


def test_place_order_records_the_accepted_order():
    catalog = FakeCatalog()
    recorder = MemoryOrderRecorder()
    service = OrderService(catalog, recorder)
    session = combo_session(delivery_method=DeliveryMethod.PICKUP, notes="No ice")

    result, error = asyncio.run(service.place_order(session, price_cart(session.cart)))
    assert error is None
    assert result.reference == "REF-1"
    assert result.total == Decimal("5500.00")
    request, recorded, notes = recorder.orders[0]
    assert recorded is result
    assert notes == "No ice"
    assert catalog.submitted == [request]


def test_rejected_order_is_reported():
    catalog = FakeCatalog()
    catalog.fail_submit = True
    recorder = MemoryOrderRecorder()
    session = combo_session(delivery_method=DeliveryMethod.PICKUP)

    result, error = asyncio.run(OrderService(catalog, recorder).place_order(session, price_cart(session.cart)))
    assert result is None
    assert error
    assert recorder.orders == []


def test_local_copy_failure_does_not_fail_the_order():
    class BrokenRecorder(MemoryOrderRecorder):
        async def record(self, request, result, notes=None, contact_phone=None):
            raise RuntimeError("disk full")

    session = combo_session(delivery_method=DeliveryMethod.PICKUP)
    result, error = asyncio.run(OrderService(FakeCatalog(), BrokenRecorder()).place_order(session, price_cart(session.cart)))
    assert error is None
    assert result.reference == "REF-1"
