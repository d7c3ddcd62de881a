from datetime import timedelta
from decimal import Decimal

from services.cart import Cart, CartItem
from services.catalog_models import Charge, ChargeKind, DiscountKind
from services.clock import utcnow
from services.pricing import AppliedDiscount, is_packaging_charge, price_cart, round_money


def cart_of(*items):
    return Cart(CartItem(item_id, item_id, Decimal(price), quantity=qty, pack_id=pack)
                for item_id, price, qty, pack in items)


def test_exclusive_tax_is_added_on_top():
    breakdown = price_cart(cart_of(("jollof", "2500", 1, "pack1")), tax_rate=Decimal("7.5"), tax_exclusive=True)
    assert breakdown.subtotal == Decimal("2500.00")
    assert breakdown.tax == Decimal("187.50")
    assert breakdown.total == Decimal("2687.50")


def test_inclusive_tax_adds_nothing():
    breakdown = price_cart(cart_of(("jollof", "2500", 1, "pack1")), tax_rate=Decimal("7.5"))
    assert breakdown.tax == Decimal("0.00")
    assert breakdown.total == Decimal("2500.00")


def test_packaging_charges_scale_with_packs():
    cart = cart_of(("jollof", "1000", 1, "pack1"), ("burger", "1000", 1, "pack2"))
    charges = [
        Charge("p", "Disposable Pack", Decimal("150")),
        Charge("s", "Service", Decimal("100")),
    ]
    breakdown = price_cart(cart, base_charges=charges)
    assert [(c.charge_id, c.multiplier, c.total) for c in breakdown.charges] == [
        ("p", 2, Decimal("300.00")),
        ("s", 1, Decimal("100.00")),
    ]
    assert breakdown.charges_total == Decimal("400.00")
    assert breakdown.total == Decimal("2400.00")


def test_expired_and_inactive_charges_are_dropped():
    now = utcnow()
    charges = [
        Charge("gone", "Old fee", Decimal("100"), expires_at=now - timedelta(minutes=1)),
        Charge("off", "Off fee", Decimal("100"), active=False),
        Charge("ok", "Fee", Decimal("100"), expires_at=now + timedelta(days=1)),
    ]
    breakdown = price_cart(cart_of(("jollof", "1000", 1, "pack1")), base_charges=charges, now=now)
    assert breakdown.charge_ids == ["ok"]


def test_delivery_charge_is_revalidated():
    now = utcnow()
    areas = [
        Charge("a1", "Area 1", Decimal("1000"), ChargeKind.DELIVERY),
        Charge("a2", "Area 2", Decimal("800"), ChargeKind.DELIVERY, expires_at=now - timedelta(hours=1)),
    ]
    cart = cart_of(("jollof", "1000", 1, "pack1"))
    chosen = price_cart(cart, delivery_charges=areas, delivery_charge_id="a1", now=now)
    assert chosen.delivery_charge.charge_id == "a1"
    assert chosen.total == Decimal("2000.00")

    expired = price_cart(cart, delivery_charges=areas, delivery_charge_id="a2", now=now)
    assert expired.delivery_charge is None
    assert expired.total == Decimal("1000.00")


def test_percent_discount_follows_subtotal():
    discount = AppliedDiscount("SAVE10", DiscountKind.PERCENT, Decimal("10"))
    small = price_cart(cart_of(("jollof", "2500", 1, "pack1")), discount=discount)
    large = price_cart(cart_of(("jollof", "2500", 2, "pack1")), discount=discount)
    assert small.discount == Decimal("250.00")
    assert large.discount == Decimal("500.00")
    assert large.total == Decimal("4500.00")


def test_amount_discount_can_exceed_total_unless_floored():
    discount = AppliedDiscount("BIG", DiscountKind.AMOUNT, Decimal("5000"))
    cart = cart_of(("jollof", "2500", 1, "pack1"))
    assert price_cart(cart, discount=discount).total == Decimal("-2500.00")
    assert price_cart(cart, discount=discount, floor_at_zero=True).total == Decimal("0.00")


def test_rounding_is_half_up():
    assert round_money(Decimal("0.125")) == Decimal("0.13")
    assert round_money(Decimal("2.675")) == Decimal("2.68")
    breakdown = price_cart(cart_of(("x", "1.50", 1, "pack1")), tax_rate=Decimal("7.5"), tax_exclusive=True)
    # 1.50 * 7.5% = 0.1125
    assert breakdown.tax == Decimal("0.11")


def test_packaging_keywords():
    assert is_packaging_charge("Takeaway Pack")
    assert is_packaging_charge("PLASTIC bag")
    assert not is_packaging_charge("Service charge")
    assert not is_packaging_charge(None)


def test_discount_serialization():
    discount = AppliedDiscount("SAVE10", DiscountKind.PERCENT, Decimal("10"), Decimal("250.00"))
    assert AppliedDiscount.from_dict(discount.to_dict()) == discount
    assert AppliedDiscount.from_dict({}) is None


def test_delivery_order_with_exclusive_tax():
    area = Charge("area", "Area 1", Decimal("500"), ChargeKind.DELIVERY)
    breakdown = price_cart(
        cart_of(("jollof", "2500", 1, "pack1")),
        tax_rate=Decimal("5"),
        tax_exclusive=True,
        delivery_charges=[area],
        delivery_charge_id="area",
    )
    assert (breakdown.subtotal, breakdown.tax, breakdown.charges_total, breakdown.discount) == (
        Decimal("2500.00"), Decimal("125.00"), Decimal("500.00"), Decimal("0.00"),
    )
    assert breakdown.total == Decimal("3125.00")


def test_subtotal_ignores_insertion_order():
    items = [("jollof", "2500", 2, "pack1"), ("burger", "3000", 1, "pack1"), ("water", "150", 3, "pack1")]
    assert price_cart(cart_of(*items)).subtotal == price_cart(cart_of(*reversed(items))).subtotal
