"""
Pricing engine.

Pure functions over a Cart and provider facts (tax rate, charges, discount).
All money is Decimal rounded half away from zero to 2 places.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from services.cart import Cart
from services.catalog_models import Charge, DiscountKind
from services.clock import utcnow

CENT = Decimal("0.01")
PACKAGING_KEYWORDS = ("pack", "disposable", "plastic")


def round_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_packaging_charge(name: str) -> bool:
    lowered = (name or "").lower()
    return any(word in lowered for word in PACKAGING_KEYWORDS)


@dataclass(slots=True)
class AppliedDiscount:
    code: str
    kind: DiscountKind
    value: Decimal
    amount: Decimal = Decimal("0")

    def amount_for(self, subtotal: Decimal) -> Decimal:
        """Percent discounts follow the current subtotal, amounts are fixed."""
        if self.kind == DiscountKind.PERCENT:
            return round_money(subtotal * self.value / Decimal(100))
        return round_money(self.value)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "value": str(self.value),
            "amount": str(self.amount),
        }

    @staticmethod
    def from_dict(data: Optional[dict]) -> Optional["AppliedDiscount"]:
        if not data or not data.get("code"):
            return None
        return AppliedDiscount(
            code=str(data["code"]),
            kind=DiscountKind.parse(data.get("kind")),
            value=Decimal(str(data.get("value") or "0")),
            amount=Decimal(str(data.get("amount") or "0")),
        )


@dataclass(slots=True)
class ChargeLine:
    charge_id: str
    name: str
    unit_amount: Decimal
    multiplier: int = 1
    is_delivery: bool = False

    @property
    def total(self) -> Decimal:
        return round_money(self.unit_amount * self.multiplier)


@dataclass(slots=True)
class PriceBreakdown:
    subtotal: Decimal
    tax_rate: Decimal
    tax: Decimal
    charges: List[ChargeLine] = field(default_factory=list)
    discount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")

    @property
    def charges_total(self) -> Decimal:
        return round_money(sum((c.total for c in self.charges), Decimal("0")))

    @property
    def charge_ids(self) -> List[str]:
        return [c.charge_id for c in self.charges]

    @property
    def delivery_charge(self) -> Optional[ChargeLine]:
        for line in self.charges:
            if line.is_delivery:
                return line
        return None


def cart_subtotal(cart: Cart) -> Decimal:
    return round_money(sum((item.line_total for item in cart), Decimal("0")))


def price_cart(
    cart: Cart,
    *,
    tax_rate: Decimal = Decimal("0"),
    tax_exclusive: bool = False,
    base_charges: Iterable[Charge] = (),
    delivery_charges: Iterable[Charge] = (),
    delivery_charge_id: Optional[str] = None,
    discount: Optional[AppliedDiscount] = None,
    now: Optional[datetime] = None,
    floor_at_zero: bool = False,
    pack_count: Optional[int] = None,
) -> PriceBreakdown:
    """
    subtotal + tax + charges - discount.

    Charges are re-validated against `now`; an expired or inactive charge is
    dropped even if it was valid when the customer picked it.
    """
    now = now or utcnow()
    subtotal = cart_subtotal(cart)
    rate = Decimal(tax_rate or 0)
    tax = round_money(subtotal * rate / Decimal(100)) if tax_exclusive else Decimal("0.00")

    packs = pack_count if pack_count is not None else max(1, len(cart.pack_ids()))
    lines: List[ChargeLine] = []
    for charge in base_charges:
        if not charge.is_available(now):
            continue
        multiplier = packs if is_packaging_charge(charge.name) else 1
        lines.append(ChargeLine(charge.id, charge.name, charge.amount, multiplier))

    if delivery_charge_id:
        for charge in delivery_charges:
            if str(charge.id) == str(delivery_charge_id) and charge.is_available(now):
                lines.append(ChargeLine(charge.id, charge.name, charge.amount, 1, is_delivery=True))
                break

    discount_amount = discount.amount_for(subtotal) if discount else Decimal("0")
    breakdown = PriceBreakdown(
        subtotal=subtotal,
        tax_rate=rate,
        tax=tax,
        charges=lines,
        discount=round_money(discount_amount),
    )
    total = round_money(subtotal + tax + breakdown.charges_total - breakdown.discount)
    if floor_at_zero and total < 0:
        total = Decimal("0.00")
    breakdown.total = total
    return breakdown
