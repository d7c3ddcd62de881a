"""
Value objects returned by catalog/pricing providers.

Providers build them from whatever they read (REST JSON, an Excel workbook);
handlers and the pricing engine only ever see these.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal
from typing import List, Optional

from services.clock import as_utc


class ChargeKind(str, enum.Enum):
    DELIVERY = "delivery"
    TAKEOUT = "takeout"


class DiscountKind(str, enum.Enum):
    PERCENT = "Percent"
    AMOUNT = "Amount"

    @classmethod
    def parse(cls, value) -> "DiscountKind":
        text = str(value or "").strip().lower()
        if text in ("percent", "percentage", "%"):
            return cls.PERCENT
        return cls.AMOUNT


@dataclass(slots=True)
class Location:
    id: str
    name: str
    address: str = ""
    state: str = ""
    restaurant_id: str = ""
    pickup_available: bool = True
    tax_exclusive: bool = False
    packaging_enabled: bool = False
    opening_time: Optional[time] = None
    closing_time: Optional[time] = None
    delivery_opening_time: Optional[time] = None
    delivery_closing_time: Optional[time] = None
    help_email: str = ""
    help_phone: str = ""


@dataclass(slots=True)
class RecipeOption:
    item_id: str
    name: str


@dataclass(slots=True)
class RecipeParent:
    """A required option set: choose `quantity` options from `options`."""
    id: str
    name: str
    quantity: int = 1
    options: List[RecipeOption] = field(default_factory=list)


@dataclass(slots=True)
class MenuItem:
    id: str
    name: str
    price: Decimal = Decimal("0")
    item_class_id: Optional[str] = None
    tax_id: Optional[str] = None
    retailer_id: Optional[str] = None
    set_id: Optional[str] = None
    subcategory: Optional[str] = None
    featured: bool = False
    topping_class_id: Optional[str] = None
    recipe_parents: List[RecipeParent] = field(default_factory=list)

    @property
    def is_recipe(self) -> bool:
        return bool(self.recipe_parents)

    @property
    def has_toppings(self) -> bool:
        return bool(self.topping_class_id)

    @property
    def catalog_id(self) -> str:
        """Product id used in catalog messages."""
        return self.retailer_id or self.id


@dataclass(slots=True)
class Topping:
    id: str
    name: str
    price: Decimal = Decimal("0")
    item_class_id: Optional[str] = None
    tax_id: Optional[str] = None


@dataclass(slots=True)
class Category:
    """A browsable menu category: a grouping of product sets, or one set."""
    id: str
    name: str
    set_ids: List[str] = field(default_factory=list)
    is_grouping: bool = True
    subcategories: List[str] = field(default_factory=list)

    @property
    def token(self) -> str:
        return f"CAT_{self.id}" if self.is_grouping else f"CAT_SET_{self.id}"


@dataclass(slots=True)
class Tax:
    id: str
    name: str
    rate: Decimal = Decimal("0")


@dataclass(slots=True)
class Charge:
    id: str
    name: str
    amount: Decimal = Decimal("0")
    kind: ChargeKind = ChargeKind.TAKEOUT
    active: bool = True
    expires_at: Optional[datetime] = None

    def is_available(self, now: datetime) -> bool:
        if not self.active:
            return False
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > as_utc(now)


@dataclass(slots=True)
class DiscountResult:
    code: str
    active: bool
    kind: DiscountKind = DiscountKind.AMOUNT
    value: Decimal = Decimal("0")


@dataclass(slots=True)
class OrderLine:
    item_id: str
    name: str
    quantity: int
    price: Decimal
    amount: Decimal
    grouping_id: Optional[str] = None
    parent_item_id: Optional[str] = None
    is_topping: bool = False
    pack_id: Optional[str] = None


@dataclass(slots=True)
class OrderRequest:
    business_id: str
    phone_number: str
    customer_name: str
    location_id: str
    restaurant_id: str
    service_type: str
    address: str
    adjustments: str
    lines: List[OrderLine]
    subtotal: Decimal
    tax_id: Optional[str]
    tax_rate: Decimal
    tax: Decimal
    charge_ids: List[str]
    charges: Decimal
    discount_code: Optional[str]
    discount: Decimal
    total: Decimal


@dataclass(slots=True)
class OrderResult:
    reference: str
    bank_name: str = ""
    account_number: str = ""
    account_name: str = ""
    total: Optional[Decimal] = None
