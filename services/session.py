"""
Conversation session: one per (business id, customer phone).

The state enum and typed queues live here; the store persists the cart and
the queues as JSON blobs and converts back through to_dict()/from_dict().
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from services.cart import Cart, CartItem, DEFAULT_PACK_ID
from services.pending import (
    PendingParent,
    PendingToppings,
    dump_queue,
    load_pending_parents,
    load_pending_toppings,
)
from services.pricing import AppliedDiscount
from states.order_states import OrderState

logger = logging.getLogger(__name__)


class DeliveryMethod(str, enum.Enum):
    DELIVERY = "Delivery"
    PICKUP = "Pickup"

    @classmethod
    def parse(cls, value) -> Optional["DeliveryMethod"]:
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class MissingStep(str, enum.Enum):
    LOCATION = "location selection"
    DELIVERY_METHOD = "delivery method selection"
    DELIVERY_ADDRESS = "delivery address"


@dataclass
class OrderSession:
    business_id: str
    phone_number: str
    state: OrderState = OrderState.LOCATION_SELECTION
    customer_name: str = ""
    cart: Cart = field(default_factory=Cart)
    pending_parents: List[PendingParent] = field(default_factory=list)
    pending_toppings: List[PendingToppings] = field(default_factory=list)

    location_id: Optional[str] = None
    restaurant_id: Optional[str] = None
    tax_exclusive: bool = False
    help_email: str = ""
    help_phone: str = ""

    delivery_method: Optional[DeliveryMethod] = None
    delivery_address: Optional[str] = None
    delivery_contact_phone: Optional[str] = None
    delivery_charge_id: Optional[str] = None

    discount: Optional[AppliedDiscount] = None
    notes: Optional[str] = None

    is_editing: bool = False
    editing_group_id: Optional[str] = None
    editing_quantity: int = 1
    # Options/toppings detached from the line being edited
    edit_children: List[CartItem] = field(default_factory=list)
    current_pack_id: Optional[str] = None

    menu_level: Optional[str] = None
    current_category_group: Optional[str] = None
    current_subcategory: Optional[str] = None
    small_catalog: bool = False

    last_interaction: Optional[datetime] = None
    version: int = 0
    is_new: bool = False

    @property
    def key(self) -> tuple:
        return (self.business_id, self.phone_number)

    @property
    def pack_id(self) -> str:
        return self.current_pack_id or DEFAULT_PACK_ID

    def missing_step(self) -> Optional[MissingStep]:
        """First upstream step the checkout still needs, or None."""
        if not self.location_id:
            return MissingStep.LOCATION
        if self.delivery_method is None:
            return MissingStep.DELIVERY_METHOD
        if self.delivery_method == DeliveryMethod.DELIVERY and not self.delivery_address:
            return MissingStep.DELIVERY_ADDRESS
        return None

    def clear_editing(self) -> None:
        self.is_editing = False
        self.editing_group_id = None
        self.editing_quantity = 1
        self.edit_children = []

    def reset_order(self) -> None:
        """Drop everything collected for the current order."""
        self.cart = Cart()
        self.pending_parents = []
        self.pending_toppings = []
        self.delivery_method = None
        self.delivery_address = None
        self.delivery_contact_phone = None
        self.delivery_charge_id = None
        self.location_id = None
        self.restaurant_id = None
        self.discount = None
        self.notes = None
        self.current_pack_id = None
        self.menu_level = None
        self.current_category_group = None
        self.current_subcategory = None
        self.clear_editing()

    def to_dict(self) -> dict:
        """Flat, JSON-friendly view; also used to detect mutations."""
        return {
            "business_id": self.business_id,
            "phone_number": self.phone_number,
            "state": self.state.value,
            "customer_name": self.customer_name,
            "cart_data": self.cart.to_json(),
            "pending_parents": dump_queue(self.pending_parents),
            "pending_toppings": dump_queue(self.pending_toppings),
            "location_id": self.location_id,
            "restaurant_id": self.restaurant_id,
            "tax_exclusive": self.tax_exclusive,
            "help_email": self.help_email,
            "help_phone": self.help_phone,
            "delivery_method": self.delivery_method.value if self.delivery_method else None,
            "delivery_address": self.delivery_address,
            "delivery_contact_phone": self.delivery_contact_phone,
            "delivery_charge_id": self.delivery_charge_id,
            "discount_data": json.dumps(self.discount.to_dict()) if self.discount else None,
            "notes": self.notes,
            "is_editing": self.is_editing,
            "editing_group_id": self.editing_group_id,
            "editing_quantity": self.editing_quantity,
            "edit_children": json.dumps([i.to_dict() for i in self.edit_children]),
            "current_pack_id": self.current_pack_id,
            "menu_level": self.menu_level,
            "current_category_group": self.current_category_group,
            "current_subcategory": self.current_subcategory,
            "small_catalog": self.small_catalog,
            "last_interaction": self.last_interaction,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderSession":
        cart = Cart.from_json(data.get("cart_data"))
        dropped = cart.drop_orphans()
        if dropped:
            logger.warning(
                "Dropped %d cart items without a parent for %s/%s",
                dropped, data.get("business_id"), data.get("phone_number"),
            )
        return cls(
            business_id=data["business_id"],
            phone_number=data["phone_number"],
            state=OrderState.parse(data.get("state")),
            customer_name=data.get("customer_name") or "",
            cart=cart,
            pending_parents=load_pending_parents(data.get("pending_parents")),
            pending_toppings=load_pending_toppings(data.get("pending_toppings")),
            location_id=data.get("location_id"),
            restaurant_id=data.get("restaurant_id"),
            tax_exclusive=bool(data.get("tax_exclusive")),
            help_email=data.get("help_email") or "",
            help_phone=data.get("help_phone") or "",
            delivery_method=DeliveryMethod.parse(data.get("delivery_method")),
            delivery_address=data.get("delivery_address"),
            delivery_contact_phone=data.get("delivery_contact_phone"),
            delivery_charge_id=data.get("delivery_charge_id"),
            discount=_load_discount(data.get("discount_data")),
            notes=data.get("notes"),
            is_editing=bool(data.get("is_editing")),
            editing_group_id=data.get("editing_group_id"),
            editing_quantity=int(data.get("editing_quantity") or 1),
            edit_children=Cart.from_json(data.get("edit_children")).items,
            current_pack_id=data.get("current_pack_id"),
            menu_level=data.get("menu_level"),
            current_category_group=data.get("current_category_group"),
            current_subcategory=data.get("current_subcategory"),
            small_catalog=bool(data.get("small_catalog")),
            last_interaction=data.get("last_interaction"),
            version=int(data.get("version") or 0),
        )

    def snapshot(self) -> dict:
        """Everything a handler may mutate (bookkeeping fields excluded)."""
        data = self.to_dict()
        data.pop("last_interaction")
        data.pop("version")
        return data


def _load_discount(raw) -> Optional[AppliedDiscount]:
    if not raw:
        return None
    try:
        return AppliedDiscount.from_dict(json.loads(raw) if isinstance(raw, str) else raw)
    except (TypeError, ValueError, ArithmeticError) as e:
        logger.warning("Discount blob unreadable, dropping it: %s", e)
        return None
