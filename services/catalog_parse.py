"""
Provider payload -> value objects.

Both the REST provider (JSON objects) and the workbook provider (rows keyed
by lowercased header) go through these, so field aliases live in one place.
"""
from __future__ import annotations

from datetime import datetime, time
from typing import Any, List, Optional

from services.cart import to_decimal
from services.catalog_models import (
    Category,
    Charge,
    ChargeKind,
    DiscountKind,
    DiscountResult,
    Location,
    MenuItem,
    RecipeOption,
    RecipeParent,
    Tax,
    Topping,
)
from services.clock import as_utc

_TRUE = ("1", "true", "yes", "y", "on", "active")


def pick(data: dict, *names, default=None) -> Any:
    """First present, non-blank value among several field aliases."""
    for name in names:
        value = data.get(name)
        if value is not None and value != "":
            return value
    return default


def as_text(value, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def as_optional_text(value) -> Optional[str]:
    text = as_text(value)
    return text or None


def as_bool(value, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def as_time(value) -> Optional[time]:
    """09:00, 9:00 PM, a datetime or a time cell."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.time().replace(microsecond=0)
    if isinstance(value, time):
        return value.replace(microsecond=0)
    text = str(value).strip().upper()
    for fmt in ("%H:%M:%S", "%H:%M", "%I:%M %p", "%I:%M%p", "%I %p"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def as_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip().replace("Z", "+00:00")
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_location(data: dict) -> Location:
    return Location(
        id=as_text(pick(data, "id", "location_id")),
        name=as_text(pick(data, "name", "location_name")),
        address=as_text(pick(data, "address")),
        state=as_text(pick(data, "state")),
        restaurant_id=as_text(pick(data, "restaurant_id", "restaurant")),
        pickup_available=as_bool(pick(data, "pickup_available", "pickup"), default=True),
        tax_exclusive=as_bool(pick(data, "tax_exclusive")),
        packaging_enabled=as_bool(pick(data, "packaging_enabled", "packaging")),
        opening_time=as_time(pick(data, "opening_time", "opens")),
        closing_time=as_time(pick(data, "closing_time", "closes")),
        delivery_opening_time=as_time(pick(data, "delivery_opening_time", "delivery_opens")),
        delivery_closing_time=as_time(pick(data, "delivery_closing_time", "delivery_closes")),
        help_email=as_text(pick(data, "help_email", "email")),
        help_phone=as_text(pick(data, "help_phone", "phone")),
    )


def parse_recipe_parent(data: dict) -> RecipeParent:
    return RecipeParent(
        id=as_text(pick(data, "id", "group_id")),
        name=as_text(pick(data, "name", "group_name")),
        quantity=max(1, int(pick(data, "quantity", default=1))),
        options=[
            RecipeOption(as_text(pick(o, "item_id", "id")), as_text(pick(o, "name")))
            for o in data.get("options") or []
        ],
    )


def parse_menu_item(data: dict) -> MenuItem:
    return MenuItem(
        id=as_text(pick(data, "id", "item_id")),
        name=as_text(pick(data, "name")),
        price=to_decimal(pick(data, "price")),
        item_class_id=as_optional_text(pick(data, "item_class_id", "item_class")),
        tax_id=as_optional_text(pick(data, "tax_id")),
        retailer_id=as_optional_text(pick(data, "retailer_id")),
        set_id=as_optional_text(pick(data, "set_id", "category_id")),
        subcategory=as_optional_text(pick(data, "subcategory")),
        featured=as_bool(pick(data, "featured")),
        topping_class_id=as_optional_text(pick(data, "topping_class_id", "topping_class")),
        recipe_parents=[parse_recipe_parent(p) for p in data.get("recipe_parents") or []],
    )


def parse_topping(data: dict) -> Topping:
    return Topping(
        id=as_text(pick(data, "id", "item_id")),
        name=as_text(pick(data, "name")),
        price=to_decimal(pick(data, "price")),
        item_class_id=as_optional_text(pick(data, "item_class_id")),
        tax_id=as_optional_text(pick(data, "tax_id")),
    )


def parse_category(data: dict) -> Category:
    set_ids = data.get("set_ids") or []
    if isinstance(set_ids, str):
        set_ids = [s.strip() for s in set_ids.split(",") if s.strip()]
    return Category(
        id=as_text(pick(data, "id")),
        name=as_text(pick(data, "name")),
        set_ids=[as_text(s) for s in set_ids],
        is_grouping=as_bool(pick(data, "is_grouping"), default=True),
        subcategories=[as_text(s) for s in data.get("subcategories") or []],
    )


def parse_tax(data: dict) -> Tax:
    return Tax(
        id=as_text(pick(data, "id", "tax_id")),
        name=as_text(pick(data, "name"), "Tax"),
        rate=to_decimal(pick(data, "rate")),
    )


def parse_charge(data: dict) -> Charge:
    kind = as_text(pick(data, "kind", "type"), "takeout").lower()
    return Charge(
        id=as_text(pick(data, "id", "charge_id")),
        name=as_text(pick(data, "name")),
        amount=to_decimal(pick(data, "amount")),
        kind=ChargeKind.DELIVERY if kind == "delivery" else ChargeKind.TAKEOUT,
        active=as_bool(pick(data, "active", "is_active"), default=True),
        expires_at=as_datetime(pick(data, "expires_at", "expires", "expiry")),
    )


def parse_discount(code: str, data: dict, now: datetime) -> DiscountResult:
    expires_at = as_datetime(pick(data, "expires_at", "expires"))
    active = as_bool(pick(data, "active", "is_active"), default=True)
    if expires_at is not None and expires_at <= as_utc(now):
        active = False
    return DiscountResult(
        code=as_text(pick(data, "code"), code),
        active=active,
        kind=DiscountKind.parse(pick(data, "kind", "type", "discount_use_type")),
        value=to_decimal(pick(data, "value", "amount")),
    )


def parse_list(payload, key: str) -> List[dict]:
    """Accepts either a bare list or {"<key>": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        rows = payload.get(key)
        if isinstance(rows, list):
            return rows
    return []
