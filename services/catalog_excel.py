"""
Workbook-backed catalog provider for single-restaurant deployments.

Sheets (first row is the header, names are case-insensitive):
    Locations  id, name, address, state, restaurant_id, pickup, tax_exclusive,
               packaging, opens, closes, delivery_opens, delivery_closes,
               help_email, help_phone, bank_name, account_number, account_name
    Items      id, name, price, category, subcategory, featured, retailer_id,
               item_class_id, tax_id, topping_class, location_id
    Options    item_id, group_id, group_name, quantity, option_id, option_name
    Toppings   topping_class, id, name, price
    Taxes      location_id, id, name, rate
    Charges    location_id, id, name, amount, type, active, expires
    Discounts  code, type, value, active, expires, restaurant_id

A blank location_id means "every location".
"""
from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from openpyxl import load_workbook

from services.catalog_models import (
    Category,
    Charge,
    ChargeKind,
    DiscountResult,
    Location,
    MenuItem,
    OrderRequest,
    OrderResult,
    RecipeOption,
    RecipeParent,
    Tax,
    Topping,
)
from services.catalog_parse import (
    as_text,
    parse_charge,
    parse_discount,
    parse_location,
    parse_menu_item,
    parse_tax,
    parse_topping,
)
from services.catalog_provider import CatalogProvider
from services.clock import utcnow
from services.errors import CatalogError

logger = logging.getLogger(__name__)


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "menu"


def _sheet_rows(wb, name: str) -> List[dict]:
    """Rows of a sheet as dicts keyed by the lowercased header."""
    sheet = next((wb[s] for s in wb.sheetnames if s.lower() == name.lower()), None)
    if sheet is None:
        return []
    rows = sheet.iter_rows(values_only=True)
    header = next(rows, None)
    if not header:
        return []
    keys = [str(h).strip().lower().replace(" ", "_") if h is not None else "" for h in header]
    result = []
    for row in rows:
        if row is None or all(v is None or v == "" for v in row):
            continue
        result.append({k: v for k, v in zip(keys, row) if k})
    return result


class ExcelCatalogProvider(CatalogProvider):
    def __init__(self, path: str):
        self.path = Path(path)
        self.locations: List[Location] = []
        self.payment: Dict[str, dict] = {}
        self.items: List[tuple[MenuItem, str]] = []
        self.toppings: Dict[str, List[Topping]] = {}
        self.taxes: List[tuple[Tax, str]] = []
        self.charges: List[tuple[Charge, str]] = []
        self.discounts: List[dict] = []
        self._category_names: Dict[str, str] = {}
        self.load()

    def load(self) -> None:
        if not self.path.exists():
            logger.error("Catalog workbook not found: %s", self.path)
            raise CatalogError(f"catalog workbook not found: {self.path}")
        wb = load_workbook(self.path, data_only=True, read_only=True)
        try:
            self._load_locations(wb)
            recipes = self._load_recipes(wb)
            self._load_items(wb, recipes)
            for row in _sheet_rows(wb, "Toppings"):
                self.toppings.setdefault(as_text(row.get("topping_class")), []).append(parse_topping(row))
            self.taxes = [(parse_tax(r), as_text(r.get("location_id"))) for r in _sheet_rows(wb, "Taxes")]
            self.charges = [(parse_charge(r), as_text(r.get("location_id"))) for r in _sheet_rows(wb, "Charges")]
            self.discounts = _sheet_rows(wb, "Discounts")
        finally:
            wb.close()
        logger.info(
            "Catalog workbook loaded: %s locations, %s items, %s charges",
            len(self.locations), len(self.items), len(self.charges),
        )

    def _load_locations(self, wb) -> None:
        for row in _sheet_rows(wb, "Locations"):
            location = parse_location(row)
            if not location.id:
                continue
            self.locations.append(location)
            self.payment[location.id] = {
                "bank_name": as_text(row.get("bank_name")),
                "account_number": as_text(row.get("account_number")),
                "account_name": as_text(row.get("account_name")),
            }

    @staticmethod
    def _load_recipes(wb) -> Dict[str, List[RecipeParent]]:
        recipes: Dict[str, Dict[str, RecipeParent]] = {}
        for row in _sheet_rows(wb, "Options"):
            item_id = as_text(row.get("item_id"))
            group_id = as_text(row.get("group_id"))
            if not item_id or not group_id:
                continue
            groups = recipes.setdefault(item_id, {})
            group = groups.get(group_id)
            if group is None:
                group = groups[group_id] = RecipeParent(
                    id=group_id,
                    name=as_text(row.get("group_name"), group_id),
                    quantity=max(1, int(row.get("quantity") or 1)),
                )
            group.options.append(RecipeOption(as_text(row.get("option_id")), as_text(row.get("option_name"))))
        return {item_id: list(groups.values()) for item_id, groups in recipes.items()}

    def _load_items(self, wb, recipes: Dict[str, List[RecipeParent]]) -> None:
        for row in _sheet_rows(wb, "Items"):
            category = as_text(row.get("category"), "Menu")
            if not row.get("set_id"):
                row["set_id"] = _slug(category)
            item = parse_menu_item(row)
            if not item.id:
                continue
            self._category_names.setdefault(item.set_id, category)
            item.recipe_parents = recipes.get(item.id, [])
            self.items.append((item, as_text(row.get("location_id"))))

    async def get_locations(self, business_id: str) -> List[Location]:
        return list(self.locations)

    async def get_products(self, location: Location) -> List[MenuItem]:
        return [item for item, owner in self.items if not owner or owner == location.id]

    async def get_categories(self, location: Location) -> List[Category]:
        products = await self.get_products(location)
        categories: Dict[str, Category] = {}
        for item in products:
            set_id = item.set_id or "menu"
            category = categories.get(set_id)
            if category is None:
                category = categories[set_id] = Category(
                    id=set_id,
                    name=self._category_names.get(set_id, set_id),
                    set_ids=[set_id],
                    is_grouping=False,
                )
            if item.subcategory and item.subcategory not in category.subcategories:
                category.subcategories.append(item.subcategory)
        return list(categories.values())

    async def get_toppings(self, location: Location, topping_class_id: str) -> List[Topping]:
        return list(self.toppings.get(topping_class_id, []))

    async def get_taxes(self, location: Location) -> List[Tax]:
        return [tax for tax, owner in self.taxes if not owner or owner == location.id]

    async def get_charges(self, location: Location, kind: ChargeKind) -> List[Charge]:
        return [
            charge for charge, owner in self.charges
            if charge.kind == kind and (not owner or owner == location.id)
        ]

    async def validate_discount(self, restaurant_id: str, code: str) -> Optional[DiscountResult]:
        wanted = code.strip().lower()
        for row in self.discounts:
            if as_text(row.get("code")).lower() != wanted:
                continue
            owner = as_text(row.get("restaurant_id"))
            if owner and restaurant_id and owner != restaurant_id:
                continue
            return parse_discount(code, row, utcnow())
        return None

    async def submit_order(self, request: OrderRequest) -> OrderResult:
        payment = self.payment.get(request.location_id, {})
        reference = f"WA-{uuid.uuid4().hex[:8].upper()}"
        logger.info("Order %s accepted for %s total=%s", reference, request.phone_number, request.total)
        return OrderResult(
            reference=reference,
            bank_name=payment.get("bank_name", ""),
            account_number=payment.get("account_number", ""),
            account_name=payment.get("account_name", ""),
            total=request.total,
        )
