"""
Catalog/pricing provider interface.

Everything the conversation needs to know about a restaurant comes through
here: locations, menu, recipes, toppings, taxes, charges, discounts, and
order submission. Implementations: services.catalog_http (REST) and
services.catalog_excel (workbook).
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from services.catalog_models import (
    Category,
    Charge,
    ChargeKind,
    DiscountResult,
    Location,
    MenuItem,
    OrderRequest,
    OrderResult,
    RecipeParent,
    Tax,
    Topping,
)

logger = logging.getLogger(__name__)


class CatalogProvider(ABC):
    @abstractmethod
    async def get_locations(self, business_id: str) -> List[Location]:
        ...

    @abstractmethod
    async def get_products(self, location: Location) -> List[MenuItem]:
        """All sellable products of a location."""

    @abstractmethod
    async def get_categories(self, location: Location) -> List[Category]:
        ...

    @abstractmethod
    async def get_toppings(self, location: Location, topping_class_id: str) -> List[Topping]:
        ...

    @abstractmethod
    async def get_taxes(self, location: Location) -> List[Tax]:
        ...

    @abstractmethod
    async def get_charges(self, location: Location, kind: ChargeKind) -> List[Charge]:
        ...

    @abstractmethod
    async def validate_discount(self, restaurant_id: str, code: str) -> Optional[DiscountResult]:
        """None when the code is unknown."""

    @abstractmethod
    async def submit_order(self, request: OrderRequest) -> OrderResult:
        ...

    async def get_location(self, business_id: str, location_id: str) -> Optional[Location]:
        for location in await self.get_locations(business_id):
            if location.id == location_id:
                return location
        return None

    async def get_menu_items(self, location: Location, item_ids: Iterable[str]) -> List[MenuItem]:
        wanted = set(item_ids)
        return [item for item in await self.get_products(location) if item.id in wanted]

    async def get_menu_item(self, location: Location, item_id: str) -> Optional[MenuItem]:
        """Lookup by item id, falling back to the catalog retailer id."""
        products = await self.get_products(location)
        for item in products:
            if item.id == item_id:
                return item
        for item in products:
            if item.retailer_id and item.retailer_id == item_id:
                return item
        return None

    async def get_recipe(self, location: Location, item_id: str) -> List[RecipeParent]:
        item = await self.get_menu_item(location, item_id)
        return list(item.recipe_parents) if item else []

    async def get_category_products(self, location: Location, set_ids: Iterable[str]) -> List[MenuItem]:
        wanted = set(set_ids)
        return [item for item in await self.get_products(location) if item.set_id in wanted]

    async def search_products(self, location: Location, query: str) -> List[MenuItem]:
        needle = query.strip().lower()
        if not needle:
            return []
        return [item for item in await self.get_products(location) if needle in item.name.lower()]

    async def close(self) -> None:
        return None


def create_catalog_provider(settings, cache=None) -> CatalogProvider:
    if settings.CATALOG_MODE == "http":
        from services.catalog_http import HttpCatalogProvider
        logger.info("Catalog provider: HTTP %s", settings.CATALOG_API_URL)
        return HttpCatalogProvider(
            base_url=settings.CATALOG_API_URL,
            api_key=settings.CATALOG_API_KEY,
            timeout=settings.CATALOG_TIMEOUT,
            attempts=settings.CATALOG_RETRY_ATTEMPTS,
            cache=cache,
            # Calls run under the conversation lock and must end well inside its hold time
            deadline=min(settings.CATALOG_DEADLINE, settings.SESSION_LOCK_TIMEOUT / 2),
        )
    from services.catalog_excel import ExcelCatalogProvider
    logger.info("Catalog provider: workbook %s", settings.CATALOG_EXCEL_PATH)
    return ExcelCatalogProvider(settings.CATALOG_EXCEL_PATH)
