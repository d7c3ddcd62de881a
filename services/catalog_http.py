"""
REST catalog/pricing provider.

Expected endpoints (JSON, `X-API-Key` header):
    GET  /locations?business_id=...                 {"locations": [...]}
    GET  /locations/{id}/products                   {"products": [...]}
    GET  /locations/{id}/categories                 {"categories": [...]}
    GET  /locations/{id}/toppings/{class_id}        {"toppings": [...]}
    GET  /locations/{id}/taxes                      {"taxes": [...]}
    GET  /locations/{id}/charges?type=delivery      {"charges": [...]}
    POST /discounts/validate                        {"code", "active", "type", "value"}
    POST /orders                                    {"reference", "bank_name", ...}
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import aiohttp

from services.cache import catalog_key
from services.catalog_models import (
    Category,
    Charge,
    ChargeKind,
    DiscountResult,
    Location,
    MenuItem,
    OrderRequest,
    OrderResult,
    Tax,
    Topping,
)
from services.catalog_parse import (
    as_text,
    parse_category,
    parse_charge,
    parse_discount,
    parse_list,
    parse_location,
    parse_menu_item,
    parse_tax,
    parse_topping,
)
from services.catalog_provider import CatalogProvider
from services.clock import utcnow
from services.errors import CatalogError
from services.retry import retry

logger = logging.getLogger(__name__)


def _order_payload(request: OrderRequest) -> dict:
    return {
        "business_id": request.business_id,
        "phone_number": request.phone_number,
        "customer_name": request.customer_name,
        "location_id": request.location_id,
        "restaurant_id": request.restaurant_id,
        "service_type": request.service_type,
        "address": request.address,
        "adjustments": request.adjustments,
        "items": [
            {
                "item_id": line.item_id,
                "name": line.name,
                "quantity": line.quantity,
                "price": str(line.price),
                "amount": str(line.amount),
                "grouping_id": line.grouping_id,
                "parent_item_id": line.parent_item_id,
                "is_topping": line.is_topping,
                "pack_id": line.pack_id,
            }
            for line in request.lines
        ],
        "subtotal": str(request.subtotal),
        "tax_id": request.tax_id,
        "tax_rate": str(request.tax_rate),
        "tax": str(request.tax),
        "charge_ids": request.charge_ids,
        "charges": str(request.charges),
        "discount_code": request.discount_code,
        "discount": str(request.discount),
        "total": str(request.total),
    }


class HttpCatalogProvider(CatalogProvider):
    """aiohttp client for the restaurant platform API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: int = 20,
        attempts: int = 3,
        cache=None,
        deadline: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-API-Key": api_key, "Accept": "application/json"}
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.attempts = attempts
        self.cache = cache
        # Wall-clock bound on one call including every retry and backoff
        self.deadline = deadline
        self._session: Optional[aiohttp.ClientSession] = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, attempts: Optional[int] = None, **kwargs):
        @retry(max_attempts=attempts or self.attempts, delay=1.0, exceptions=(aiohttp.ClientError, asyncio.TimeoutError))
        async def call():
            async with self._client().request(method, f"{self.base_url}{path}", **kwargs) as resp:
                resp.raise_for_status()
                return await resp.json()

        try:
            async with asyncio.timeout(self.deadline):
                return await call()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("Catalog API error [%s %s]: %r", method, path, e)
            raise CatalogError(f"{method} {path} failed: {e!r}") from e

    async def _get_cached(self, scope: str, path: str, params: Optional[dict] = None):
        cache_key = catalog_key(scope, path, *(f"{k}={v}" for k, v in sorted((params or {}).items())))
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached
        payload = await self._request("GET", path, params=params)
        if self.cache is not None:
            await self.cache.set(cache_key, payload)
        return payload

    async def get_locations(self, business_id: str) -> List[Location]:
        payload = await self._get_cached(business_id, "/locations", {"business_id": business_id})
        return [parse_location(row) for row in parse_list(payload, "locations")]

    async def get_products(self, location: Location) -> List[MenuItem]:
        payload = await self._get_cached(location.restaurant_id, f"/locations/{location.id}/products")
        return [parse_menu_item(row) for row in parse_list(payload, "products")]

    async def get_categories(self, location: Location) -> List[Category]:
        payload = await self._get_cached(location.restaurant_id, f"/locations/{location.id}/categories")
        return [parse_category(row) for row in parse_list(payload, "categories")]

    async def get_toppings(self, location: Location, topping_class_id: str) -> List[Topping]:
        payload = await self._get_cached(location.restaurant_id, f"/locations/{location.id}/toppings/{topping_class_id}")
        return [parse_topping(row) for row in parse_list(payload, "toppings")]

    async def get_taxes(self, location: Location) -> List[Tax]:
        payload = await self._get_cached(location.restaurant_id, f"/locations/{location.id}/taxes")
        return [parse_tax(row) for row in parse_list(payload, "taxes")]

    async def get_charges(self, location: Location, kind: ChargeKind) -> List[Charge]:
        # Never cached: charges are re-validated at summary and confirmation time
        payload = await self._request("GET", f"/locations/{location.id}/charges", params={"type": kind.value})
        return [parse_charge(row) for row in parse_list(payload, "charges")]

    async def validate_discount(self, restaurant_id: str, code: str) -> Optional[DiscountResult]:
        try:
            payload = await self._request(
                "POST", "/discounts/validate", json={"restaurant_id": restaurant_id, "code": code}
            )
        except CatalogError as e:
            if isinstance(e.__cause__, aiohttp.ClientResponseError) and e.__cause__.status == 404:
                return None
            raise
        if not isinstance(payload, dict) or not payload:
            return None
        return parse_discount(code, payload, utcnow())

    async def submit_order(self, request: OrderRequest) -> OrderResult:
        # Order creation is not idempotent: single attempt
        payload = await self._request("POST", "/orders", attempts=1, json=_order_payload(request))
        if not isinstance(payload, dict) or not payload.get("reference"):
            raise CatalogError("order submission returned no reference")
        return OrderResult(
            reference=as_text(payload.get("reference")),
            bank_name=as_text(payload.get("bank_name")),
            account_number=as_text(payload.get("account_number")),
            account_name=as_text(payload.get("account_name")),
        )
