"""
Render instructions.

Handlers decide the next state and append these values to the turn; the
renderer turns them into WhatsApp messages after the session is saved.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from services.catalog_models import Category, MenuItem

FULL_CATALOG_THRESHOLD = 30
MIN_FEATURED = 5


class MenuTier(str, enum.Enum):
    FULL = "full"
    SAMPLE = "sample"
    FEATURED = "featured"


def catalog_tier(products: Sequence[MenuItem]) -> MenuTier:
    """
    Up to 30 products fit one catalog message. Bigger menus show the
    featured items, or an alphabetical sample when fewer than 5 are featured.
    """
    if len(products) <= FULL_CATALOG_THRESHOLD:
        return MenuTier.FULL
    if sum(1 for p in products if p.featured) < MIN_FEATURED:
        return MenuTier.SAMPLE
    return MenuTier.FEATURED


@dataclass(slots=True)
class Button:
    id: str
    title: str


@dataclass(slots=True)
class Row:
    id: str
    title: str
    description: str = ""


@dataclass(slots=True)
class Section:
    title: str
    rows: List[Row] = field(default_factory=list)


@dataclass(slots=True)
class ProductSection:
    title: str
    product_ids: List[str] = field(default_factory=list)


class Prompt:
    """Base class of everything a handler can ask to show."""
    __slots__ = ()


@dataclass(slots=True)
class TextPrompt(Prompt):
    body: str


@dataclass(slots=True)
class ButtonPrompt(Prompt):
    body: str
    buttons: List[Button]
    header: Optional[str] = None
    footer: Optional[str] = None


@dataclass(slots=True)
class ListPrompt(Prompt):
    body: str
    button: str
    sections: List[Section]
    header: Optional[str] = None
    footer: Optional[str] = "Select an option"


@dataclass(slots=True)
class PagedListPrompt(Prompt):
    """
    A long row list cut into pages of 8. The renderer adds a Navigate
    section whose Prev/Next row ids are f"{page_prefix}{n}".
    """
    body: str
    button: str
    title: str
    rows: List[Row]
    page: int = 1
    page_prefix: str = ""
    header: Optional[str] = None


@dataclass(slots=True)
class CategoryListPrompt(Prompt):
    categories: List[Category]
    page: int = 1
    has_cart: bool = False
    body: str = "Select a category to view its menu."


@dataclass(slots=True)
class CatalogPrompt(Prompt):
    header: str
    body: str
    sections: List[ProductSection]
    footer: Optional[str] = None


@dataclass(slots=True)
class MenuPrompt(Prompt):
    """Main menu in the tier the handler chose."""
    products: List[MenuItem]
    tier: MenuTier
    body: str
    has_cart: bool = False


@dataclass(slots=True)
class FlowPrompt(Prompt):
    body: str
    flow_id: str
    flow_token: str
    cta: str = "Enter details"
    screen: str = "DELIVERY_DETAILS"
    header: Optional[str] = None
    # Shown instead when the flow cannot be sent
    fallback: List[Prompt] = field(default_factory=list)
