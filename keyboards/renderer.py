"""
Prompt renderer: render instructions -> WhatsApp messages.

Purely presentational. Handlers already decided the state and the menu
tier; this module only lays the answer out and sends it through the gateway.
"""
from __future__ import annotations

import logging
from typing import List, Sequence

from keyboards.instructions import (
    Button,
    ButtonPrompt,
    CatalogPrompt,
    CategoryListPrompt,
    FlowPrompt,
    ListPrompt,
    MenuPrompt,
    MenuTier,
    PagedListPrompt,
    ProductSection,
    Prompt,
    Row,
    Section,
    TextPrompt,
)
from keyboards.whatsapp import (
    CATALOG_ITEMS_LIMIT,
    button_message,
    flow_message,
    full_catalog_message,
    list_message,
    product_list_message,
    text_message,
)
from services.catalog_models import MenuItem
from services.errors import MessagingError

logger = logging.getLogger(__name__)

PAGE_SIZE = 8


def page_count(total: int, size: int = PAGE_SIZE) -> int:
    return max(1, (total + size - 1) // size)


def page_rows(rows: Sequence[Row], page: int, prefix: str, size: int = PAGE_SIZE) -> tuple[List[Row], List[Row]]:
    """(rows of `page`, Prev/Next rows); out-of-range pages are clamped."""
    pages = page_count(len(rows), size)
    page = min(max(1, page), pages)
    start = (page - 1) * size
    nav = []
    if page > 1:
        nav.append(Row(f"{prefix}{page - 1}", "⬅️ Prev", f"Page {page - 1} of {pages}"))
    if page < pages:
        nav.append(Row(f"{prefix}{page + 1}", "Next ➡️", f"Page {page + 1} of {pages}"))
    return list(rows[start:start + size]), nav


def product_sections(products: Sequence[MenuItem], title: str, limit: int = CATALOG_ITEMS_LIMIT) -> List[ProductSection]:
    """Products grouped by subcategory (when present) for a catalog message."""
    sections: List[ProductSection] = []
    by_title = {}
    for product in list(products)[:limit]:
        name = product.subcategory or title
        section = by_title.get(name)
        if section is None:
            section = by_title[name] = ProductSection(name)
            sections.append(section)
        section.product_ids.append(product.catalog_id)
    return sections


class PromptRenderer:
    def __init__(self, gateway, catalog_id: str = ""):
        self.gateway = gateway
        self.catalog_id = catalog_id

    async def render(self, business_id: str, to: str, prompts: List[Prompt]) -> None:
        for prompt in prompts:
            for message in self.build(prompt):
                try:
                    await self.gateway.send(business_id, to, message)
                except MessagingError:
                    if isinstance(prompt, FlowPrompt) and prompt.fallback:
                        logger.warning("Flow message to %s failed, sending fallback list", to)
                        await self.render(business_id, to, prompt.fallback)
                        break
                    raise

    def build(self, prompt: Prompt) -> List[dict]:
        if isinstance(prompt, TextPrompt):
            return [text_message(prompt.body)]
        if isinstance(prompt, ButtonPrompt):
            return [button_message(prompt.body, prompt.buttons, prompt.header, prompt.footer)]
        if isinstance(prompt, ListPrompt):
            return [list_message(prompt.body, prompt.button, prompt.sections, prompt.header, prompt.footer)]
        if isinstance(prompt, PagedListPrompt):
            return [self._paged_list(prompt)]
        if isinstance(prompt, CategoryListPrompt):
            return self._category_list(prompt)
        if isinstance(prompt, CatalogPrompt):
            return [self._catalog(prompt)]
        if isinstance(prompt, MenuPrompt):
            return self._main_menu(prompt)
        if isinstance(prompt, FlowPrompt):
            return [flow_message(prompt.body, prompt.flow_id, prompt.flow_token, prompt.cta, prompt.screen, prompt.header)]
        raise TypeError(f"Unknown prompt type: {type(prompt).__name__}")

    def _paged_list(self, prompt: PagedListPrompt) -> dict:
        rows, nav = page_rows(prompt.rows, prompt.page, prompt.page_prefix)
        sections = [Section(prompt.title, rows)]
        if nav:
            sections.append(Section("Navigate", nav))
        return list_message(prompt.body, prompt.button, sections, prompt.header)

    def _category_list(self, prompt: CategoryListPrompt) -> List[dict]:
        rows = [Row(c.token, c.name, "View menu for this category") for c in prompt.categories]
        page, nav = page_rows(rows, prompt.page, "CAT_PAGE_")
        sections = [Section("Browse Categories", page)]
        if nav:
            sections.append(Section("Navigate", nav))
        buttons = [Button("BACK_TO_MAIN", "⬅️ Back"), Button("SEARCH", "🔍 Search Menu")]
        if prompt.has_cart:
            buttons.append(Button("PROCEED_CHECKOUT", "🛒 Checkout"))
        return [
            list_message(prompt.body, "Choose", sections),
            button_message("Use the buttons below to navigate:", buttons),
        ]

    def _catalog(self, prompt: CatalogPrompt) -> dict:
        return product_list_message(self.catalog_id, prompt.header, prompt.body, prompt.sections, prompt.footer)

    def _main_menu(self, prompt: MenuPrompt) -> List[dict]:
        products = prompt.products
        if prompt.tier == MenuTier.FULL:
            return [full_catalog_message(
                self.catalog_id, "Our Menu", prompt.body, [p.catalog_id for p in products]
            )]

        if prompt.tier == MenuTier.FEATURED:
            chosen = [p for p in products if p.featured][:CATALOG_ITEMS_LIMIT]
            title = "Featured Items"
        else:
            chosen = sorted(products, key=lambda p: p.name.lower())[:CATALOG_ITEMS_LIMIT]
            title = "Popular Items"
        messages = [product_list_message(
            self.catalog_id, title, prompt.body, [ProductSection(title, [p.catalog_id for p in chosen])]
        )]
        buttons = [Button("VIEW_MORE_CATEGORIES", "📖 Browse Menu"), Button("SEARCH", "🔍 Search Menu")]
        if prompt.has_cart:
            buttons.append(Button("PROCEED_CHECKOUT", "🛒 Checkout"))
        messages.append(button_message(
            "Looking for something else? Browse all categories or search the menu.", buttons
        ))
        return messages
