"""
Menu browsing: item selection, category navigation, search and catalog
cart messages.
"""
import logging

from pydantic import ValidationError

from handlers.base import Router, TurnContext
from handlers.cart_flows import add_menu_item, after_item_added, show_edit_menu
from handlers.flows import (
    current_category,
    find_category,
    search_actions,
    search_prompt,
    show_categories,
    show_category_products,
    show_main_menu,
    show_subcategory_products,
)
from keyboards.instructions import CatalogPrompt
from keyboards.renderer import product_sections
from services.commands import CommandKind
from services.validation import SearchQueryInput
from states.order_states import OrderState

logger = logging.getLogger(__name__)
router = Router("catalog")

MAX_ITEM_ID_LENGTH = 50

BROWSING_HINT = (
    "ℹ️ After browsing our menu, tap the '+' button next to any item to add it "
    "to your cart, then send the cart. Thank you!"
)


async def _back_to_category(ctx: TurnContext) -> None:
    category = await current_category(ctx)
    if category is None:
        await show_categories(ctx)
    else:
        await show_category_products(ctx, category)


async def _add_more(ctx: TurnContext) -> None:
    s = ctx.session
    if s.small_catalog or not s.current_category_group:
        await show_main_menu(ctx)
    elif s.current_subcategory:
        await show_subcategory_products(ctx, s.current_subcategory)
    else:
        await _back_to_category(ctx)


async def navigate(ctx: TurnContext) -> bool:
    """Menu navigation tokens. False when the command is not one of them."""
    command = ctx.command
    kind = command.kind
    if kind == CommandKind.SEARCH:
        search_prompt(ctx)
    elif kind in (CommandKind.FULL_MENU, CommandKind.VIEW_MORE_CATEGORIES,
                  CommandKind.BACK_CATEGORIES, CommandKind.BROWSE_OTHERS):
        await show_categories(ctx)
    elif kind == CommandKind.CAT_PAGE:
        await show_categories(ctx, command.page)
    elif kind in (CommandKind.CAT, CommandKind.CAT_SET):
        category = await find_category(ctx, command.arg, is_grouping=kind == CommandKind.CAT)
        if category is None:
            ctx.say("❌ Invalid category selected. Please choose from the list.")
            await show_categories(ctx)
        else:
            await show_category_products(ctx, category)
    elif kind == CommandKind.SUBCAT_PAGE:
        category = await current_category(ctx)
        if category is None:
            await show_categories(ctx)
        else:
            await show_category_products(ctx, category, command.page)
    elif kind == CommandKind.SUBCAT:
        await show_subcategory_products(ctx, command.arg)
    elif kind == CommandKind.BACK_SUBCATEGORIES:
        await _back_to_category(ctx)
    elif kind in (CommandKind.START_ORDER, CommandKind.BACK_TO_MAIN,
                  CommandKind.BACK_TO_MENU, CommandKind.PROFILE_BACK_TO_MENU):
        await show_main_menu(ctx)
    elif kind == CommandKind.ADD_MORE:
        await _add_more(ctx)
    else:
        return False
    return True


@router.state(OrderState.ITEM_SELECTION, OrderState.ITEM_SELECTION_FROM_EDIT)
async def item_selected(ctx: TurnContext):
    command = ctx.command
    if await navigate(ctx):
        return
    if command.kind in (CommandKind.REMOVE_ITEM, CommandKind.ADD_ITEM):
        show_edit_menu(ctx)
        return
    text = command.text
    if command.kind == CommandKind.NON_TEXT or not text or len(text) > MAX_ITEM_ID_LENGTH or " " in text:
        ctx.say(BROWSING_HINT)
        return

    location = await ctx.location()
    item = await ctx.catalog.get_menu_item(location, text)
    if item is None:
        ctx.say("❌ Invalid item selected.\n\nPlease choose an item from the menu below." + ctx.footer)
        await show_main_menu(ctx)
        return
    replaced = await add_menu_item(ctx, item)
    await after_item_added(ctx, replaced)


@router.state(OrderState.SEARCH)
async def search_entered(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    if command.kind == CommandKind.SEARCH:
        search_prompt(ctx)
        return
    if command.kind not in (CommandKind.TEXT, CommandKind.NUMBER):
        ctx.set_state(OrderState.ITEM_SELECTION)
        if not await navigate(ctx):
            ctx.say("🔍 Search cancelled.")
            await show_main_menu(ctx)
        return

    try:
        query = SearchQueryInput.from_string(command.text).query
    except ValidationError:
        ctx.say("❌ Please enter at least 2 characters to search.")
        return

    location = await ctx.location()
    results = await ctx.catalog.search_products(location, query)
    ctx.set_state(OrderState.ITEM_SELECTION)
    logger.info("Search '%s' by %s: %d results", query, s.phone_number, len(results))
    if not results:
        ctx.say(f"😔 No items found matching *{query}*.")
        search_actions(ctx)
        return
    ctx.show(CatalogPrompt(
        "🔍 Search Results",
        f"Here's what we found matching: *{query}*",
        product_sections(results, "Results"),
    ))
    search_actions(ctx, "Please select an option:")


async def catalog_order_received(ctx: TurnContext) -> None:
    """Cart sent from a catalog message: every product is added in one go."""
    s = ctx.session
    items = ctx.event.order_items
    location = await ctx.location()
    if s.state not in (OrderState.ITEM_SELECTION, OrderState.ITEM_SELECTION_FROM_EDIT):
        ctx.set_state(OrderState.ITEM_SELECTION)

    replaced = False
    added = 0
    for retailer_id, quantity in items:
        item = await ctx.catalog.get_menu_item(location, retailer_id)
        if item is None:
            logger.warning("Catalog order from %s has unknown product %s", s.phone_number, retailer_id)
            continue
        replaced = await add_menu_item(ctx, item, quantity) or replaced
        added += 1
    if not added:
        ctx.say("❌ Invalid item selected.\n\nPlease choose an item from the menu below." + ctx.footer)
        await show_main_menu(ctx)
        return
    await after_item_added(ctx, replaced)
