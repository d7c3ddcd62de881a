"""
Conversation steps shared by several states: location and menu display,
checkout routing, delivery details, summary and cancellation.

Each step sets the state it leaves the customer in and appends its prompts.
"""
import logging
from typing import List, Optional

from handlers.base import TurnContext
from keyboards.formatting import money, order_summary
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
    Row,
    Section,
    catalog_tier,
)
from keyboards.renderer import product_sections
from keyboards.whatsapp import BODY_LIMIT
from services.cart import Cart
from services.catalog_models import Category, Charge, ChargeKind, Location
from services.clock import restaurant_now
from services.errors import CatalogError
from services.pricing import PriceBreakdown, price_cart
from services.session import DeliveryMethod, MissingStep
from services.validation import is_open, next_opening
from states.order_states import OrderState

logger = logging.getLogger(__name__)

MAX_DELIVERY_AREAS = 9
MAX_CATEGORY_SETS = 10
SUBCATEGORY_THRESHOLD = 30

_MENU_BODIES = {
    MenuTier.FULL: "Click 'View items' to add items to your cart:",
    MenuTier.SAMPLE: "Here are some items to get you started.\n\n*Looking for something else? Check the next message.*",
    MenuTier.FEATURED: "⭐ Here are our featured items.\n\n*Looking for something else? Check the next message.*",
}
_MENU_LEVELS = {
    MenuTier.FULL: "products_small",
    MenuTier.SAMPLE: "products_sample",
    MenuTier.FEATURED: "products_featured",
}


def _clock(moment) -> str:
    return moment.strftime("%I:%M %p") if moment else "later today"


def checkout_button(ctx: TurnContext) -> List[Button]:
    return [Button("PROCEED_CHECKOUT", "🛒 Checkout")] if ctx.session.cart else []


def nav_buttons(ctx: TurnContext, back_id: str) -> None:
    ctx.show(ButtonPrompt(
        "Use the buttons below to navigate:",
        [Button(back_id, "⬅️ Back")] + checkout_button(ctx),
    ))


# Welcome, help, locations

def welcome(ctx: TurnContext) -> None:
    name = ctx.session.customer_name or "there"
    ctx.show(ButtonPrompt(
        f"👋 Hey {name}!\n\n🤖 Welcome to {ctx.settings.BUSINESS_NAME}! "
        "I can help you order from our menu.\n\nWhat can I help you with today?",
        [Button("START_ORDER", "🛒 Start Order"), Button("GET_HELP", "🛟 Get Help")],
    ))


async def send_help(ctx: TurnContext) -> None:
    s = ctx.session
    phone, email = s.help_phone, s.help_email
    if not (phone or email):
        for location in await ctx.catalog.get_locations(s.business_id):
            if location.help_phone or location.help_email:
                phone, email = location.help_phone, location.help_email
                break
    lines = ["🛟 *We're here to help!*", "", "📋 To get started: tap 'Start Order'"]
    if phone:
        lines.append(f"📞 To call support: {phone}")
    if email:
        lines.append(f"📧 To email support: {email}")
    lines += ["", "Let's get you sorted!"]
    ctx.say("\n".join(lines))


async def show_location_list(ctx: TurnContext) -> None:
    s = ctx.session
    locations = await ctx.catalog.get_locations(s.business_id)
    ctx.set_state(OrderState.LOCATION_SELECTION)
    if not locations:
        ctx.say("😔 No restaurant locations are available right now. Please try again later." + ctx.footer)
        return
    if len(locations) == 1:
        await select_location(ctx, locations[0])
        return
    rows = [Row(loc.id, loc.name, loc.address or loc.state) for loc in locations]
    ctx.show(ListPrompt(
        "📍 Please select a restaurant location:",
        "Choose Location",
        [Section("Our Locations", rows)],
    ))


def apply_location(ctx: TurnContext, location: Location) -> None:
    s = ctx.session
    if s.location_id and s.location_id != location.id:
        # Items, prices and delivery areas belong to the old location
        s.cart = Cart()
        s.pending_parents = []
        s.pending_toppings = []
        s.delivery_charge_id = None
        s.discount = None
    s.location_id = location.id
    s.restaurant_id = location.restaurant_id
    s.tax_exclusive = location.tax_exclusive
    s.help_email = location.help_email
    s.help_phone = location.help_phone
    ctx.remember_location(location)


async def select_location(ctx: TurnContext, location: Location) -> None:
    """Remember the location; a closed one needs confirmation first."""
    apply_location(ctx, location)
    local = restaurant_now(ctx.settings.LOCAL_UTC_OFFSET_HOURS, ctx.now)
    if not is_open(local.time(), location.opening_time, location.closing_time):
        opening = next_opening(local, location.opening_time)
        ctx.set_state(OrderState.CONFIRM_CLOSED_RESTAURANT)
        ctx.show(ButtonPrompt(
            f"🕐 *{location.name} is currently closed*\n\n"
            f"We open at *{_clock(opening)}*. You can still order now and we will "
            "prepare it once we open.\n\nWould you like to continue?",
            [Button("CONFIRM_CLOSED_YES", "✅ Yes, Continue"), Button("CONFIRM_CLOSED_NO", "❌ No")],
        ))
        return
    await open_location(ctx, location)


async def open_location(ctx: TurnContext, location: Location) -> None:
    ctx.say(f"📍 You selected *{location.name}*.")
    ctx.set_state(OrderState.ITEM_SELECTION)
    await show_main_menu(ctx)


# Menu

async def show_main_menu(ctx: TurnContext, body: Optional[str] = None) -> None:
    s = ctx.session
    location = await ctx.location()
    if location is None:
        await guide_to_missing_step(ctx, MissingStep.LOCATION)
        return
    try:
        products = await ctx.catalog.get_products(location)
    except CatalogError as e:
        logger.error("Menu unavailable for %s/%s: %s", s.business_id, location.id, e)
        ctx.say("❌ Sorry, we couldn't load the menu right now. Please try again later." + ctx.footer)
        ctx.delete_session = True
        return
    if s.state != OrderState.ITEM_SELECTION_FROM_EDIT:
        ctx.set_state(OrderState.ITEM_SELECTION)
    if not products:
        ctx.say("😔 No items are available at this location right now." + ctx.footer)
        return

    tier = catalog_tier(products)
    s.small_catalog = tier == MenuTier.FULL
    s.menu_level = _MENU_LEVELS[tier]
    s.current_category_group = None
    s.current_subcategory = None
    ctx.show(MenuPrompt(products, tier, body or _MENU_BODIES[tier], has_cart=bool(s.cart)))


async def show_categories(ctx: TurnContext, page: int = 1) -> None:
    s = ctx.session
    location = await ctx.location()
    categories = await ctx.catalog.get_categories(location)
    if not categories:
        ctx.say("😔 No menu categories are available right now." + ctx.footer)
        return
    s.menu_level = "categories"
    s.current_category_group = None
    s.current_subcategory = None
    ctx.show(CategoryListPrompt(categories, page, has_cart=bool(s.cart)))


async def find_category(ctx: TurnContext, category_id: str, is_grouping: bool) -> Optional[Category]:
    location = await ctx.location()
    for category in await ctx.catalog.get_categories(location):
        if category.id == category_id and category.is_grouping == is_grouping:
            return category
    return None


async def current_category(ctx: TurnContext) -> Optional[Category]:
    group = ctx.session.current_category_group
    if not group:
        return None
    if group.startswith("SET:"):
        return await find_category(ctx, group[len("SET:"):], is_grouping=False)
    return await find_category(ctx, group, is_grouping=True)


async def show_category_products(ctx: TurnContext, category: Category, page: int = 1) -> None:
    s = ctx.session
    location = await ctx.location()
    s.current_category_group = category.id if category.is_grouping else f"SET:{category.id}"
    s.current_subcategory = None
    try:
        products = await ctx.catalog.get_category_products(location, category.set_ids[:MAX_CATEGORY_SETS])
    except CatalogError as e:
        logger.warning("Category %s failed to load: %s", category.id, e)
        ctx.say("❌ Could not load items for this category. Please try another.")
        await show_categories(ctx)
        return
    if not products:
        ctx.say("😔 No items are available in this category right now.")
        await show_categories(ctx)
        return

    if len(products) > SUBCATEGORY_THRESHOLD and category.subcategories:
        s.menu_level = "subcategories"
        rows = [Row(f"SUBCAT_{name}", name, "View menu for this subcategory") for name in category.subcategories]
        ctx.show(PagedListPrompt(
            f"{category.name}: Select a subcategory",
            "Choose",
            "Browse Subcategories",
            rows,
            page=page,
            page_prefix="SUBCAT_PAGE_",
        ))
    else:
        s.menu_level = "products"
        ctx.show(CatalogPrompt(
            f"{category.name} Menu",
            "Click 'View items' to add items to your cart:",
            product_sections(products, category.name),
        ))
    nav_buttons(ctx, "BACK_CATEGORIES")


async def show_subcategory_products(ctx: TurnContext, name: str) -> None:
    s = ctx.session
    category = await current_category(ctx)
    if category is None:
        await show_categories(ctx)
        return
    location = await ctx.location()
    products = await ctx.catalog.get_category_products(location, category.set_ids[:MAX_CATEGORY_SETS])
    products = [p for p in products if p.subcategory == name]
    if not products:
        ctx.say("❌ Invalid subcategory selected. Please choose from the list.")
        await show_category_products(ctx, category)
        return
    s.current_subcategory = name
    s.menu_level = "subcategory_products"
    ctx.show(CatalogPrompt(
        f"{name} Menu",
        "Click 'View items' to add items to your cart:",
        product_sections(products, name),
    ))
    nav_buttons(ctx, "BACK_SUBCATEGORIES")


def search_prompt(ctx: TurnContext) -> None:
    ctx.set_state(OrderState.SEARCH)
    ctx.say("🔍 What are you looking for?\n\nType the name of a dish (at least 2 characters):")


def search_actions(ctx: TurnContext, body: str = "What would you like to do?") -> None:
    ctx.show(ButtonPrompt(
        body,
        [Button("SEARCH", "🔍 Search Menu"), Button("FULL_MENU", "📖 Browse Menu")] + checkout_button(ctx),
    ))


# Checkout

async def guide_to_missing_step(ctx: TurnContext, step: MissingStep) -> None:
    ctx.say(
        "📍 *Missing Information*\n\n"
        f"You need to complete the {step.value} first.\n\n"
        "Please follow the instructions below to continue."
    )
    if step == MissingStep.LOCATION:
        await show_location_list(ctx)
    else:
        await proceed_to_checkout(ctx)


async def available_delivery_charges(ctx: TurnContext, location: Location) -> List[Charge]:
    charges = await ctx.catalog.get_charges(location, ChargeKind.DELIVERY)
    return [c for c in charges if c.is_available(ctx.now)][:MAX_DELIVERY_AREAS]


async def proceed_to_checkout(ctx: TurnContext) -> None:
    """
    Walk the checkout steps in order and stop at the first one that still
    needs the customer; with everything known, show the summary.
    """
    s = ctx.session
    if not s.cart:
        ctx.say("🛒 Your cart is empty.\n\nPlease add some items first.")
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
        return
    location = await ctx.location()
    if location is None:
        await guide_to_missing_step(ctx, MissingStep.LOCATION)
        return
    s.clear_editing()

    if not location.pickup_available:
        s.delivery_method = DeliveryMethod.DELIVERY
    if s.delivery_method is None:
        ask_delivery_method(ctx)
        return

    if s.delivery_method == DeliveryMethod.DELIVERY:
        if s.delivery_charge_id:
            areas = await available_delivery_charges(ctx, location)
            if not any(str(c.id) == str(s.delivery_charge_id) for c in areas):
                s.delivery_charge_id = None
                ctx.say("⚠️ Your delivery area is no longer available. Please choose another.")
        if not s.delivery_charge_id:
            await start_delivery(ctx, location)
            return
        if not s.delivery_address:
            await ask_address(ctx)
            return
        if not s.delivery_contact_phone:
            saved = await ctx.profiles.get_contact_phone(s.business_id, s.phone_number)
            if not saved:
                ask_contact_phone(ctx)
                return
            s.delivery_contact_phone = saved

    if s.notes is None:
        ask_notes(ctx)
        return
    await show_summary(ctx)


def ask_delivery_method(ctx: TurnContext) -> None:
    ctx.set_state(OrderState.DELIVERY_METHOD)
    ctx.show(ButtonPrompt(
        "🚚 *How would you like to get your order?*",
        [Button("DELIVERY", "🚚 Delivery"), Button("PICKUP", "🏃 Pickup")],
    ))


async def start_delivery(ctx: TurnContext, location: Location) -> None:
    local = restaurant_now(ctx.settings.LOCAL_UTC_OFFSET_HOURS, ctx.now)
    if not is_open(local.time(), location.delivery_opening_time, location.delivery_closing_time):
        opening = next_opening(local, location.delivery_opening_time)
        buttons = [Button("PROCEED_DELIVERY", "✅ Proceed anyway")]
        if location.pickup_available:
            buttons.append(Button("SWITCH_TO_PICKUP", "🔄 Switch to Pickup"))
        buttons.append(Button("CANCEL_ORDER", "❌ Cancel Order"))
        ctx.set_state(OrderState.CONFIRM_CLOSED_DELIVERY)
        ctx.show(ButtonPrompt(
            "🚚 *Delivery currently unavailable*\n\n"
            f"🕐 Will be available at: *{_clock(opening)}*\n\nWhat would you like to do?",
            buttons,
        ))
        return
    await show_delivery_areas(ctx, location)


def delivery_area_prompt(charges: List[Charge], pickup_available: bool) -> ListPrompt:
    rows = [Row(str(c.id), c.name, f"Delivery fee: {money(c.amount)}") for c in charges]
    sections = [Section("Select Delivery Area", rows)]
    if pickup_available:
        sections.append(Section("Other Options", [
            Row("LOCATION_NOT_LISTED", "Location not listed", "Switch to pickup"),
        ]))
    return ListPrompt("📍 Please select your delivery area:", "Choose Area", sections)


async def show_delivery_areas(ctx: TurnContext, location: Location, allow_flow: bool = True) -> None:
    s = ctx.session
    charges = await available_delivery_charges(ctx, location)
    if not charges:
        if location.pickup_available:
            ctx.set_state(OrderState.DELIVERY_SWITCH_CONFIRMATION)
            ctx.show(ButtonPrompt(
                "🚚 Delivery service not available.\n\nWould you like to switch to pickup instead?",
                [Button("SWITCH_TO_PICKUP_YES", "✅ Yes"), Button("SWITCH_TO_PICKUP_NO", "❌ No")],
            ))
            return
        ctx.say(
            "🚚 Delivery is not available for this location, and pickup is also not supported.\n\n"
            "Please select a different location."
        )
        s.reset_order()
        await show_location_list(ctx)
        return

    areas = delivery_area_prompt(charges, location.pickup_available)
    flow_id = ctx.settings.WHATSAPP_DELIVERY_FLOW_ID
    if allow_flow and flow_id and not s.delivery_address:
        ctx.set_state(OrderState.FLOW_IN_PROGRESS)
        ctx.show(FlowPrompt(
            "🚚 *Delivery Details*\n\nTap below to enter your delivery area, address and phone number.",
            flow_id=flow_id,
            flow_token=f"{s.business_id}:{s.phone_number}",
            header="Delivery Details",
            fallback=[areas],
        ))
        return
    ctx.set_state(OrderState.DELIVERY_LOCATION_SELECTION)
    ctx.show(areas)


async def ask_address(ctx: TurnContext) -> None:
    s = ctx.session
    ctx.set_state(OrderState.DELIVERY_ADDRESS)
    saved = await ctx.profiles.get_addresses(s.business_id, s.phone_number)
    if not saved:
        ctx.say("📝 Please enter your delivery address:")
        return
    rows = [Row(f"SAVED_ADDRESS_{n}", f"Address {n}", address) for n, address in enumerate(saved, start=1)]
    ctx.show(ListPrompt(
        "🏠 *Delivery Address*\n\nChoose a saved address or enter a new one:",
        "Choose Address",
        [
            Section("Saved Addresses", rows),
            Section("Other Options", [Row("NEW_ADDRESS", "➕ New Address", "Type a different address")]),
        ],
    ))


def ask_contact_phone(ctx: TurnContext) -> None:
    ctx.set_state(OrderState.DELIVERY_CONTACT_PHONE)
    ctx.say(
        "📱 *Contact Phone Required*\n\n"
        "Please enter a phone number the rider can reach you on:\n\nExample: 08012345678"
    )


def ask_notes(ctx: TurnContext) -> None:
    ctx.set_state(OrderState.COLLECT_NOTES)
    ctx.show(ButtonPrompt(
        "📝 Any special instructions for your order?\n\n"
        "Type them below (e.g. 'no onions, extra spicy') or tap 'None' to skip.",
        [Button("NONE", "🚫 None")],
    ))


async def price_session(ctx: TurnContext) -> tuple:
    """
    Returns:
        (PriceBreakdown, taxes)
    """
    s = ctx.session
    location = await ctx.location()
    taxes = await ctx.catalog.get_taxes(location)
    base_charges = await ctx.catalog.get_charges(location, ChargeKind.TAKEOUT)
    delivery_charges = []
    charge_id = None
    if s.delivery_method == DeliveryMethod.DELIVERY and s.delivery_charge_id:
        delivery_charges = await ctx.catalog.get_charges(location, ChargeKind.DELIVERY)
        charge_id = s.delivery_charge_id
    breakdown: PriceBreakdown = price_cart(
        s.cart,
        tax_rate=taxes[0].rate if taxes else 0,
        tax_exclusive=s.tax_exclusive,
        base_charges=base_charges,
        delivery_charges=delivery_charges,
        delivery_charge_id=charge_id,
        discount=s.discount,
        now=ctx.now,
        floor_at_zero=ctx.settings.FLOOR_TOTAL_AT_ZERO,
    )
    if s.discount is not None:
        s.discount.amount = breakdown.discount
    return breakdown, taxes


async def show_summary(ctx: TurnContext) -> None:
    s = ctx.session
    if not s.cart:
        ctx.say("🛒 Your cart is empty.")
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx, "Click 'View items' to add items to your empty cart:")
        return
    step = s.missing_step()
    if step is not None:
        await guide_to_missing_step(ctx, step)
        return

    location = await ctx.location()
    breakdown, _ = await price_session(ctx)
    ctx.set_state(OrderState.ORDER_CONFIRMATION)
    text = order_summary(s, breakdown, location.packaging_enabled)
    buttons = [Button("CONFIRM_ORDER", "✅ Confirm Order"), Button("EDIT_ORDER", "✏️ Edit Order")]
    if s.discount is None:
        buttons.append(Button("APPLY_DISCOUNT", "🏷️ Apply Discount"))
    else:
        buttons.append(Button("CANCEL_ORDER", "❌ Cancel Order"))
    if len(text) > BODY_LIMIT:
        ctx.say(text)
        text = "Please review your order above and choose an option:"
    ctx.show(ButtonPrompt(text, buttons))


# Cancellation

def ask_cancel(ctx: TurnContext) -> None:
    ctx.set_state(OrderState.CANCEL_CONFIRMATION)
    ctx.show(ButtonPrompt(
        "❓ Are you sure you want to cancel?\n\nThis action cannot be undone.",
        [Button("CONFIRM_CANCEL", "✅ Yes, Cancel"), Button("CONTINUE_ORDER", "❌ No, Continue")],
    ))


def cancel_order(ctx: TurnContext, text: str = "❌ Order cancelled.") -> None:
    footer = ctx.footer
    ctx.session.reset_order()
    ctx.set_state(OrderState.CANCELLED)
    ctx.say(f"{text}\n\nThank you for using our service. You can start a new order anytime.{footer}")
    ctx.delete_session = True


async def resume_order(ctx: TurnContext) -> None:
    """Back to where the customer was before asking to cancel."""
    s = ctx.session
    if s.cart:
        await proceed_to_checkout(ctx)
    elif s.location_id:
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
    else:
        await show_location_list(ctx)
