"""
Cart building steps: adding menu items, working through required option
sets and toppings, and the edit/remove/pack menus.
"""
import logging
from typing import List

from handlers.base import TurnContext
from handlers.flows import proceed_to_checkout, show_main_menu
from keyboards.formatting import edit_menu_text, money
from keyboards.instructions import (
    Button,
    ButtonPrompt,
    ListPrompt,
    PagedListPrompt,
    Row,
    Section,
)
from services.cart import CartItem, new_grouping_id, pack_label
from services.catalog_models import MenuItem
from services.pending import PendingParent, PendingToppings, ordinal
from states.order_states import OrderState

logger = logging.getLogger(__name__)


# Adding items

def _take_edited_line(ctx: TurnContext) -> tuple:
    """
    Remove the line being replaced from the cart.

    Returns:
        (quantity, pack_id, detached option/topping items)
    """
    s = ctx.session
    key = s.editing_group_id
    quantity, pack_id, children = s.editing_quantity, s.pack_id, list(s.edit_children)
    if key and not key.startswith("item:"):
        parent = s.cart.parent_of(key)
        if parent is not None:
            quantity, pack_id = parent.quantity, parent.pack_id
        children += s.cart.detach_children(key)
    removed = s.cart.remove_by_edit_key(key) if key else []
    if removed and key and key.startswith("item:"):
        pack_id = removed[0].pack_id
    return max(1, quantity), pack_id, children


def _queue_toppings(ctx: TurnContext, item_id: str, name: str, grouping_id: str, toppings, front: bool = False) -> None:
    """An item without toppings on offer is not queued."""
    if not toppings:
        return
    task = PendingToppings(item_id, name, grouping_id, list(toppings))
    if front:
        ctx.session.pending_toppings.insert(0, task)
    else:
        ctx.session.pending_toppings.append(task)


async def add_menu_item(ctx: TurnContext, item: MenuItem, quantity: int = 1) -> bool:
    """
    Put `item` in the cart and queue whatever it still needs.

    While editing, the edited line is replaced; a combo or topping item keeps
    the detached options and toppings. Returns True when a line was replaced.
    """
    s = ctx.session
    replacing = s.is_editing and bool(s.editing_group_id)
    pack_id = s.pack_id
    children: List[CartItem] = []
    if replacing:
        quantity, pack_id, children = _take_edited_line(ctx)
    s.clear_editing()

    def line(grouping_id=None, qty=quantity) -> CartItem:
        return CartItem(
            item_id=item.id,
            name=item.name,
            price=item.price,
            quantity=qty,
            item_class_id=item.item_class_id,
            tax_id=item.tax_id,
            grouping_id=grouping_id,
            pack_id=pack_id,
        )

    if (item.is_recipe or item.has_toppings) and children:
        grouping_id = new_grouping_id()
        s.cart.add(line(grouping_id))
        s.cart.reattach(children, grouping_id, item.id)
        ctx.say(f"✅ Replaced with *{item.name}*. Your selected options and toppings were kept.")
        return True

    if item.is_recipe:
        units = quantity
        for unit in range(1, units + 1):
            grouping_id = new_grouping_id()
            s.cart.add(line(grouping_id, 1))
            parents = item.recipe_parents
            for n, recipe in enumerate(parents, start=1):
                s.pending_parents.append(PendingParent(
                    parent_item_id=item.id,
                    parent_name=recipe.name or item.name,
                    option_group_id=recipe.id,
                    grouping_id=grouping_id,
                    options=list(recipe.options),
                    quantity=max(1, recipe.quantity),
                    option_set_index=unit,
                    total_option_sets=units,
                    has_toppings=item.has_toppings and n == len(parents),
                    topping_class_id=item.topping_class_id if n == len(parents) else None,
                ))
        ctx.say(f"✅ Added *{item.name}* to your cart.")
        return replacing

    if item.has_toppings:
        grouping_id = new_grouping_id()
        s.cart.add(line(grouping_id))
        location = await ctx.location()
        toppings = await ctx.catalog.get_toppings(location, item.topping_class_id)
        _queue_toppings(ctx, item.id, item.name, grouping_id, toppings)
        ctx.say(f"✅ Added *{item.name}* x{quantity} to your cart.")
        return replacing

    if children:
        logger.info("Replacement %s has no options; dropped %d detached items", item.id, len(children))
    s.cart.add(line())
    if replacing:
        ctx.say(f"✅ Replaced with *{item.name}* x{quantity}.")
    else:
        ctx.say(f"✅ Added *{item.name}* x{quantity} to your cart.")
    return replacing


async def after_item_added(ctx: TurnContext, replaced: bool = False) -> None:
    """Next step once the cart changed: options, toppings, checkout or more items."""
    s = ctx.session
    if s.pending_parents:
        ctx.set_state(OrderState.ITEM_OPTIONS)
        show_item_options(ctx)
        return
    if s.pending_toppings:
        ctx.set_state(OrderState.ITEM_TOPPINGS)
        show_toppings(ctx)
        return
    if replaced or s.small_catalog:
        await proceed_to_checkout(ctx)
        return
    if s.state not in (OrderState.ITEM_SELECTION, OrderState.ITEM_SELECTION_FROM_EDIT):
        ctx.set_state(OrderState.ITEM_SELECTION)
    ctx.show(ButtonPrompt(
        "What would you like to do next?",
        [Button("ADD_MORE", "➕ Add More"), Button("PROCEED_CHECKOUT", "🛒 Checkout")],
    ))


# Required options

def show_item_options(ctx: TurnContext, page: int = 1) -> None:
    head = ctx.session.pending_parents[0]
    which = ordinal(head.current_option_index)
    indicator = f" (Set {head.option_set_index} of {head.total_option_sets})" if head.total_option_sets > 1 else ""
    rows = [Row(o.item_id, o.name, f"Choose as your {which} option") for o in head.options]
    ctx.show(PagedListPrompt(
        f"*{head.parent_name}*{indicator} Requires {head.quantity} option(s)\n\n📝 Select your {which} option:",
        "Choose Option",
        "Select Options",
        rows,
        page=page,
        page_prefix="OPT_PAGE_",
    ))
    if head.current_option_index == 1:
        ctx.show(ButtonPrompt(
            "Changed your mind about this item?",
            [Button("CANCEL_OPTIONS", "❌ Remove Item")],
        ))


async def choose_option(ctx: TurnContext, option_id: str) -> bool:
    """Record one option for the head task. False when the id is not offered."""
    s = ctx.session
    head = s.pending_parents[0]
    option = head.take_option(option_id)
    if option is None:
        return False
    parent = s.cart.parent_of(head.grouping_id)
    s.cart.add(CartItem(
        item_id=option.item_id,
        name=option.name,
        quantity=1,
        grouping_id=head.grouping_id,
        parent_item_id=head.option_group_id,
        pack_id=parent.pack_id if parent else s.pack_id,
    ))
    if head.is_complete:
        s.pending_parents.pop(0)
        if head.has_toppings and head.topping_class_id:
            location = await ctx.location()
            toppings = await ctx.catalog.get_toppings(location, head.topping_class_id)
            name = parent.name if parent else head.parent_name
            _queue_toppings(ctx, head.parent_item_id, name, head.grouping_id, toppings, front=True)
    return True


def cancel_pending_options(ctx: TurnContext) -> List[str]:
    """Drop every combo still waiting for options. Returns the removed names."""
    s = ctx.session
    names = []
    for grouping_id in dict.fromkeys(task.grouping_id for task in s.pending_parents):
        parent = s.cart.parent_of(grouping_id)
        if parent is not None:
            names.append(parent.name)
        s.cart.remove_group(grouping_id)
        s.pending_toppings = [t for t in s.pending_toppings if t.grouping_id != grouping_id]
    s.pending_parents = []
    return names


# Toppings

def show_toppings(ctx: TurnContext, page: int = 1) -> None:
    head = ctx.session.pending_toppings[0]
    rows = [Row(t.id, t.name, f"{money(t.price)} - Add as topping") for t in head.toppings]
    ctx.show(PagedListPrompt(
        f"➕ *Add Toppings for {head.main_item_name}*\n\nPlease choose a topping (optional, extra charges apply)",
        "Choose Topping",
        "Select Toppings",
        rows,
        page=page,
        page_prefix="TOPPING_PAGE_",
    ))
    if head.selected_topping_ids:
        first = Button("DONE_TOPPINGS", "✅ Done")
    else:
        first = Button("SKIP_TOPPINGS", "⏭️ Skip")
    ctx.show(ButtonPrompt(
        "All set? Choose your next step.",
        [first, Button("BACK_TO_MENU", "🗑️ Remove Item")],
    ))


# Edit menu

def _packaging_lines(ctx: TurnContext) -> bool:
    return len(ctx.session.cart.pack_ids()) > 1


def show_edit_menu(ctx: TurnContext) -> None:
    s = ctx.session
    s.clear_editing()
    ctx.set_state(OrderState.EDIT_ORDER)
    lines = s.cart.edit_lines()
    if not lines:
        ctx.show(ButtonPrompt(
            "🛒 Your cart is empty.\n\nLet's add some items!",
            [Button("ADD_ITEM", "➕ Add Item"), Button("BACK_TO_SUMMARY", "↩️ Back")],
        ))
        return
    text = edit_menu_text(lines, "✏️ *Edit Your Order*", show_packs=_packaging_lines(ctx))
    ctx.show(ButtonPrompt(
        f"{text}\n\nEnter an item number to change it, or select an option below:",
        [
            Button("ADD_ITEM", "➕ Add Item"),
            Button("REMOVE_ITEM", "🗑️ Remove Item"),
            Button("BACK_TO_SUMMARY", "🧾 Order Summary"),
        ],
    ))


async def start_line_edit(ctx: TurnContext, number: int) -> bool:
    """Pick line `number` for replacement. False for an unknown number."""
    s = ctx.session
    lines = s.cart.edit_lines()
    if not 1 <= number <= len(lines):
        return False
    line = lines[number - 1]
    s.is_editing = True
    s.editing_group_id = line.edit_key
    s.editing_quantity = line.quantity
    s.current_pack_id = line.pack_id
    ctx.set_state(OrderState.ITEM_SELECTION_FROM_EDIT)
    ctx.say(f"✏️ Replacing *{line.name}* x{line.quantity}.\n\nPick the new item from the menu below:")
    await show_main_menu(ctx)
    return True


def show_remove_prompt(ctx: TurnContext) -> None:
    s = ctx.session
    lines = s.cart.edit_lines()
    if not lines:
        ctx.say("🛒 Your cart is empty. There are no items to remove.")
        show_edit_menu(ctx)
        return
    s.current_pack_id = None
    ctx.set_state(OrderState.REMOVE_ITEM_PROMPT)
    text = edit_menu_text(lines, "🗑️ *Remove Item*")
    ctx.show(ButtonPrompt(
        f"{text}\n\nEnter the item number to remove (1 to {len(lines)}):",
        [Button("BACK_TO_SUMMARY", "🧾 Order Summary")],
    ))


def show_edit_pack_menu(ctx: TurnContext, pack_id: str) -> None:
    s = ctx.session
    lines = s.cart.edit_lines(pack_id)
    s.current_pack_id = pack_id
    if not lines:
        ctx.say(f"📦 {pack_label(pack_id)} is empty.")
        show_pack_selection(ctx, "REMOVE")
        return
    ctx.set_state(OrderState.REMOVE_ITEM_PROMPT)
    text = edit_menu_text(lines, f"✏️ *Editing {pack_label(pack_id)}*")
    if len(s.cart.pack_ids()) > 1:
        hint = "🗑️ Enter item number to remove\n(enter '0' to remove entire pack):"
    else:
        hint = "🗑️ Enter item number to remove:"
    ctx.show(ButtonPrompt(
        f"{text}\n\n{hint}",
        [Button("BACK_TO_PACKS", "⬅️ Back to Packs"), Button("BACK_TO_SUMMARY", "🧾 Order Summary")],
    ))


def show_pack_selection(ctx: TurnContext, action: str) -> None:
    """`action` is ADD or REMOVE; it prefixes the row ids."""
    s = ctx.session
    ctx.set_state(OrderState.PACK_SELECTION_ADD if action == "ADD" else OrderState.PACK_SELECTION_REMOVE)
    verb = "add items to" if action == "ADD" else "remove items from"
    # The pack just created stays selectable while it is still empty
    pack_ids = s.cart.pack_ids(s.current_pack_id) if action == "ADD" else s.cart.pack_ids()
    rows = [
        Row(f"{action}_PACK_{pack_id}", f"{pack_label(pack_id)} ({len(s.cart.edit_lines(pack_id))} items)")
        for pack_id in pack_ids
    ]
    sections = [Section("Select Pack", rows)]
    if action == "ADD":
        sections.append(Section("Other Options", [
            Row("ADD_NEW_PACK", "➕ Add New Pack", "Start a new pack and add items to it"),
        ]))
    ctx.show(ListPrompt(
        f"📦 *Pack Management*\n\nPlease select a pack to {verb}:",
        "Choose Pack",
        sections,
    ))
    ctx.show(ButtonPrompt(
        "Use the buttons below to navigate:",
        [Button("BACK_TO_SUMMARY", "🧾 Order Summary")],
    ))
