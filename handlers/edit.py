"""
Edit menu, item removal and pack management.
"""
import logging

from handlers.base import Router, TurnContext
from handlers.cart_flows import (
    show_edit_menu,
    show_edit_pack_menu,
    show_pack_selection,
    show_remove_prompt,
    start_line_edit,
)
from handlers.flows import show_main_menu
from services.cart import pack_label
from services.commands import CommandKind
from states.order_states import OrderState

logger = logging.getLogger(__name__)
router = Router("edit")


async def _add_items(ctx: TurnContext, pack_id=None) -> None:
    s = ctx.session
    if pack_id:
        s.current_pack_id = pack_id
    ctx.set_state(OrderState.ITEM_SELECTION_FROM_EDIT)
    await show_main_menu(ctx, "Click 'View items' to add more items to your cart:")


@router.state(OrderState.EDIT_ORDER)
async def edit_menu_choice(ctx: TurnContext):
    command = ctx.command
    location = await ctx.location()
    packaging = location.packaging_enabled
    kind = command.kind

    if kind == CommandKind.ADD_ITEM:
        if packaging and ctx.session.cart:
            show_pack_selection(ctx, "ADD")
        else:
            await _add_items(ctx)
    elif kind == CommandKind.REMOVE_ITEM:
        if packaging and ctx.session.cart:
            show_pack_selection(ctx, "REMOVE")
        else:
            show_remove_prompt(ctx)
    elif kind in (CommandKind.NEW_PACK, CommandKind.ADD_PACK, CommandKind.ADD_ITEM_TO_PACK):
        await pack_chosen(ctx)
    elif kind == CommandKind.REMOVE_PACK:
        ctx.set_state(OrderState.PACK_SELECTION_REMOVE)
        await pack_chosen(ctx)
    elif kind == CommandKind.NUMBER:
        if not await start_line_edit(ctx, command.number):
            ctx.say("❌ Invalid item number. Please enter a valid number." + ctx.footer)
            show_edit_menu(ctx)
    else:
        show_edit_menu(ctx)


async def _after_removal(ctx: TurnContext, pack_id) -> None:
    s = ctx.session
    if not s.cart:
        ctx.say("🛒 Your cart is now empty.")
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
    elif pack_id and s.cart.items_in_pack(pack_id):
        show_edit_pack_menu(ctx, pack_id)
    elif pack_id:
        s.current_pack_id = None
        show_pack_selection(ctx, "REMOVE")
    else:
        show_edit_menu(ctx)


@router.state(OrderState.REMOVE_ITEM_PROMPT)
async def remove_number_entered(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    pack_id = s.current_pack_id
    location = await ctx.location()
    scoped = location.packaging_enabled and pack_id is not None

    if command.kind == CommandKind.BACK_TO_PACKS:
        show_pack_selection(ctx, "REMOVE")
        return
    if command.kind == CommandKind.ADD_ITEM_TO_PACK:
        await _add_items(ctx, command.arg)
        return
    if command.kind != CommandKind.NUMBER:
        ctx.say("❌ Please enter a valid item number or use the buttons below." + ctx.footer)
        if scoped:
            show_edit_pack_menu(ctx, pack_id)
        else:
            show_remove_prompt(ctx)
        return

    number = command.number
    if scoped and number == 0:
        if len(s.cart.pack_ids()) <= 1:
            ctx.say("❌ You can't remove the only pack. Cancel the order instead if you want to start over.")
            show_edit_pack_menu(ctx, pack_id)
            return
        s.cart.remove_pack(pack_id)
        s.current_pack_id = None
        logger.info("%s removed %s", s.phone_number, pack_id)
        ctx.say(f"✅ Removed {pack_label(pack_id)} from your order.")
        show_edit_menu(ctx)
        return

    lines = s.cart.edit_lines(pack_id if scoped else None)
    if not 1 <= number <= len(lines):
        ctx.say(f"❌ Invalid item number. Please enter a number from 1 to {len(lines)}." + ctx.footer)
        return
    line = lines[number - 1]
    s.cart.remove_line(line)
    if line.grouping_id:
        s.pending_parents = [t for t in s.pending_parents if t.grouping_id != line.grouping_id]
        s.pending_toppings = [t for t in s.pending_toppings if t.grouping_id != line.grouping_id]
    ctx.say(f"✅ Removed {line.name} from your cart.")
    await _after_removal(ctx, pack_id if scoped else None)


@router.state(OrderState.PACK_SELECTION_ADD, OrderState.PACK_SELECTION_REMOVE)
async def pack_chosen(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    kind = command.kind
    adding = s.state != OrderState.PACK_SELECTION_REMOVE

    if kind == CommandKind.NEW_PACK:
        pack_id = s.cart.next_pack_id(s.current_pack_id)
        ctx.say(f"📦 {pack_label(pack_id)} created. You can now add items.")
        await _add_items(ctx, pack_id)
    elif kind in (CommandKind.ADD_PACK, CommandKind.ADD_ITEM_TO_PACK):
        if command.arg not in s.cart.pack_ids(s.current_pack_id):
            ctx.say("❌ Please select a pack from the list.")
            show_pack_selection(ctx, "ADD")
            return
        ctx.say(f"📦 {pack_label(command.arg)} selected successfully.\n\nYou can now add items.")
        await _add_items(ctx, command.arg)
    elif kind == CommandKind.REMOVE_PACK:
        if command.arg not in s.cart.pack_ids():
            ctx.say("❌ Please select a pack from the list.")
            show_pack_selection(ctx, "REMOVE")
            return
        show_edit_pack_menu(ctx, command.arg)
    elif kind == CommandKind.ADD_ITEM:
        show_pack_selection(ctx, "ADD")
    elif kind == CommandKind.REMOVE_ITEM:
        show_pack_selection(ctx, "REMOVE")
    else:
        ctx.say("❌ Please select a pack from the list.")
        show_pack_selection(ctx, "ADD" if adding else "REMOVE")
