"""
Required option sets and optional toppings of the item just added.
"""
import logging

from handlers.base import Router, TurnContext
from handlers.cart_flows import (
    after_item_added,
    cancel_pending_options,
    choose_option,
    show_item_options,
    show_toppings,
)
from handlers.flows import show_main_menu
from keyboards.formatting import money
from services.cart import CartItem
from services.commands import CommandKind
from states.order_states import OrderState

logger = logging.getLogger(__name__)
router = Router("options")


@router.state(OrderState.ITEM_OPTIONS)
async def option_selected(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    if not s.pending_parents:
        await after_item_added(ctx)
        return

    if command.kind == CommandKind.CANCEL_OPTIONS:
        names = cancel_pending_options(ctx)
        logger.info("Options cancelled by %s for %s", s.phone_number, names)
        ctx.say("❌ Option selection canceled. The item was removed from your cart.")
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
        return
    if command.kind == CommandKind.OPT_PAGE:
        show_item_options(ctx, command.page)
        return

    if not await choose_option(ctx, command.text):
        ctx.say("❌ Invalid option selected.\n\nPlease choose from the list below." + ctx.footer)
        show_item_options(ctx)
        return
    await after_item_added(ctx)


def _finish_toppings(ctx: TurnContext) -> None:
    ctx.session.pending_toppings.pop(0)


@router.state(OrderState.ITEM_TOPPINGS)
async def topping_selected(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    if not s.pending_toppings:
        await after_item_added(ctx)
        return
    head = s.pending_toppings[0]

    if s.cart.parent_of(head.grouping_id) is None:
        # The item was removed meanwhile
        _finish_toppings(ctx)
        await after_item_added(ctx)
        return

    kind = command.kind
    if kind in (CommandKind.SKIP_TOPPINGS, CommandKind.NO_TOPPINGS, CommandKind.DONE_TOPPINGS, CommandKind.NONE):
        _finish_toppings(ctx)
        await after_item_added(ctx)
        return
    if kind == CommandKind.BACK_TO_MENU:
        s.cart.remove_group(head.grouping_id)
        _finish_toppings(ctx)
        ctx.say(f"🗑️ *{head.main_item_name}* was removed from your cart.")
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
        return
    if kind == CommandKind.TOPPING_PAGE:
        show_toppings(ctx, command.page)
        return

    topping = head.find(command.text)
    if topping is None:
        ctx.say("❌ Invalid topping selected.\n\nPlease choose from the list below." + ctx.footer)
        show_toppings(ctx)
        return
    if topping.id in head.selected_topping_ids:
        ctx.say(f"ℹ️ {topping.name} is already added.")
        show_toppings(ctx)
        return

    parent = s.cart.parent_of(head.grouping_id)
    s.cart.add(CartItem(
        item_id=topping.id,
        name=topping.name,
        price=topping.price,
        quantity=1,
        item_class_id=topping.item_class_id,
        tax_id=topping.tax_id,
        grouping_id=head.grouping_id,
        pack_id=parent.pack_id,
        is_topping=True,
        main_item_id=head.main_item_id,
    ))
    head.selected_topping_ids.append(topping.id)
    ctx.say(f"✅ Added {topping.name} - {money(topping.price)}")
    show_toppings(ctx)
