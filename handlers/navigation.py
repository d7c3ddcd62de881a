"""
Commands honoured in (almost) every state, checked before the state handler.

Each interceptor returns True when it handled the turn.
"""
import logging

from handlers.base import TurnContext
from handlers.cart_flows import (
    show_edit_menu,
    show_edit_pack_menu,
    show_item_options,
    show_pack_selection,
    show_remove_prompt,
    show_toppings,
)
from handlers.checkout import request_discount
from handlers.flows import (
    ask_address,
    ask_cancel,
    ask_contact_phone,
    ask_delivery_method,
    ask_notes,
    proceed_to_checkout,
    select_location,
    send_help,
    show_delivery_areas,
    show_location_list,
    show_main_menu,
    show_summary,
    start_delivery,
)
from services.commands import CommandKind
from states.order_states import DISCOUNT_BLOCKED_STATES, OrderState

logger = logging.getLogger(__name__)

# States that must finish their own question first
_NAV_BLOCKED_STATES = frozenset({
    OrderState.ITEM_OPTIONS,
    OrderState.ITEM_TOPPINGS,
    OrderState.CANCEL_CONFIRMATION,
    OrderState.CANCELLED,
})

# States that work without a selected location
LOCATION_FREE_STATES = frozenset({
    OrderState.LOCATION_SELECTION,
    OrderState.CANCEL_CONFIRMATION,
    OrderState.CANCELLED,
})

# States in which a catalog cart message is accepted
ORDER_MESSAGE_STATES = frozenset({
    OrderState.ITEM_SELECTION,
    OrderState.ITEM_SELECTION_FROM_EDIT,
    OrderState.SEARCH,
    OrderState.ORDER_CONFIRMATION,
    OrderState.COLLECT_NOTES,
    OrderState.EDIT_ORDER,
    OrderState.PACK_SELECTION_ADD,
    OrderState.PACK_SELECTION_REMOVE,
    OrderState.REMOVE_ITEM_PROMPT,
    OrderState.WAITING_FOR_DISCOUNT_CODE,
})


async def help_interceptor(ctx: TurnContext) -> bool:
    if ctx.command.kind != CommandKind.GET_HELP:
        return False
    await send_help(ctx)
    if ctx.session.state == OrderState.LOCATION_SELECTION and not ctx.session.location_id:
        await show_location_list(ctx)
    return True


async def discount_interceptor(ctx: TurnContext) -> bool:
    if ctx.session.state in DISCOUNT_BLOCKED_STATES or not ctx.command.is_discount_request:
        return False
    await request_discount(ctx)
    return True


async def global_nav_interceptor(ctx: TurnContext) -> bool:
    s = ctx.session
    if s.state in _NAV_BLOCKED_STATES or not s.location_id:
        return False
    kind = ctx.command.kind
    if kind == CommandKind.CANCEL_ORDER:
        ask_cancel(ctx)
    elif kind == CommandKind.PROCEED_CHECKOUT:
        await proceed_to_checkout(ctx)
    elif kind == CommandKind.BACK_TO_SUMMARY:
        await show_summary(ctx)
    elif kind == CommandKind.EDIT_ORDER:
        show_edit_menu(ctx)
    else:
        return False
    return True


INTERCEPTORS = (help_interceptor, discount_interceptor, global_nav_interceptor)


async def reprompt(ctx: TurnContext) -> None:
    """Ask the question of the current state again."""
    s = ctx.session
    state = s.state
    location = await ctx.location()
    if state == OrderState.LOCATION_SELECTION or location is None:
        await show_location_list(ctx)
    elif state == OrderState.CONFIRM_CLOSED_RESTAURANT:
        await select_location(ctx, location)
    elif state == OrderState.ITEM_OPTIONS and s.pending_parents:
        show_item_options(ctx)
    elif state == OrderState.ITEM_TOPPINGS and s.pending_toppings:
        show_toppings(ctx)
    elif state == OrderState.DELIVERY_METHOD:
        ask_delivery_method(ctx)
    elif state == OrderState.CONFIRM_CLOSED_DELIVERY:
        await start_delivery(ctx, location)
    elif state in (OrderState.DELIVERY_LOCATION_SELECTION, OrderState.FLOW_IN_PROGRESS):
        await show_delivery_areas(ctx, location, allow_flow=False)
    elif state in (OrderState.DELIVERY_ADDRESS, OrderState.ADDRESS_SAVE_PROMPT):
        await ask_address(ctx)
    elif state == OrderState.DELIVERY_CONTACT_PHONE:
        ask_contact_phone(ctx)
    elif state == OrderState.COLLECT_NOTES:
        ask_notes(ctx)
    elif state == OrderState.EDIT_ORDER:
        show_edit_menu(ctx)
    elif state == OrderState.REMOVE_ITEM_PROMPT:
        if s.current_pack_id and location.packaging_enabled:
            show_edit_pack_menu(ctx, s.current_pack_id)
        else:
            show_remove_prompt(ctx)
    elif state == OrderState.PACK_SELECTION_ADD:
        show_pack_selection(ctx, "ADD")
    elif state == OrderState.PACK_SELECTION_REMOVE:
        show_pack_selection(ctx, "REMOVE")
    elif state in (OrderState.ORDER_CONFIRMATION, OrderState.WAITING_FOR_DISCOUNT_CODE):
        await show_summary(ctx)
    elif state == OrderState.CANCEL_CONFIRMATION:
        ask_cancel(ctx)
    else:
        await show_main_menu(ctx)


async def flow_interrupted(ctx: TurnContext) -> None:
    logger.info("Out-of-step message from %s in state %s", ctx.session.phone_number, ctx.session.state.value)
    ctx.say("🔄 *Flow Interrupted*\n\nPlease complete the current step first. Here it is again:")
    await reprompt(ctx)
