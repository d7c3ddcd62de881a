"""
Location selection and the closed-restaurant confirmation.
"""
import logging

from handlers.base import Router, TurnContext
from handlers.flows import cancel_order, open_location, select_location, show_location_list
from services.commands import CommandKind
from states.order_states import OrderState

logger = logging.getLogger(__name__)
router = Router("location")


@router.state(OrderState.LOCATION_SELECTION)
async def location_selected(ctx: TurnContext):
    command = ctx.command
    if command.kind in (CommandKind.START_ORDER, CommandKind.NON_TEXT) or not command.text:
        await show_location_list(ctx)
        return

    location = await ctx.catalog.get_location(ctx.session.business_id, command.text)
    if location is None:
        ctx.say("❌ Invalid location selected.\n\nPlease choose from the list below." + ctx.footer)
        await show_location_list(ctx)
        return
    logger.info("Location %s selected by %s", location.id, ctx.session.phone_number)
    await select_location(ctx, location)


@router.state(OrderState.CONFIRM_CLOSED_RESTAURANT)
async def closed_restaurant_answer(ctx: TurnContext):
    kind = ctx.command.kind
    if kind == CommandKind.CONFIRM_CLOSED_YES:
        location = await ctx.location()
        if location is None:
            await show_location_list(ctx)
            return
        await open_location(ctx, location)
    elif kind == CommandKind.CONFIRM_CLOSED_NO:
        cancel_order(ctx, "👋 No problem, we hope to see you soon.")
    else:
        ctx.say("Please tap *Yes, Continue* to order anyway or *No* to stop.")
