"""
Notes, order confirmation, discount codes, cancellation and order placement.
"""
import logging

from pydantic import ValidationError

from handlers.base import Router, TurnContext
from handlers.flows import (
    cancel_order,
    guide_to_missing_step,
    price_session,
    proceed_to_checkout,
    resume_order,
    show_location_list,
    show_main_menu,
    show_summary,
    welcome,
)
from keyboards.formatting import money
from services.commands import CommandKind
from services.pricing import AppliedDiscount
from services.validation import NotesInput, is_greeting
from states.order_states import OrderState

logger = logging.getLogger(__name__)
router = Router("checkout")


@router.state(OrderState.COLLECT_NOTES)
async def notes_entered(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    if command.kind == CommandKind.NONE:
        s.notes = ""
        await proceed_to_checkout(ctx)
        return
    if command.kind in (CommandKind.PROFILE_BACK_TO_MENU, CommandKind.BACK_TO_MAIN):
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
        return
    if command.kind == CommandKind.NON_TEXT:
        ctx.say("📝 Please type your special instructions, or tap 'None' to skip.")
        return
    if is_greeting(command.text, ctx.settings.GREETING_WORDS):
        ctx.say("❌ Please enter valid special instructions or tap 'None' to skip." + ctx.footer)
        return
    try:
        s.notes = NotesInput(text=command.text).text
    except ValidationError:
        ctx.say("❌ Special instructions must be 1 to 500 characters. Please try again." + ctx.footer)
        return
    ctx.say("✅ Notes added!")
    await proceed_to_checkout(ctx)


async def confirm_order(ctx: TurnContext) -> None:
    s = ctx.session
    step = s.missing_step()
    if step is not None:
        await guide_to_missing_step(ctx, step)
        return
    if not s.cart:
        await show_summary(ctx)
        return

    breakdown, taxes = await price_session(ctx)
    footer = ctx.footer
    result, error = await ctx.orders.place_order(s, breakdown, taxes)
    s.reset_order()
    ctx.set_state(OrderState.CANCELLED)
    ctx.delete_session = True
    if result is None:
        logger.warning("Order for %s not placed: %s", s.phone_number, error)
        ctx.say("❌ Order failed.\n\nPlease try again or contact support." + footer)
        return
    ctx.say(
        "✅ *Order Received!*\n\n"
        f"🧾 Reference: *{result.reference}*\n"
        f"💰 Total: {money(result.total)}\n\n"
        "Please make a transfer using the account details below:\n"
        f"🏦 Bank: {result.bank_name}\n"
        f"🔗 Account Number: {result.account_number}\n"
        f"👤 Account Name: {result.account_name}\n\n"
        "After payment, you'll be updated on your order status.\n"
        "You can start a new order anytime." + footer
    )


@router.state(OrderState.ORDER_CONFIRMATION)
async def confirmation_answer(ctx: TurnContext):
    kind = ctx.command.kind
    if kind == CommandKind.CONFIRM_ORDER:
        await confirm_order(ctx)
    elif kind in (CommandKind.BACK_TO_MAIN, CommandKind.ADD_MORE):
        ctx.set_state(OrderState.ITEM_SELECTION)
        await show_main_menu(ctx)
    else:
        await show_summary(ctx)
        ctx.say(
            "Please select one of the options above:\n\n"
            "✅ Confirm Order - to proceed\n✏️ Edit Order - to modify\n❌ Cancel Order - to cancel"
        )


async def request_discount(ctx: TurnContext) -> None:
    s = ctx.session
    if s.discount is not None:
        ctx.say(
            f"❌ A discount code ({s.discount.code}) is already applied.\n\n"
            "Only one discount code can be used per order." + ctx.footer
        )
        return
    if not s.cart:
        ctx.say("🛒 Add some items to your cart first, then apply your discount code.")
        return
    ctx.set_state(OrderState.WAITING_FOR_DISCOUNT_CODE)
    ctx.say("🎟️ Please enter your discount code:")


@router.state(OrderState.WAITING_FOR_DISCOUNT_CODE)
async def discount_code_entered(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    if command.kind == CommandKind.CONFIRM_ORDER:
        await confirm_order(ctx)
        return
    if command.kind in (CommandKind.BACK_TO_MAIN, CommandKind.PROFILE_BACK_TO_MENU):
        await show_summary(ctx)
        return
    code = command.text
    if command.kind == CommandKind.NON_TEXT or not code:
        ctx.say("❌ No code entered. Please enter a valid discount code.")
        return

    location = await ctx.location()
    result = await ctx.catalog.validate_discount(s.restaurant_id or location.restaurant_id, code)
    if result is None or not result.active:
        logger.info("Discount code '%s' rejected for %s", code, s.phone_number)
        ctx.say(f"❌ The discount code *{code}* is invalid or has expired." + ctx.footer)
    else:
        s.discount = AppliedDiscount(result.code or code, result.kind, result.value)
        logger.info("Discount code '%s' applied for %s", s.discount.code, s.phone_number)
        ctx.say(f"✅ Discount code *{s.discount.code}* applied!")
    await show_summary(ctx)


@router.state(OrderState.CANCEL_CONFIRMATION)
async def cancel_answer(ctx: TurnContext):
    kind = ctx.command.kind
    if kind == CommandKind.CONFIRM_CANCEL:
        cancel_order(ctx)
    elif kind == CommandKind.CONTINUE_ORDER:
        await resume_order(ctx)
    else:
        ctx.say("Please choose *Yes, Cancel* or *No, Continue*.")


@router.state(OrderState.CANCELLED)
async def after_cancel(ctx: TurnContext):
    # Leftover row the sweeper has not removed yet
    ctx.session.reset_order()
    welcome(ctx)
    await show_location_list(ctx)
