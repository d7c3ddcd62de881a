"""
Delivery method, delivery area, address, contact phone and the delivery
details form.
"""
import logging
from typing import Optional

from pydantic import ValidationError

from handlers.base import Router, TurnContext
from handlers.flows import (
    available_delivery_charges,
    cancel_order,
    delivery_area_prompt,
    proceed_to_checkout,
    show_delivery_areas,
    start_delivery,
)
from keyboards.instructions import Button, ButtonPrompt
from services.commands import CommandKind
from services.session import DeliveryMethod
from services.validation import AddressInput, normalize_phone
from states.order_states import OrderState

logger = logging.getLogger(__name__)
router = Router("delivery")


def _switch_to_pickup(ctx: TurnContext) -> None:
    s = ctx.session
    s.delivery_method = DeliveryMethod.PICKUP
    s.delivery_charge_id = None


@router.state(OrderState.DELIVERY_METHOD)
async def delivery_method_chosen(ctx: TurnContext):
    s = ctx.session
    kind = ctx.command.kind
    location = await ctx.location()
    if kind == CommandKind.DELIVERY:
        s.delivery_method = DeliveryMethod.DELIVERY
        await start_delivery(ctx, location)
    elif kind == CommandKind.PICKUP:
        if not location.pickup_available:
            ctx.say("❌ Pickup is not available at this location.")
            s.delivery_method = DeliveryMethod.DELIVERY
            await start_delivery(ctx, location)
            return
        _switch_to_pickup(ctx)
        await proceed_to_checkout(ctx)
    else:
        ctx.say("Please choose *Delivery* or *Pickup* using the buttons above.")


@router.state(OrderState.CONFIRM_CLOSED_DELIVERY)
async def closed_delivery_answer(ctx: TurnContext):
    kind = ctx.command.kind
    location = await ctx.location()
    if kind == CommandKind.PROCEED_DELIVERY:
        await show_delivery_areas(ctx, location)
    elif kind == CommandKind.SWITCH_TO_PICKUP and location.pickup_available:
        _switch_to_pickup(ctx)
        ctx.say("✅ Switched to pickup.")
        await proceed_to_checkout(ctx)
    else:
        ctx.say("Please choose one of the options above.")


@router.state(OrderState.DELIVERY_LOCATION_SELECTION)
async def delivery_area_chosen(ctx: TurnContext):
    s = ctx.session
    location = await ctx.location()
    if ctx.command.kind == CommandKind.LOCATION_NOT_LISTED and location.pickup_available:
        _switch_to_pickup(ctx)
        ctx.say("✅ Switched to pickup. No delivery address needed.")
        await proceed_to_checkout(ctx)
        return

    charges = await available_delivery_charges(ctx, location)
    charge = next((c for c in charges if str(c.id) == ctx.command.text), None)
    if charge is None:
        ctx.say("❌ Invalid delivery area.\n\nPlease select from the list below." + ctx.footer)
        ctx.show(delivery_area_prompt(charges, location.pickup_available))
        return
    s.delivery_method = DeliveryMethod.DELIVERY
    s.delivery_charge_id = str(charge.id)
    ctx.say(f"📍 Delivery area: *{charge.name}*")
    await proceed_to_checkout(ctx)


@router.state(OrderState.DELIVERY_SWITCH_CONFIRMATION)
async def switch_to_pickup_answer(ctx: TurnContext):
    kind = ctx.command.kind
    if kind == CommandKind.SWITCH_TO_PICKUP_YES:
        _switch_to_pickup(ctx)
        ctx.say("✅ Switched to pickup.")
        await proceed_to_checkout(ctx)
    elif kind == CommandKind.SWITCH_TO_PICKUP_NO:
        cancel_order(ctx, "❌ Order closed.")
    else:
        ctx.say("Please choose *Yes* or *No* using the buttons above.")


def _ask_save_address(ctx: TurnContext) -> None:
    ctx.set_state(OrderState.ADDRESS_SAVE_PROMPT)
    ctx.show(ButtonPrompt(
        "💾 Save this address for next time?",
        [Button("SAVE_ADDRESS_YES", "✅ Save"), Button("SAVE_ADDRESS_NO", "⏭️ Not now")],
    ))


@router.state(OrderState.DELIVERY_ADDRESS)
async def address_entered(ctx: TurnContext):
    s = ctx.session
    command = ctx.command
    if command.kind == CommandKind.SAVED_ADDRESS:
        saved = await ctx.profiles.get_addresses(s.business_id, s.phone_number)
        if not 1 <= (command.number or 0) <= len(saved):
            ctx.say("❌ That saved address is no longer available. Please type your delivery address:")
            return
        s.delivery_address = saved[command.number - 1]
        await proceed_to_checkout(ctx)
        return
    if command.kind == CommandKind.NEW_ADDRESS:
        ctx.say("📝 Please enter your delivery address:")
        return
    if command.kind == CommandKind.NON_TEXT:
        ctx.say("📝 Please type your delivery address.")
        return

    try:
        address = AddressInput.from_string(command.text).address
    except ValidationError:
        ctx.say("❌ Address too short.\n\nPlease enter at least 10 characters." + ctx.footer)
        return
    s.delivery_address = address
    _ask_save_address(ctx)


@router.state(OrderState.ADDRESS_SAVE_PROMPT)
async def save_address_answer(ctx: TurnContext):
    s = ctx.session
    kind = ctx.command.kind
    if kind == CommandKind.SAVE_ADDRESS_YES:
        await ctx.profiles.add_address(s.business_id, s.phone_number, s.delivery_address)
        ctx.say("✅ Address saved.")
        await proceed_to_checkout(ctx)
    elif kind == CommandKind.SAVE_ADDRESS_NO:
        await proceed_to_checkout(ctx)
    else:
        _ask_save_address(ctx)


@router.state(OrderState.DELIVERY_CONTACT_PHONE)
async def contact_phone_entered(ctx: TurnContext):
    s = ctx.session
    phone = normalize_phone(ctx.command.text) if ctx.command.kind != CommandKind.NON_TEXT else None
    if phone is None:
        ctx.say("❌ Invalid phone number.\n\nPlease enter a valid phone number, e.g. 08012345678." + ctx.footer)
        return
    s.delivery_contact_phone = phone
    await ctx.profiles.save_contact_phone(s.business_id, s.phone_number, phone)
    await proceed_to_checkout(ctx)


def _field(data: dict, *needles: str) -> Optional[str]:
    """First non-empty form value whose key mentions one of `needles`."""
    for key, value in data.items():
        lowered = key.lower()
        if value and any(n in lowered for n in needles):
            return str(value).strip()
    return None


@router.state(OrderState.FLOW_IN_PROGRESS)
async def flow_in_progress(ctx: TurnContext):
    # The fallback area list may have been sent instead of the form
    await delivery_area_chosen(ctx)


async def flow_submitted(ctx: TurnContext) -> None:
    """Delivery details form reply; only meaningful while the form is open."""
    s = ctx.session
    if s.state != OrderState.FLOW_IN_PROGRESS:
        logger.info("Ignoring form reply from %s in state %s", s.phone_number, s.state.value)
        return
    data = ctx.event.flow_data
    location = await ctx.location()

    address = _field(data, "address")
    if address:
        try:
            s.delivery_address = AddressInput.from_string(address).address
        except ValidationError:
            ctx.say("❌ The address in the form is too short; we'll ask for it again.")
    phone = normalize_phone(_field(data, "phone", "telephone") or "")
    if phone:
        s.delivery_contact_phone = phone
        await ctx.profiles.save_contact_phone(s.business_id, s.phone_number, phone)
    area = _field(data, "area")
    if area:
        charges = await available_delivery_charges(ctx, location)
        charge = next((c for c in charges if str(c.id) == area or c.name.lower() == area.lower()), None)
        if charge is not None:
            s.delivery_charge_id = str(charge.id)
    s.delivery_method = DeliveryMethod.DELIVERY
    logger.info("Delivery form received from %s (area=%s)", s.phone_number, s.delivery_charge_id)
    await proceed_to_checkout(ctx)
