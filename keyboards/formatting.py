"""
Customer-facing text blocks: money, order summary, help footer.
"""
from decimal import Decimal
from typing import Dict, List, Tuple

from config import config
from services.cart import Cart, CartItem, EditLine, pack_label
from services.catalog_models import DiscountKind
from services.pricing import PriceBreakdown, round_money
from services.session import OrderSession


def money(amount, symbol: str = None) -> str:
    symbol = config.CURRENCY_SYMBOL if symbol is None else symbol
    value = round_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def help_footer(session: OrderSession) -> str:
    contacts = []
    if session.help_phone:
        contacts.append(f"📞 {session.help_phone}")
    if session.help_email:
        contacts.append(f"📧 {session.help_email}")
    if not contacts:
        return ""
    return "\n\nNeed help? Contact us:\n" + "\n".join(contacts)


def _combo_lines(items: List[CartItem], indent: str) -> List[str]:
    lines = []
    groups: Dict[str, List[CartItem]] = {}
    for item in sorted((i for i in items if i.grouping_id), key=lambda i: (i.grouping_id, i.item_id)):
        groups.setdefault(item.grouping_id, []).append(item)
    for group in groups.values():
        parent = next((i for i in group if i.is_group_parent), None)
        if parent is None:
            continue
        lines.append(f"{indent}➡️ *{parent.name}* x{parent.quantity} - {money(parent.line_total)}")
        for option in (i for i in group if i.is_option):
            lines.append(f"{indent}   🔹 {option.name} (included)")
        for topping in (i for i in group if i.is_topping):
            lines.append(f"{indent}   🔸 {topping.name} - {money(topping.line_total)}")
    return lines


def _standalone_lines(items: List[CartItem], indent: str) -> List[str]:
    aggregated: Dict[str, Tuple[CartItem, int]] = {}
    for item in items:
        if not item.is_standalone:
            continue
        first, qty = aggregated.get(item.item_id, (item, 0))
        aggregated[item.item_id] = (first, qty + item.quantity)
    return [
        f"{indent}➡️ *{first.name}* x{qty} - {money(first.price * qty)}"
        for first, qty in aggregated.values()
    ]


def cart_lines(cart: Cart, packaging_enabled: bool = False) -> List[str]:
    """Cart body of the summary; one section per pack when packaging is on."""
    if not packaging_enabled:
        return _combo_lines(cart.items, "") + _standalone_lines(cart.items, "")

    lines: List[str] = []
    packs = cart.packs()
    for pack_id, items in packs.items():
        if len(packs) > 1:
            subtotal = sum((i.line_total for i in items), Decimal("0"))
            lines.append(f"📦 *{pack_label(pack_id)}* ({money(subtotal)})")
        else:
            lines.append(f"📦 *{pack_label(pack_id)}*")
        lines.extend(_combo_lines(items, "   "))
        lines.extend(_standalone_lines(items, "   "))
        lines.append("")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def charge_lines(breakdown: PriceBreakdown) -> List[str]:
    grouped: Dict[str, Tuple[Decimal, int]] = {}
    for charge in breakdown.charges:
        name = charge.name or "Charge"
        amount, count = grouped.get(name, (Decimal("0"), 0))
        grouped[name] = (amount + charge.total, count + charge.multiplier)
    lines = []
    for name, (amount, count) in grouped.items():
        suffix = f" (x{count})" if count > 1 else ""
        lines.append(f"   🧾{name}: {money(amount)}{suffix}")
    return lines


def order_summary(session: OrderSession, breakdown: PriceBreakdown, packaging_enabled: bool = False) -> str:
    lines = ["🧾 *Your Order Summary*", ""]
    lines.extend(cart_lines(session.cart, packaging_enabled))
    lines.append("")
    lines.append(f"💵 *Subtotal*: {money(breakdown.subtotal)}")
    lines.append(f"📦 *Tax ({breakdown.tax_rate:.1f}%)*: {money(breakdown.tax)}")
    if breakdown.charges:
        lines.append(f"⚡ *Charges*: {money(breakdown.charges_total)}")
        lines.extend(charge_lines(breakdown))
    discount = session.discount
    if discount is not None and breakdown.discount > 0:
        if discount.kind == DiscountKind.PERCENT:
            value = f"{discount.value.normalize():f}% off (-{money(breakdown.discount)})"
        else:
            value = f"-{money(breakdown.discount)}"
        lines.append(f"🎟️ *Discount ({discount.code})*: {value}")
    lines.append(f"💰 *Total*: {money(breakdown.total)}")
    if session.notes:
        lines.append("")
        lines.append(f"📝 *Special Instructions*:\n{session.notes}")
    return "\n".join(lines)


def edit_line_text(line: EditLine, show_pack: bool = False) -> str:
    pack = f" ({pack_label(line.pack_id)})" if show_pack else ""
    parts = [f"{line.number}. *{line.name}* x{line.quantity} - {money(line.line_total)}{pack}"]
    for option in line.options:
        parts.append(f"    🔹 {option.name}")
    for topping in line.toppings:
        parts.append(f"    🔸 {topping.name} - {money(topping.line_total)}")
    return "\n".join(parts)


def edit_menu_text(lines: List[EditLine], heading: str, show_packs: bool = False) -> str:
    body = "\n".join(edit_line_text(line, show_packs) for line in lines)
    return f"{heading}\n\n{body}" if body else heading
