"""
Inbound token grammar.

Button/list payloads and free text are parsed once into a Command; handlers
match on Command.kind instead of poking at raw string prefixes.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional


class CommandKind(str, enum.Enum):
    # Exact tokens
    START_ORDER = "START_ORDER"
    GET_HELP = "GET_HELP"
    CONFIRM_CLOSED_YES = "CONFIRM_CLOSED_YES"
    CONFIRM_CLOSED_NO = "CONFIRM_CLOSED_NO"
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"
    PROCEED_DELIVERY = "PROCEED_DELIVERY"
    SWITCH_TO_PICKUP = "SWITCH_TO_PICKUP"
    SWITCH_TO_PICKUP_YES = "SWITCH_TO_PICKUP_YES"
    SWITCH_TO_PICKUP_NO = "SWITCH_TO_PICKUP_NO"
    LOCATION_NOT_LISTED = "LOCATION_NOT_LISTED"
    SAVE_ADDRESS_YES = "SAVE_ADDRESS_YES"
    SAVE_ADDRESS_NO = "SAVE_ADDRESS_NO"
    NEW_ADDRESS = "NEW_ADDRESS"
    SEARCH = "SEARCH"
    FULL_MENU = "FULL_MENU"
    VIEW_MORE_CATEGORIES = "VIEW_MORE_CATEGORIES"
    BACK_CATEGORIES = "BACK_CATEGORIES"
    BACK_SUBCATEGORIES = "BACK_SUBCATEGORIES"
    BACK_TO_MAIN = "BACK_TO_MAIN"
    BACK_TO_MENU = "BACK_TO_MENU"
    ADD_MORE = "ADD_MORE"
    BROWSE_OTHERS = "BROWSE_OTHERS"
    PROCEED_CHECKOUT = "PROCEED_CHECKOUT"
    BACK_TO_SUMMARY = "BACK_TO_SUMMARY"
    EDIT_ORDER = "EDIT_ORDER"
    ADD_ITEM = "ADD_ITEM"
    REMOVE_ITEM = "REMOVE_ITEM"
    CANCEL_OPTIONS = "CANCEL_OPTIONS"
    SKIP_TOPPINGS = "SKIP_TOPPINGS"
    NO_TOPPINGS = "NO_TOPPINGS"
    DONE_TOPPINGS = "DONE_TOPPINGS"
    NONE = "NONE"
    CONFIRM_ORDER = "CONFIRM_ORDER"
    CANCEL_ORDER = "CANCEL_ORDER"
    CONFIRM_CANCEL = "CONFIRM_CANCEL"
    CONTINUE_ORDER = "CONTINUE_ORDER"
    BACK_TO_PACKS = "BACK_TO_PACKS"
    PROFILE_BACK_TO_MENU = "PROFILE_BACK_TO_MENU"
    APPLY_DISCOUNT = "APPLY_DISCOUNT"
    NON_TEXT = "NON_TEXT"
    # Parameterized tokens
    CAT_PAGE = "CAT_PAGE"
    SUBCAT_PAGE = "SUBCAT_PAGE"
    OPT_PAGE = "OPT_PAGE"
    TOPPING_PAGE = "TOPPING_PAGE"
    CAT_SET = "CAT_SET"
    CAT = "CAT"
    SUBCAT = "SUBCAT"
    NEW_PACK = "NEW_PACK"
    ADD_PACK = "ADD_PACK"
    REMOVE_PACK = "REMOVE_PACK"
    ADD_ITEM_TO_PACK = "ADD_ITEM_TO_PACK"
    SAVED_ADDRESS = "SAVED_ADDRESS"
    NUMBER = "NUMBER"
    # Anything else: item ids, option ids, addresses, notes, codes
    TEXT = "TEXT"


# Visible button titles that customers sometimes type back
_ALIASES = {
    "🔍 search menu": CommandKind.SEARCH,
    "search menu": CommandKind.SEARCH,
    "📖 browse menu": CommandKind.FULL_MENU,
    "browse menu": CommandKind.FULL_MENU,
    "order summary": CommandKind.BACK_TO_SUMMARY,
    "⬅️ back": CommandKind.PROFILE_BACK_TO_MENU,
    "none": CommandKind.NONE,
}

DISCOUNT_PHRASES = frozenset({
    "discount",
    "apply discount",
    "discount code",
    "add discount",
    "promo",
    "promo code",
    "coupon",
    "coupon code",
})

# Longest prefixes first: CAT_SET_ before CAT_, SUBCAT_PAGE_ before SUBCAT_
_PAGED_PREFIXES = (
    ("SUBCAT_PAGE_", CommandKind.SUBCAT_PAGE),
    ("CAT_PAGE_", CommandKind.CAT_PAGE),
    ("OPT_PAGE_", CommandKind.OPT_PAGE),
    ("TOPPING_PAGE_", CommandKind.TOPPING_PAGE),
)
_ARG_PREFIXES = (
    ("CAT_SET_", CommandKind.CAT_SET),
    ("SUBCAT_", CommandKind.SUBCAT),
    ("CAT_", CommandKind.CAT),
    ("ADD_PACK_", CommandKind.ADD_PACK),
    ("REMOVE_PACK_", CommandKind.REMOVE_PACK),
    ("ADD_ITEM_", CommandKind.ADD_ITEM_TO_PACK),
    ("SAVED_ADDRESS_", CommandKind.SAVED_ADDRESS),
)
_PARAMETERIZED = frozenset({
    "CAT_PAGE", "SUBCAT_PAGE", "OPT_PAGE", "TOPPING_PAGE", "CAT_SET", "CAT", "SUBCAT",
    "NEW_PACK", "ADD_PACK", "REMOVE_PACK", "ADD_ITEM_TO_PACK", "SAVED_ADDRESS", "NUMBER", "TEXT",
})
_NEW_PACK_RE = re.compile(r"^[A-Z]+_NEW_PACK$")
_NUMBER_RE = re.compile(r"^\d{1,4}$")


@dataclass(frozen=True, slots=True)
class Command:
    kind: CommandKind
    raw: str = ""
    arg: Optional[str] = None
    page: int = 1
    number: Optional[int] = None

    @property
    def text(self) -> str:
        return self.raw.strip()

    @property
    def is_discount_request(self) -> bool:
        return self.kind == CommandKind.APPLY_DISCOUNT or self.text.lower() in DISCOUNT_PHRASES


def _page(value: str) -> int:
    try:
        page = int(value)
    except ValueError:
        return 1
    return page if page >= 1 else 1


def parse_command(token: Optional[str]) -> Command:
    raw = token or ""
    text = raw.strip()
    if not text:
        return Command(CommandKind.TEXT, raw)

    alias = _ALIASES.get(text.lower())
    if alias is not None:
        return Command(alias, raw)

    if text in CommandKind.__members__ and text not in _PARAMETERIZED:
        return Command(CommandKind[text], raw)

    if _NEW_PACK_RE.match(text):
        return Command(CommandKind.NEW_PACK, raw)

    for prefix, kind in _PAGED_PREFIXES:
        if text.startswith(prefix):
            return Command(kind, raw, page=_page(text[len(prefix):]))

    for prefix, kind in _ARG_PREFIXES:
        if text.startswith(prefix) and len(text) > len(prefix):
            arg = text[len(prefix):]
            if kind == CommandKind.SAVED_ADDRESS:
                if not arg.isdigit():
                    break
                return Command(kind, raw, arg=arg, number=int(arg))
            return Command(kind, raw, arg=arg)

    if _NUMBER_RE.match(text):
        return Command(CommandKind.NUMBER, raw, number=int(text))

    return Command(CommandKind.TEXT, raw)
