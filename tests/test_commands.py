import pytest

from services.commands import CommandKind, parse_command


@pytest.mark.parametrize("token,kind", [
    ("START_ORDER", CommandKind.START_ORDER),
    ("CONFIRM_ORDER", CommandKind.CONFIRM_ORDER),
    ("NON_TEXT", CommandKind.NON_TEXT),
    ("none", CommandKind.NONE),
    ("None", CommandKind.NONE),
    ("search menu", CommandKind.SEARCH),
    ("ADD_NEW_PACK", CommandKind.NEW_PACK),
    ("jollof", CommandKind.TEXT),
    ("", CommandKind.TEXT),
    # Parameterized kinds are never matched by their bare name
    ("CAT", CommandKind.TEXT),
    ("NUMBER", CommandKind.TEXT),
])
def test_token_kinds(token, kind):
    assert parse_command(token).kind == kind


def test_numbers():
    command = parse_command(" 12 ")
    assert command.kind == CommandKind.NUMBER
    assert command.number == 12
    assert parse_command("0").number == 0
    assert parse_command("12345").kind == CommandKind.TEXT


def test_prefixed_tokens_carry_their_argument():
    assert parse_command("CAT_SET_rice").kind == CommandKind.CAT_SET
    assert parse_command("CAT_SET_rice").arg == "rice"
    assert parse_command("CAT_drinks").kind == CommandKind.CAT
    assert parse_command("SUBCAT_Soups").arg == "Soups"
    assert parse_command("ADD_PACK_pack2").kind == CommandKind.ADD_PACK
    assert parse_command("REMOVE_PACK_pack1").arg == "pack1"
    assert parse_command("ADD_ITEM_pack3").kind == CommandKind.ADD_ITEM_TO_PACK
    assert parse_command("ADD_ITEM").kind == CommandKind.ADD_ITEM


def test_pages():
    assert parse_command("CAT_PAGE_3").kind == CommandKind.CAT_PAGE
    assert parse_command("CAT_PAGE_3").page == 3
    assert parse_command("SUBCAT_PAGE_2").kind == CommandKind.SUBCAT_PAGE
    assert parse_command("OPT_PAGE_x").page == 1
    assert parse_command("TOPPING_PAGE_-4").page == 1


def test_saved_address_needs_a_number():
    command = parse_command("SAVED_ADDRESS_2")
    assert command.kind == CommandKind.SAVED_ADDRESS
    assert command.number == 2
    assert parse_command("SAVED_ADDRESS_home").kind == CommandKind.TEXT


@pytest.mark.parametrize("text", ["discount", "Promo Code", " coupon ", "APPLY_DISCOUNT"])
def test_discount_requests(text):
    assert parse_command(text).is_discount_request


def test_plain_text_is_not_a_discount_request():
    assert not parse_command("discounted jollof").is_discount_request
