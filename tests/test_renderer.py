import asyncio
from decimal import Decimal

import pytest

from conftest import RecordingGateway
from keyboards.instructions import (
    Button,
    ButtonPrompt,
    CategoryListPrompt,
    FlowPrompt,
    MenuPrompt,
    MenuTier,
    PagedListPrompt,
    Prompt,
    Row,
    Section,
    TextPrompt,
    catalog_tier,
)
from keyboards.renderer import PromptRenderer, page_rows
from keyboards.whatsapp import button_message, list_message, truncate
from services.catalog_models import Category, MenuItem


def menu(count, featured=0):
    return [
        MenuItem(f"item{n:02d}", f"Item {n:02d}", Decimal("100"), retailer_id=f"sku{n:02d}", featured=n < featured)
        for n in range(count)
    ]


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghijkl", 8) == "abcde..."
    assert truncate(None, 5) == ""


def test_button_message_keeps_three_short_buttons():
    buttons = [Button(f"B{n}", "A very long button title here") for n in range(5)]
    message = button_message("Pick one", buttons)
    rendered = message["interactive"]["action"]["buttons"]
    assert [b["reply"]["id"] for b in rendered] == ["B0", "B1", "B2"]
    assert all(len(b["reply"]["title"]) <= 20 for b in rendered)


def test_list_message_drops_empty_sections():
    sections = [Section("Empty"), Section("Full", [Row(f"r{n}", f"Row {n}") for n in range(12)])]
    interactive = list_message("Body", "Choose", sections)["interactive"]
    assert len(interactive["action"]["sections"]) == 1
    assert len(interactive["action"]["sections"][0]["rows"]) == 10
    assert interactive["footer"] == {"text": "Select an option"}


def test_page_rows_adds_navigation():
    rows = [Row(str(n), f"Row {n}") for n in range(20)]
    first, nav = page_rows(rows, 1, "OPT_PAGE_")
    assert [r.id for r in first] == [str(n) for n in range(8)]
    assert [r.id for r in nav] == ["OPT_PAGE_2"]

    middle, nav = page_rows(rows, 2, "OPT_PAGE_")
    assert middle[0].id == "8"
    assert [(r.id, r.title) for r in nav] == [("OPT_PAGE_1", "⬅️ Prev"), ("OPT_PAGE_3", "Next ➡️")]

    last, nav = page_rows(rows, 99, "OPT_PAGE_")
    assert [r.id for r in last] == ["16", "17", "18", "19"]
    assert [r.id for r in nav] == ["OPT_PAGE_2"]


def test_short_list_has_no_navigation():
    rows, nav = page_rows([Row("a", "A")], 1, "P_")
    assert len(rows) == 1
    assert nav == []


def test_catalog_tiers():
    assert catalog_tier(menu(30)) == MenuTier.FULL
    assert catalog_tier(menu(31, featured=4)) == MenuTier.SAMPLE
    assert catalog_tier(menu(31, featured=5)) == MenuTier.FEATURED


def test_full_menu_is_one_catalog_message():
    renderer = PromptRenderer(RecordingGateway(), catalog_id="cat-1")
    messages = renderer.build(MenuPrompt(menu(3), MenuTier.FULL, "Welcome"))
    assert len(messages) == 1
    interactive = messages[0]["interactive"]
    assert interactive["type"] == "product_list"
    assert interactive["header"]["text"] == "Our Menu"
    assert interactive["action"]["catalog_id"] == "cat-1"
    items = interactive["action"]["sections"][0]["product_items"]
    assert [i["product_retailer_id"] for i in items] == ["sku00", "sku01", "sku02"]


def test_featured_menu_adds_navigation_buttons():
    renderer = PromptRenderer(RecordingGateway(), catalog_id="cat-1")
    messages = renderer.build(MenuPrompt(menu(40, featured=6), MenuTier.FEATURED, "Welcome", has_cart=True))
    assert len(messages) == 2
    catalog = messages[0]["interactive"]
    assert catalog["header"]["text"] == "Featured Items"
    assert len(catalog["action"]["sections"][0]["product_items"]) == 6
    buttons = [b["reply"]["id"] for b in messages[1]["interactive"]["action"]["buttons"]]
    assert buttons == ["VIEW_MORE_CATEGORIES", "SEARCH", "PROCEED_CHECKOUT"]


def test_sample_menu_is_alphabetical_and_capped():
    products = list(reversed(menu(40)))
    renderer = PromptRenderer(RecordingGateway())
    catalog = renderer.build(MenuPrompt(products, MenuTier.SAMPLE, "Welcome"))[0]["interactive"]
    items = catalog["action"]["sections"][0]["product_items"]
    assert len(items) == 30
    assert items[0]["product_retailer_id"] == "sku00"


def test_category_list_pages_and_buttons():
    categories = [Category(f"c{n}", f"Category {n}", is_grouping=n % 2 == 0) for n in range(10)]
    renderer = PromptRenderer(RecordingGateway())
    listing, buttons = renderer.build(CategoryListPrompt(categories, page=2))
    sections = listing["interactive"]["action"]["sections"]
    assert [r["id"] for r in sections[0]["rows"]] == ["CAT_c8", "CAT_SET_c9"]
    assert [r["id"] for r in sections[1]["rows"]] == ["CAT_PAGE_1"]
    assert [b["reply"]["id"] for b in buttons["interactive"]["action"]["buttons"]] == ["BACK_TO_MAIN", "SEARCH"]


def test_paged_list_prompt():
    prompt = PagedListPrompt("Pick", "Options", "Sides", [Row(f"o{n}", f"Opt {n}") for n in range(9)],
                             page=1, page_prefix="OPT_PAGE_")
    message = PromptRenderer(RecordingGateway()).build(prompt)[0]
    sections = message["interactive"]["action"]["sections"]
    assert [s["title"] for s in sections] == ["Sides", "Navigate"]


def test_unknown_prompt_is_an_error():
    class Mystery(Prompt):
        __slots__ = ()

    with pytest.raises(TypeError):
        PromptRenderer(RecordingGateway()).build(Mystery())


def test_render_sends_in_order():
    gateway = RecordingGateway()
    renderer = PromptRenderer(gateway)
    prompts = [TextPrompt("one"), ButtonPrompt("two", [Button("OK", "OK")])]
    asyncio.run(renderer.render("biz", "234", prompts))
    assert gateway.bodies() == ["one", "two"]
    assert {to for _, to, _ in gateway.sent} == {"234"}


def test_failed_flow_falls_back():
    gateway = RecordingGateway()
    gateway.fail_types = {"flow"}
    renderer = PromptRenderer(gateway)
    prompt = FlowPrompt("Enter your address", "flow-1", "token", fallback=[TextPrompt("Pick an area")])
    asyncio.run(renderer.render("biz", "234", [prompt, TextPrompt("after")]))
    assert gateway.bodies() == ["Pick an area", "after"]
