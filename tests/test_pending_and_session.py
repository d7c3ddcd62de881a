from decimal import Decimal

from services.cart import Cart, CartItem
from services.catalog_models import DiscountKind, RecipeOption, Topping
from services.pending import (
    PendingParent,
    PendingToppings,
    dump_queue,
    load_pending_parents,
    load_pending_toppings,
    ordinal,
)
from services.pricing import AppliedDiscount
from services.session import DeliveryMethod, MissingStep, OrderSession
from states.order_states import OrderState


def sides(quantity=2):
    return PendingParent(
        parent_item_id="combo",
        parent_name="Choose sides",
        option_group_id="sides",
        grouping_id="g1",
        options=[RecipeOption("fries", "Fries"), RecipeOption("salad", "Salad"), RecipeOption("rice", "Rice")],
        quantity=quantity,
    )


def test_taking_options_consumes_the_pool():
    task = sides()
    assert task.take_option("fries").name == "Fries"
    assert [o.item_id for o in task.options] == ["salad", "rice"]
    assert task.current_option_index == 2
    assert not task.is_complete
    assert task.take_option("fries") is None
    task.take_option("rice")
    assert task.is_complete


def test_exhausted_pool_counts_as_complete():
    task = sides(quantity=3)
    task.options = []
    assert task.is_complete


def test_queues_survive_serialization():
    parents = [sides()]
    toppings = [PendingToppings("burger", "Burger", "g2", [Topping("cheese", "Cheese", Decimal("500"))], ["cheese"])]
    assert load_pending_parents(dump_queue(parents)) == parents
    restored = load_pending_toppings(dump_queue(toppings))
    assert restored == toppings
    assert restored[0].toppings[0].price == Decimal("500")


def test_corrupt_queues_are_empty():
    assert load_pending_parents("not json") == []
    assert load_pending_parents('{"a": 1}') == []
    assert load_pending_parents('[{"parent_name": "missing ids"}]') == []
    assert load_pending_toppings(None) == []


def test_ordinals():
    assert [ordinal(n) for n in (1, 2, 5)] == ["first", "second", "fifth"]
    assert ordinal(6) == "#6"


def test_session_round_trip():
    session = OrderSession(
        business_id="biz",
        phone_number="234",
        state=OrderState.COLLECT_NOTES,
        cart=Cart([CartItem("jollof", "Jollof Rice", Decimal("2500"))]),
        pending_parents=[sides()],
        location_id="L1",
        delivery_method=DeliveryMethod.DELIVERY,
        delivery_address="1 Allen Avenue",
        discount=AppliedDiscount("SAVE10", DiscountKind.PERCENT, Decimal("10")),
        notes="",
        edit_children=[CartItem("coke", "Coke", parent_item_id="drinks", grouping_id="g1")],
        version=4,
    )
    restored = OrderSession.from_dict(session.to_dict())
    assert restored.snapshot() == session.snapshot()
    assert restored.version == 4
    assert restored.notes == ""
    assert restored.discount.kind == DiscountKind.PERCENT


def test_unknown_stored_state_restarts():
    data = OrderSession("biz", "234").to_dict()
    data["state"] = "SOMETHING_OLD"
    data["discount_data"] = "{broken"
    data["cart_data"] = "[[["
    restored = OrderSession.from_dict(data)
    assert restored.state == OrderState.LOCATION_SELECTION
    assert restored.discount is None
    assert not restored.cart


def test_missing_step_order():
    session = OrderSession("biz", "234")
    assert session.missing_step() == MissingStep.LOCATION
    session.location_id = "L1"
    assert session.missing_step() == MissingStep.DELIVERY_METHOD
    session.delivery_method = DeliveryMethod.DELIVERY
    assert session.missing_step() == MissingStep.DELIVERY_ADDRESS
    session.delivery_address = "1 Allen Avenue"
    assert session.missing_step() is None
    session.delivery_method = DeliveryMethod.PICKUP
    session.delivery_address = None
    assert session.missing_step() is None


def test_reset_order_keeps_identity():
    session = OrderSession("biz", "234", customer_name="Ada", location_id="L1", notes="x",
                           cart=Cart([CartItem("jollof", "Jollof Rice")]))
    session.reset_order()
    assert session.customer_name == "Ada"
    assert session.location_id is None
    assert session.notes is None
    assert not session.cart


def test_loaded_cart_loses_children_without_parent():
    session = OrderSession("biz", "234", state=OrderState.ITEM_SELECTION)
    session.cart = Cart([
        CartItem("combo", "Combo Meal", Decimal("5000"), grouping_id="kept"),
        CartItem("coke", "Coke", grouping_id="kept", parent_item_id="drinks"),
        CartItem("fanta", "Fanta", grouping_id="gone", parent_item_id="drinks"),
        CartItem("cheese", "Cheese", Decimal("500"), grouping_id="gone", is_topping=True),
        CartItem("jollof", "Jollof Rice", Decimal("2500")),
    ])
    restored = OrderSession.from_dict(session.to_dict())
    assert [i.item_id for i in restored.cart] == ["combo", "coke", "jollof"]
    assert list(restored.cart.groups()) == ["kept"]
