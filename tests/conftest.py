from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import List

import pytest

from handlers import catalog as catalog_handlers
from handlers import checkout, delivery, edit, location, options
from handlers.engine import ConversationEngine
from keyboards.renderer import PromptRenderer
from services.catalog_models import (
    Category,
    Charge,
    ChargeKind,
    DiscountKind,
    DiscountResult,
    Location,
    MenuItem,
    OrderResult,
    RecipeOption,
    RecipeParent,
    Tax,
    Topping,
)
from services.catalog_provider import CatalogProvider
from services.clock import utcnow
from services.dedup import MemoryMessageLog
from services.errors import CatalogError, MessagingError
from services.locks import MemoryKeyLock
from services.order_service import MemoryOrderRecorder, OrderService
from services.profile_service import MemoryProfileStore
from services.session_store import MemorySessionStore
from services.webhook_parser import EventKind, InboundEvent

BUSINESS = "biz-1"
PHONE = "2348000000001"


def make_settings(**overrides):
    values = dict(
        BUSINESS_NAME="Mama's Kitchen",
        LOCAL_UTC_OFFSET_HOURS=1,
        WHATSAPP_DELIVERY_FLOW_ID="",
        FLOOR_TOTAL_AT_ZERO=False,
        GREETING_WORDS=["hi", "hello", "hey", "start", "begin", "help", "menu"],
        SESSION_SAVE_RETRIES=3,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def combo_meal() -> MenuItem:
    return MenuItem(
        id="combo",
        name="Combo Meal",
        price=Decimal("5000"),
        set_id="meals",
        recipe_parents=[
            RecipeParent("drinks", "Choose a drink", 1, [
                RecipeOption("coke", "Coke"),
                RecipeOption("fanta", "Fanta"),
            ]),
            RecipeParent("sides", "Choose sides", 2, [
                RecipeOption("fries", "Fries"),
                RecipeOption("salad", "Salad"),
                RecipeOption("plantain", "Plantain"),
            ]),
        ],
    )


class FakeCatalog(CatalogProvider):
    """Two locations, a small menu, one tax, a pack fee and two delivery areas."""

    def __init__(self):
        self.locations = [
            Location(
                id="L1",
                name="Ikeja",
                address="1 Allen Avenue",
                restaurant_id="R1",
                pickup_available=True,
                tax_exclusive=True,
                help_phone="+2348011111111",
                help_email="help@example.com",
            ),
            Location(id="L2", name="Lekki", address="5 Admiralty Way", restaurant_id="R1"),
        ]
        self.products = [
            MenuItem(id="jollof", name="Jollof Rice", price=Decimal("2500"), set_id="rice", retailer_id="sku-jollof"),
            MenuItem(id="burger", name="Burger", price=Decimal("3000"), set_id="grill", topping_class_id="extras"),
            combo_meal(),
        ]
        self.toppings = {
            "extras": [
                Topping("cheese", "Cheese", Decimal("500")),
                Topping("bacon", "Bacon", Decimal("700")),
            ]
        }
        self.taxes = [Tax("vat", "VAT", Decimal("7.5"))]
        self.charges = [
            Charge("pack", "Pack fee", Decimal("200"), ChargeKind.TAKEOUT),
            Charge("area1", "Area 1", Decimal("1000"), ChargeKind.DELIVERY),
            Charge("area2", "Area 2", Decimal("1500"), ChargeKind.DELIVERY),
            Charge("old", "Old Area", Decimal("900"), ChargeKind.DELIVERY, expires_at=utcnow() - timedelta(days=1)),
        ]
        self.discounts = {
            "SAVE10": DiscountResult("SAVE10", True, DiscountKind.PERCENT, Decimal("10")),
            "FLAT500": DiscountResult("FLAT500", True, DiscountKind.AMOUNT, Decimal("500")),
            "OLD": DiscountResult("OLD", False, DiscountKind.AMOUNT, Decimal("100")),
        }
        self.submitted = []
        self.fail_products = False
        self.fail_charges = False
        self.fail_submit = False

    async def get_locations(self, business_id):
        return list(self.locations)

    async def get_products(self, location):
        if self.fail_products:
            raise CatalogError("menu service down")
        return list(self.products)

    async def get_categories(self, location):
        return [
            Category("rice", "Rice Dishes", ["rice"], is_grouping=False),
            Category("grill", "Grill", ["grill"], is_grouping=False),
            Category("meals", "Meals", ["meals"], is_grouping=False),
        ]

    async def get_toppings(self, location, topping_class_id):
        return list(self.toppings.get(topping_class_id, []))

    async def get_taxes(self, location):
        return list(self.taxes)

    async def get_charges(self, location, kind):
        if self.fail_charges:
            raise CatalogError("charges service down")
        return [c for c in self.charges if c.kind == kind]

    async def validate_discount(self, restaurant_id, code):
        return self.discounts.get(code.strip().upper())

    async def submit_order(self, request):
        if self.fail_submit:
            raise CatalogError("order rejected")
        self.submitted.append(request)
        return OrderResult(
            reference=f"REF-{len(self.submitted)}",
            bank_name="Test Bank",
            account_number="0123456789",
            account_name="Mama's Kitchen",
        )


class RecordingGateway:
    def __init__(self):
        self.sent: List[tuple] = []
        self.fail_types = set()

    async def send(self, business_id, to, message):
        if message.get("type") in self.fail_types or (message.get("interactive") or {}).get("type") in self.fail_types:
            raise MessagingError(f"refused {message.get('type')}")
        self.sent.append((business_id, to, message))
        return {"messages": [{"id": f"wamid.out.{len(self.sent)}"}]}

    async def close(self):
        return None

    @property
    def messages(self) -> List[dict]:
        return [m for _, _, m in self.sent]

    def bodies(self) -> List[str]:
        result = []
        for message in self.messages:
            if message["type"] == "text":
                result.append(message["text"]["body"])
            else:
                result.append(message["interactive"]["body"]["text"])
        return result

    def transcript(self) -> str:
        return "\n---\n".join(self.bodies())

    def button_ids(self) -> List[str]:
        ids = []
        for message in self.messages:
            interactive = message.get("interactive") or {}
            if interactive.get("type") == "button":
                ids.extend(b["reply"]["id"] for b in interactive["action"]["buttons"])
        return ids

    def row_ids(self) -> List[str]:
        ids = []
        for message in self.messages:
            interactive = message.get("interactive") or {}
            if interactive.get("type") == "list":
                for section in interactive["action"]["sections"]:
                    ids.extend(r["id"] for r in section["rows"])
        return ids

    def clear(self):
        self.sent.clear()


class Conversation:
    """One customer talking to an engine; send() returns nothing, inspect the gateway."""

    def __init__(self, engine, gateway, store, phone=PHONE, business=BUSINESS):
        self.engine = engine
        self.gateway = gateway
        self.store = store
        self.phone = phone
        self.business = business
        self._counter = 0

    def event(self, content="", kind=EventKind.TEXT, raw=None, message_id=None) -> InboundEvent:
        self._counter += 1
        return InboundEvent(
            business_id=self.business,
            phone_number=self.phone,
            kind=kind,
            content=content,
            customer_name="Ada",
            message_id=message_id or f"wamid.{self.phone}.{self._counter}",
            raw=raw or {},
        )

    async def send(self, content, kind=EventKind.TEXT, raw=None, message_id=None):
        self.gateway.clear()
        await self.engine.feed_event(self.event(content, kind, raw, message_id))

    async def button(self, button_id):
        await self.send(button_id, EventKind.BUTTON)

    async def pick(self, row_id):
        await self.send(row_id, EventKind.LIST)

    async def session(self):
        return await self.store.get(self.business, self.phone)

    async def start_at_menu(self, location_id="L1"):
        await self.send("hi")
        await self.pick(location_id)

    async def order_jollof_for_pickup(self):
        """Greeting through the order summary with one Jollof Rice."""
        await self.start_at_menu()
        await self.send("jollof")
        await self.button("PICKUP")
        await self.button("NONE")


def build_engine(catalog=None, settings=None, store=None, message_log=None, lock=None):
    catalog = catalog or FakeCatalog()
    gateway = RecordingGateway()
    store = store or MemorySessionStore()
    profiles = MemoryProfileStore()
    recorder = MemoryOrderRecorder()
    engine = ConversationEngine(
        store=store,
        lock=lock or MemoryKeyLock(hold_timeout=5, wait_timeout=5),
        renderer=PromptRenderer(gateway, "catalog-1"),
        catalog=catalog,
        profiles=profiles,
        orders=OrderService(catalog, recorder),
        settings=settings or make_settings(),
        message_log=message_log if message_log is not None else MemoryMessageLog(),
    )
    engine.include_routers(
        location.router,
        delivery.router,
        catalog_handlers.router,
        options.router,
        checkout.router,
        edit.router,
    )
    return SimpleNamespace(
        engine=engine,
        gateway=gateway,
        store=store,
        profiles=profiles,
        recorder=recorder,
        catalog=catalog,
    )


@pytest.fixture
def bot():
    return build_engine()


@pytest.fixture
def chat(bot):
    return Conversation(bot.engine, bot.gateway, bot.store)
