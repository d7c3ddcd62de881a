import asyncio
import json

import pytest
from aiohttp import test_utils

from handlers.webhook import TASKS_KEY, create_app
from services.errors import PayloadError
from services.webhook_parser import NON_TEXT, EventKind, parse_webhook


def payload(*messages, field="messages", contacts=None):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "waba",
            "changes": [{
                "field": field,
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "15550000000", "phone_number_id": "biz-1"},
                    "contacts": contacts if contacts is not None else [
                        {"wa_id": "2348000000001", "profile": {"name": " Ada "}},
                    ],
                    "messages": list(messages),
                },
            }],
        }],
    }


def message(msg_type, **body):
    msg = {"from": "2348000000001", "id": f"wamid.{msg_type}", "timestamp": "1700000000", "type": msg_type}
    msg.update(body)
    return msg


def only_event(*messages, **kwargs):
    events = parse_webhook(json.dumps(payload(*messages, **kwargs)))
    assert len(events) == 1
    return events[0]


@pytest.mark.parametrize("body", [None, b"", "", "not json", b"[1, 2]", "42"])
def test_bad_bodies_are_rejected(body):
    with pytest.raises(PayloadError):
        parse_webhook(body)


def test_status_updates_produce_nothing():
    assert parse_webhook(payload(message("text", text={"body": "hi"}), field="statuses")) == []
    assert parse_webhook({"entry": []}) == []


def test_text_message():
    event = only_event(message("text", text={"body": "hi there"}))
    assert event.kind == EventKind.TEXT
    assert event.token == "hi there"
    assert event.business_id == "biz-1"
    assert event.phone_number == "2348000000001"
    assert event.customer_name == "Ada"
    assert event.message_id == "wamid.text"


def test_name_comes_from_the_matching_contact():
    contacts = [{"wa_id": "999", "profile": {"name": "Someone"}}]
    assert only_event(message("text", text={"body": "hi"}), contacts=contacts).customer_name == ""


def test_button_and_list_replies():
    button = only_event(message("interactive", interactive={"type": "button_reply", "button_reply": {"id": "START_ORDER", "title": "Start"}}))
    assert (button.kind, button.token) == (EventKind.BUTTON, "START_ORDER")
    row = only_event(message("interactive", interactive={"type": "list_reply", "list_reply": {"id": "L1", "title": "Ikeja"}}))
    assert (row.kind, row.token) == (EventKind.LIST, "L1")


def test_flow_reply_carries_its_data():
    reply = {"type": "nfm_reply", "nfm_reply": {"response_json": '{"address": "1 Allen Avenue", "flow_token": "t"}'}}
    event = only_event(message("interactive", interactive=reply))
    assert event.kind == EventKind.FLOW_SUBMISSION
    assert event.token == ""
    assert event.flow_data["address"] == "1 Allen Avenue"


def test_unreadable_flow_reply_has_no_data():
    reply = {"type": "nfm_reply", "nfm_reply": {"response_json": "{oops"}}
    assert only_event(message("interactive", interactive=reply)).flow_data == {}


def test_unrecognised_interactive_is_unknown():
    assert only_event(message("interactive", interactive={"type": "call_permission_reply"})).kind == EventKind.UNKNOWN


def test_media_messages():
    image = only_event(message("image", image={"caption": "my receipt"}))
    assert (image.kind, image.content, image.token) == (EventKind.IMAGE, "my receipt", NON_TEXT)
    assert only_event(message("video", video={})).content == "[VIDEO]"
    assert only_event(message("document", document={"filename": "menu.pdf"})).content == "menu.pdf"
    assert only_event(message("sticker", sticker={})).content == "[STICKER]"


def test_unknown_type_is_non_text():
    event = only_event(message("reaction", reaction={"emoji": "👍"}))
    assert event.kind == EventKind.UNKNOWN
    assert event.content == NON_TEXT


def test_catalog_order_items():
    order = {"catalog_id": "cat-1", "product_items": [
        {"product_retailer_id": "sku-jollof", "quantity": "2", "item_price": 2500, "currency": "NGN"},
        {"product_retailer_id": "sku-burger", "quantity": 0},
        {"quantity": 3},
        {"product_retailer_id": "sku-x", "quantity": "many"},
    ]}
    event = only_event(message("order", order=order))
    assert event.kind == EventKind.ORDER
    assert event.token == ""
    assert event.order_items == [("sku-jollof", 2), ("sku-burger", 1), ("sku-x", 1)]


def test_messages_without_sender_are_skipped():
    msg = message("text", text={"body": "hi"})
    del msg["from"]
    assert parse_webhook(payload(msg)) == []


class RecordingEngine:
    def __init__(self):
        self.events = []

    async def feed_event(self, event):
        self.events.append(event)


def with_client(app, scenario):
    async def run():
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            return await scenario(client)
    return asyncio.run(run())


def test_verification_handshake():
    app = create_app(RecordingEngine(), "secret")

    async def scenario(client):
        ok = await client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "secret", "hub.challenge": "1234"})
        assert ok.status == 200
        assert await ok.text() == "1234"
        refused = await client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1234"})
        assert refused.status == 403

    with_client(app, scenario)


def test_events_are_handed_to_the_engine():
    engine = RecordingEngine()
    app = create_app(engine, "secret")

    async def scenario(client):
        resp = await client.post("/webhook", data=json.dumps(payload(message("text", text={"body": "hi"}))))
        assert resp.status == 200
        assert await resp.text() == "OK"
        await asyncio.gather(*app[TASKS_KEY])
        await asyncio.sleep(0)

    with_client(app, scenario)
    assert [e.token for e in engine.events] == ["hi"]


def test_malformed_post_is_a_bad_request():
    engine = RecordingEngine()
    app = create_app(engine, "secret")

    async def scenario(client):
        resp = await client.post("/webhook", data="{broken")
        assert resp.status == 400

    with_client(app, scenario)
    assert engine.events == []
