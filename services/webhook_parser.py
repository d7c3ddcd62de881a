"""
WhatsApp Cloud API webhook payload -> InboundEvent list.

Only `messages` changes produce events; delivery statuses and template
updates are acknowledged and dropped.
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from services.errors import PayloadError

logger = logging.getLogger(__name__)

NON_TEXT = "NON_TEXT"


class EventKind(str, enum.Enum):
    TEXT = "text"
    BUTTON = "button"
    LIST = "list"
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"
    STICKER = "sticker"
    ORDER = "order"
    FLOW_SUBMISSION = "flow_submission"
    UNKNOWN = "unknown"


_TOKEN_KINDS = frozenset({EventKind.TEXT, EventKind.BUTTON, EventKind.LIST})


@dataclass(slots=True)
class InboundEvent:
    business_id: str
    phone_number: str
    kind: EventKind
    content: str = ""
    customer_name: str = ""
    message_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def token(self) -> str:
        """What the state machine sees."""
        if self.kind in _TOKEN_KINDS:
            return self.content
        if self.kind in (EventKind.ORDER, EventKind.FLOW_SUBMISSION):
            return ""
        return NON_TEXT

    @property
    def flow_data(self) -> Dict[str, Any]:
        data = (self.raw.get("flow") or {}).get("data")
        return data if isinstance(data, dict) else {}

    @property
    def order_items(self) -> List[Tuple[str, int]]:
        """(product retailer id, quantity) pairs of a catalog cart message."""
        order = self.raw.get("order") or {}
        items = []
        for row in order.get("product_items") or []:
            if not isinstance(row, dict) or not row.get("product_retailer_id"):
                continue
            try:
                quantity = max(1, int(row.get("quantity") or 1))
            except (TypeError, ValueError):
                quantity = 1
            items.append((str(row["product_retailer_id"]), quantity))
        return items


def _customer_name(value: dict, phone_number: str) -> str:
    for contact in value.get("contacts") or []:
        if not isinstance(contact, dict):
            continue
        if contact.get("wa_id") == phone_number:
            return ((contact.get("profile") or {}).get("name") or "").strip()
    return ""


def _interactive(msg: dict, event: InboundEvent) -> None:
    interactive = msg.get("interactive") or {}
    button_id = (interactive.get("button_reply") or {}).get("id")
    list_id = (interactive.get("list_reply") or {}).get("id")
    nfm = interactive.get("nfm_reply")
    if button_id:
        event.kind, event.content = EventKind.BUTTON, str(button_id)
    elif list_id:
        event.kind, event.content = EventKind.LIST, str(list_id)
    elif isinstance(nfm, dict):
        event.kind = EventKind.FLOW_SUBMISSION
        try:
            data = json.loads(nfm.get("response_json") or "{}")
        except (TypeError, ValueError):
            logger.warning("Flow reply from %s has unreadable response_json", event.phone_number)
            data = {}
        event.raw["flow"] = {"data": data if isinstance(data, dict) else {}}
    else:
        event.kind = EventKind.UNKNOWN


def _message_event(msg: dict, business_id: str, value: dict) -> Optional[InboundEvent]:
    phone_number = str(msg.get("from") or "")
    if not phone_number:
        return None
    event = InboundEvent(
        business_id=business_id,
        phone_number=phone_number,
        kind=EventKind.UNKNOWN,
        customer_name=_customer_name(value, phone_number),
        message_id=msg.get("id"),
        raw=dict(msg),
    )
    msg_type = str(msg.get("type") or "").lower()
    if msg_type == "text":
        event.kind = EventKind.TEXT
        event.content = str((msg.get("text") or {}).get("body") or "")
    elif msg_type == "interactive":
        _interactive(msg, event)
    elif msg_type in ("image", "video"):
        event.kind = EventKind(msg_type)
        event.content = (msg.get(msg_type) or {}).get("caption") or f"[{msg_type.upper()}]"
    elif msg_type == "document":
        event.kind = EventKind.DOCUMENT
        event.content = (msg.get("document") or {}).get("filename") or "[DOCUMENT]"
    elif msg_type in ("audio", "sticker"):
        event.kind = EventKind(msg_type)
        event.content = f"[{msg_type.upper()}]"
    elif msg_type == "order":
        event.kind = EventKind.ORDER
        event.content = "[ORDER]"
    else:
        event.content = NON_TEXT
    return event


def parse_webhook(body: Union[bytes, str, dict, None]) -> List[InboundEvent]:
    """
    Raises PayloadError for an empty or unparseable body. A well-formed
    payload without message entries gives an empty list.
    """
    if body is None or body == b"" or body == "":
        raise PayloadError("empty webhook body")
    if isinstance(body, (bytes, str)):
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise PayloadError(f"webhook body is not JSON: {e}") from e
    else:
        payload = body
    if not isinstance(payload, dict):
        raise PayloadError(f"webhook body is a {type(payload).__name__}, expected an object")

    events: List[InboundEvent] = []
    for entry in payload.get("entry") or []:
        if not isinstance(entry, dict):
            continue
        for change in entry.get("changes") or []:
            if not isinstance(change, dict) or change.get("field") != "messages":
                continue
            value = change.get("value")
            if not isinstance(value, dict):
                continue
            business_id = str((value.get("metadata") or {}).get("phone_number_id") or "")
            for msg in value.get("messages") or []:
                if not isinstance(msg, dict):
                    continue
                event = _message_event(msg, business_id, value)
                if event is not None:
                    events.append(event)
    return events
