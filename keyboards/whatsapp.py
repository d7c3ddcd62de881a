"""
WhatsApp interactive message builders.

Each function returns the type-specific part of a Graph API message; the
gateway adds messaging_product/to.
"""
from typing import List, Optional

from keyboards.instructions import Button, ProductSection, Section

MAX_BUTTONS = 3
BUTTON_TITLE_LIMIT = 20
ROW_TITLE_LIMIT = 24
ROW_DESCRIPTION_LIMIT = 72
SECTION_TITLE_LIMIT = 24
LIST_ROWS_LIMIT = 10
CATALOG_ITEMS_LIMIT = 30
BODY_LIMIT = 1024
TEXT_LIMIT = 4096


def truncate(text: Optional[str], limit: int) -> str:
    """Cut to `limit` characters, ellipsis included."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def text_message(body: str) -> dict:
    return {"type": "text", "text": {"preview_url": False, "body": truncate(body, TEXT_LIMIT)}}


def button_message(
    body: str,
    buttons: List[Button],
    header: Optional[str] = None,
    footer: Optional[str] = None,
) -> dict:
    interactive = {
        "type": "button",
        "body": {"text": truncate(body, BODY_LIMIT)},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": b.id, "title": truncate(b.title, BUTTON_TITLE_LIMIT)}}
                for b in buttons[:MAX_BUTTONS]
            ]
        },
    }
    if header:
        interactive["header"] = {"type": "text", "text": truncate(header, 60)}
    if footer:
        interactive["footer"] = {"text": truncate(footer, 60)}
    return {"type": "interactive", "interactive": interactive}


def list_message(
    body: str,
    button: str,
    sections: List[Section],
    header: Optional[str] = None,
    footer: Optional[str] = "Select an option",
) -> dict:
    interactive = {
        "type": "list",
        "body": {"text": truncate(body, BODY_LIMIT)},
        "action": {
            "button": truncate(button, BUTTON_TITLE_LIMIT),
            "sections": [
                {
                    "title": truncate(section.title, SECTION_TITLE_LIMIT),
                    "rows": [
                        _row(row.id, row.title, row.description)
                        for row in section.rows[:LIST_ROWS_LIMIT]
                    ],
                }
                for section in sections
                if section.rows
            ],
        },
    }
    if header:
        interactive["header"] = {"type": "text", "text": truncate(header, 60)}
    if footer:
        interactive["footer"] = {"text": truncate(footer, 60)}
    return {"type": "interactive", "interactive": interactive}


def _row(row_id: str, title: str, description: str = "") -> dict:
    row = {"id": row_id, "title": truncate(title, ROW_TITLE_LIMIT)}
    if description:
        row["description"] = truncate(description, ROW_DESCRIPTION_LIMIT)
    return row


def product_list_message(
    catalog_id: str,
    header: str,
    body: str,
    sections: List[ProductSection],
    footer: Optional[str] = None,
) -> dict:
    """Multi-product catalog message; at most 30 products across all sections."""
    remaining = CATALOG_ITEMS_LIMIT
    payload_sections = []
    for section in sections:
        ids = section.product_ids[:remaining]
        if not ids:
            continue
        remaining -= len(ids)
        payload_sections.append({
            "title": truncate(section.title, SECTION_TITLE_LIMIT),
            "product_items": [{"product_retailer_id": pid} for pid in ids],
        })
    interactive = {
        "type": "product_list",
        "header": {"type": "text", "text": truncate(header, 60)},
        "body": {"text": truncate(body, BODY_LIMIT)},
        "action": {"catalog_id": catalog_id, "sections": payload_sections},
    }
    if footer:
        interactive["footer"] = {"text": truncate(footer, 60)}
    return {"type": "interactive", "interactive": interactive}


def full_catalog_message(catalog_id: str, header: str, body: str, product_ids: List[str]) -> dict:
    return product_list_message(catalog_id, header, body, [ProductSection("Menu", product_ids)])


def flow_message(
    body: str,
    flow_id: str,
    flow_token: str,
    cta: str,
    screen: str,
    header: Optional[str] = None,
) -> dict:
    interactive = {
        "type": "flow",
        "body": {"text": truncate(body, BODY_LIMIT)},
        "action": {
            "name": "flow",
            "parameters": {
                "flow_message_version": "3",
                "flow_token": flow_token,
                "flow_id": flow_id,
                "flow_cta": truncate(cta, BUTTON_TITLE_LIMIT),
                "flow_action": "navigate",
                "flow_action_payload": {"screen": screen},
            },
        },
    }
    if header:
        interactive["header"] = {"type": "text", "text": truncate(header, 60)}
    return {"type": "interactive", "interactive": interactive}
