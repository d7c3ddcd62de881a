"""
Cart model: line items tied together by grouping id (combo parent, its options
and toppings) and partitioned into packs.

Nothing here does I/O. The cart is serialized into the session row as JSON.
"""
from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_PACK_ID = "pack1"
_PACK_RE = re.compile(r"(\d+)$")


def to_decimal(value, default: str = "0") -> Decimal:
    """Money from anything the provider or a stored blob may hand us."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


def new_grouping_id() -> str:
    """Grouping ids sort in creation order (time prefix) and never collide."""
    return f"{time.time_ns():016x}-{uuid.uuid4().hex[:6]}"


def pack_number(pack_id: Optional[str]) -> int:
    """'pack3' -> 3. Unknown formats count as pack 1."""
    match = _PACK_RE.search(pack_id or "")
    return int(match.group(1)) if match else 1


def pack_label(pack_id: Optional[str]) -> str:
    return f"Pack {pack_number(pack_id)}"


@dataclass(slots=True)
class CartItem:
    item_id: str
    name: str
    price: Decimal = Decimal("0")
    quantity: int = 1
    item_class_id: Optional[str] = None
    tax_id: Optional[str] = None
    grouping_id: Optional[str] = None
    # Set on required options: the option group the child was chosen from
    parent_item_id: Optional[str] = None
    pack_id: str = DEFAULT_PACK_ID
    is_topping: bool = False
    # Item id of the parent a topping was added to
    main_item_id: Optional[str] = None

    @property
    def is_option(self) -> bool:
        """Bundled child of a combo; its price is included in the parent."""
        return bool(self.parent_item_id)

    @property
    def is_group_parent(self) -> bool:
        return bool(self.grouping_id) and not self.parent_item_id and not self.is_topping

    @property
    def is_standalone(self) -> bool:
        return not self.grouping_id and not self.parent_item_id and not self.is_topping

    @property
    def line_total(self) -> Decimal:
        if self.is_option:
            return Decimal("0")
        return self.price * self.quantity

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "item_class_id": self.item_class_id,
            "tax_id": self.tax_id,
            "grouping_id": self.grouping_id,
            "parent_item_id": self.parent_item_id,
            "pack_id": self.pack_id,
            "is_topping": self.is_topping,
            "main_item_id": self.main_item_id,
        }

    @staticmethod
    def from_dict(data: dict) -> "CartItem":
        return CartItem(
            item_id=str(data["item_id"]),
            name=str(data.get("name") or data["item_id"]),
            price=to_decimal(data.get("price")),
            quantity=max(1, int(data.get("quantity") or 1)),
            item_class_id=data.get("item_class_id"),
            tax_id=data.get("tax_id"),
            grouping_id=data.get("grouping_id") or None,
            parent_item_id=data.get("parent_item_id") or None,
            pack_id=data.get("pack_id") or DEFAULT_PACK_ID,
            is_topping=bool(data.get("is_topping")),
            main_item_id=data.get("main_item_id") or None,
        )


@dataclass(slots=True)
class EditLine:
    """One numbered row of the edit/removal view."""
    number: int
    name: str
    quantity: int
    item_id: str
    pack_id: str
    grouping_id: Optional[str] = None
    options: List[CartItem] = field(default_factory=list)
    toppings: List[CartItem] = field(default_factory=list)
    line_total: Decimal = Decimal("0")

    @property
    def is_combo(self) -> bool:
        return self.grouping_id is not None

    @property
    def edit_key(self) -> str:
        """Identifier stored on the session while this line is being edited."""
        return self.grouping_id or f"item:{self.pack_id}:{self.item_id}"


class Cart:
    """Ordered list of CartItem with grouping and pack views."""

    def __init__(self, items: Optional[Iterable[CartItem]] = None):
        self.items: List[CartItem] = list(items or [])

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    def add(self, item: CartItem) -> CartItem:
        self.items.append(item)
        return item

    # Grouping views

    def groups(self) -> Dict[str, List[CartItem]]:
        """grouping id -> items, in first-seen order."""
        result: Dict[str, List[CartItem]] = {}
        for item in self.items:
            if item.grouping_id:
                result.setdefault(item.grouping_id, []).append(item)
        return result

    def parent_of(self, grouping_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.grouping_id == grouping_id and item.is_group_parent:
                return item
        return None

    def remove_group(self, grouping_id: str) -> List[CartItem]:
        """Remove a parent and every item sharing its grouping id."""
        removed = [i for i in self.items if i.grouping_id == grouping_id]
        self.items = [i for i in self.items if i.grouping_id != grouping_id]
        return removed

    def detach_children(self, grouping_id: str) -> List[CartItem]:
        """Take options and toppings of a group out of the cart, leaving the parent."""
        detached = [i for i in self.items if i.grouping_id == grouping_id and not i.is_group_parent]
        self.items = [i for i in self.items if not (i.grouping_id == grouping_id and not i.is_group_parent)]
        return detached

    def reattach(self, children: Iterable[CartItem], grouping_id: str, main_item_id: Optional[str] = None) -> None:
        for child in children:
            child.grouping_id = grouping_id
            if child.is_topping and main_item_id:
                child.main_item_id = main_item_id
            self.items.append(child)

    def orphans(self) -> List[CartItem]:
        """Options/toppings whose grouping id has no parent in the cart."""
        orphans = [i for i in self.items if (i.is_option or i.is_topping) and not i.grouping_id]
        for members in self.groups().values():
            if not any(i.is_group_parent for i in members):
                orphans.extend(members)
        return orphans

    def drop_orphans(self) -> int:
        orphans = self.orphans()
        if orphans:
            ids = {id(i) for i in orphans}
            self.items = [i for i in self.items if id(i) not in ids]
        return len(orphans)

    # Packs

    def packs(self) -> Dict[str, List[CartItem]]:
        """pack id -> items, packs ordered by number."""
        result: Dict[str, List[CartItem]] = {}
        for item in self.items:
            result.setdefault(item.pack_id or DEFAULT_PACK_ID, []).append(item)
        return dict(sorted(result.items(), key=lambda kv: pack_number(kv[0])))

    def pack_ids(self, extra: Optional[str] = None) -> List[str]:
        ids = set(self.packs())
        if extra:
            ids.add(extra)
        return sorted(ids, key=pack_number)

    def items_in_pack(self, pack_id: str) -> List[CartItem]:
        return [i for i in self.items if (i.pack_id or DEFAULT_PACK_ID) == pack_id]

    def next_pack_id(self, reserved: Optional[str] = None) -> str:
        used = {pack_number(p) for p in self.pack_ids(reserved)}
        n = 1
        while n in used:
            n += 1
        return f"pack{n}"

    def remove_pack(self, pack_id: str) -> List[CartItem]:
        removed = self.items_in_pack(pack_id)
        self.items = [i for i in self.items if (i.pack_id or DEFAULT_PACK_ID) != pack_id]
        return removed

    # Numbered view used by edit and removal prompts

    def edit_lines(self, pack_id: Optional[str] = None) -> List[EditLine]:
        """
        Deterministic 1-based numbering: combos first (by grouping id, then
        parent item id), then standalone items aggregated per item id and pack.
        """
        items = self.items if pack_id is None else self.items_in_pack(pack_id)
        groups = self.groups()
        lines: List[EditLine] = []

        parents = sorted(
            (i for i in items if i.is_group_parent),
            key=lambda i: (i.grouping_id, i.item_id),
        )
        for parent in parents:
            members = groups.get(parent.grouping_id, [])
            options = [i for i in members if i.is_option]
            toppings = [i for i in members if i.is_topping]
            total = parent.line_total + sum((t.line_total for t in toppings), Decimal("0"))
            lines.append(EditLine(
                number=0,
                name=parent.name,
                quantity=parent.quantity,
                item_id=parent.item_id,
                pack_id=parent.pack_id,
                grouping_id=parent.grouping_id,
                options=options,
                toppings=toppings,
                line_total=total,
            ))

        # One line per item and pack: an edit never reaches across packs
        standalone: Dict[tuple, EditLine] = {}
        for item in sorted(
            (i for i in items if i.is_standalone),
            key=lambda i: (i.item_id, pack_number(i.pack_id)),
        ):
            line = standalone.get((item.item_id, item.pack_id))
            if line is None:
                standalone[(item.item_id, item.pack_id)] = EditLine(
                    number=0,
                    name=item.name,
                    quantity=item.quantity,
                    item_id=item.item_id,
                    pack_id=item.pack_id,
                    line_total=item.line_total,
                )
            else:
                line.quantity += item.quantity
                line.line_total += item.line_total
        lines.extend(standalone.values())

        for n, line in enumerate(lines, start=1):
            line.number = n
        return lines

    def remove_line(self, line: EditLine) -> List[CartItem]:
        if line.grouping_id:
            return self.remove_group(line.grouping_id)
        removed = [
            i for i in self.items
            if i.is_standalone and i.item_id == line.item_id and i.pack_id == line.pack_id
        ]
        ids = {id(i) for i in removed}
        self.items = [i for i in self.items if id(i) not in ids]
        return removed

    def remove_by_edit_key(self, edit_key: str) -> List[CartItem]:
        """Remove what an EditLine.edit_key names: a combo group or one item in one pack."""
        if not edit_key.startswith("item:"):
            return self.remove_group(edit_key)
        pack_id, sep, item_id = edit_key[len("item:"):].partition(":")
        if not sep:
            # Key stored before pack scoping: "item:<id>"
            pack_id, item_id = None, pack_id

        def matches(i: CartItem) -> bool:
            return i.is_standalone and i.item_id == item_id and (pack_id is None or i.pack_id == pack_id)

        removed = [i for i in self.items if matches(i)]
        self.items = [i for i in self.items if not matches(i)]
        return removed

    # Serialization

    def to_json(self) -> str:
        return json.dumps({"items": [i.to_dict() for i in self.items]}, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw) -> "Cart":
        """Corrupt or missing blobs give an empty cart; bad rows are skipped."""
        if not raw:
            return cls()
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except (TypeError, ValueError) as e:
            logger.warning("Cart blob unreadable, starting empty: %s", e)
            return cls()
        rows = data.get("items") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            logger.warning("Cart blob has unexpected shape %s, starting empty", type(rows).__name__)
            return cls()
        items = []
        for row in rows:
            try:
                items.append(CartItem.from_dict(row))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping unreadable cart row %r: %s", row, e)
        return cls(items)
