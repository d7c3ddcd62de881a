"""
Typed FIFO queues for work that is still waiting on the customer:
required option sets (PendingParent) and topping choices (PendingToppings).

The head of each queue is the task currently being asked about.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from services.cart import to_decimal
from services.catalog_models import RecipeOption, Topping

logger = logging.getLogger(__name__)

ORDINALS = ("first", "second", "third", "fourth", "fifth")


def ordinal(n: int) -> str:
    if 1 <= n <= len(ORDINALS):
        return ORDINALS[n - 1]
    return f"#{n}"


@dataclass(slots=True)
class PendingParent:
    parent_item_id: str
    parent_name: str
    option_group_id: str
    grouping_id: str
    options: List[RecipeOption] = field(default_factory=list)
    quantity: int = 1
    current_option_index: int = 1
    option_set_index: int = 1
    total_option_sets: int = 1
    has_toppings: bool = False
    topping_class_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.current_option_index > self.quantity or not self.options

    def find_option(self, item_id: str) -> Optional[RecipeOption]:
        for option in self.options:
            if option.item_id == item_id:
                return option
        return None

    def take_option(self, item_id: str) -> Optional[RecipeOption]:
        """Consume an option from the pool and advance the index."""
        option = self.find_option(item_id)
        if option is None:
            return None
        self.options = [o for o in self.options if o.item_id != item_id]
        self.current_option_index += 1
        return option

    def to_dict(self) -> dict:
        return {
            "parent_item_id": self.parent_item_id,
            "parent_name": self.parent_name,
            "option_group_id": self.option_group_id,
            "grouping_id": self.grouping_id,
            "options": [{"item_id": o.item_id, "name": o.name} for o in self.options],
            "quantity": self.quantity,
            "current_option_index": self.current_option_index,
            "option_set_index": self.option_set_index,
            "total_option_sets": self.total_option_sets,
            "has_toppings": self.has_toppings,
            "topping_class_id": self.topping_class_id,
        }

    @staticmethod
    def from_dict(data: dict) -> "PendingParent":
        return PendingParent(
            parent_item_id=str(data["parent_item_id"]),
            parent_name=str(data.get("parent_name") or ""),
            option_group_id=str(data["option_group_id"]),
            grouping_id=str(data["grouping_id"]),
            options=[RecipeOption(str(o["item_id"]), str(o.get("name") or "")) for o in data.get("options") or []],
            quantity=int(data.get("quantity") or 1),
            current_option_index=int(data.get("current_option_index") or 1),
            option_set_index=int(data.get("option_set_index") or 1),
            total_option_sets=int(data.get("total_option_sets") or 1),
            has_toppings=bool(data.get("has_toppings")),
            topping_class_id=data.get("topping_class_id"),
        )


@dataclass(slots=True)
class PendingToppings:
    main_item_id: str
    main_item_name: str
    grouping_id: str
    toppings: List[Topping] = field(default_factory=list)
    selected_topping_ids: List[str] = field(default_factory=list)

    def find(self, topping_id: str) -> Optional[Topping]:
        for topping in self.toppings:
            if topping.id == topping_id:
                return topping
        return None

    def to_dict(self) -> dict:
        return {
            "main_item_id": self.main_item_id,
            "main_item_name": self.main_item_name,
            "grouping_id": self.grouping_id,
            "toppings": [
                {
                    "id": t.id,
                    "name": t.name,
                    "price": str(t.price),
                    "item_class_id": t.item_class_id,
                    "tax_id": t.tax_id,
                }
                for t in self.toppings
            ],
            "selected_topping_ids": list(self.selected_topping_ids),
        }

    @staticmethod
    def from_dict(data: dict) -> "PendingToppings":
        return PendingToppings(
            main_item_id=str(data["main_item_id"]),
            main_item_name=str(data.get("main_item_name") or ""),
            grouping_id=str(data["grouping_id"]),
            toppings=[
                Topping(
                    id=str(t["id"]),
                    name=str(t.get("name") or ""),
                    price=to_decimal(t.get("price")),
                    item_class_id=t.get("item_class_id"),
                    tax_id=t.get("tax_id"),
                )
                for t in data.get("toppings") or []
            ],
            selected_topping_ids=[str(x) for x in data.get("selected_topping_ids") or []],
        )


def _load_queue(raw, factory, label: str) -> list:
    if not raw:
        return []
    try:
        rows = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        if not isinstance(rows, list):
            raise ValueError(f"expected a list, got {type(rows).__name__}")
        return [factory(row) for row in rows]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("%s blob unreadable, treating as empty: %s", label, e)
        return []


def load_pending_parents(raw) -> List[PendingParent]:
    return _load_queue(raw, PendingParent.from_dict, "Pending parents")


def load_pending_toppings(raw) -> List[PendingToppings]:
    return _load_queue(raw, PendingToppings.from_dict, "Pending toppings")


def dump_queue(queue: list) -> str:
    return json.dumps([task.to_dict() for task in queue], ensure_ascii=False)
