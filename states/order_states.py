import enum


class OrderState(str, enum.Enum):
    LOCATION_SELECTION = "LOCATION_SELECTION"
    CONFIRM_CLOSED_RESTAURANT = "CONFIRM_CLOSED_RESTAURANT"
    DELIVERY_METHOD = "DELIVERY_METHOD"
    CONFIRM_CLOSED_DELIVERY = "CONFIRM_CLOSED_DELIVERY"
    DELIVERY_LOCATION_SELECTION = "DELIVERY_LOCATION_SELECTION"
    DELIVERY_SWITCH_CONFIRMATION = "DELIVERY_SWITCH_CONFIRMATION"
    DELIVERY_ADDRESS = "DELIVERY_ADDRESS"
    ADDRESS_SAVE_PROMPT = "ADDRESS_SAVE_PROMPT"
    DELIVERY_CONTACT_PHONE = "DELIVERY_CONTACT_PHONE"
    ITEM_SELECTION = "ITEM_SELECTION"
    ITEM_SELECTION_FROM_EDIT = "ITEM_SELECTION_FROM_EDIT"
    SEARCH = "SEARCH"
    ITEM_OPTIONS = "ITEM_OPTIONS"
    ITEM_TOPPINGS = "ITEM_TOPPINGS"
    COLLECT_NOTES = "COLLECT_NOTES"
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    EDIT_ORDER = "EDIT_ORDER"
    PACK_SELECTION_ADD = "PACK_SELECTION_ADD"
    PACK_SELECTION_REMOVE = "PACK_SELECTION_REMOVE"
    REMOVE_ITEM_PROMPT = "REMOVE_ITEM_PROMPT"
    WAITING_FOR_DISCOUNT_CODE = "WAITING_FOR_DISCOUNT_CODE"
    CANCEL_CONFIRMATION = "CANCEL_CONFIRMATION"
    CANCELLED = "CANCELLED"
    FLOW_IN_PROGRESS = "FLOW_IN_PROGRESS"

    @classmethod
    def parse(cls, value):
        """Stored state string -> OrderState. Unknown values restart the conversation."""
        try:
            return cls(value)
        except ValueError:
            return cls.LOCATION_SELECTION


# States that must not be interrupted by the discount interceptor
DISCOUNT_BLOCKED_STATES = frozenset({
    OrderState.LOCATION_SELECTION,
    OrderState.CONFIRM_CLOSED_RESTAURANT,
    OrderState.ITEM_OPTIONS,
    OrderState.ITEM_TOPPINGS,
    OrderState.WAITING_FOR_DISCOUNT_CODE,
    OrderState.DELIVERY_ADDRESS,
    OrderState.DELIVERY_CONTACT_PHONE,
    OrderState.FLOW_IN_PROGRESS,
    OrderState.CANCELLED,
})
