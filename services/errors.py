"""Exceptions shared across the ordering services."""


class OrderBotError(Exception):
    """Base class for ordering bot failures."""


class CatalogError(OrderBotError):
    """Catalog/pricing provider could not answer or rejected a request."""


class MessagingError(OrderBotError):
    """Outbound message could not be delivered to the gateway."""


class SessionConflictError(OrderBotError):
    """Session was saved by someone else since it was loaded."""

    def __init__(self, business_id: str, phone_number: str, expected_version: int):
        super().__init__(
            f"session {business_id}/{phone_number} changed (expected version {expected_version})"
        )
        self.business_id = business_id
        self.phone_number = phone_number
        self.expected_version = expected_version


class SessionLockTimeout(OrderBotError):
    """Per-conversation lock was not acquired in time."""


class PayloadError(OrderBotError):
    """Inbound webhook payload is malformed."""
