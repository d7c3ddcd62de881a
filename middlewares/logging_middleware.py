"""
Per-event logging for the conversation engine.

Every inbound event gets a trace id that the rest of the turn can log with
(data["trace_id"]). Failures are logged with the event context and then
re-raised; the engine decides what the customer sees.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from services.webhook_parser import EventKind, InboundEvent

logger = logging.getLogger(__name__)

# Kinds whose content is a caption, filename or placeholder, not a reply
_OPAQUE_KINDS = frozenset({
    EventKind.IMAGE, EventKind.VIDEO, EventKind.DOCUMENT,
    EventKind.AUDIO, EventKind.STICKER, EventKind.UNKNOWN,
})


def _preview(event: InboundEvent, limit: int = 120) -> Optional[str]:
    if event.kind in _OPAQUE_KINDS:
        return f"<{event.kind.value}>"
    if event.kind == EventKind.ORDER:
        return f"<order {len(event.order_items)} items>"
    if event.kind == EventKind.FLOW_SUBMISSION:
        return f"<flow {sorted(event.flow_data)}>"
    text = (event.content or "").replace("\n", "\\n")
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _trace_id(event: InboundEvent) -> str:
    if event.message_id:
        return event.message_id[-12:]
    return f"{int(time.time() * 1000)}:{event.phone_number or 'na'}"


class LoggingMiddleware:
    def __init__(self, log_success: bool = True, slow_ms: float = 2000.0):
        self.log_success = log_success
        self.slow_ms = slow_ms

    async def __call__(
        self,
        handler: Callable[[InboundEvent, Dict[str, Any]], Awaitable[Any]],
        event: InboundEvent,
        data: Dict[str, Any],
    ) -> Any:
        trace_id = data["trace_id"] = _trace_id(event)
        logger.info(
            "IN  trace=%s %s from %s to %s: %s",
            trace_id, event.kind.value, event.phone_number, event.business_id, _preview(event),
        )
        started = time.monotonic()
        try:
            result = await handler(event, data)
        except Exception as e:
            logger.error(
                "ERR trace=%s phone=%s after %.1fms: %r",
                trace_id, event.phone_number, (time.monotonic() - started) * 1000, e,
                exc_info=True,
            )
            raise

        elapsed = (time.monotonic() - started) * 1000
        if elapsed >= self.slow_ms:
            logger.warning("SLOW trace=%s phone=%s took %.1fms", trace_id, event.phone_number, elapsed)
        elif self.log_success:
            logger.info("OUT trace=%s phone=%s %.1fms", trace_id, event.phone_number, elapsed)
        return result
