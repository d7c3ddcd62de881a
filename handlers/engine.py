"""
Conversation engine: one inbound event -> one state machine turn.

Per turn: take the conversation lock, skip message ids already handled, load
(or create) the session, run the interceptors and the state handler, save
with a version check, record the message id, release the lock, then send the
prompts. A version conflict reruns the whole turn on a fresh copy of the
session. A turn that fails leaves its message id unrecorded.
"""
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from handlers.base import Router, TurnContext
from handlers.catalog import catalog_order_received
from handlers.delivery import flow_submitted
from handlers.flows import guide_to_missing_step, show_location_list, welcome
from handlers.navigation import (
    INTERCEPTORS,
    LOCATION_FREE_STATES,
    ORDER_MESSAGE_STATES,
    flow_interrupted,
)
from keyboards.formatting import help_footer
from keyboards.instructions import Prompt, TextPrompt
from services.clock import utcnow
from services.commands import parse_command
from services.errors import CatalogError, MessagingError, SessionConflictError, SessionLockTimeout
from services.locks import conversation_key
from services.session import MissingStep, OrderSession
from services.webhook_parser import EventKind, InboundEvent
from states.order_states import OrderState

logger = logging.getLogger(__name__)

CATALOG_FAILURE_TEXT = "❌ Sorry, something went wrong while loading our menu. Please try again in a moment."
TEMPORARY_FAILURE_TEXT = "⚠️ We're having a temporary problem. Please try again in a moment."
UNSUPPORTED_TEXT = "❓ Sorry, I can't handle that type of message. Please use the buttons or type a reply."

Middleware = Callable[[Callable, InboundEvent, Dict[str, Any]], Awaitable[Any]]


class ConversationEngine:
    def __init__(self, store, lock, renderer, catalog, profiles, orders, settings, message_log=None):
        self.store = store
        self.lock = lock
        self.renderer = renderer
        self.catalog = catalog
        self.profiles = profiles
        self.orders = orders
        self.settings = settings
        self.message_log = message_log
        self.handlers: Dict[OrderState, Callable] = {}
        self.middlewares: List[Middleware] = []

    def include_router(self, router: Router) -> None:
        for state, handler in router.handlers.items():
            if state in self.handlers:
                raise ValueError(f"State {state.value} registered twice ({router.name})")
            self.handlers[state] = handler

    def include_routers(self, *routers: Router) -> None:
        for router in routers:
            self.include_router(router)

    def middleware(self, middleware: Middleware) -> None:
        """Outermost first, like registration order."""
        self.middlewares.append(middleware)

    async def feed_event(self, event: InboundEvent) -> None:
        handler = self._handle
        for middleware in reversed(self.middlewares):
            handler = functools.partial(middleware, handler)
        await handler(event, {"engine": self})

    async def reply(self, event: InboundEvent, prompts: List[Prompt]) -> None:
        """Send prompts; a send failure is logged, the turn already counted."""
        if not prompts:
            return
        try:
            await self.renderer.render(event.business_id, event.phone_number, prompts)
        except MessagingError as e:
            logger.error("Reply to %s not delivered: %s", event.phone_number, e)

    async def _handle(self, event: InboundEvent, data: Dict[str, Any]) -> None:
        key = conversation_key(event.business_id, event.phone_number)
        try:
            async with self.lock.hold(key):
                if await self._already_handled(event):
                    return
                prompts = await self._run_turn(event, data)
                await self._remember(event)
        except SessionLockTimeout as e:
            # Not remembered: a redelivery of this message gets a real turn
            logger.warning("Event from %s not processed: %s", event.phone_number, e)
            prompts = [TextPrompt(TEMPORARY_FAILURE_TEXT)]
        except SessionConflictError as e:
            logger.error("Turn for %s abandoned after repeated conflicts: %s", event.phone_number, e)
            prompts = [TextPrompt(TEMPORARY_FAILURE_TEXT)]
        except SQLAlchemyError as e:
            logger.error("Session storage failed for %s: %s", event.phone_number, e, exc_info=True)
            prompts = [TextPrompt(TEMPORARY_FAILURE_TEXT)]
        except TimeoutError:
            # The turn outlived the lock's hold time; nothing of it was saved
            session = data.get("session")
            logger.error(
                "Turn for %s cut off after %ss in %s",
                event.phone_number, self.lock.hold_timeout, session.state.value if session else "-",
            )
            footer = help_footer(session) if session is not None else ""
            prompts = [TextPrompt(CATALOG_FAILURE_TEXT + footer)]
        await self.reply(event, prompts)

    async def _already_handled(self, event: InboundEvent) -> bool:
        if not event.message_id or self.message_log is None:
            return False
        if await self.message_log.seen(event.message_id):
            logger.info("Duplicate delivery of %s from %s dropped", event.message_id, event.phone_number)
            return True
        return False

    async def _remember(self, event: InboundEvent) -> None:
        if not event.message_id or self.message_log is None:
            return
        try:
            await self.message_log.remember(event.message_id, event.business_id, event.phone_number)
        except SQLAlchemyError as e:
            logger.error("Could not record message %s: %s", event.message_id, e)

    async def _load(self, event: InboundEvent) -> Optional[OrderSession]:
        session = await self.store.get(event.business_id, event.phone_number)
        if session is not None:
            return session
        try:
            session = await self.store.create(event.business_id, event.phone_number, event.customer_name)
        except SessionConflictError:
            return None
        logger.info("New conversation %s/%s", event.business_id, event.phone_number)
        return session

    async def _run_turn(self, event: InboundEvent, data: Dict[str, Any]) -> List[Prompt]:
        retries = max(0, int(self.settings.SESSION_SAVE_RETRIES))
        for attempt in range(1, retries + 2):
            session = await self._load(event)
            if session is None:
                continue
            data["session"] = session
            ctx = TurnContext(
                session=session,
                command=parse_command(event.token),
                event=event,
                catalog=self.catalog,
                profiles=self.profiles,
                orders=self.orders,
                settings=self.settings,
                now=utcnow(),
            )
            previous = session.state
            try:
                await self.dispatch(ctx)
            except CatalogError as e:
                logger.error("Catalog failure for %s in %s: %s", event.phone_number, previous.value, e)
                return [TextPrompt(CATALOG_FAILURE_TEXT + help_footer(session))]

            if session.state != previous:
                logger.info("%s: %s -> %s", event.phone_number, previous.value, session.state.value)
            if ctx.delete_session:
                await self.store.delete(event.business_id, event.phone_number)
                logger.info("Conversation %s/%s closed", event.business_id, event.phone_number)
                return ctx.prompts
            try:
                await self.store.save(session)
            except SessionConflictError:
                logger.warning("Session of %s changed underneath (attempt %d), rerunning turn", event.phone_number, attempt)
                continue
            return ctx.prompts
        raise SessionConflictError(event.business_id, event.phone_number, -1)

    async def dispatch(self, ctx: TurnContext) -> None:
        s = ctx.session
        event = ctx.event
        if event.customer_name and event.customer_name != s.customer_name:
            s.customer_name = event.customer_name

        if s.is_new:
            welcome(ctx)
            await show_location_list(ctx)
            return
        if event.kind == EventKind.UNKNOWN:
            ctx.say(UNSUPPORTED_TEXT)
            return
        if s.state not in LOCATION_FREE_STATES and await ctx.location() is None:
            await guide_to_missing_step(ctx, MissingStep.LOCATION)
            return
        if event.kind == EventKind.FLOW_SUBMISSION:
            await flow_submitted(ctx)
            return
        if event.kind == EventKind.ORDER:
            if s.state in ORDER_MESSAGE_STATES:
                await catalog_order_received(ctx)
            else:
                await flow_interrupted(ctx)
            return

        for interceptor in INTERCEPTORS:
            if await interceptor(ctx):
                return
        handler = self.handlers.get(s.state)
        if handler is None:
            logger.error("No handler for state %s, restarting %s", s.state.value, s.phone_number)
            await show_location_list(ctx)
            return
        await handler(ctx)
