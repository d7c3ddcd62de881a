"""
Router and per-turn context shared by the conversation handlers.

A handler gets one TurnContext: the loaded session, the parsed command and
the collaborators. It mutates the session and appends prompts; the engine
saves the session and only then renders the prompts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from keyboards.formatting import help_footer
from keyboards.instructions import Prompt, TextPrompt
from services.catalog_models import Location
from services.commands import Command
from services.session import OrderSession
from services.webhook_parser import InboundEvent
from states.order_states import OrderState

logger = logging.getLogger(__name__)

Handler = Callable[["TurnContext"], Awaitable[None]]


class Router:
    """State -> handler table, filled with @router.state(...)."""

    def __init__(self, name: Optional[str] = None):
        self.name = name or "router"
        self.handlers: Dict[OrderState, Handler] = {}

    def state(self, *states: OrderState):
        def decorator(func: Handler) -> Handler:
            for state in states:
                if state in self.handlers:
                    raise ValueError(f"{self.name}: state {state.value} already has a handler")
                self.handlers[state] = func
            return func
        return decorator


@dataclass
class TurnContext:
    session: OrderSession
    command: Command
    event: InboundEvent
    catalog: object
    profiles: object
    orders: object
    settings: object
    now: datetime
    prompts: List[Prompt] = field(default_factory=list)
    # Set when the conversation ends this turn (cancel, order placed)
    delete_session: bool = False
    _location: Optional[Location] = None

    def say(self, text: str) -> None:
        self.prompts.append(TextPrompt(text))

    def show(self, prompt: Prompt) -> None:
        self.prompts.append(prompt)

    @property
    def footer(self) -> str:
        return help_footer(self.session)

    async def location(self) -> Optional[Location]:
        """Selected location, fetched once per turn."""
        location_id = self.session.location_id
        if not location_id:
            return None
        if self._location is None or self._location.id != location_id:
            self._location = await self.catalog.get_location(self.session.business_id, location_id)
        return self._location

    def remember_location(self, location: Location) -> None:
        self._location = location

    def set_state(self, state: OrderState) -> None:
        self.session.state = state
