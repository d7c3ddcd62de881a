"""
HTTP face of the bot: WhatsApp webhook verification and event intake.

POST bodies are parsed synchronously (a malformed body gets 400 and
touches nothing); the events themselves are handed to the engine as
background tasks so Meta gets its 200 quickly.
"""
import asyncio
import logging
from typing import Set

from aiohttp import web

from services.errors import PayloadError
from services.webhook_parser import parse_webhook

logger = logging.getLogger(__name__)

ENGINE_KEY = web.AppKey("engine", object)
VERIFY_TOKEN_KEY = web.AppKey("verify_token", str)
TASKS_KEY = web.AppKey("tasks", set)


async def verify(request: web.Request) -> web.Response:
    mode = request.query.get("hub.mode")
    token = request.query.get("hub.verify_token")
    challenge = request.query.get("hub.challenge", "")
    expected = request.app[VERIFY_TOKEN_KEY]
    if mode == "subscribe" and expected and token == expected:
        logger.info("Webhook verified")
        return web.Response(text=challenge)
    logger.warning("Webhook verification refused (mode=%s)", mode)
    return web.Response(status=403, text="Forbidden")


async def receive(request: web.Request) -> web.Response:
    body = await request.read()
    try:
        events = parse_webhook(body)
    except PayloadError as e:
        logger.warning("Rejected webhook payload: %s", e)
        return web.Response(status=400, text="Bad Request")

    engine = request.app[ENGINE_KEY]
    tasks: Set[asyncio.Task] = request.app[TASKS_KEY]
    for event in events:
        task = asyncio.create_task(engine.feed_event(event))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    return web.Response(text="OK")


async def _drain_tasks(app: web.Application) -> None:
    tasks = list(app[TASKS_KEY])
    if tasks:
        logger.info("Waiting for %d in-flight events", len(tasks))
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(engine, verify_token: str, path: str = "/webhook") -> web.Application:
    app = web.Application()
    app[ENGINE_KEY] = engine
    app[VERIFY_TOKEN_KEY] = verify_token
    app[TASKS_KEY] = set()
    app.router.add_get(path, verify)
    app.router.add_post(path, receive)
    app.on_shutdown.append(_drain_tasks)
    return app
