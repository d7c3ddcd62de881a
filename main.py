import asyncio
import logging
import sys
import time
from logging.handlers import RotatingFileHandler

from aiohttp import web

from config import config
from middlewares.logging_middleware import LoggingMiddleware

# Configure logging with rotating file handler
log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
log_level = getattr(logging, config.LOG_LEVEL, logging.INFO)
logging.basicConfig(
    level=log_level,
    format=log_format,
    handlers=[
        logging.StreamHandler(sys.stdout),
        RotatingFileHandler(
            config.LOG_FILE,
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5,
            encoding='utf-8'
        )
    ]
)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def setup_asyncio_exception_logging() -> None:
    """
    Catches exceptions from background asyncio tasks ("Task exception was
    never retrieved") that escape the event pipeline.
    """
    loop = asyncio.get_running_loop()

    def _handler(loop: asyncio.AbstractEventLoop, context: dict):
        msg = context.get("message", "asyncio exception")
        exc = context.get("exception")
        logger.error("ASYNCIO %s", msg, exc_info=exc)

    loop.set_exception_handler(_handler)


async def wait_for_db(engine) -> None:
    """
    Poll the database until it answers, so a PostgreSQL container that is
    still booting does not kill the bot. Gives up after DB_WAIT_SECONDS.
    """
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    deadline = time.monotonic() + config.DB_WAIT_SECONDS
    attempt = 0
    while True:
        attempt += 1
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("✅ Database reachable (%s)", engine.url.render_as_string(hide_password=True))
            return
        except (SQLAlchemyError, OSError) as e:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error(
                    "❌ Database unreachable after %ss (%s@%s:%s/%s): %r",
                    config.DB_WAIT_SECONDS, config.DB_USER, config.DB_HOST, config.DB_PORT, config.DB_NAME, e,
                )
                raise
            delay = min(config.DB_RETRY_MAX_DELAY, 2 ** min(attempt - 1, 6), max(1.0, remaining))
            logger.warning("Database not ready (attempt %s), retrying in %.1fs: %r", attempt, delay, e)
            await asyncio.sleep(delay)


async def connect_redis():
    """Redis client when it answers a ping, None otherwise."""
    if not config.REDIS_ENABLED:
        logger.info("Redis disabled (REDIS_ENABLED=false)")
        return None
    import redis.asyncio as redis
    redis_client = redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD,
        decode_responses=False
    )
    try:
        await redis_client.ping()
        logger.info("Redis connected at %s:%s", config.REDIS_HOST, config.REDIS_PORT)
        return redis_client
    except Exception as e:
        logger.warning("Redis not available, using in-process fallbacks: %s", e)
        await redis_client.aclose()
        return None


async def main():
    logger.info("Starting order bot...")
    setup_asyncio_exception_logging()
    logger.info("DB_DIALECT=%s CATALOG_MODE=%s", config.DB_DIALECT, config.CATALOG_MODE)

    if not config.WHATSAPP_ACCESS_TOKEN:
        logger.error("❌ WHATSAPP_ACCESS_TOKEN is empty. Add it to .env and restart.")
        raise RuntimeError("WHATSAPP_ACCESS_TOKEN is not set")
    if not config.WHATSAPP_VERIFY_TOKEN:
        logger.warning("WHATSAPP_VERIFY_TOKEN is empty; webhook verification will be refused")

    from database.core import engine, session_maker

    await wait_for_db(engine)

    # SQLite creates missing tables itself; PostgreSQL expects `python init_db.py`
    if config.IS_SQLITE:
        from init_db import create_tables

        await create_tables(engine, reset=config.RESET_DB)

    redis_client = await connect_redis()

    from services.cache import init_cache
    from services.catalog_provider import create_catalog_provider
    from services.dedup import SqlMessageLog
    from services.locks import create_key_lock
    from services.messaging import WhatsAppGateway
    from services.order_service import OrderService, SqlOrderRecorder
    from services.profile_service import SqlProfileStore
    from services.session_store import SqlSessionStore
    from services.sweeper import start_sweeper, stop_sweeper
    from keyboards.renderer import PromptRenderer
    from middlewares.rate_limit import create_rate_limit_middleware
    from handlers import catalog, checkout, delivery, edit, location, options
    from handlers.engine import ConversationEngine
    from handlers.webhook import create_app

    cache = await init_cache(redis_client)
    catalog_provider = create_catalog_provider(config, cache=cache)
    gateway = WhatsAppGateway(
        config.GRAPH_MESSAGES_URL_TEMPLATE,
        config.WHATSAPP_ACCESS_TOKEN,
        default_phone_number_id=config.WHATSAPP_PHONE_NUMBER_ID,
        timeout=config.WHATSAPP_TIMEOUT,
        attempts=config.WHATSAPP_RETRY_ATTEMPTS,
    )
    store = SqlSessionStore(session_maker)
    message_log = SqlMessageLog(session_maker)
    lock = await create_key_lock(redis_client, config.SESSION_LOCK_TIMEOUT, config.SESSION_LOCK_WAIT)

    conversation = ConversationEngine(
        store=store,
        lock=lock,
        renderer=PromptRenderer(gateway, config.WHATSAPP_CATALOG_ID),
        catalog=catalog_provider,
        profiles=SqlProfileStore(session_maker),
        orders=OrderService(catalog_provider, SqlOrderRecorder(session_maker)),
        settings=config,
        message_log=message_log,
    )
    conversation.include_routers(
        location.router,
        delivery.router,
        catalog.router,
        options.router,
        checkout.router,
        edit.router,
    )

    # Logging first so rate-limited events are still visible
    conversation.middleware(LoggingMiddleware(log_success=True))
    conversation.middleware(
        await create_rate_limit_middleware(
            redis_client=redis_client,
            max_calls=config.RATE_LIMIT_MESSAGE_MAX,
            period=config.RATE_LIMIT_MESSAGE_PERIOD,
        )
    )

    app = create_app(conversation, config.WHATSAPP_VERIFY_TOKEN, config.WEBHOOK_PATH)
    runner = web.AppRunner(app)
    try:
        await runner.setup()
        site = web.TCPSite(runner, config.WEBHOOK_HOST, config.WEBHOOK_PORT)
        await site.start()
        start_sweeper(
            store,
            lock,
            config.SESSION_IDLE_TIMEOUT_MINUTES,
            config.SWEEP_INTERVAL_SECONDS,
            message_log=message_log,
            retention_days=config.MESSAGE_ID_RETENTION_DAYS,
        )
        logger.info(
            "Bot started: listening on %s:%s%s",
            config.WEBHOOK_HOST,
            config.WEBHOOK_PORT,
            config.WEBHOOK_PATH,
        )
        await asyncio.Event().wait()
    except Exception as e:
        logger.error("Error running bot: %s", e, exc_info=True)
        raise
    finally:
        stop_sweeper()
        await runner.cleanup()
        await gateway.close()
        await catalog_provider.close()
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error("Fatal error: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
