"""
Create the bot's tables (order_sessions, orders, order_items,
inbound_messages, customer_profiles).

    python init_db.py            create missing tables
    python init_db.py --reset    drop everything first (local SQLite only)
"""
import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

import database.models  # noqa: F401  registers the tables on Base.metadata
from database.core import Base

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine, reset: bool = False) -> None:
    async with engine.begin() as conn:
        if reset:
            logger.warning("Dropping all tables on %s", engine.url.render_as_string(hide_password=True))
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


async def _run(reset: bool) -> None:
    from database.core import engine

    try:
        await create_tables(engine, reset)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(_run(args.reset))
