from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from config import config


class Base(DeclarativeBase):
    pass


def build_engine(url: str, echo: bool = False, pool_size: int = 10, max_overflow: int = 10) -> AsyncEngine:
    """SQLite gets a NullPool (one connection per session); PostgreSQL a real pool."""
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs.update(poolclass=NullPool, connect_args={"check_same_thread": False})
    else:
        kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_recycle=3600)
    return create_async_engine(url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Stores hand rows back after commit, so nothing may expire
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = build_engine(config.DATABASE_URL, config.DB_ECHO, config.DB_POOL_SIZE, config.DB_MAX_OVERFLOW)
session_maker = build_session_maker(engine)
