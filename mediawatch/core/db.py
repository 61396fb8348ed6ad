"""Database module with async SQLAlchemy engine and session management."""
from functools import lru_cache
from typing import Callable

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import declarative_base

from .settings import get_settings

# SQLAlchemy base for models
Base = declarative_base()

SessionFactory = Callable[[], AsyncSession]


@lru_cache()
def get_engine() -> AsyncEngine:
    """Async engine for the configured database (created on first use)."""
    settings = get_settings()
    kwargs = {"echo": settings.db_echo}
    if not settings.db_url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20)
    return create_async_engine(settings.db_url, **kwargs)


@lru_cache()
def get_sessionmaker() -> async_sessionmaker:
    """Async session maker bound to the configured engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_all() -> None:
    """Create all tables in the database."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

