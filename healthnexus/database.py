"""Database engine, sessions and schema bootstrap."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from healthnexus.config import settings
from healthnexus.models import metadata


def async_url(url: str) -> str:
    """Point a plain ``postgresql://`` URL at the asyncpg driver."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url.removeprefix("postgresql://")
    return url


def build_engine(url: str, *, pooled: bool = True, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine for the marketplace database.

    Pooled engines serve the API. Unpooled engines are for one-shot
    scripts and test databases where connections must not outlive the
    event loop that opened them.

    Args:
        url: Database URL, sync or async form
        pooled: Keep a connection pool sized for the API
        overrides: Extra ``create_async_engine`` keyword arguments

    Returns:
        AsyncEngine
    """
    options: dict[str, Any] = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "connect_args": {"server_settings": {"application_name": settings.app_name}},
    }
    if pooled:
        options.update(pool_size=10, max_overflow=20, pool_recycle=3600)
    else:
        options["poolclass"] = NullPool
    options.update(overrides)
    return create_async_engine(async_url(url), **options)


DATABASE_URL = async_url(settings.database_url)

engine: AsyncEngine = build_engine(DATABASE_URL)

SessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(target: AsyncEngine, *, reset: bool = False) -> None:
    """
    Create the marketplace tables on ``target``.

    Args:
        target: Engine to create the tables with
        reset: Drop existing tables first
    """
    async with target.begin() as conn:
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        if reset:
            await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)


async def drop_schema(target: AsyncEngine) -> None:
    async with target.begin() as conn:
        await conn.run_sync(metadata.drop_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session, rolling back on error."""
    async with SessionFactory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
