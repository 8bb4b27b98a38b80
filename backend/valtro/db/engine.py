"""Async SQLAlchemy engine, session factory, and FastAPI dependency."""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from valtro.config import Settings

logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the async engine for ``settings.database_url``."""
    engine_kwargs: dict = {"echo": settings.debug}
    if settings.database_url.startswith("postgresql"):
        engine_kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
    elif settings.database_url.startswith("sqlite") and ":memory:" in settings.database_url:
        # StaticPool ensures all connections share the same in-memory database
        engine_kwargs.update(
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(settings.database_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def ping(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises on any connection failure."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session.

    The factory lives on ``app.state`` so tests can point it at another
    database without touching module globals.
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Scope a unit of work: commit on clean exit, roll back on any exit path.

    BaseException is caught so task cancellation also rolls back. A rollback
    after a successful commit is a no-op.
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
