"""Async SQLAlchemy engine and session factory for the billing store.

Provides:
- Base: Declarative base for all billing/sync tables
- get_engine(): Lazily created async engine bound to Settings.DATABASE_URL
- get_session(): Async generator yielding an AsyncSession (repository session_factory)
- init_db() / close_db(): Table creation and engine disposal
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.billsync.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=20,
            max_overflow=10,
            echo=False,
        )
    return _engine


# ── Declarative Base ───────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for billing entry, sync queue, sync history and conflict tables."""


# ── Session Factory ────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the module engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create all billing/sync tables if they don't exist."""
    # Import models so they register on Base.metadata
    from src.billsync.billing import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
