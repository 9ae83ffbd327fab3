"""Shared test fixtures for the billing sync core.

Provides:
- File-backed SQLite database (aiosqlite) with all billing/sync tables created
- BillingRepository bound to a per-test session factory
- Mock platform adapters (AsyncMock with the PlatformAdapter spec) for cleo and mycase
- AdapterRegistry with both mock adapters configured
- SyncService with zero retry delay and real-time sync off (tests drain explicitly)
"""

from __future__ import annotations

import datetime as dt
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from src.billsync.billing import models  # noqa: F401
from src.billsync.billing.repository import BillingRepository
from src.billsync.billing.schemas import BillingEntryCreate, SyncConfig
from src.billsync.conflicts.detector import ConflictDetector
from src.billsync.core.database import Base
from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.registry import AdapterRegistry
from src.billsync.platforms.schemas import PlatformConfig, TimeEntry
from src.billsync.sync.service import SyncService


# ── Helpers ────────────────────────────────────────────────────────────────


def make_entry_create(**overrides) -> BillingEntryCreate:
    """BillingEntryCreate with sensible defaults."""
    defaults = {
        "description": "Drafted motion to compel discovery",
        "time_spent": 2.5,
        "hourly_rate": 300.0,
        "client": "client-acme",
        "matter": "matter-42",
        "work_type": "drafting",
        "work_date": dt.date(2026, 3, 2),
        "user_id": "user-1",
    }
    defaults.update(overrides)
    return BillingEntryCreate(**defaults)


def make_mock_adapter(platform: str) -> AsyncMock:
    """AsyncMock adapter whose creates return the entry with a ``{platform}-remote-N`` id."""
    adapter = AsyncMock(spec=PlatformAdapter)
    adapter.platform = platform
    adapter.display_name = platform.title()
    adapter.configure = MagicMock()
    counter = {"n": 0}

    async def create(entry: TimeEntry) -> TimeEntry:
        counter["n"] += 1
        return entry.model_copy(update={"id": f"{platform}-remote-{counter['n']}"})

    async def update(entry_id: str, entry: TimeEntry) -> TimeEntry:
        return entry.model_copy(update={"id": entry_id})

    adapter.create_time_entry.side_effect = create
    adapter.update_time_entry.side_effect = update
    adapter.delete_time_entry.return_value = None
    return adapter


# ── Database ───────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billsync.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Async generator factory in the shape BillingRepository expects."""

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return factory


@pytest.fixture
def repository(session_factory) -> BillingRepository:
    return BillingRepository(session_factory)


@pytest.fixture
def entry_create():
    """Factory for BillingEntryCreate payloads: ``entry_create(time_spent=1.0)``."""
    return make_entry_create


# ── Platforms ──────────────────────────────────────────────────────────────


@pytest.fixture
def adapter_factory():
    return make_mock_adapter


@pytest.fixture
def cleo_adapter() -> AsyncMock:
    return make_mock_adapter("cleo")


@pytest.fixture
def mycase_adapter() -> AsyncMock:
    return make_mock_adapter("mycase")


@pytest.fixture
def registry(cleo_adapter, mycase_adapter) -> AdapterRegistry:
    """Registry with cleo and mycase mock adapters, both configured."""
    registry = AdapterRegistry([cleo_adapter, mycase_adapter])
    registry.configure("cleo", PlatformConfig(platform="cleo", api_key="cleo-key", subdomain="acme"))
    registry.configure(
        "mycase", PlatformConfig(platform="mycase", access_token="mc-token", subdomain="acme")
    )
    return registry


# ── Sync ───────────────────────────────────────────────────────────────────


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        enable_real_time_sync=False,
        max_retries=3,
        retry_delay=0,
        batch_size=10,
        batch_pause=0,
    )


@pytest.fixture
def detector(repository) -> ConflictDetector:
    return ConflictDetector(repository)


@pytest.fixture
def service(repository, registry, sync_config, detector) -> SyncService:
    return SyncService(repository, registry, config=sync_config, detector=detector)
