"""Tests for process wiring: lifespan builds a working service against the configured DB."""

from __future__ import annotations

import pytest
import structlog

from src.billsync.billing.schemas import QueueStatus
from src.billsync.config import get_settings
from src.billsync.main import lifespan
from src.billsync.platforms.schemas import PlatformConfig


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    """Point Settings at a throwaway SQLite file with real-time sync off."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("SYNC_ENABLE_REAL_TIME", "false")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()
    structlog.reset_defaults()


class TestLifespan:
    """Startup and shutdown of the sync core."""

    async def test_service_is_usable_inside_lifespan(self, app_env, entry_create):
        """Tables exist, valid platforms are configured and entries queue up."""
        configs = [
            PlatformConfig(platform="cleo", api_key="k", subdomain="acme"),
            PlatformConfig(platform="clio", api_key="k"),
        ]

        async with lifespan(app_env, platform_configs=configs) as service:
            assert service.is_processing is False
            assert service.config.enable_real_time_sync is False

            created = await service.create_billing_entry(entry_create(), platforms=["cleo"])
            report = await service.get_sync_status(created.billing_entry.id)

        assert report.entry.description == "Drafted motion to compel discovery"
        assert [i.status for i in report.queue_items] == [QueueStatus.QUEUED]

    async def test_invalid_platform_config_does_not_block_startup(self, app_env):
        async with lifespan(app_env, platform_configs=[PlatformConfig(platform="cleo")]) as service:
            assert await service.process_queue() is not None
