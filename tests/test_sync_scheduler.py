"""Tests for SyncScheduler job registration and job error isolation."""

from __future__ import annotations

from unittest.mock import AsyncMock

from src.billsync.billing.schemas import SyncConfig
from src.billsync.sync.scheduler import SyncScheduler
from src.billsync.sync.service import SyncService


def _scheduler(**config) -> tuple[SyncScheduler, AsyncMock]:
    service = AsyncMock(spec=SyncService)
    return SyncScheduler(service, SyncConfig(**config)), service


class TestSyncScheduler:
    """Start/stop lifecycle and job behaviour."""

    async def test_start_registers_both_jobs(self):
        scheduler, _ = _scheduler(sync_interval=60)

        assert scheduler.start() is True
        try:
            assert scheduler.is_running is True
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
            assert job_ids == {"sync_queue_drain", "sync_daily_cleanup"}
            drain = scheduler._scheduler.get_job("sync_queue_drain")
            assert drain.max_instances == 1
            assert drain.coalesce is True
        finally:
            scheduler.stop()

        assert scheduler.is_running is False

    async def test_second_start_is_refused(self):
        scheduler, _ = _scheduler()

        assert scheduler.start() is True
        try:
            assert scheduler.start() is False
        finally:
            scheduler.stop()

    def test_stop_before_start_is_noop(self):
        scheduler, _ = _scheduler()

        scheduler.stop()

        assert scheduler.is_running is False

    async def test_drain_job_swallows_errors(self):
        """A failing drain is logged and the job returns normally."""
        scheduler, service = _scheduler()
        service.process_queue.side_effect = RuntimeError("database is locked")

        await scheduler._run_queue_drain()

        service.process_queue.assert_awaited_once()

    async def test_cleanup_job_uses_retention(self):
        scheduler, service = _scheduler(cleanup_retention_days=14)
        service.cleanup.side_effect = RuntimeError("boom")

        await scheduler._run_cleanup()

        service.cleanup.assert_awaited_once_with(14)
