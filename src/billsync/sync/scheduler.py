"""Background scheduler for the sync dispatcher: periodic queue drain and daily cleanup.

Provides a lightweight APScheduler wrapper with 2 jobs:
- Queue drain every ``sync_interval`` seconds (single instance, missed runs coalesced)
- Daily cleanup at 3:00 AM (deletes finished queue items and old history)

Exports:
    SyncScheduler: Async scheduler driving SyncService.process_queue() and cleanup().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.billsync.billing.schemas import SyncConfig

if TYPE_CHECKING:
    from src.billsync.sync.service import SyncService

logger = structlog.get_logger(__name__)


class SyncScheduler:
    """Lightweight scheduler for periodic sync drains and retention cleanup.

    Job failures are logged and never stop the scheduler.

    Args:
        service: SyncService whose queue is drained.
        config: Provides ``sync_interval`` and ``cleanup_retention_days``.
    """

    def __init__(self, service: SyncService, config: SyncConfig) -> None:
        self._service = service
        self._config = config
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self) -> bool:
        """Start the scheduler. Returns False if it is already running or fails to start."""
        if self._started:
            return False

        try:
            self._scheduler = AsyncIOScheduler()

            self._scheduler.add_job(
                self._run_queue_drain,
                trigger=IntervalTrigger(seconds=self._config.sync_interval),
                id="sync_queue_drain",
                name="Drain due sync queue items to platforms",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self._config.sync_interval,
            )

            self._scheduler.add_job(
                self._run_cleanup,
                trigger=CronTrigger(hour=3, minute=0),
                id="sync_daily_cleanup",
                name="Delete finished sync queue items and old sync history",
                misfire_grace_time=3600,
            )

            self._scheduler.start()
            self._started = True
            logger.info(
                "sync_scheduler.started",
                jobs=["queue_drain", "daily_cleanup"],
                drain_interval_seconds=self._config.sync_interval,
                schedule_cleanup="Daily 3:00 AM",
            )
            return True

        except Exception as exc:
            logger.warning("sync_scheduler.start_failed", error=str(exc))
            return False

    def stop(self) -> None:
        """Shut down the scheduler without waiting for a running drain."""
        if self._scheduler is not None and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("sync_scheduler.stopped")

    async def _run_queue_drain(self) -> None:
        try:
            await self._service.process_queue()
        except Exception as exc:
            logger.error("sync_scheduler.drain_failed", error=str(exc))

    async def _run_cleanup(self) -> None:
        logger.info("sync_scheduler.cleanup_triggered")
        try:
            await self._service.cleanup(self._config.cleanup_retention_days)
        except Exception as exc:
            logger.error("sync_scheduler.cleanup_failed", error=str(exc))
