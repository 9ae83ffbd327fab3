"""Sync queue dispatcher -- pushes billing entries to practice-management platforms.

Every create/update/delete of a billing entry becomes one durable queue item
per target platform. process_queue() drains due items in bounded batches:

- one drain at a time per service (later triggers are skipped, not stacked)
- items for different platforms run concurrently, items for the same
  platform run in order
- success: item completed, remote id recorded, success history row
- retryable failure (API_ERROR, RATE_LIMIT_EXCEEDED, unexpected errors):
  rescheduled with exponential backoff until max_retries attempts
- anything else, or retries exhausted: item failed, entry flagged, failure
  history row

Entry persistence never depends on sync outcome: a created entry stays
created even if every platform rejects it.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta

import structlog

from src.billsync.billing.errors import BillingEntryError, BillingEntryNotFoundError
from src.billsync.billing.repository import BillingRepository
from src.billsync.billing.schemas import (
    DEFAULT_QUEUE_PRIORITY,
    BillingEntryCreate,
    BillingEntryRead,
    BillingEntryUpdate,
    CleanupResult,
    ConflictRecord,
    DrainSummary,
    EntryMutationResult,
    HistoryStatus,
    QueueStatus,
    SyncAction,
    SyncConfig,
    SyncHistoryRecord,
    SyncOutcome,
    SyncQueueItem,
    SyncStatusReport,
    utcnow,
)
from src.billsync.conflicts.detector import ConflictDetector
from src.billsync.platforms.errors import ApiError, PlatformError, ValidationError
from src.billsync.platforms.registry import AdapterRegistry
from src.billsync.platforms.schemas import TimeEntry
from src.billsync.sync.scheduler import SyncScheduler

logger = structlog.get_logger(__name__)


def retry_backoff(retry_delay: float, attempts: int) -> float:
    """Seconds until the next attempt: ``retry_delay * 2^(attempts-1)``."""
    return retry_delay * (2 ** max(attempts - 1, 0))


class SyncService:
    """Queue-backed sync of billing entries to configured platforms.

    Args:
        repository: Billing store.
        registry: Source of platform adapters.
        config: Dispatcher tuning. Defaults to ``SyncConfig()``.
        detector: Conflict detector used by reconcile_entry(). Built from
            ``repository`` if omitted.
    """

    def __init__(
        self,
        repository: BillingRepository,
        registry: AdapterRegistry,
        config: SyncConfig | None = None,
        detector: ConflictDetector | None = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._config = config or SyncConfig()
        self._detector = detector or ConflictDetector(repository)
        self._processing = False
        self._scheduler: SyncScheduler | None = None

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def is_processing(self) -> bool:
        return self._processing

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start periodic draining and daily cleanup.

        Returns False without scheduling anything when real-time sync is
        disabled or the service is already running.
        """
        if not self._config.enable_real_time_sync:
            logger.info("sync.start_skipped", reason="real-time sync disabled")
            return False
        if self._scheduler is not None:
            return False

        scheduler = SyncScheduler(self, self._config)
        if not scheduler.start():
            return False
        self._scheduler = scheduler
        return True

    def stop(self) -> None:
        """Stop scheduling new drains. An in-flight drain runs to completion."""
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None
            logger.info("sync.stopped")

    # ── Queue ───────────────────────────────────────────────────────────────

    async def enqueue(
        self,
        billing_entry_id: str,
        platform: str,
        action: SyncAction,
        priority: int = DEFAULT_QUEUE_PRIORITY,
    ) -> SyncQueueItem:
        """Queue ``action`` for one entry on one platform, collapsing into any active item.

        Higher ``priority`` items are dispatched first among those due.
        """
        item = await self._repository.enqueue(billing_entry_id, platform, action, priority)
        logger.info(
            "sync.enqueued",
            queue_item_id=item.id,
            billing_entry_id=billing_entry_id,
            platform=platform,
            action=item.action.value,
            priority=item.priority,
        )
        return item

    async def _enqueue_all(
        self, billing_entry_id: str, platforms: list[str], action: SyncAction
    ) -> None:
        for platform in dict.fromkeys(platforms):
            try:
                await self.enqueue(billing_entry_id, platform, action)
            except Exception as exc:
                raise BillingEntryError(
                    f"Failed to queue {action.value} of {billing_entry_id} for {platform}",
                    cause=exc,
                ) from exc

    async def process_queue(self) -> DrainSummary | None:
        """Drain due queue items. Returns None if a drain is already running.

        Store failures end the drain early and are logged; the next trigger
        picks up where this one stopped.
        """
        if self._processing:
            logger.debug("sync.drain_skipped", reason="drain already running")
            return None

        self._processing = True
        summary = DrainSummary()
        try:
            await self._requeue_stale()
            while True:
                try:
                    batch = await self._repository.claim_due_batch(self._config.batch_size)
                except Exception as exc:
                    logger.error("sync.queue_fetch_failed", error=str(exc))
                    break

                if not batch:
                    break

                await self._process_batch(batch, summary)

                # A short batch means nothing else was due when it was claimed.
                if len(batch) < self._config.batch_size:
                    break
                await asyncio.sleep(self._config.batch_pause)
        finally:
            self._processing = False

        if summary.processed:
            logger.info("sync.drain_complete", **summary.model_dump())
        return summary

    async def _requeue_stale(self) -> None:
        cutoff = utcnow() - timedelta(seconds=self._config.processing_timeout)
        try:
            released = await self._repository.requeue_stale_items(cutoff)
        except Exception as exc:
            logger.error("sync.stale_requeue_failed", error=str(exc))
            return
        if released:
            logger.warning("sync.stale_items_requeued", count=released)

    async def _process_batch(self, batch: list[SyncQueueItem], summary: DrainSummary) -> None:
        by_platform: dict[str, list[SyncQueueItem]] = {}
        for item in batch:
            by_platform.setdefault(item.platform, []).append(item)

        async def run_platform(items: list[SyncQueueItem]) -> None:
            for item in items:
                await self._process_item(item, summary)

        await asyncio.gather(*(run_platform(items) for items in by_platform.values()))

    async def _process_item(self, item: SyncQueueItem, summary: DrainSummary) -> None:
        summary.processed += 1
        started_at = utcnow()
        started = time.monotonic()
        snapshot: dict | None = None

        try:
            entry = await self._repository.get_billing_entry(item.billing_entry_id)
            if entry is None:
                raise ValidationError(
                    item.platform, "billing_entry_id", "Billing entry no longer exists"
                )
            time_entry = entry.to_time_entry(item.platform)
            snapshot = time_entry.model_dump(mode="json")
            remote_id = await self._dispatch(item, time_entry)
        except Exception as exc:
            await self._handle_failure(item, exc, started_at, started, snapshot, summary)
            return

        history = SyncHistoryRecord(
            billing_entry_id=item.billing_entry_id,
            platform=item.platform,
            action=item.action,
            status=HistoryStatus.SUCCESS,
            started_at=started_at,
            completed_at=utcnow(),
            external_id=remote_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            data_snapshot=snapshot,
        )
        try:
            await self._repository.complete_queue_item(item, remote_id, history)
        except Exception as exc:
            logger.error(
                "sync.completion_persist_failed",
                queue_item_id=item.id,
                billing_entry_id=item.billing_entry_id,
                platform=item.platform,
                error=str(exc),
            )
            return

        summary.succeeded += 1
        logger.info(
            "sync.queue_item_completed",
            queue_item_id=item.id,
            billing_entry_id=item.billing_entry_id,
            platform=item.platform,
            action=item.action.value,
            external_id=remote_id,
        )

    async def _dispatch(self, item: SyncQueueItem, time_entry: TimeEntry) -> str | None:
        """Run the queued action against the platform; return the remote id touched."""
        adapter = self._registry.get_adapter(item.platform)

        if item.action == SyncAction.DELETE:
            if not time_entry.id:
                raise ValidationError(
                    item.platform, "external_id", "No remote id recorded for this platform"
                )
            await adapter.delete_time_entry(time_entry.id)
            return time_entry.id

        if item.action == SyncAction.UPDATE and time_entry.id:
            updated = await adapter.update_time_entry(time_entry.id, time_entry)
            return updated.id or time_entry.id

        created = await adapter.create_time_entry(time_entry)
        return created.id

    async def _handle_failure(
        self,
        item: SyncQueueItem,
        exc: Exception,
        started_at: datetime,
        started: float,
        snapshot: dict | None,
        summary: DrainSummary,
    ) -> None:
        if isinstance(exc, PlatformError):
            error = exc
        else:
            error = ApiError(item.platform, f"Unexpected error: {exc}")

        attempts = item.attempts + 1
        message = str(error)

        try:
            if error.retryable and attempts < self._config.max_retries:
                delay = retry_backoff(self._config.retry_delay, attempts)
                await self._repository.reschedule_queue_item(
                    item.id, attempts, utcnow() + timedelta(seconds=delay), message
                )
                summary.retried += 1
                logger.warning(
                    "sync.queue_item_retry_scheduled",
                    queue_item_id=item.id,
                    platform=item.platform,
                    attempts=attempts,
                    retry_in_seconds=delay,
                    error=message,
                )
                return

            history = SyncHistoryRecord(
                billing_entry_id=item.billing_entry_id,
                platform=item.platform,
                action=item.action,
                status=HistoryStatus.FAILURE,
                started_at=started_at,
                completed_at=utcnow(),
                error=message,
                external_id=snapshot.get("id") if snapshot else None,
                duration_ms=int((time.monotonic() - started) * 1000),
                data_snapshot=snapshot,
            )
            await self._repository.fail_queue_item(item, attempts, message, history)
            summary.failed += 1
            logger.error(
                "sync.queue_item_failed",
                queue_item_id=item.id,
                billing_entry_id=item.billing_entry_id,
                platform=item.platform,
                action=item.action.value,
                attempts=attempts,
                code=error.code.value,
                error=message,
            )
        except Exception as store_exc:
            logger.error(
                "sync.failure_persist_failed",
                queue_item_id=item.id,
                platform=item.platform,
                error=str(store_exc),
            )

    # ── Billing Entry Operations ────────────────────────────────────────────

    async def _sync_now(self, entry_id: str, platforms: list[str]) -> list[SyncOutcome]:
        """Drain immediately and report each platform's queue state for the entry."""
        await self.process_queue()

        items = await self._repository.list_queue_items(entry_id)
        entry = await self._repository.get_billing_entry(entry_id)
        refs = entry.external_refs if entry else {}

        outcomes: list[SyncOutcome] = []
        for platform in dict.fromkeys(platforms):
            latest = next((i for i in items if i.platform == platform), None)
            status = latest.status if latest else QueueStatus.QUEUED
            outcomes.append(
                SyncOutcome(
                    entry_id=entry_id,
                    platform=platform,
                    success=status == QueueStatus.COMPLETED,
                    status=status,
                    external_id=refs.get(platform),
                    error=latest.last_error if latest else None,
                )
            )
        return outcomes

    async def create_billing_entry(
        self,
        data: BillingEntryCreate,
        platforms: list[str] | None = None,
        auto_sync: bool = True,
    ) -> EntryMutationResult:
        """Persist a new entry and queue a create on each requested platform.

        With real-time sync enabled the queue is drained before returning and
        ``sync_results`` holds one outcome per platform.

        Raises:
            BillingEntryError: If the entry cannot be stored or queued.
        """
        try:
            entry = await self._repository.create_billing_entry(data)
        except Exception as exc:
            logger.error("sync.entry_create_failed", user_id=data.user_id, error=str(exc))
            raise BillingEntryError("Failed to create billing entry", cause=exc) from exc

        logger.info("sync.entry_created", billing_entry_id=entry.id, user_id=entry.user_id)

        sync_results = None
        if auto_sync and platforms:
            await self._enqueue_all(entry.id, platforms, SyncAction.CREATE)
            if self._config.enable_real_time_sync:
                sync_results = await self._sync_now(entry.id, platforms)
                entry = await self._repository.get_billing_entry(entry.id) or entry

        return EntryMutationResult(billing_entry=entry, sync_results=sync_results)

    async def update_billing_entry(
        self,
        entry_id: str,
        updates: BillingEntryUpdate,
        platforms: list[str] | None = None,
    ) -> EntryMutationResult:
        """Persist changes and queue an update on each requested platform.

        Raises:
            BillingEntryNotFoundError: If no entry has ``entry_id``.
            BillingEntryError: If the store fails.
        """
        try:
            entry = await self._repository.update_billing_entry(
                entry_id, updates, mark_pending=bool(platforms)
            )
        except Exception as exc:
            logger.error("sync.entry_update_failed", billing_entry_id=entry_id, error=str(exc))
            raise BillingEntryError("Failed to update billing entry", cause=exc) from exc

        if entry is None:
            raise BillingEntryNotFoundError(entry_id)

        sync_results = None
        if platforms:
            await self._enqueue_all(entry.id, platforms, SyncAction.UPDATE)
            if self._config.enable_real_time_sync:
                sync_results = await self._sync_now(entry.id, platforms)
                entry = await self._repository.get_billing_entry(entry.id) or entry

        return EntryMutationResult(billing_entry=entry, sync_results=sync_results)

    async def request_deletion(self, entry_id: str, platforms: list[str]) -> EntryMutationResult:
        """Queue removal of the entry's remote records. The local entry is kept."""
        entry = await self._require_entry(entry_id)

        sync_results = None
        if platforms:
            await self._enqueue_all(entry.id, platforms, SyncAction.DELETE)
            if self._config.enable_real_time_sync:
                sync_results = await self._sync_now(entry.id, platforms)
                entry = await self._repository.get_billing_entry(entry.id) or entry

        return EntryMutationResult(billing_entry=entry, sync_results=sync_results)

    async def _require_entry(self, entry_id: str) -> BillingEntryRead:
        entry = await self._repository.get_billing_entry(entry_id)
        if entry is None:
            raise BillingEntryNotFoundError(entry_id)
        return entry

    async def get_sync_status(self, entry_id: str) -> SyncStatusReport:
        """Entry, its full history (newest first) and its queue items."""
        entry = await self._require_entry(entry_id)
        history = await self._repository.list_history(entry_id)
        queue_items = await self._repository.list_queue_items(entry_id)
        return SyncStatusReport(entry=entry, history=history, queue_items=queue_items)

    async def reconcile_entry(self, entry_id: str, platform: str) -> list[ConflictRecord]:
        """Fetch the remote copy of an entry and record any divergence.

        Returns [] when the entry was never synced to ``platform``. A remote
        record that no longer exists is reported as a ``missing_reference``
        conflict.
        """
        entry = await self._require_entry(entry_id)
        remote_id = entry.external_refs.get(platform)
        if not remote_id:
            logger.info(
                "sync.reconcile_skipped",
                billing_entry_id=entry_id,
                platform=platform,
                reason="no remote id",
            )
            return []

        adapter = self._registry.get_adapter(platform)
        remote = await adapter.get_time_entry(remote_id)
        if remote is None:
            return await self._detector.report_missing_remote(entry, platform, remote_id)
        return await self._detector.detect_conflicts(entry, remote, platform)

    # ── Maintenance ─────────────────────────────────────────────────────────

    async def cleanup(self, older_than_days: int | None = None) -> CleanupResult:
        """Delete finished queue items and history older than the retention window."""
        days = older_than_days if older_than_days is not None else self._config.cleanup_retention_days
        cutoff = utcnow() - timedelta(days=days)

        queue_deleted = await self._repository.delete_terminal_queue_items(cutoff)
        history_deleted = await self._repository.delete_history_before(cutoff)

        logger.info(
            "sync.cleanup_complete",
            older_than_days=days,
            queue_items_deleted=queue_deleted,
            history_deleted=history_deleted,
        )
        return CleanupResult(queue_items_deleted=queue_deleted, history_deleted=history_deleted)
