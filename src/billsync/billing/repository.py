"""Billing store repository -- async CRUD for entries, queue, history and conflicts.

Provides BillingRepository with the session_factory callable pattern. Handles
serialization between Pydantic schemas and SQLAlchemy models.

Every queue transition that also writes history or touches the billing entry
(complete_queue_item, fail_queue_item) commits as one transaction so a crash
cannot leave a finished attempt without its audit row.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.billsync.billing.models import (
    BillingEntryModel,
    ConflictModel,
    SyncHistoryModel,
    SyncQueueModel,
)
from src.billsync.billing.schemas import (
    ACTIVE_QUEUE_STATUSES,
    DEFAULT_QUEUE_PRIORITY,
    TERMINAL_QUEUE_STATUSES,
    BillingEntryCreate,
    BillingEntryRead,
    BillingEntryUpdate,
    ConflictFilter,
    ConflictRecord,
    ConflictStats,
    ConflictStatus,
    QueueStatus,
    SyncAction,
    SyncHistoryRecord,
    SyncQueueItem,
    SyncStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _model_to_entry(model: BillingEntryModel) -> BillingEntryRead:
    return BillingEntryRead(
        id=model.id,
        description=model.description,
        time_spent=model.time_spent,
        hourly_rate=model.hourly_rate,
        total_amount=model.total_amount,
        client=model.client,
        matter=model.matter,
        work_type=model.work_type,
        work_date=model.work_date,
        user_id=model.user_id,
        sync_status=SyncStatus(model.sync_status),
        sync_error=model.sync_error,
        external_id=model.external_id,
        platform=model.platform,
        external_refs=dict(model.external_refs or {}),
        last_sync_attempt=_ensure_utc(model.last_sync_attempt),
        synced_at=_ensure_utc(model.synced_at),
        created_at=_ensure_utc(model.created_at),
        updated_at=_ensure_utc(model.updated_at),
    )


def _model_to_queue_item(model: SyncQueueModel) -> SyncQueueItem:
    return SyncQueueItem(
        id=model.id,
        billing_entry_id=model.billing_entry_id,
        platform=model.platform,
        action=SyncAction(model.action),
        status=QueueStatus(model.status),
        priority=model.priority,
        attempts=model.attempts,
        last_error=model.last_error,
        scheduled_at=_ensure_utc(model.scheduled_at),
        created_at=_ensure_utc(model.created_at),
        updated_at=_ensure_utc(model.updated_at),
    )


def _model_to_history(model: SyncHistoryModel) -> SyncHistoryRecord:
    return SyncHistoryRecord(
        id=model.id,
        billing_entry_id=model.billing_entry_id,
        platform=model.platform,
        action=SyncAction(model.action),
        status=model.status,
        started_at=_ensure_utc(model.started_at),
        completed_at=_ensure_utc(model.completed_at),
        error=model.error,
        external_id=model.external_id,
        duration_ms=model.duration_ms,
        data_snapshot=model.data_snapshot,
    )


def _history_to_model(record: SyncHistoryRecord) -> SyncHistoryModel:
    return SyncHistoryModel(
        id=record.id,
        billing_entry_id=record.billing_entry_id,
        platform=record.platform,
        action=record.action.value,
        status=record.status.value,
        started_at=record.started_at,
        completed_at=record.completed_at,
        error=record.error,
        external_id=record.external_id,
        duration_ms=record.duration_ms,
        data_snapshot=record.data_snapshot,
    )


def _model_to_conflict(model: ConflictModel) -> ConflictRecord:
    return ConflictRecord(
        id=model.id,
        billing_entry_id=model.billing_entry_id,
        platform=model.platform,
        field=model.field,
        source_value=model.source_value,
        target_value=model.target_value,
        conflict_type=model.conflict_type,
        detected_at=_ensure_utc(model.detected_at),
        status=ConflictStatus(model.status),
        resolution_strategy=model.resolution_strategy,
        resolved_value=model.resolved_value,
        resolved_at=_ensure_utc(model.resolved_at),
        resolved_by=model.resolved_by,
    )


def _total_amount(time_spent: float | None, hourly_rate: float | None) -> float | None:
    if time_spent is None or hourly_rate is None:
        return None
    return round(time_spent * hourly_rate, 2)


def collapse_action(existing: SyncAction, incoming: SyncAction) -> SyncAction:
    """Action kept when a new request lands on an active queue item.

    A not-yet-sent create already carries the latest local data, so it
    absorbs a later update. Any other request replaces the pending action.
    """
    if existing == SyncAction.CREATE and incoming == SyncAction.UPDATE:
        return SyncAction.CREATE
    return incoming


# ── Repository ──────────────────────────────────────────────────────────────


class BillingRepository:
    """Async persistence for billing entries, sync queue, history and conflicts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Billing Entries ─────────────────────────────────────────────────────

    async def create_billing_entry(self, data: BillingEntryCreate) -> BillingEntryRead:
        """Persist a new billing entry in ``pending`` sync state."""
        async for session in self._session_factory():
            model = BillingEntryModel(
                description=data.description,
                time_spent=data.time_spent,
                hourly_rate=data.hourly_rate,
                total_amount=_total_amount(data.time_spent, data.hourly_rate),
                client=data.client,
                matter=data.matter,
                work_type=data.work_type,
                work_date=data.work_date,
                user_id=data.user_id,
                sync_status=SyncStatus.PENDING.value,
                external_refs={},
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_entry(model)

    async def get_billing_entry(self, entry_id: str) -> BillingEntryRead | None:
        async for session in self._session_factory():
            model = await session.get(BillingEntryModel, entry_id)
            return _model_to_entry(model) if model else None

    async def update_billing_entry(
        self,
        entry_id: str,
        data: BillingEntryUpdate,
        mark_pending: bool = False,
    ) -> BillingEntryRead | None:
        """Apply the set fields of ``data``; recompute total_amount.

        Returns None if the entry does not exist.
        """
        async for session in self._session_factory():
            model = await session.get(BillingEntryModel, entry_id)
            if model is None:
                return None

            for field_name, value in data.model_dump(exclude_unset=True).items():
                setattr(model, field_name, value)
            model.total_amount = _total_amount(model.time_spent, model.hourly_rate)
            if mark_pending:
                model.sync_status = SyncStatus.PENDING.value
            model.updated_at = utcnow()

            await session.commit()
            await session.refresh(model)
            return _model_to_entry(model)

    async def find_duplicate_candidates(
        self, entry: BillingEntryRead, platform: str
    ) -> list[BillingEntryRead]:
        """Synced entries on the same platform, client and work date, excluding ``entry``."""
        async for session in self._session_factory():
            stmt = select(BillingEntryModel).where(
                BillingEntryModel.platform == platform,
                BillingEntryModel.client == entry.client,
                BillingEntryModel.work_date == entry.work_date,
                BillingEntryModel.sync_status == SyncStatus.SYNCED.value,
                BillingEntryModel.id != entry.id,
            )
            result = await session.execute(stmt)
            return [_model_to_entry(m) for m in result.scalars().all()]

    # ── Sync Queue ──────────────────────────────────────────────────────────

    async def enqueue(
        self,
        billing_entry_id: str,
        platform: str,
        action: SyncAction,
        priority: int = DEFAULT_QUEUE_PRIORITY,
    ) -> SyncQueueItem:
        """Insert a queue item or collapse into the active one for (entry, platform).

        A collapsed item keeps the higher of the two priorities. If a
        concurrent writer wins the insert race, the unique index rejects ours
        and the collapse path runs against the row it created.
        """
        for _ in range(2):
            async for session in self._session_factory():
                stmt = select(SyncQueueModel).where(
                    SyncQueueModel.billing_entry_id == billing_entry_id,
                    SyncQueueModel.platform == platform,
                    SyncQueueModel.status.in_([s.value for s in ACTIVE_QUEUE_STATUSES]),
                )
                existing = (await session.execute(stmt)).scalar_one_or_none()
                now = utcnow()

                if existing is not None:
                    existing.action = collapse_action(
                        SyncAction(existing.action), action
                    ).value
                    existing.priority = max(existing.priority, priority)
                    existing.scheduled_at = now
                    existing.updated_at = now
                    await session.commit()
                    await session.refresh(existing)
                    logger.debug(
                        "sync_queue.item_collapsed",
                        queue_item_id=existing.id,
                        billing_entry_id=billing_entry_id,
                        platform=platform,
                        action=existing.action,
                    )
                    return _model_to_queue_item(existing)

                model = SyncQueueModel(
                    billing_entry_id=billing_entry_id,
                    platform=platform,
                    action=action.value,
                    status=QueueStatus.QUEUED.value,
                    priority=priority,
                    attempts=0,
                    scheduled_at=now,
                )
                session.add(model)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.debug(
                        "sync_queue.enqueue_race",
                        billing_entry_id=billing_entry_id,
                        platform=platform,
                    )
                    continue
                await session.refresh(model)
                return _model_to_queue_item(model)

        raise RuntimeError(
            f"Could not enqueue {action.value} for entry {billing_entry_id} on {platform}"
        )

    async def claim_due_batch(self, limit: int, now: datetime | None = None) -> list[SyncQueueItem]:
        """Fetch up to ``limit`` due queued items and mark each ``processing``.

        Higher priority first, then oldest schedule. Each claim is a
        conditional single-row update; rows another worker claimed first are
        skipped.
        """
        now = now or utcnow()
        async for session in self._session_factory():
            stmt = (
                select(SyncQueueModel.id)
                .where(
                    SyncQueueModel.status == QueueStatus.QUEUED.value,
                    SyncQueueModel.scheduled_at <= now,
                )
                .order_by(
                    SyncQueueModel.priority.desc(),
                    SyncQueueModel.scheduled_at,
                    SyncQueueModel.created_at,
                )
                .limit(limit)
            )
            candidate_ids = list((await session.execute(stmt)).scalars().all())

            claimed: list[SyncQueueItem] = []
            for item_id in candidate_ids:
                result = await session.execute(
                    update(SyncQueueModel)
                    .where(
                        SyncQueueModel.id == item_id,
                        SyncQueueModel.status == QueueStatus.QUEUED.value,
                    )
                    .values(status=QueueStatus.PROCESSING.value, updated_at=utcnow())
                )
                if result.rowcount == 1:
                    model = await session.get(SyncQueueModel, item_id)
                    claimed.append(_model_to_queue_item(model))
            await session.commit()
            return claimed

    async def requeue_stale_items(self, cutoff: datetime) -> int:
        """Return items stuck in ``processing`` since before ``cutoff`` to ``queued``.

        Covers workers that died between claim and completion.
        """
        async for session in self._session_factory():
            result = await session.execute(
                update(SyncQueueModel)
                .where(
                    SyncQueueModel.status == QueueStatus.PROCESSING.value,
                    SyncQueueModel.updated_at < cutoff,
                )
                .values(status=QueueStatus.QUEUED.value, updated_at=utcnow())
            )
            await session.commit()
            return result.rowcount or 0

    async def _close_claimed(
        self,
        session: AsyncSession,
        item: SyncQueueItem,
        values: dict[str, Any],
        succeeded: bool,
    ) -> bool:
        """Apply ``values`` to a claimed item unless it was re-enqueued in flight.

        A row touched since the claim carries a newer local change; it goes
        back to ``queued`` with a fresh attempt count instead. A create that
        just succeeded is turned into an update so the remote record is not
        created twice. Returns False in that case.
        """
        result = await session.execute(
            update(SyncQueueModel)
            .where(
                SyncQueueModel.id == item.id,
                SyncQueueModel.status == QueueStatus.PROCESSING.value,
                SyncQueueModel.updated_at == item.updated_at,
            )
            .values(**values)
        )
        if result.rowcount == 1:
            return True

        current = await session.get(SyncQueueModel, item.id)
        if current is not None and current.status == QueueStatus.PROCESSING.value:
            if (
                succeeded
                and item.action == SyncAction.CREATE
                and current.action == SyncAction.CREATE.value
            ):
                current.action = SyncAction.UPDATE.value
            current.status = QueueStatus.QUEUED.value
            current.attempts = 0
            current.updated_at = utcnow()
            logger.info(
                "sync_queue.item_requeued_after_change",
                queue_item_id=item.id,
                action=current.action,
            )
        return False

    async def complete_queue_item(
        self,
        item: SyncQueueItem,
        remote_id: str | None,
        history: SyncHistoryRecord,
    ) -> None:
        """Mark the item completed, record the remote id on the entry, append history."""
        async for session in self._session_factory():
            now = utcnow()
            closed = await self._close_claimed(
                session,
                item,
                {"status": QueueStatus.COMPLETED.value, "last_error": None, "updated_at": now},
                succeeded=True,
            )

            entry = await session.get(BillingEntryModel, item.billing_entry_id)
            if entry is not None:
                refs = dict(entry.external_refs or {})
                if item.action == SyncAction.DELETE:
                    refs.pop(item.platform, None)
                    if entry.platform == item.platform:
                        entry.platform = None
                        entry.external_id = None
                elif remote_id:
                    refs[item.platform] = remote_id
                    entry.external_id = remote_id
                    entry.platform = item.platform
                entry.external_refs = refs
                entry.sync_status = (SyncStatus.SYNCED if closed else SyncStatus.PENDING).value
                entry.sync_error = None
                entry.synced_at = now
                entry.last_sync_attempt = now

            session.add(_history_to_model(history))
            await session.commit()

    async def reschedule_queue_item(
        self, item_id: str, attempts: int, scheduled_at: datetime, error: str
    ) -> None:
        """Return a processing item to ``queued`` for a later retry."""
        async for session in self._session_factory():
            await session.execute(
                update(SyncQueueModel)
                .where(
                    SyncQueueModel.id == item_id,
                    SyncQueueModel.status == QueueStatus.PROCESSING.value,
                )
                .values(
                    status=QueueStatus.QUEUED.value,
                    attempts=attempts,
                    scheduled_at=scheduled_at,
                    last_error=error,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

    async def fail_queue_item(
        self,
        item: SyncQueueItem,
        attempts: int,
        error: str,
        history: SyncHistoryRecord,
    ) -> None:
        """Mark the item failed, flag the entry, append failure history."""
        async for session in self._session_factory():
            now = utcnow()
            await self._close_claimed(
                session,
                item,
                {
                    "status": QueueStatus.FAILED.value,
                    "attempts": attempts,
                    "last_error": error,
                    "updated_at": now,
                },
                succeeded=False,
            )
            await session.execute(
                update(BillingEntryModel)
                .where(BillingEntryModel.id == item.billing_entry_id)
                .values(
                    sync_status=SyncStatus.ERROR.value,
                    sync_error=error,
                    last_sync_attempt=now,
                )
            )
            session.add(_history_to_model(history))
            await session.commit()

    async def list_queue_items(self, billing_entry_id: str) -> list[SyncQueueItem]:
        async for session in self._session_factory():
            stmt = (
                select(SyncQueueModel)
                .where(SyncQueueModel.billing_entry_id == billing_entry_id)
                .order_by(SyncQueueModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_queue_item(m) for m in result.scalars().all()]

    async def delete_terminal_queue_items(self, cutoff: datetime) -> int:
        """Delete completed/failed items last updated before ``cutoff``."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(SyncQueueModel).where(
                    SyncQueueModel.status.in_([s.value for s in TERMINAL_QUEUE_STATUSES]),
                    SyncQueueModel.updated_at < cutoff,
                )
            )
            await session.commit()
            return result.rowcount or 0

    # ── Sync History ────────────────────────────────────────────────────────

    async def list_history(self, billing_entry_id: str) -> list[SyncHistoryRecord]:
        """All history rows for an entry, newest first."""
        async for session in self._session_factory():
            stmt = (
                select(SyncHistoryModel)
                .where(SyncHistoryModel.billing_entry_id == billing_entry_id)
                .order_by(SyncHistoryModel.started_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_history(m) for m in result.scalars().all()]

    async def delete_history_before(self, cutoff: datetime) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                delete(SyncHistoryModel).where(SyncHistoryModel.completed_at < cutoff)
            )
            await session.commit()
            return result.rowcount or 0

    # ── Conflicts ───────────────────────────────────────────────────────────

    async def add_conflicts(self, conflicts: list[ConflictRecord]) -> None:
        async for session in self._session_factory():
            for conflict in conflicts:
                data = conflict.model_dump(mode="json")
                session.add(
                    ConflictModel(
                        id=conflict.id,
                        billing_entry_id=conflict.billing_entry_id,
                        platform=conflict.platform,
                        field=conflict.field,
                        source_value=data["source_value"],
                        target_value=data["target_value"],
                        conflict_type=conflict.conflict_type.value,
                        detected_at=conflict.detected_at,
                        status=conflict.status.value,
                    )
                )
            await session.commit()

    async def get_conflict(self, conflict_id: str) -> ConflictRecord | None:
        async for session in self._session_factory():
            model = await session.get(ConflictModel, conflict_id)
            return _model_to_conflict(model) if model else None

    async def transition_conflict(
        self,
        conflict_id: str,
        status: ConflictStatus,
        resolution_strategy: str | None = None,
        resolved_value: Any = None,
        resolved_by: str | None = None,
    ) -> bool:
        """Move a pending conflict to ``status``. False if it was not pending."""
        async for session in self._session_factory():
            result = await session.execute(
                update(ConflictModel)
                .where(
                    ConflictModel.id == conflict_id,
                    ConflictModel.status == ConflictStatus.PENDING.value,
                )
                .values(
                    status=status.value,
                    resolution_strategy=resolution_strategy,
                    resolved_value=to_jsonable_python(resolved_value),
                    resolved_at=utcnow(),
                    resolved_by=resolved_by,
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def record_conflict_strategy(self, conflict_id: str, strategy: str) -> bool:
        """Attach the selected strategy to a conflict that stays pending."""
        async for session in self._session_factory():
            result = await session.execute(
                update(ConflictModel)
                .where(
                    ConflictModel.id == conflict_id,
                    ConflictModel.status == ConflictStatus.PENDING.value,
                )
                .values(resolution_strategy=strategy)
            )
            await session.commit()
            return result.rowcount == 1

    async def list_conflicts(
        self,
        filters: ConflictFilter,
        status: ConflictStatus | None = ConflictStatus.PENDING,
    ) -> list[ConflictRecord]:
        async for session in self._session_factory():
            stmt = select(ConflictModel)
            if filters.user_id is not None:
                stmt = stmt.join(
                    BillingEntryModel,
                    BillingEntryModel.id == ConflictModel.billing_entry_id,
                ).where(BillingEntryModel.user_id == filters.user_id)
            if status is not None:
                stmt = stmt.where(ConflictModel.status == status.value)
            if filters.billing_entry_id is not None:
                stmt = stmt.where(ConflictModel.billing_entry_id == filters.billing_entry_id)
            if filters.platform is not None:
                stmt = stmt.where(ConflictModel.platform == filters.platform)
            if filters.conflict_type is not None:
                stmt = stmt.where(ConflictModel.conflict_type == filters.conflict_type.value)
            stmt = stmt.order_by(ConflictModel.detected_at.desc())

            result = await session.execute(stmt)
            return [_model_to_conflict(m) for m in result.scalars().all()]

    async def conflict_stats(self, start: datetime, end: datetime) -> ConflictStats:
        """Aggregate conflicts detected within [start, end]."""
        async for session in self._session_factory():
            window = (
                ConflictModel.detected_at >= start,
                ConflictModel.detected_at <= end,
            )

            by_status = dict(
                (
                    await session.execute(
                        select(ConflictModel.status, func.count())
                        .where(*window)
                        .group_by(ConflictModel.status)
                    )
                ).all()
            )
            by_type = dict(
                (
                    await session.execute(
                        select(ConflictModel.conflict_type, func.count())
                        .where(*window)
                        .group_by(ConflictModel.conflict_type)
                    )
                ).all()
            )
            by_strategy = dict(
                (
                    await session.execute(
                        select(ConflictModel.resolution_strategy, func.count())
                        .where(
                            *window,
                            ConflictModel.status == ConflictStatus.RESOLVED.value,
                            ConflictModel.resolution_strategy.is_not(None),
                        )
                        .group_by(ConflictModel.resolution_strategy)
                    )
                ).all()
            )

            return ConflictStats(
                total_conflicts=sum(by_status.values()),
                resolved_conflicts=by_status.get(ConflictStatus.RESOLVED.value, 0),
                pending_conflicts=by_status.get(ConflictStatus.PENDING.value, 0),
                conflicts_by_type=by_type,
                resolutions_by_strategy=by_strategy,
            )
