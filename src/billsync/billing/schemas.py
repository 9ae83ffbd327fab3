"""Pydantic schemas for billing entries, the sync queue, sync history and conflicts.

Defines all structured types for the sync/conflict core:
- Enums: SyncStatus, SyncAction, QueueStatus, HistoryStatus, ConflictType,
  ConflictStatus, ResolutionStrategy
- Billing entries: BillingEntryCreate/Update/Read
- Queue/history: SyncQueueItem, SyncHistoryRecord
- Conflicts: ConflictRecord, ResolutionRule, ConflictResolutionResult,
  EntryResolution, ConflictFilter, ConflictStats
- Service results: SyncOutcome, EntryMutationResult, SyncStatusReport,
  DrainSummary, CleanupResult
- SyncConfig: dispatcher tuning derived from Settings
"""

from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.billsync.config import Settings
from src.billsync.platforms.schemas import TimeEntry


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ── Enums ───────────────────────────────────────────────────────────────────


class SyncStatus(str, Enum):
    """Sync state of a billing entry as a whole."""

    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class QueueStatus(str, Enum):
    """Queue item lifecycle: queued -> processing -> completed | failed."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_QUEUE_STATUSES = (QueueStatus.QUEUED, QueueStatus.PROCESSING)
TERMINAL_QUEUE_STATUSES = (QueueStatus.COMPLETED, QueueStatus.FAILED)


class HistoryStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ConflictType(str, Enum):
    DATA_MISMATCH = "data_mismatch"
    DUPLICATE_ENTRY = "duplicate_entry"
    MISSING_REFERENCE = "missing_reference"
    VALIDATION_ERROR = "validation_error"


class ConflictStatus(str, Enum):
    """Conflict lifecycle: pending -> resolved | ignored (one-way)."""

    PENDING = "pending"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class ResolutionStrategy(str, Enum):
    SOURCE_WINS = "source_wins"
    TARGET_WINS = "target_wins"
    LATEST_WINS = "latest_wins"
    MANUAL_REVIEW = "manual_review"
    MERGE = "merge"


# ── Billing Entries ─────────────────────────────────────────────────────────


class BillingEntryCreate(BaseModel):
    """Schema for creating a billing entry."""

    description: str = Field(min_length=1)
    time_spent: float = Field(gt=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    client: str
    matter: str | None = None
    work_type: str | None = None
    work_date: dt.date
    user_id: str


class BillingEntryUpdate(BaseModel):
    """Partial update -- only fields that are set are written."""

    description: str | None = Field(default=None, min_length=1)
    time_spent: float | None = Field(default=None, gt=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    client: str | None = None
    matter: str | None = None
    work_type: str | None = None
    work_date: dt.date | None = None


class BillingEntryRead(BaseModel):
    """Schema for reading a billing entry (includes all persisted fields)."""

    id: str
    description: str
    time_spent: float
    hourly_rate: float | None = None
    total_amount: float | None = None
    client: str
    matter: str | None = None
    work_type: str | None = None
    work_date: dt.date
    user_id: str
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    external_id: str | None = None
    platform: str | None = None
    external_refs: dict[str, str] = Field(default_factory=dict)
    last_sync_attempt: dt.datetime | None = None
    synced_at: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    def to_time_entry(self, platform: str) -> TimeEntry:
        """Project this entry onto the canonical schema for one platform."""
        return TimeEntry(
            id=self.external_refs.get(platform),
            client_id=self.client,
            matter_id=self.matter,
            date=self.work_date,
            hours=self.time_spent,
            description=self.description,
            billable_rate=self.hourly_rate,
            billable=True,
            user_id=self.user_id,
        )


# ── Queue & History ─────────────────────────────────────────────────────────


DEFAULT_QUEUE_PRIORITY = 5


class SyncQueueItem(BaseModel):
    id: str
    billing_entry_id: str
    platform: str
    action: SyncAction
    status: QueueStatus = QueueStatus.QUEUED
    priority: int = DEFAULT_QUEUE_PRIORITY
    attempts: int = 0
    last_error: str | None = None
    scheduled_at: dt.datetime
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class SyncHistoryRecord(BaseModel):
    """One append-only audit row for a finished sync attempt."""

    id: str = Field(default_factory=new_id)
    billing_entry_id: str
    platform: str
    action: SyncAction
    status: HistoryStatus
    started_at: dt.datetime
    completed_at: dt.datetime
    error: str | None = None
    external_id: str | None = None
    duration_ms: int | None = None
    data_snapshot: dict[str, Any] | None = None


# ── Conflicts ───────────────────────────────────────────────────────────────


class ConflictRecord(BaseModel):
    """A divergence between a local entry field and its remote counterpart."""

    id: str = Field(default_factory=new_id)
    billing_entry_id: str
    platform: str
    field: str
    source_value: Any = None
    target_value: Any = None
    conflict_type: ConflictType
    detected_at: dt.datetime = Field(default_factory=utcnow)
    status: ConflictStatus = ConflictStatus.PENDING
    resolution_strategy: str | None = None
    resolved_value: Any = None
    resolved_at: dt.datetime | None = None
    resolved_by: str | None = None


class ResolutionRule(BaseModel):
    """Field rule; ``field='*'`` matches any field. Lower priority wins."""

    field: str
    strategy: ResolutionStrategy
    priority: int = 0


class ConflictResolutionResult(BaseModel):
    resolved: bool
    strategy: str
    final_value: Any = None
    requires_manual_review: bool
    conflict_id: str | None = None


class EntryResolution(BaseModel):
    resolved_data: dict[str, Any]
    manual_review_required: bool
    pending_conflicts: list[ConflictRecord] = Field(default_factory=list)


class ConflictFilter(BaseModel):
    user_id: str | None = None
    billing_entry_id: str | None = None
    platform: str | None = None
    conflict_type: ConflictType | None = None


class ConflictStats(BaseModel):
    total_conflicts: int = 0
    resolved_conflicts: int = 0
    pending_conflicts: int = 0
    conflicts_by_type: dict[str, int] = Field(default_factory=dict)
    resolutions_by_strategy: dict[str, int] = Field(default_factory=dict)


# ── Service Results ─────────────────────────────────────────────────────────


class SyncOutcome(BaseModel):
    """Per-platform state of an entry's queue item after an immediate drain."""

    entry_id: str
    platform: str
    success: bool
    status: QueueStatus
    external_id: str | None = None
    error: str | None = None


class EntryMutationResult(BaseModel):
    billing_entry: BillingEntryRead
    sync_results: list[SyncOutcome] | None = None


class SyncStatusReport(BaseModel):
    entry: BillingEntryRead
    history: list[SyncHistoryRecord] = Field(default_factory=list)
    queue_items: list[SyncQueueItem] = Field(default_factory=list)


class DrainSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0


class CleanupResult(BaseModel):
    queue_items_deleted: int = 0
    history_deleted: int = 0


# ── Configuration ───────────────────────────────────────────────────────────


class SyncConfig(BaseModel):
    """Dispatcher tuning. Delays and intervals are in seconds."""

    enable_real_time_sync: bool = True
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=5.0, ge=0)
    batch_size: int = Field(default=10, ge=1)
    sync_interval: int = Field(default=30, ge=1)
    batch_pause: float = Field(default=1.0, ge=0)
    cleanup_retention_days: int = Field(default=7, ge=1)
    processing_timeout: int = Field(default=300, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncConfig:
        return cls(
            enable_real_time_sync=settings.SYNC_ENABLE_REAL_TIME,
            max_retries=settings.SYNC_MAX_RETRIES,
            retry_delay=settings.SYNC_RETRY_DELAY,
            batch_size=settings.SYNC_BATCH_SIZE,
            sync_interval=settings.SYNC_INTERVAL,
            batch_pause=settings.SYNC_BATCH_PAUSE,
            cleanup_retention_days=settings.SYNC_CLEANUP_RETENTION_DAYS,
            processing_timeout=settings.SYNC_PROCESSING_TIMEOUT,
        )
