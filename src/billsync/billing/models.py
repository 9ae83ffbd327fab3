"""Billing and sync persistence models.

Four SQLAlchemy models on the shared declarative Base:
- BillingEntryModel: Locally recorded billable work and its sync state
- SyncQueueModel: Durable per-platform work items (one active item per entry/platform)
- SyncHistoryModel: Append-only audit trail of finished sync attempts
- ConflictModel: Detected local/remote divergences and their resolution

Column types are dialect-neutral (String ids, generic JSON) so the same
models run on PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.billsync.billing.schemas import new_id, utcnow
from src.billsync.core.database import Base

_ACTIVE_QUEUE_PREDICATE = text("status IN ('queued', 'processing')")


class BillingEntryModel(Base):
    """Canonical record of billable legal work.

    ``external_id``/``platform`` describe the last successful sync;
    ``external_refs`` keeps the remote id per platform so updates and deletes
    address the right remote record on every platform.
    """

    __tablename__ = "billing_entries"
    __table_args__ = (
        Index("ix_billing_entries_dup_scan", "platform", "client", "work_date", "sync_status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    time_spent: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    hourly_rate: Mapped[float | None] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    total_amount: Mapped[float | None] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=True
    )
    client: Mapped[str] = mapped_column(String(200), nullable=False)
    matter: Mapped[str | None] = mapped_column(String(200), nullable=True)
    work_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    sync_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_refs: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    last_sync_attempt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class SyncQueueModel(Base):
    """Pending create/update/delete of one billing entry on one platform.

    The partial unique index enforces at most one queued/processing row per
    (billing_entry_id, platform).
    """

    __tablename__ = "sync_queue"
    __table_args__ = (
        Index(
            "uq_sync_queue_active_entry_platform",
            "billing_entry_id",
            "platform",
            unique=True,
            postgresql_where=_ACTIVE_QUEUE_PREDICATE,
            sqlite_where=_ACTIVE_QUEUE_PREDICATE,
        ),
        Index("ix_sync_queue_due", "status", "scheduled_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    billing_entry_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class SyncHistoryModel(Base):
    """Append-only record of a finished sync attempt. Never updated."""

    __tablename__ = "sync_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    billing_entry_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class ConflictModel(Base):
    """Detected divergence between a local billing entry and a remote record."""

    __tablename__ = "sync_conflicts"
    __table_args__ = (
        Index("ix_sync_conflicts_status", "status"),
        Index("ix_sync_conflicts_detected_at", "detected_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    billing_entry_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    field: Mapped[str] = mapped_column(String(100), nullable=False)
    source_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    target_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    conflict_type: Mapped[str] = mapped_column(String(50), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    resolution_strategy: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolved_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
