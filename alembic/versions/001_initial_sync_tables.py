"""Initial billing/sync schema: billing entries, sync queue, sync history, conflicts.

Revision ID: 001_initial_sync_tables
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_sync_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_QUEUE_PREDICATE = sa.text("status IN ('queued', 'processing')")


def upgrade() -> None:
    op.create_table(
        "billing_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("time_spent", sa.Numeric(10, 2), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("client", sa.String(200), nullable=False),
        sa.Column("matter", sa.String(200), nullable=True),
        sa.Column("work_type", sa.String(100), nullable=True),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(200), nullable=True),
        sa.Column("platform", sa.String(50), nullable=True),
        sa.Column("external_refs", sa.JSON(), nullable=False),
        sa.Column("last_sync_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_billing_entries_user_id", "billing_entries", ["user_id"])
    op.create_index(
        "ix_billing_entries_dup_scan",
        "billing_entries",
        ["platform", "client", "work_date", "sync_status"],
    )

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("billing_entry_id", sa.String(36), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sync_queue_billing_entry_id", "sync_queue", ["billing_entry_id"])
    op.create_index("ix_sync_queue_due", "sync_queue", ["status", "scheduled_at"])
    # At most one queued/processing item per entry and platform
    op.create_index(
        "uq_sync_queue_active_entry_platform",
        "sync_queue",
        ["billing_entry_id", "platform"],
        unique=True,
        postgresql_where=ACTIVE_QUEUE_PREDICATE,
        sqlite_where=ACTIVE_QUEUE_PREDICATE,
    )

    op.create_table(
        "sync_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("billing_entry_id", sa.String(36), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(200), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("data_snapshot", sa.JSON(), nullable=True),
    )
    op.create_index("ix_sync_history_billing_entry_id", "sync_history", ["billing_entry_id"])
    op.create_index("ix_sync_history_completed_at", "sync_history", ["completed_at"])

    op.create_table(
        "sync_conflicts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("billing_entry_id", sa.String(36), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("field", sa.String(100), nullable=False),
        sa.Column("source_value", sa.JSON(), nullable=True),
        sa.Column("target_value", sa.JSON(), nullable=True),
        sa.Column("conflict_type", sa.String(50), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("resolution_strategy", sa.String(50), nullable=True),
        sa.Column("resolved_value", sa.JSON(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(100), nullable=True),
    )
    op.create_index("ix_sync_conflicts_billing_entry_id", "sync_conflicts", ["billing_entry_id"])
    op.create_index("ix_sync_conflicts_status", "sync_conflicts", ["status"])
    op.create_index("ix_sync_conflicts_detected_at", "sync_conflicts", ["detected_at"])


def downgrade() -> None:
    op.drop_table("sync_conflicts")
    op.drop_table("sync_history")
    op.drop_index("uq_sync_queue_active_entry_platform", table_name="sync_queue")
    op.drop_table("sync_queue")
    op.drop_table("billing_entries")
