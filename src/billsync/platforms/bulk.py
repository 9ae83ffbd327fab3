"""Bulk time-entry operations shared by every platform adapter.

Both helpers run sequentially against one adapter and tolerate partial
failure: a failing entry is recorded in ``errors`` and the rest continue.
"""

from __future__ import annotations

import structlog

from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.schemas import (
    BulkCreateResult,
    EntryError,
    TimeEntry,
    TimeEntrySyncResult,
)

logger = structlog.get_logger(__name__)


async def bulk_create_time_entries(
    adapter: PlatformAdapter, entries: list[TimeEntry]
) -> BulkCreateResult:
    """Create each entry in order, collecting created entries and per-entry errors."""
    result = BulkCreateResult()

    for entry in entries:
        try:
            created = await adapter.create_time_entry(entry)
            result.created.append(created)
        except Exception as exc:
            result.errors.append(EntryError(entry=entry, error=str(exc)))
            logger.warning(
                "platform.bulk_create_entry_failed",
                platform=adapter.platform,
                client_id=entry.client_id,
                error=str(exc),
            )

    logger.info(
        "platform.bulk_create_complete",
        platform=adapter.platform,
        created=len(result.created),
        errors=len(result.errors),
    )
    return result


async def sync_time_entries(
    adapter: PlatformAdapter, entries: list[TimeEntry]
) -> TimeEntrySyncResult:
    """Create-or-update by presence of ``entry.id``."""
    result = TimeEntrySyncResult()

    for entry in entries:
        try:
            if entry.id:
                await adapter.update_time_entry(entry.id, entry)
                result.updated += 1
            else:
                await adapter.create_time_entry(entry)
                result.created += 1
        except Exception as exc:
            result.errors.append(EntryError(entry=entry, error=str(exc)))
            logger.warning(
                "platform.sync_entry_failed",
                platform=adapter.platform,
                entry_id=entry.id,
                error=str(exc),
            )

    logger.info(
        "platform.sync_entries_complete",
        platform=adapter.platform,
        created=result.created,
        updated=result.updated,
        errors=len(result.errors),
    )
    return result
