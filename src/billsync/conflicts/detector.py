"""Conflict detection between a local billing entry and a fetched remote time entry.

Compares the mapped field pairs with type-aware equality and scans the store
for likely duplicates (same platform, client and work date, with near-equal
descriptions). Every detected conflict is persisted before it is returned.
"""

from __future__ import annotations

import datetime as dt
from typing import Any

import structlog

from src.billsync.billing.repository import BillingRepository
from src.billsync.billing.schemas import BillingEntryRead, ConflictRecord, ConflictType
from src.billsync.platforms.schemas import TimeEntry

logger = structlog.get_logger(__name__)

# Local billing entry field -> canonical remote time entry field
FIELD_PAIRS: dict[str, str] = {
    "time_spent": "hours",
    "description": "description",
    "client": "client_id",
    "matter": "matter_id",
}

NUMERIC_TOLERANCE = 0.01
DUPLICATE_SIMILARITY_THRESHOLD = 0.8
DUPLICATE_FIELD = "duplicate_entry"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_conflict(local: Any, remote: Any) -> bool:
    """True if two field values should be treated as different.

    Both missing are equal; one missing is a conflict. Numbers within 0.01
    are equal. Strings compare case-insensitively after trimming. Dates and
    datetimes compare by instant.
    """
    if local is None and remote is None:
        return False
    if local is None or remote is None:
        return True

    if _is_number(local) and _is_number(remote):
        return round(abs(local - remote), 9) > NUMERIC_TOLERANCE

    if isinstance(local, str) and isinstance(remote, str):
        return local.strip().lower() != remote.strip().lower()

    if isinstance(local, dt.date) and isinstance(remote, dt.date):
        return local != remote

    return local != remote


def description_similarity(first: str, second: str) -> float:
    """Jaccard similarity of lower-cased whitespace-split token sets."""
    tokens_a = set(first.lower().split())
    tokens_b = set(second.lower().split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


class ConflictDetector:
    """Finds field divergences and suspected duplicates for one entry on one platform.

    Args:
        repository: Store used for the duplicate scan and for persisting conflicts.
    """

    def __init__(self, repository: BillingRepository) -> None:
        self._repository = repository

    async def find_duplicates(
        self, entry: BillingEntryRead, platform: str
    ) -> list[BillingEntryRead]:
        """Synced entries on the same platform/client/date with a near-identical description."""
        candidates = await self._repository.find_duplicate_candidates(entry, platform)
        return [
            candidate
            for candidate in candidates
            if description_similarity(candidate.description, entry.description)
            > DUPLICATE_SIMILARITY_THRESHOLD
        ]

    async def detect_conflicts(
        self,
        local_entry: BillingEntryRead,
        remote_entry: TimeEntry,
        platform: str,
    ) -> list[ConflictRecord]:
        """Detect, persist and return conflicts. Returns [] if detection itself fails."""
        try:
            conflicts: list[ConflictRecord] = []

            for local_field, remote_field in FIELD_PAIRS.items():
                local_value = getattr(local_entry, local_field)
                remote_value = getattr(remote_entry, remote_field)
                if values_conflict(local_value, remote_value):
                    conflicts.append(
                        ConflictRecord(
                            billing_entry_id=local_entry.id,
                            platform=platform,
                            field=local_field,
                            source_value=local_value,
                            target_value=remote_value,
                            conflict_type=ConflictType.DATA_MISMATCH,
                        )
                    )

            duplicates = await self.find_duplicates(local_entry, platform)
            if duplicates:
                conflicts.append(
                    ConflictRecord(
                        billing_entry_id=local_entry.id,
                        platform=platform,
                        field=DUPLICATE_FIELD,
                        source_value=local_entry.model_dump(mode="json"),
                        target_value=[d.model_dump(mode="json") for d in duplicates],
                        conflict_type=ConflictType.DUPLICATE_ENTRY,
                    )
                )

            if conflicts:
                await self._repository.add_conflicts(conflicts)
                logger.warning(
                    "conflicts.detected",
                    billing_entry_id=local_entry.id,
                    platform=platform,
                    count=len(conflicts),
                    fields=[c.field for c in conflicts],
                )
            return conflicts

        except Exception as exc:
            logger.error(
                "conflicts.detection_failed",
                billing_entry_id=local_entry.id,
                platform=platform,
                error=str(exc),
            )
            return []

    async def report_missing_remote(
        self, local_entry: BillingEntryRead, platform: str, remote_id: str
    ) -> list[ConflictRecord]:
        """Record that the remote record behind ``remote_id`` no longer exists."""
        conflict = ConflictRecord(
            billing_entry_id=local_entry.id,
            platform=platform,
            field="external_id",
            source_value=remote_id,
            target_value=None,
            conflict_type=ConflictType.MISSING_REFERENCE,
        )
        try:
            await self._repository.add_conflicts([conflict])
        except Exception as exc:
            logger.error(
                "conflicts.detection_failed",
                billing_entry_id=local_entry.id,
                platform=platform,
                error=str(exc),
            )
            return []

        logger.warning(
            "conflicts.remote_missing",
            billing_entry_id=local_entry.id,
            platform=platform,
            external_id=remote_id,
        )
        return [conflict]
