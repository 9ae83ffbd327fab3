"""Multi-platform fan-out over every configured adapter.

Each platform call runs concurrently and in isolation: a failure on one
platform is logged and reported in that platform's slot of the result and
never affects the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

import structlog

from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.bulk import sync_time_entries
from src.billsync.platforms.registry import AdapterRegistry
from src.billsync.platforms.schemas import (
    Client,
    ClientFilters,
    EntryError,
    Matter,
    MatterFilters,
    PlatformSyncResult,
    SyncSummary,
    TimeEntry,
)

if TYPE_CHECKING:
    from src.billsync.billing.schemas import BillingEntryRead

logger = structlog.get_logger(__name__)

SEARCH_LIMIT = 20

T = TypeVar("T")


def calculate_sync_summary(entries: list[TimeEntry]) -> SyncSummary:
    """Total and billable hours plus distinct client and matter ids, in first-seen order."""
    return SyncSummary(
        total_time=sum(e.hours for e in entries),
        billable_time=sum(e.hours for e in entries if e.billable),
        clients=list(dict.fromkeys(e.client_id for e in entries if e.client_id)),
        matters=list(dict.fromkeys(e.matter_id for e in entries if e.matter_id)),
    )


class PlatformOrchestrator:
    """Runs the same operation against every configured platform.

    Args:
        registry: Source of configured adapters.
    """

    def __init__(self, registry: AdapterRegistry) -> None:
        self._registry = registry

    async def _fan_out(
        self,
        operation: str,
        call: Callable[[PlatformAdapter], Awaitable[T]],
        on_error: Callable[[str, Exception], T],
    ) -> dict[str, T]:
        platforms = self._registry.get_configured_platforms()

        async def run(platform: str) -> T:
            try:
                return await call(self._registry.get_adapter(platform))
            except Exception as exc:
                logger.error(
                    "orchestrator.platform_failed",
                    operation=operation,
                    platform=platform,
                    error=str(exc),
                )
                return on_error(platform, exc)

        results = await asyncio.gather(*(run(p) for p in platforms))
        return dict(zip(platforms, results))

    async def _sync_each_platform(
        self,
        operation: str,
        entries_for: Callable[[str], list[TimeEntry]],
    ) -> dict[str, PlatformSyncResult]:
        async def sync(adapter: PlatformAdapter) -> PlatformSyncResult:
            entries = entries_for(adapter.platform)
            result = await sync_time_entries(adapter, entries)
            return PlatformSyncResult(
                success=True,
                processed=len(entries),
                created=result.created,
                updated=result.updated,
                errors=result.errors,
                summary=calculate_sync_summary(entries),
            )

        def failed(platform: str, exc: Exception) -> PlatformSyncResult:
            entries = entries_for(platform)
            return PlatformSyncResult(
                success=False,
                errors=[EntryError(entry=entries[0] if entries else None, error=str(exc))],
            )

        results = await self._fan_out(operation, sync, failed)
        logger.info(
            "orchestrator.sync_complete",
            operation=operation,
            platforms=len(results),
            succeeded=sum(1 for r in results.values() if r.success),
        )
        return results

    async def sync_to_all_platforms(
        self, entries: list[TimeEntry]
    ) -> dict[str, PlatformSyncResult]:
        """Create-or-update ``entries`` on every configured platform."""
        return await self._sync_each_platform("sync_to_all_platforms", lambda platform: entries)

    async def create_billing_entries(
        self, entries: list[BillingEntryRead]
    ) -> dict[str, PlatformSyncResult]:
        """Push stored billing entries to every configured platform.

        Each platform receives the entries carrying its own remote ids, so an
        entry already synced there is updated rather than created again.
        """
        return await self._sync_each_platform(
            "create_billing_entries",
            lambda platform: [entry.to_time_entry(platform) for entry in entries],
        )

    async def search_clients_across_platforms(self, query: str) -> dict[str, list[Client]]:
        filters = ClientFilters(search=query, limit=SEARCH_LIMIT)
        return await self._fan_out(
            "search_clients",
            lambda adapter: adapter.list_clients(filters),
            lambda platform, exc: [],
        )

    async def search_matters_across_platforms(
        self, query: str, client_id: str | None = None
    ) -> dict[str, list[Matter]]:
        filters = MatterFilters(search=query, limit=SEARCH_LIMIT)
        return await self._fan_out(
            "search_matters",
            lambda adapter: adapter.list_matters(client_id, filters),
            lambda platform, exc: [],
        )
