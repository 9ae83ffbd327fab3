"""Process wiring for the sync core.

Builds the repository, adapter registry and SyncService from Settings and
ties their startup/shutdown to an async context:

    async with lifespan(platform_configs=[...]) as service:
        await service.create_billing_entry(data, ["cleo"])
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog

from src.billsync.billing.repository import BillingRepository
from src.billsync.billing.schemas import SyncConfig
from src.billsync.config import Settings, get_settings
from src.billsync.core.database import close_db, get_session, init_db
from src.billsync.core.logging import configure_structlog
from src.billsync.platforms.registry import build_default_registry
from src.billsync.platforms.schemas import PlatformConfig
from src.billsync.sync.service import SyncService


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    platform_configs: list[PlatformConfig] | None = None,
) -> AsyncGenerator[SyncService, None]:
    """Init logging and DB, configure platforms, start the service; stop and dispose on exit."""
    settings = settings or get_settings()
    configure_structlog(settings)
    log = structlog.get_logger(__name__)
    await init_db()

    registry = build_default_registry(settings)
    for config in platform_configs or []:
        try:
            registry.configure(config.platform, config)
        except Exception:
            log.warning("startup.platform_config_failed", platform=config.platform, exc_info=True)

    service = SyncService(
        BillingRepository(get_session),
        registry,
        config=SyncConfig.from_settings(settings),
    )
    started = service.start()
    log.info(
        "startup.complete",
        environment=settings.ENVIRONMENT.value,
        platforms=registry.get_configured_platforms(),
        real_time_sync=started,
    )

    try:
        yield service
    finally:
        service.stop()
        await close_db()
        log.info("shutdown.complete")
