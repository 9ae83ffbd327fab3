"""Adapter registry -- closed lookup table of platform adapters and their configurations.

The table of known platforms is fixed when the registry is built
(``build_default_registry``); configuration is the only runtime mutation.
Callers obtain adapters through ``get_adapter``, which distinguishes an
unknown platform from a known but unconfigured one.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from src.billsync.config import Settings
from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.cleo import CleoAdapter
from src.billsync.platforms.errors import PlatformNotConfiguredError, PlatformNotFoundError
from src.billsync.platforms.mycase import MyCaseAdapter
from src.billsync.platforms.practice_panther import PracticePantherAdapter
from src.billsync.platforms.schemas import PlatformConfig, PlatformHealth

logger = structlog.get_logger(__name__)


class AdapterRegistry:
    """Maps platform ids to adapters and tracks which ones are configured.

    Args:
        adapters: Adapters to register, keyed by their ``platform`` attribute.
    """

    def __init__(self, adapters: list[PlatformAdapter] | None = None) -> None:
        self._adapters: dict[str, PlatformAdapter] = {}
        self._configurations: dict[str, PlatformConfig] = {}
        for adapter in adapters or []:
            self._adapters[adapter.platform] = adapter
            logger.info("registry.adapter_registered", platform=adapter.platform)

    def configure(self, platform: str, config: PlatformConfig) -> None:
        """Configure a known platform. Raises PlatformNotFoundError otherwise."""
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise PlatformNotFoundError(platform)

        if config.platform != platform:
            config = config.model_copy(update={"platform": platform})
        adapter.configure(config)
        self._configurations[platform] = config
        logger.info("registry.platform_configured", platform=platform)

    def get_adapter(self, platform: str) -> PlatformAdapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise PlatformNotFoundError(platform)
        if platform not in self._configurations:
            raise PlatformNotConfiguredError(platform)
        return adapter

    def get_available_platforms(self) -> list[str]:
        return list(self._adapters)

    def get_configured_platforms(self) -> list[str]:
        return list(self._configurations)

    def remove_configuration(self, platform: str) -> None:
        if self._configurations.pop(platform, None) is not None:
            logger.info("registry.configuration_removed", platform=platform)

    def get_configuration(self, platform: str) -> dict[str, Any] | None:
        """Stored configuration without api_key/api_secret/access_token/refresh_token."""
        config = self._configurations.get(platform)
        return config.public_view() if config else None

    async def validate_connection(self, platform: str) -> bool:
        """True if the platform answers with the stored credentials. Never raises."""
        try:
            return await self.get_adapter(platform).validate_connection()
        except Exception as exc:
            logger.error(
                "registry.validate_connection_failed",
                platform=platform,
                error=str(exc),
            )
            return False

    async def validate_all_connections(self) -> dict[str, bool]:
        platforms = self.get_configured_platforms()
        results = await asyncio.gather(*(self.validate_connection(p) for p in platforms))
        return dict(zip(platforms, results))

    async def get_platform_health(self) -> dict[str, PlatformHealth]:
        """Connection status per configured platform."""
        platforms = self.get_configured_platforms()
        results = await asyncio.gather(
            *(self.validate_connection(p) for p in platforms)
        )
        checked_at = datetime.now(timezone.utc)
        return {
            platform: PlatformHealth(
                connected=connected,
                checked_at=checked_at,
                error=None if connected else "Connection validation failed",
            )
            for platform, connected in zip(platforms, results)
        }


def build_default_registry(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AdapterRegistry:
    """Registry holding the Cleo, PracticePanther and MyCase adapters."""
    return AdapterRegistry(
        [
            CleoAdapter(settings=settings, transport=transport),
            PracticePantherAdapter(settings=settings, transport=transport),
            MyCaseAdapter(settings=settings, transport=transport),
        ]
    )
