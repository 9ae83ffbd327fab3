"""Cleo practice-management adapter.

Cleo authenticates with a bearer API key (or OAuth access token) and uses
snake_case fields with contacts standing in for clients. Records come back
unwrapped; lists are wrapped in a key named after the collection.
"""

from __future__ import annotations

import httpx

from src.billsync.config import Settings
from src.billsync.platforms.field_mapping import (
    CLEO_CLIENT_FILTERS,
    CLEO_CLIENT_MAP,
    CLEO_MATTER_FILTERS,
    CLEO_MATTER_MAP,
    CLEO_TIME_ENTRY_FILTERS,
    CLEO_TIME_ENTRY_MAP,
    CLEO_USER_MAP,
)
from src.billsync.platforms.rest import PlatformProfile, ResourceProfile, RestPlatformAdapter
from src.billsync.platforms.schemas import PlatformConfig


def _cleo_token(config: PlatformConfig) -> str | None:
    return config.api_key or config.access_token


def _cleo_auth_header(config: PlatformConfig) -> str | None:
    token = _cleo_token(config)
    return f"Bearer {token}" if token else None


CLEO_PROFILE = PlatformProfile(
    platform="cleo",
    display_name="Cleo",
    base_url_template="https://{subdomain}.gocleo.com/api/v1",
    auth_header=_cleo_auth_header,
    auth_token=_cleo_token,
    time_entries=ResourceProfile(
        path="/time_entries",
        fields=CLEO_TIME_ENTRY_MAP,
        filters=CLEO_TIME_ENTRY_FILTERS,
        collection_key="time_entries",
    ),
    clients=ResourceProfile(
        path="/contacts",
        fields=CLEO_CLIENT_MAP,
        filters=CLEO_CLIENT_FILTERS,
        collection_key="contacts",
    ),
    matters=ResourceProfile(
        path="/matters",
        fields=CLEO_MATTER_MAP,
        filters=CLEO_MATTER_FILTERS,
        collection_key="matters",
    ),
    users=ResourceProfile(
        path="/users",
        fields=CLEO_USER_MAP,
        collection_key="users",
    ),
    current_user_path="/user",
    matter_client_param="contact_id",
    id_metadata_key="cleo_id",
)


class CleoAdapter(RestPlatformAdapter):
    """Adapter for the Cleo REST API (v1)."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(CLEO_PROFILE, settings=settings, transport=transport)
