"""MyCase practice-management adapter.

MyCase wraps request and response bodies in a singular resource key
(``{"time_entry": {...}}``), calls matters "cases", expects numeric ids,
and names the draft time-entry state ``unbilled``. Contacts that are
neither companies nor typed as clients are dropped from client listings.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.billsync.config import Settings
from src.billsync.platforms.field_mapping import (
    MYCASE_CLIENT_FILTERS,
    MYCASE_CLIENT_MAP,
    MYCASE_MATTER_FILTERS,
    MYCASE_MATTER_MAP,
    MYCASE_TIME_ENTRY_FILTERS,
    MYCASE_TIME_ENTRY_MAP,
    MYCASE_USER_MAP,
)
from src.billsync.platforms.rest import PlatformProfile, ResourceProfile, RestPlatformAdapter
from src.billsync.platforms.schemas import PlatformConfig


def _mycase_token(config: PlatformConfig) -> str | None:
    return config.access_token or config.api_key


def _mycase_auth_header(config: PlatformConfig) -> str | None:
    if config.access_token:
        return f"Bearer {config.access_token}"
    if config.api_key:
        return f"Token {config.api_key}"
    return None


def _is_client_contact(record: dict[str, Any]) -> bool:
    return bool(record.get("is_company")) or record.get("contact_type") == "Client"


MYCASE_PROFILE = PlatformProfile(
    platform="mycase",
    display_name="MyCase",
    base_url_template="https://{subdomain}.mycase.com/api/v1",
    auth_header=_mycase_auth_header,
    auth_token=_mycase_token,
    time_entries=ResourceProfile(
        path="/time_entries",
        fields=MYCASE_TIME_ENTRY_MAP,
        filters=MYCASE_TIME_ENTRY_FILTERS,
        collection_key="time_entries",
        item_key="time_entry",
        request_key="time_entry",
    ),
    clients=ResourceProfile(
        path="/contacts",
        fields=MYCASE_CLIENT_MAP,
        filters=MYCASE_CLIENT_FILTERS,
        collection_key="contacts",
        item_key="contact",
        request_key="contact",
        create_extras={"is_company": True, "contact_type": "Client"},
    ),
    matters=ResourceProfile(
        path="/cases",
        fields=MYCASE_MATTER_MAP,
        filters=MYCASE_MATTER_FILTERS,
        collection_key="cases",
        item_key="case",
        request_key="case",
    ),
    users=ResourceProfile(
        path="/users",
        fields=MYCASE_USER_MAP,
        collection_key="users",
        item_key="user",
    ),
    current_user_path="/users/me",
    matter_client_param="contact_id",
    id_metadata_key="mycase_id",
    client_filter=_is_client_contact,
)


class MyCaseAdapter(RestPlatformAdapter):
    """Adapter for the MyCase REST API (v1)."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(MYCASE_PROFILE, settings=settings, transport=transport)
