"""PracticePanther practice-management adapter.

PracticePanther uses PascalCase fields, Basic auth from an API key/secret
pair (or a bearer OAuth token), and title-case status vocabularies
(``Draft``/``Approved`` for time entries, ``Open``/``Closed`` for matters).
Contacts double as clients, so client listings filter on ``ContactType``.
"""

from __future__ import annotations

import base64

import httpx

from src.billsync.config import Settings
from src.billsync.platforms.field_mapping import (
    PRACTICE_PANTHER_CLIENT_FILTERS,
    PRACTICE_PANTHER_CLIENT_MAP,
    PRACTICE_PANTHER_MATTER_FILTERS,
    PRACTICE_PANTHER_MATTER_MAP,
    PRACTICE_PANTHER_TIME_ENTRY_FILTERS,
    PRACTICE_PANTHER_TIME_ENTRY_MAP,
    PRACTICE_PANTHER_USER_MAP,
)
from src.billsync.platforms.rest import PlatformProfile, ResourceProfile, RestPlatformAdapter
from src.billsync.platforms.schemas import PlatformConfig


def _practice_panther_token(config: PlatformConfig) -> str | None:
    if config.api_key and config.api_secret:
        return config.api_key
    return config.access_token


def _practice_panther_auth_header(config: PlatformConfig) -> str | None:
    if config.api_key and config.api_secret:
        credentials = base64.b64encode(
            f"{config.api_key}:{config.api_secret}".encode()
        ).decode()
        return f"Basic {credentials}"
    if config.access_token:
        return f"Bearer {config.access_token}"
    return None


PRACTICE_PANTHER_PROFILE = PlatformProfile(
    platform="practice-panther",
    display_name="PracticePanther",
    base_url_template="https://{subdomain}.practicepanther.com/api/v1",
    auth_header=_practice_panther_auth_header,
    auth_token=_practice_panther_token,
    time_entries=ResourceProfile(
        path="/TimeEntries",
        fields=PRACTICE_PANTHER_TIME_ENTRY_MAP,
        filters=PRACTICE_PANTHER_TIME_ENTRY_FILTERS,
    ),
    clients=ResourceProfile(
        path="/Contacts",
        fields=PRACTICE_PANTHER_CLIENT_MAP,
        filters=PRACTICE_PANTHER_CLIENT_FILTERS,
        list_params={"ContactType": "Client"},
        create_extras={"ContactType": "Client"},
    ),
    matters=ResourceProfile(
        path="/Matters",
        fields=PRACTICE_PANTHER_MATTER_MAP,
        filters=PRACTICE_PANTHER_MATTER_FILTERS,
    ),
    users=ResourceProfile(
        path="/Users",
        fields=PRACTICE_PANTHER_USER_MAP,
    ),
    current_user_path="/Users/current",
    matter_client_param="ContactId",
    id_field="Id",
    id_metadata_key="practice_panther_id",
    created_field="CreatedDate",
    updated_field="ModifiedDate",
    user_name_fields=("FirstName", "LastName"),
)


class PracticePantherAdapter(RestPlatformAdapter):
    """Adapter for the PracticePanther REST API (v1)."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(PRACTICE_PANTHER_PROFILE, settings=settings, transport=transport)
