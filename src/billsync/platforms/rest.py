"""Profile-driven REST adapter shared by every practice-management platform.

Cleo, PracticePanther and MyCase all expose the same resource set over JSON
REST and differ only in host, auth header, paths, envelopes and field names.
RestPlatformAdapter implements PlatformAdapter once; each platform module
supplies a PlatformProfile describing those differences.

Validation runs before any write and raises ValidationError without touching
the network.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from src.billsync.config import Settings, get_settings
from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.errors import (
    AdapterNotConfiguredError,
    ApiError,
    AuthenticationError,
    PlatformError,
    ValidationError,
)
from src.billsync.platforms.field_mapping import (
    FieldMap,
    from_platform_fields,
    to_platform_fields,
)
from src.billsync.platforms.http import PlatformHttpClient
from src.billsync.platforms.schemas import (
    AuthToken,
    Client,
    ClientFilters,
    Matter,
    MatterFilters,
    PlatformConfig,
    TimeEntry,
    TimeEntryFilters,
    User,
)

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100
API_KEY_LIFETIME = dt.timedelta(days=365)


# ── Profiles ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResourceProfile:
    """Wire layout of one resource collection.

    Attributes:
        path: Collection path, e.g. ``/time_entries``.
        fields: Canonical-to-native record field map.
        filters: Canonical-to-native query parameter map for list calls.
        collection_key: Envelope key wrapping list responses, if any.
        item_key: Envelope key wrapping single-record responses, if any.
        request_key: Key the request body is wrapped in, if any.
        list_params: Fixed query parameters added to every list call.
        create_extras: Fixed fields added to every create payload.
    """

    path: str
    fields: FieldMap
    filters: FieldMap = field(default_factory=dict)
    collection_key: str | None = None
    item_key: str | None = None
    request_key: str | None = None
    list_params: dict[str, Any] = field(default_factory=dict)
    create_extras: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PlatformProfile:
    """Everything that distinguishes one platform's REST API from another."""

    platform: str
    display_name: str
    base_url_template: str
    auth_header: Callable[[PlatformConfig], str | None]
    auth_token: Callable[[PlatformConfig], str | None]
    time_entries: ResourceProfile
    clients: ResourceProfile
    matters: ResourceProfile
    users: ResourceProfile
    current_user_path: str
    matter_client_param: str
    id_field: str = "id"
    id_metadata_key: str = "native_id"
    created_field: str = "created_at"
    updated_field: str = "updated_at"
    user_name_fields: tuple[str, str] = ("first_name", "last_name")
    client_filter: Callable[[dict[str, Any]], bool] | None = None


# ── Validation ─────────────────────────────────────────────────────────────


def validate_time_entry(entry: TimeEntry) -> str | None:
    """Return the first validation failure for a time entry, or None."""
    if not entry.client_id:
        return "Client ID is required"
    if not entry.date:
        return "Date is required"
    if entry.hours <= 0:
        return "Hours must be greater than 0"
    if not entry.description or not entry.description.strip():
        return "Description is required"
    return None


def validate_client(client: Client) -> str | None:
    if not client.name or not client.name.strip():
        return "Client name is required"
    return None


def validate_matter(matter: Matter) -> str | None:
    if not matter.client_id:
        return "Client ID is required"
    if not matter.name or not matter.name.strip():
        return "Matter name is required"
    if not matter.open_date:
        return "Open date is required"
    return None


def pagination_params(limit: int = 50, offset: int = 0) -> dict[str, int]:
    """Page parameters with ``limit`` capped at 100 and ``offset`` floored at 0."""
    return {"limit": min(limit, MAX_PAGE_SIZE), "offset": max(offset, 0)}


# ── Envelope Helpers ───────────────────────────────────────────────────────


def _unwrap_item(data: Any, key: str | None) -> dict[str, Any]:
    if isinstance(data, dict) and key and isinstance(data.get(key), dict):
        return data[key]
    if isinstance(data, dict):
        return data
    raise TypeError(f"Expected a JSON object, got {type(data).__name__}")


def _unwrap_list(data: Any, key: str | None) -> list[dict[str, Any]]:
    if isinstance(data, dict) and key and key in data:
        data = data[key]
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


# ── Adapter ────────────────────────────────────────────────────────────────


class RestPlatformAdapter(PlatformAdapter):
    """PlatformAdapter over a JSON REST API described by a PlatformProfile.

    Args:
        profile: Platform wire description.
        settings: Source of HTTP timeout and rate-limit tuning.
        transport: Optional httpx transport passed to the HTTP client.
    """

    def __init__(
        self,
        profile: PlatformProfile,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._profile = profile
        self._settings = settings or get_settings()
        self._transport = transport
        self._config: PlatformConfig | None = None
        self._client: PlatformHttpClient | None = None
        self.platform = profile.platform
        self.display_name = profile.display_name

    # ── Configuration & Auth ────────────────────────────────────────────────

    def configure(self, config: PlatformConfig) -> None:
        if config.base_url:
            base_url = config.base_url
        elif config.subdomain:
            base_url = self._profile.base_url_template.format(subdomain=config.subdomain)
        else:
            raise ValidationError(self.platform, "config", "base_url or subdomain is required")

        self._config = config
        self._client = PlatformHttpClient(
            platform=self.platform,
            base_url=base_url,
            headers={"User-Agent": self._settings.PLATFORM_USER_AGENT},
            timeout=self._settings.PLATFORM_HTTP_TIMEOUT,
            rate_limit_retries=self._settings.PLATFORM_RATE_LIMIT_RETRIES,
            rate_limit_max_wait=self._settings.PLATFORM_RATE_LIMIT_MAX_WAIT,
            transport=self._transport,
        )
        self._apply_auth_header()
        logger.info("platform.configured", platform=self.platform, base_url=base_url)

    @property
    def is_configured(self) -> bool:
        return self._config is not None and self._client is not None

    @property
    def _http(self) -> PlatformHttpClient:
        if self._client is None:
            raise AdapterNotConfiguredError(self.platform)
        return self._client

    def _apply_auth_header(self) -> None:
        header = self._profile.auth_header(self._config)
        if header:
            self._http.set_auth_header(header)

    async def authenticate(self) -> AuthToken:
        """Resolve the credential in use; API keys and stored tokens need no login call."""
        if self._config is None:
            raise AdapterNotConfiguredError(self.platform)

        token = self._profile.auth_token(self._config)
        if not token:
            raise AuthenticationError(self.platform, "No API credentials provided", None)

        expires_at = self._config.expires_at or (
            dt.datetime.now(dt.timezone.utc) + API_KEY_LIFETIME
        )
        return AuthToken(token=token, expires_at=expires_at)

    async def refresh_authentication(self) -> AuthToken:
        """Re-resolve credentials and re-apply the auth header."""
        token = await self.authenticate()
        self._apply_auth_header()
        return token

    async def validate_connection(self) -> bool:
        try:
            await self.current_user()
        except PlatformError as exc:
            logger.warning(
                "platform.connection_invalid",
                platform=self.platform,
                code=exc.code.value,
                error=exc.message,
            )
            return False
        return True

    # ── Record Mapping ──────────────────────────────────────────────────────

    def _metadata(self, record: dict[str, Any]) -> dict[str, Any]:
        return {
            self._profile.id_metadata_key: record.get(self._profile.id_field),
            "created_at": record.get(self._profile.created_field),
            "updated_at": record.get(self._profile.updated_field),
        }

    def _native_id(self, record: dict[str, Any]) -> str | None:
        value = record.get(self._profile.id_field)
        return str(value) if value is not None else None

    def _to_time_entry(self, record: dict[str, Any]) -> TimeEntry:
        values = from_platform_fields(record, self._profile.time_entries.fields)
        values.setdefault("client_id", "")
        values.setdefault("description", "")
        values.setdefault("hours", 0.0)
        values.setdefault("date", dt.date.today())
        return TimeEntry(id=self._native_id(record), metadata=self._metadata(record), **values)

    def _to_client(self, record: dict[str, Any]) -> Client:
        values = from_platform_fields(record, self._profile.clients.fields)
        values.setdefault("name", "")
        return Client(id=self._native_id(record), metadata=self._metadata(record), **values)

    def _to_matter(self, record: dict[str, Any]) -> Matter:
        values = from_platform_fields(record, self._profile.matters.fields)
        values.setdefault("client_id", "")
        values.setdefault("name", "")
        return Matter(id=self._native_id(record), metadata=self._metadata(record), **values)

    def _to_user(self, record: dict[str, Any]) -> User:
        values = from_platform_fields(record, self._profile.users.fields)
        first_key, last_key = self._profile.user_name_fields
        name = f"{record.get(first_key) or ''} {record.get(last_key) or ''}".strip()
        metadata = self._metadata(record)
        metadata.update(first_name=record.get(first_key), last_name=record.get(last_key))
        return User(
            id=self._native_id(record) or "",
            name=name,
            metadata=metadata,
            **values,
        )

    @staticmethod
    def _body(resource: ResourceProfile, payload: dict[str, Any]) -> dict[str, Any]:
        return {resource.request_key: payload} if resource.request_key else payload

    def _list_params(
        self, resource: ResourceProfile, filters: Any, **extra: Any
    ) -> dict[str, Any]:
        params: dict[str, Any] = pagination_params(filters.limit, filters.offset)
        params.update(resource.list_params)
        params.update(
            to_platform_fields(
                filters.model_dump(mode="json", exclude={"limit", "offset"}),
                resource.filters,
            )
        )
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    async def _get_or_none(self, path: str) -> Any:
        try:
            return await self._http.get(path)
        except ApiError as exc:
            if exc.status_code == 404:
                return None
            raise

    def _require_body(self, data: Any, operation: str) -> Any:
        if data is None:
            raise ApiError(self.platform, f"Empty response from {operation}")
        return data

    # ── Time Entries ────────────────────────────────────────────────────────

    async def create_time_entry(self, entry: TimeEntry) -> TimeEntry:
        problem = validate_time_entry(entry)
        if problem:
            raise ValidationError(self.platform, "time_entry", problem)

        resource = self._profile.time_entries
        payload = to_platform_fields(entry.model_dump(mode="json"), resource.fields)
        data = await self._http.post(resource.path, json=self._body(resource, payload))
        created = self._to_time_entry(
            _unwrap_item(self._require_body(data, "create_time_entry"), resource.item_key)
        )
        logger.info("platform.time_entry_created", platform=self.platform, remote_id=created.id)
        return created

    async def update_time_entry(self, entry_id: str, entry: TimeEntry) -> TimeEntry:
        resource = self._profile.time_entries
        payload = to_platform_fields(entry.model_dump(mode="json"), resource.fields)
        data = await self._http.put(
            f"{resource.path}/{entry_id}", json=self._body(resource, payload)
        )
        updated = self._to_time_entry(
            _unwrap_item(self._require_body(data, "update_time_entry"), resource.item_key)
        )
        logger.info("platform.time_entry_updated", platform=self.platform, remote_id=entry_id)
        return updated

    async def delete_time_entry(self, entry_id: str) -> None:
        await self._http.delete(f"{self._profile.time_entries.path}/{entry_id}")
        logger.info("platform.time_entry_deleted", platform=self.platform, remote_id=entry_id)

    async def get_time_entry(self, entry_id: str) -> TimeEntry | None:
        resource = self._profile.time_entries
        data = await self._get_or_none(f"{resource.path}/{entry_id}")
        if data is None:
            return None
        return self._to_time_entry(_unwrap_item(data, resource.item_key))

    async def list_time_entries(self, filters: TimeEntryFilters | None = None) -> list[TimeEntry]:
        resource = self._profile.time_entries
        params = self._list_params(resource, filters or TimeEntryFilters())
        data = await self._http.get(resource.path, params=params)
        return [self._to_time_entry(r) for r in _unwrap_list(data, resource.collection_key)]

    # ── Clients ─────────────────────────────────────────────────────────────

    async def list_clients(self, filters: ClientFilters | None = None) -> list[Client]:
        resource = self._profile.clients
        params = self._list_params(resource, filters or ClientFilters())
        data = await self._http.get(resource.path, params=params)
        records = _unwrap_list(data, resource.collection_key)
        if self._profile.client_filter is not None:
            records = [r for r in records if self._profile.client_filter(r)]
        return [self._to_client(r) for r in records]

    async def get_client(self, client_id: str) -> Client | None:
        resource = self._profile.clients
        data = await self._get_or_none(f"{resource.path}/{client_id}")
        if data is None:
            return None
        return self._to_client(_unwrap_item(data, resource.item_key))

    async def create_client(self, client: Client) -> Client:
        problem = validate_client(client)
        if problem:
            raise ValidationError(self.platform, "client", problem)

        resource = self._profile.clients
        payload = to_platform_fields(client.model_dump(mode="json"), resource.fields)
        payload.update(resource.create_extras)
        data = await self._http.post(resource.path, json=self._body(resource, payload))
        return self._to_client(
            _unwrap_item(self._require_body(data, "create_client"), resource.item_key)
        )

    # ── Matters ─────────────────────────────────────────────────────────────

    async def list_matters(
        self, client_id: str | None = None, filters: MatterFilters | None = None
    ) -> list[Matter]:
        resource = self._profile.matters
        params = self._list_params(
            resource,
            filters or MatterFilters(),
            **{self._profile.matter_client_param: client_id},
        )
        data = await self._http.get(resource.path, params=params)
        return [self._to_matter(r) for r in _unwrap_list(data, resource.collection_key)]

    async def get_matter(self, matter_id: str) -> Matter | None:
        resource = self._profile.matters
        data = await self._get_or_none(f"{resource.path}/{matter_id}")
        if data is None:
            return None
        return self._to_matter(_unwrap_item(data, resource.item_key))

    async def create_matter(self, matter: Matter) -> Matter:
        problem = validate_matter(matter)
        if problem:
            raise ValidationError(self.platform, "matter", problem)

        resource = self._profile.matters
        payload = to_platform_fields(matter.model_dump(mode="json"), resource.fields)
        payload.update(resource.create_extras)
        data = await self._http.post(resource.path, json=self._body(resource, payload))
        return self._to_matter(
            _unwrap_item(self._require_body(data, "create_matter"), resource.item_key)
        )

    # ── Users ───────────────────────────────────────────────────────────────

    async def list_users(self) -> list[User]:
        resource = self._profile.users
        data = await self._http.get(resource.path)
        return [self._to_user(r) for r in _unwrap_list(data, resource.collection_key)]

    async def current_user(self) -> User:
        data = await self._http.get(self._profile.current_user_path)
        return self._to_user(
            _unwrap_item(self._require_body(data, "current_user"), self._profile.users.item_key)
        )
