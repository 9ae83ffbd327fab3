"""Pydantic schemas for the canonical practice-management schema.

Every platform adapter translates to and from these types:
- Records: TimeEntry, Client, Matter, User
- Query filters: TimeEntryFilters, ClientFilters, MatterFilters
- Configuration: PlatformConfig (credentials stripped via SENSITIVE_CONFIG_FIELDS)
- Results: AuthToken, BulkCreateResult, TimeEntrySyncResult, PlatformSyncResult,
  SyncSummary, PlatformHealth
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class TimeEntryStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    BILLED = "billed"


class ClientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class MatterStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CLOSED = "closed"


# ── Canonical Records ───────────────────────────────────────────────────────


class TimeEntry(BaseModel):
    """Platform-neutral time entry.

    ``id`` is the remote id; None means the entry does not exist remotely yet.
    ``metadata`` carries the platform-native id and audit timestamps on read.
    """

    id: str | None = None
    client_id: str
    matter_id: str | None = None
    date: dt.date
    hours: float
    description: str
    billable_rate: float | None = None
    billable: bool = True
    activity_code: str | None = None
    task_code: str | None = None
    user_id: str | None = None
    status: TimeEntryStatus | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Client(BaseModel):
    id: str | None = None
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    status: ClientStatus = ClientStatus.ACTIVE
    default_rate: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Matter(BaseModel):
    id: str | None = None
    client_id: str
    name: str
    description: str | None = None
    status: MatterStatus = MatterStatus.ACTIVE
    open_date: dt.date | None = None
    close_date: dt.date | None = None
    practice_area: str | None = None
    responsible_attorney: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class User(BaseModel):
    id: str
    name: str
    email: str = ""
    role: str = "user"
    default_rate: float | None = None
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Filters ─────────────────────────────────────────────────────────────────


class TimeEntryFilters(BaseModel):
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    client_id: str | None = None
    matter_id: str | None = None
    user_id: str | None = None
    billable: bool | None = None
    status: TimeEntryStatus | None = None
    limit: int = 50
    offset: int = 0


class ClientFilters(BaseModel):
    search: str | None = None
    status: ClientStatus | None = None
    limit: int = 50
    offset: int = 0


class MatterFilters(BaseModel):
    search: str | None = None
    status: MatterStatus | None = None
    practice_area: str | None = None
    responsible_attorney: str | None = None
    limit: int = 50
    offset: int = 0


# ── Configuration ───────────────────────────────────────────────────────────

SENSITIVE_CONFIG_FIELDS = frozenset({"api_key", "api_secret", "access_token", "refresh_token"})


class PlatformConfig(BaseModel):
    """Connection settings for one platform.

    Either ``base_url`` or ``subdomain`` selects the API host; credential
    fields are never returned by AdapterRegistry.get_configuration().
    """

    platform: str
    api_key: str | None = None
    api_secret: str | None = None
    subdomain: str | None = None
    base_url: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: dt.datetime | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def public_view(self) -> dict[str, Any]:
        """Return the configuration without credential fields."""
        return self.model_dump(exclude=set(SENSITIVE_CONFIG_FIELDS))


class AuthToken(BaseModel):
    token: str
    expires_at: dt.datetime


# ── Bulk / Sync Results ─────────────────────────────────────────────────────


class EntryError(BaseModel):
    """A single time entry that could not be written, with the reason."""

    entry: TimeEntry | None = None
    error: str


class BulkCreateResult(BaseModel):
    created: list[TimeEntry] = Field(default_factory=list)
    errors: list[EntryError] = Field(default_factory=list)


class TimeEntrySyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    errors: list[EntryError] = Field(default_factory=list)


class SyncSummary(BaseModel):
    total_time: float = 0.0
    billable_time: float = 0.0
    clients: list[str] = Field(default_factory=list)
    matters: list[str] = Field(default_factory=list)


class PlatformSyncResult(BaseModel):
    """Outcome of syncing one batch of entries to one platform."""

    success: bool
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: list[EntryError] = Field(default_factory=list)
    summary: SyncSummary = Field(default_factory=SyncSummary)


class PlatformHealth(BaseModel):
    connected: bool
    checked_at: dt.datetime
    error: str | None = None
