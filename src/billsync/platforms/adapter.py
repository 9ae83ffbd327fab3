"""Platform adapter abstract base class -- the interface every practice-management backend implements.

Every platform (Cleo, PracticePanther, MyCase) implements this ABC. The
AdapterRegistry hands out configured adapters by platform id; the sync
dispatcher and PlatformOrchestrator talk to platforms only through it.

Bulk helpers that work over any adapter (bulk create, create-or-update sync)
live in ``src.billsync.platforms.bulk`` as free functions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

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


class PlatformAdapter(ABC):
    """Abstract interface for practice-management platform operations.

    Adapters raise PlatformError subclasses on failure; they never return
    error wrappers.

    Attributes:
        platform: Stable platform identifier (e.g. "cleo").
        display_name: Human-readable platform name.
    """

    platform: str
    display_name: str

    # ── Configuration & Auth ────────────────────────────────────────────────

    @abstractmethod
    def configure(self, config: PlatformConfig) -> None:
        """Store connection settings; must be called before any other operation."""
        ...

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def authenticate(self) -> AuthToken:
        """Verify credentials against the platform and return the active token."""
        ...

    @abstractmethod
    async def refresh_authentication(self) -> AuthToken:
        """Exchange the stored refresh token for a new access token."""
        ...

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Return True if the platform is reachable with the current credentials."""
        ...

    # ── Time Entries ────────────────────────────────────────────────────────

    @abstractmethod
    async def create_time_entry(self, entry: TimeEntry) -> TimeEntry:
        """Create a time entry; the returned entry carries the remote id."""
        ...

    @abstractmethod
    async def update_time_entry(self, entry_id: str, entry: TimeEntry) -> TimeEntry:
        ...

    @abstractmethod
    async def delete_time_entry(self, entry_id: str) -> None:
        ...

    @abstractmethod
    async def get_time_entry(self, entry_id: str) -> TimeEntry | None:
        """Fetch one time entry by remote id. None if the platform has no such entry."""
        ...

    @abstractmethod
    async def list_time_entries(self, filters: TimeEntryFilters | None = None) -> list[TimeEntry]:
        ...

    # ── Clients, Matters, Users ─────────────────────────────────────────────

    @abstractmethod
    async def list_clients(self, filters: ClientFilters | None = None) -> list[Client]:
        ...

    @abstractmethod
    async def get_client(self, client_id: str) -> Client | None:
        ...

    @abstractmethod
    async def create_client(self, client: Client) -> Client:
        ...

    @abstractmethod
    async def list_matters(
        self, client_id: str | None = None, filters: MatterFilters | None = None
    ) -> list[Matter]:
        ...

    @abstractmethod
    async def get_matter(self, matter_id: str) -> Matter | None:
        ...

    @abstractmethod
    async def create_matter(self, matter: Matter) -> Matter:
        ...

    @abstractmethod
    async def list_users(self) -> list[User]:
        ...

    @abstractmethod
    async def current_user(self) -> User:
        ...
