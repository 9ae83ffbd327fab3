"""Practice-management platform layer -- pluggable adapters for time-entry billing platforms.

Provides the abstract PlatformAdapter interface with concrete REST adapters:
- CleoAdapter, PracticePantherAdapter, MyCaseAdapter (profile-driven RestPlatformAdapter)
- AdapterRegistry: Closed lookup table of adapters and their configurations
- PlatformOrchestrator: Concurrent fan-out to every configured platform
- bulk_create_time_entries / sync_time_entries: Partial-failure tolerant bulk helpers
"""

from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.bulk import bulk_create_time_entries, sync_time_entries
from src.billsync.platforms.cleo import CleoAdapter
from src.billsync.platforms.errors import ErrorCode, PlatformError
from src.billsync.platforms.mycase import MyCaseAdapter
from src.billsync.platforms.orchestrator import PlatformOrchestrator
from src.billsync.platforms.practice_panther import PracticePantherAdapter
from src.billsync.platforms.registry import AdapterRegistry, build_default_registry
from src.billsync.platforms.rest import PlatformProfile, RestPlatformAdapter

__all__ = [
    "PlatformAdapter",
    "RestPlatformAdapter",
    "PlatformProfile",
    "CleoAdapter",
    "PracticePantherAdapter",
    "MyCaseAdapter",
    "AdapterRegistry",
    "build_default_registry",
    "PlatformOrchestrator",
    "ErrorCode",
    "PlatformError",
    "bulk_create_time_entries",
    "sync_time_entries",
]
