"""Sync dispatcher: durable per-platform queue, retry/backoff and scheduled draining.

Provides:
- SyncService: Billing entry operations plus the queue drain
- SyncScheduler: APScheduler wrapper for periodic drains and daily cleanup
"""

from src.billsync.sync.scheduler import SyncScheduler
from src.billsync.sync.service import SyncService, retry_backoff

__all__ = [
    "SyncScheduler",
    "SyncService",
    "retry_backoff",
]
