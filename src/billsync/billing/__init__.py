"""Billing store -- entries, sync queue, sync history and conflicts.

Provides:
- SQLAlchemy models for the four persisted tables
- Pydantic schemas shared by the sync and conflict layers
- BillingRepository: async persistence with the session_factory pattern
- Domain errors: BillingEntryError, BillingEntryNotFoundError,
  ConflictNotFoundError, InvalidConflictTransitionError
"""

from src.billsync.billing.errors import (
    BillingEntryError,
    BillingEntryNotFoundError,
    ConflictNotFoundError,
    InvalidConflictTransitionError,
)
from src.billsync.billing.repository import BillingRepository

__all__ = [
    "BillingRepository",
    "BillingEntryError",
    "BillingEntryNotFoundError",
    "ConflictNotFoundError",
    "InvalidConflictTransitionError",
]
