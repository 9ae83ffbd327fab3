"""Domain errors raised by the billing store and the services built on it."""

from __future__ import annotations


class BillingEntryError(Exception):
    """A billing entry could not be persisted or read.

    ``cause`` holds the underlying exception when the store failed.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class BillingEntryNotFoundError(BillingEntryError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Billing entry not found: {entry_id}")
        self.entry_id = entry_id


class ConflictNotFoundError(Exception):
    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict not found: {conflict_id}")
        self.conflict_id = conflict_id


class InvalidConflictTransitionError(Exception):
    """Only pending conflicts can be resolved or ignored."""

    def __init__(self, conflict_id: str, status: str) -> None:
        super().__init__(f"Conflict {conflict_id} is already {status}")
        self.conflict_id = conflict_id
        self.status = status
