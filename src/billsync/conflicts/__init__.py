"""Conflict detection and resolution between local billing entries and remote time entries."""

from src.billsync.conflicts.detector import (
    ConflictDetector,
    description_similarity,
    values_conflict,
)
from src.billsync.conflicts.resolver import (
    DEFAULT_RESOLUTION_RULES,
    ConflictResolver,
    select_rule,
)

__all__ = [
    "ConflictDetector",
    "ConflictResolver",
    "DEFAULT_RESOLUTION_RULES",
    "description_similarity",
    "select_rule",
    "values_conflict",
]
