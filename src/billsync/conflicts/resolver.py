"""Rule-based conflict resolution with a manual-review escape hatch.

Rule selection: an exact field match beats the ``*`` wildcard; among
matches the lowest ``priority`` wins. Strategies:

- source_wins: keep the local value
- target_wins: take the remote value
- latest_wins: keep the local value (remote modification times are not compared)
- merge: token union for descriptions, max for time spent, local value otherwise
- manual_review: keep the local value provisionally, leave the conflict pending
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from src.billsync.billing.errors import (
    BillingEntryNotFoundError,
    ConflictNotFoundError,
    InvalidConflictTransitionError,
)
from src.billsync.billing.repository import BillingRepository
from src.billsync.billing.schemas import (
    ConflictFilter,
    ConflictRecord,
    ConflictResolutionResult,
    ConflictStats,
    ConflictStatus,
    EntryResolution,
    ResolutionRule,
    ResolutionStrategy,
)

logger = structlog.get_logger(__name__)


DEFAULT_RESOLUTION_RULES: list[ResolutionRule] = [
    ResolutionRule(field="id", strategy=ResolutionStrategy.SOURCE_WINS, priority=0),
    ResolutionRule(field="external_id", strategy=ResolutionStrategy.TARGET_WINS, priority=0),
    ResolutionRule(field="time_spent", strategy=ResolutionStrategy.LATEST_WINS, priority=1),
    ResolutionRule(field="description", strategy=ResolutionStrategy.LATEST_WINS, priority=1),
    ResolutionRule(field="hourly_rate", strategy=ResolutionStrategy.SOURCE_WINS, priority=2),
    ResolutionRule(field="client", strategy=ResolutionStrategy.MANUAL_REVIEW, priority=3),
    ResolutionRule(field="matter", strategy=ResolutionStrategy.MANUAL_REVIEW, priority=3),
]

NO_RULE_STRATEGY = "no_rule_found"
ERROR_STRATEGY = "error"


def select_rule(field: str, rules: list[ResolutionRule]) -> ResolutionRule | None:
    """Best rule for ``field``: exact matches first, then ``*``; lowest priority wins."""
    exact = [rule for rule in rules if rule.field == field]
    candidates = exact or [rule for rule in rules if rule.field == "*"]
    if not candidates:
        return None
    return min(candidates, key=lambda rule: rule.priority)


def merge_values(field: str, source_value: Any, target_value: Any) -> Any:
    """Field-specific merge of a local and a remote value."""
    if field == "description" and isinstance(source_value, str) and isinstance(target_value, str):
        tokens = source_value.lower().split() + target_value.lower().split()
        return " ".join(dict.fromkeys(tokens))

    numeric = (int, float)
    if (
        field == "time_spent"
        and isinstance(source_value, numeric)
        and isinstance(target_value, numeric)
    ):
        return max(source_value, target_value)

    return source_value


def apply_strategy(strategy: ResolutionStrategy, conflict: ConflictRecord) -> tuple[Any, bool]:
    """Return ``(final_value, requires_manual_review)`` for one strategy."""
    if strategy == ResolutionStrategy.SOURCE_WINS:
        return conflict.source_value, False
    if strategy == ResolutionStrategy.TARGET_WINS:
        return conflict.target_value, False
    if strategy == ResolutionStrategy.LATEST_WINS:
        return conflict.source_value, False
    if strategy == ResolutionStrategy.MERGE:
        return merge_values(conflict.field, conflict.source_value, conflict.target_value), False
    return conflict.source_value, True


class ConflictResolver:
    """Resolves persisted conflicts and reports on them.

    Args:
        repository: Store holding conflicts and billing entries.
        rules: Default rule table; callers may still pass overrides per call.
    """

    def __init__(
        self,
        repository: BillingRepository,
        rules: list[ResolutionRule] | None = None,
    ) -> None:
        self._repository = repository
        self._rules = rules if rules is not None else DEFAULT_RESOLUTION_RULES

    async def resolve_conflict(
        self,
        conflict: ConflictRecord,
        rules: list[ResolutionRule] | None = None,
    ) -> ConflictResolutionResult:
        """Apply the best matching rule and record the outcome on the conflict.

        Never raises: a store failure yields an unresolved result with
        strategy ``"error"``.
        """
        rule = select_rule(conflict.field, rules if rules is not None else self._rules)
        if rule is None:
            logger.info(
                "conflicts.no_rule_found",
                conflict_id=conflict.id,
                field=conflict.field,
            )
            return ConflictResolutionResult(
                resolved=False,
                strategy=NO_RULE_STRATEGY,
                final_value=conflict.source_value,
                requires_manual_review=True,
                conflict_id=conflict.id,
            )

        final_value, requires_manual_review = apply_strategy(rule.strategy, conflict)

        try:
            if requires_manual_review:
                await self._repository.record_conflict_strategy(
                    conflict.id, rule.strategy.value
                )
            else:
                transitioned = await self._repository.transition_conflict(
                    conflict.id,
                    ConflictStatus.RESOLVED,
                    resolution_strategy=rule.strategy.value,
                    resolved_value=final_value,
                )
                if not transitioned:
                    stored = await self._repository.get_conflict(conflict.id)
                    logger.warning(
                        "conflicts.not_pending",
                        conflict_id=conflict.id,
                        strategy=rule.strategy.value,
                        status=stored.status.value if stored else None,
                    )
                    return self._stored_outcome(conflict, stored)
        except Exception as exc:
            logger.error(
                "conflicts.resolve_failed",
                conflict_id=conflict.id,
                error=str(exc),
            )
            return ConflictResolutionResult(
                resolved=False,
                strategy=ERROR_STRATEGY,
                final_value=conflict.source_value,
                requires_manual_review=True,
                conflict_id=conflict.id,
            )

        logger.info(
            "conflicts.resolved" if not requires_manual_review else "conflicts.manual_review",
            conflict_id=conflict.id,
            field=conflict.field,
            strategy=rule.strategy.value,
        )
        return ConflictResolutionResult(
            resolved=not requires_manual_review,
            strategy=rule.strategy.value,
            final_value=final_value,
            requires_manual_review=requires_manual_review,
            conflict_id=conflict.id,
        )

    @staticmethod
    def _stored_outcome(
        conflict: ConflictRecord, stored: ConflictRecord | None
    ) -> ConflictResolutionResult:
        """Result mirroring a conflict that was already closed before this attempt."""
        if stored is None:
            return ConflictResolutionResult(
                resolved=False,
                strategy=ERROR_STRATEGY,
                final_value=conflict.source_value,
                requires_manual_review=True,
                conflict_id=conflict.id,
            )

        resolved = stored.status == ConflictStatus.RESOLVED
        return ConflictResolutionResult(
            resolved=resolved,
            strategy=stored.resolution_strategy or stored.status.value,
            final_value=stored.resolved_value if resolved else stored.source_value,
            requires_manual_review=False,
            conflict_id=stored.id,
        )

    async def resolve_entry_conflicts(
        self,
        billing_entry_id: str,
        conflicts: list[ConflictRecord],
        rules: list[ResolutionRule] | None = None,
    ) -> EntryResolution:
        """Resolve every conflict of one entry into a working copy of its data.

        Raises:
            BillingEntryNotFoundError: If the entry does not exist.
        """
        entry = await self._repository.get_billing_entry(billing_entry_id)
        if entry is None:
            raise BillingEntryNotFoundError(billing_entry_id)

        resolved_data = entry.model_dump()
        pending: list[ConflictRecord] = []

        for conflict in conflicts:
            result = await self.resolve_conflict(conflict, rules)
            if result.resolved:
                resolved_data[conflict.field] = result.final_value
            elif result.requires_manual_review:
                pending.append(conflict)

        return EntryResolution(
            resolved_data=resolved_data,
            manual_review_required=bool(pending),
            pending_conflicts=pending,
        )

    async def manually_resolve_conflict(
        self,
        conflict_id: str,
        final_value: Any,
        strategy: str,
        resolved_by: str,
    ) -> ConflictRecord:
        """Force-resolve a pending conflict with a human-chosen value.

        Raises:
            ConflictNotFoundError: If no conflict has this id.
            InvalidConflictTransitionError: If the conflict is no longer pending.
        """
        return await self._finish(
            conflict_id,
            ConflictStatus.RESOLVED,
            strategy=strategy,
            final_value=final_value,
            actor=resolved_by,
        )

    async def ignore_conflict(self, conflict_id: str, ignored_by: str) -> ConflictRecord:
        """Dismiss a pending conflict without changing any data."""
        return await self._finish(
            conflict_id, ConflictStatus.IGNORED, strategy=None, final_value=None, actor=ignored_by
        )

    async def _finish(
        self,
        conflict_id: str,
        status: ConflictStatus,
        strategy: str | None,
        final_value: Any,
        actor: str,
    ) -> ConflictRecord:
        current = await self._repository.get_conflict(conflict_id)
        if current is None:
            raise ConflictNotFoundError(conflict_id)

        transitioned = await self._repository.transition_conflict(
            conflict_id,
            status,
            resolution_strategy=strategy,
            resolved_value=final_value,
            resolved_by=actor,
        )
        if not transitioned:
            latest = await self._repository.get_conflict(conflict_id)
            raise InvalidConflictTransitionError(
                conflict_id, (latest or current).status.value
            )

        logger.info(
            "conflicts.closed_by_user",
            conflict_id=conflict_id,
            status=status.value,
            actor=actor,
        )
        return await self._repository.get_conflict(conflict_id)

    async def get_pending_conflicts(self, filters: ConflictFilter | None = None) -> list[ConflictRecord]:
        return await self._repository.list_conflicts(filters or ConflictFilter())

    async def get_conflict_stats(self, start: datetime, end: datetime) -> ConflictStats:
        """Counts by status, type and strategy for conflicts detected in [start, end]."""
        return await self._repository.conflict_stats(start, end)
