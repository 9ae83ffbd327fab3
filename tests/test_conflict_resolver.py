"""Unit tests for rule-based conflict resolution.

Tests rule selection, each strategy, entry-level resolution, manual
resolve/ignore transitions and conflict statistics.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.billsync.billing.errors import (
    BillingEntryNotFoundError,
    ConflictNotFoundError,
    InvalidConflictTransitionError,
)
from src.billsync.billing.repository import BillingRepository
from src.billsync.billing.schemas import (
    ConflictFilter,
    ConflictRecord,
    ConflictStatus,
    ConflictType,
    ResolutionRule,
    ResolutionStrategy,
    utcnow,
)
from src.billsync.conflicts.resolver import (
    DEFAULT_RESOLUTION_RULES,
    ConflictResolver,
    merge_values,
    select_rule,
)


# ── Helpers ────────────────────────────────────────────────────────────────


def _conflict(entry_id: str, field: str, source, target, **overrides) -> ConflictRecord:
    defaults = {
        "billing_entry_id": entry_id,
        "platform": "cleo",
        "field": field,
        "source_value": source,
        "target_value": target,
        "conflict_type": ConflictType.DATA_MISMATCH,
    }
    defaults.update(overrides)
    return ConflictRecord(**defaults)


@pytest.fixture
def resolver(repository) -> ConflictResolver:
    return ConflictResolver(repository)


@pytest.fixture
async def stored_entry(repository, entry_create):
    return await repository.create_billing_entry(entry_create(time_spent=2.5))


async def _store(repository, conflict: ConflictRecord) -> ConflictRecord:
    await repository.add_conflicts([conflict])
    return conflict


# ── Rule Selection ─────────────────────────────────────────────────────────


class TestSelectRule:
    """Exact field rules beat wildcards; lower priority wins."""

    def test_default_rules(self):
        assert select_rule("time_spent", DEFAULT_RESOLUTION_RULES).strategy == ResolutionStrategy.LATEST_WINS
        assert select_rule("client", DEFAULT_RESOLUTION_RULES).strategy == ResolutionStrategy.MANUAL_REVIEW
        assert select_rule("external_id", DEFAULT_RESOLUTION_RULES).strategy == ResolutionStrategy.TARGET_WINS
        assert select_rule("work_type", DEFAULT_RESOLUTION_RULES) is None

    def test_exact_match_beats_wildcard(self):
        rules = [
            ResolutionRule(field="*", strategy=ResolutionStrategy.TARGET_WINS, priority=0),
            ResolutionRule(field="description", strategy=ResolutionStrategy.MERGE, priority=5),
        ]
        assert select_rule("description", rules).strategy == ResolutionStrategy.MERGE
        assert select_rule("matter", rules).strategy == ResolutionStrategy.TARGET_WINS

    def test_lowest_priority_wins(self):
        rules = [
            ResolutionRule(field="client", strategy=ResolutionStrategy.MANUAL_REVIEW, priority=3),
            ResolutionRule(field="client", strategy=ResolutionStrategy.SOURCE_WINS, priority=1),
        ]
        assert select_rule("client", rules).strategy == ResolutionStrategy.SOURCE_WINS


class TestMergeValues:
    def test_description_token_union(self):
        """Word union, first occurrence order, lower-cased."""
        assert merge_values("description", "Call with client", "client call notes") == (
            "call with client notes"
        )

    def test_time_spent_takes_max(self):
        assert merge_values("time_spent", 2.5, 3.0) == 3.0

    def test_other_fields_keep_source(self):
        assert merge_values("matter", "m-1", "m-2") == "m-1"


# ── resolve_conflict ───────────────────────────────────────────────────────


class TestResolveConflict:
    """resolve_conflict applies the chosen strategy and records it."""

    async def test_time_spent_latest_wins_keeps_local_value(self, resolver, repository, stored_entry):
        """2.5 local vs 3.0 remote resolves to 2.5 without manual review."""
        conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))

        result = await resolver.resolve_conflict(conflict)

        assert result.resolved is True
        assert result.strategy == "latest_wins"
        assert result.final_value == 2.5
        assert result.requires_manual_review is False

        stored = await repository.get_conflict(conflict.id)
        assert stored.status == ConflictStatus.RESOLVED
        assert stored.resolution_strategy == "latest_wins"
        assert stored.resolved_value == 2.5

    async def test_client_requires_manual_review(self, resolver, repository, stored_entry):
        """Client conflicts are never auto-resolved and stay pending."""
        conflict = await _store(
            repository, _conflict(stored_entry.id, "client", "client-acme", "client-other")
        )

        result = await resolver.resolve_conflict(conflict)

        assert result.resolved is False
        assert result.strategy == "manual_review"
        assert result.requires_manual_review is True
        stored = await repository.get_conflict(conflict.id)
        assert stored.status == ConflictStatus.PENDING
        assert stored.resolution_strategy == "manual_review"

    async def test_no_rule_found(self, resolver, repository, stored_entry):
        conflict = await _store(repository, _conflict(stored_entry.id, "work_type", "a", "b"))

        result = await resolver.resolve_conflict(conflict)

        assert result.resolved is False
        assert result.strategy == "no_rule_found"
        assert result.requires_manual_review is True
        assert (await repository.get_conflict(conflict.id)).status == ConflictStatus.PENDING

    async def test_per_call_rules_override_defaults(self, resolver, repository, stored_entry):
        conflict = await _store(repository, _conflict(stored_entry.id, "hourly_rate", 300.0, 325.0))
        rules = [ResolutionRule(field="*", strategy=ResolutionStrategy.TARGET_WINS)]

        result = await resolver.resolve_conflict(conflict, rules)

        assert result.final_value == 325.0
        assert result.strategy == "target_wins"

    async def test_store_failure_yields_error_strategy(self, stored_entry):
        """A store error is reported as an unresolved result, never raised."""
        repo = AsyncMock(spec=BillingRepository)
        repo.transition_conflict.side_effect = RuntimeError("deadlock detected")
        resolver = ConflictResolver(repo)

        result = await resolver.resolve_conflict(_conflict(stored_entry.id, "time_spent", 2.5, 3.0))

        assert result.resolved is False
        assert result.strategy == "error"
        assert result.requires_manual_review is True

    async def test_second_resolution_reports_stored_outcome(self, resolver, repository, stored_entry):
        """Re-resolving with other rules returns the first resolution, not the new one."""
        conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))
        await resolver.resolve_conflict(conflict)

        result = await resolver.resolve_conflict(
            conflict, [ResolutionRule(field="*", strategy=ResolutionStrategy.TARGET_WINS)]
        )

        assert result.resolved is True
        assert result.strategy == "latest_wins"
        assert result.final_value == 2.5
        stored = await repository.get_conflict(conflict.id)
        assert stored.resolution_strategy == "latest_wins"
        assert stored.resolved_value == 2.5

    async def test_resolving_ignored_conflict_is_not_resolved(
        self, resolver, repository, stored_entry
    ):
        conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))
        await resolver.ignore_conflict(conflict.id, ignored_by="user-1")

        result = await resolver.resolve_conflict(conflict)

        assert result.resolved is False
        assert result.requires_manual_review is False
        assert result.strategy == "ignored"
        assert (await repository.get_conflict(conflict.id)).status == ConflictStatus.IGNORED


class TestResolveEntryConflicts:
    """resolve_entry_conflicts builds a working copy of the entry."""

    async def test_resolved_fields_applied_and_pending_reported(
        self, resolver, repository, stored_entry
    ):
        time_conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))
        client_conflict = await _store(
            repository, _conflict(stored_entry.id, "client", "client-acme", "client-other")
        )
        rules = [
            ResolutionRule(field="time_spent", strategy=ResolutionStrategy.TARGET_WINS),
            ResolutionRule(field="client", strategy=ResolutionStrategy.MANUAL_REVIEW),
        ]

        resolution = await resolver.resolve_entry_conflicts(
            stored_entry.id, [time_conflict, client_conflict], rules
        )

        assert resolution.resolved_data["time_spent"] == 3.0
        assert resolution.resolved_data["client"] == "client-acme"
        assert resolution.manual_review_required is True
        assert [c.id for c in resolution.pending_conflicts] == [client_conflict.id]

        # The stored entry itself is not modified.
        assert (await repository.get_billing_entry(stored_entry.id)).time_spent == 2.5

    async def test_all_resolved_needs_no_review(self, resolver, repository, stored_entry):
        conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))

        resolution = await resolver.resolve_entry_conflicts(stored_entry.id, [conflict])

        assert resolution.manual_review_required is False
        assert resolution.pending_conflicts == []

    async def test_already_resolved_conflict_keeps_stored_value(
        self, resolver, repository, stored_entry
    ):
        """A conflict closed earlier contributes its stored value, not a new rule's."""
        conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))
        await resolver.resolve_conflict(conflict)
        rules = [ResolutionRule(field="time_spent", strategy=ResolutionStrategy.TARGET_WINS)]

        resolution = await resolver.resolve_entry_conflicts(stored_entry.id, [conflict], rules)

        assert resolution.resolved_data["time_spent"] == 2.5
        assert resolution.manual_review_required is False

    async def test_missing_entry_raises(self, resolver):
        with pytest.raises(BillingEntryNotFoundError):
            await resolver.resolve_entry_conflicts("missing", [])


# ── Manual Transitions ─────────────────────────────────────────────────────


class TestManualTransitions:
    """manually_resolve_conflict / ignore_conflict lifecycle rules."""

    async def test_manual_resolve(self, resolver, repository, stored_entry):
        conflict = await _store(
            repository, _conflict(stored_entry.id, "client", "client-acme", "client-other")
        )

        record = await resolver.manually_resolve_conflict(
            conflict.id, "client-other", "target_wins", "reviewer-7"
        )

        assert record.status == ConflictStatus.RESOLVED
        assert record.resolved_value == "client-other"
        assert record.resolution_strategy == "target_wins"
        assert record.resolved_by == "reviewer-7"
        assert record.resolved_at is not None

    async def test_resolving_twice_is_rejected(self, resolver, repository, stored_entry):
        conflict = await _store(repository, _conflict(stored_entry.id, "matter", "m-1", "m-2"))
        await resolver.manually_resolve_conflict(conflict.id, "m-2", "target_wins", "reviewer-7")

        with pytest.raises(InvalidConflictTransitionError) as exc_info:
            await resolver.manually_resolve_conflict(conflict.id, "m-1", "source_wins", "reviewer-8")

        assert exc_info.value.status == "resolved"
        stored = await repository.get_conflict(conflict.id)
        assert stored.resolved_value == "m-2"
        assert stored.resolved_by == "reviewer-7"

    async def test_ignored_conflict_cannot_be_resolved(self, resolver, repository, stored_entry):
        conflict = await _store(repository, _conflict(stored_entry.id, "matter", "m-1", "m-2"))

        ignored = await resolver.ignore_conflict(conflict.id, "reviewer-7")

        assert ignored.status == ConflictStatus.IGNORED
        assert ignored.resolved_by == "reviewer-7"
        with pytest.raises(InvalidConflictTransitionError):
            await resolver.manually_resolve_conflict(conflict.id, "m-2", "target_wins", "reviewer-7")

    async def test_unknown_conflict_raises(self, resolver):
        with pytest.raises(ConflictNotFoundError):
            await resolver.ignore_conflict("missing", "reviewer-7")


# ── Queries ────────────────────────────────────────────────────────────────


class TestConflictQueries:
    """get_pending_conflicts and get_conflict_stats."""

    async def test_pending_excludes_closed(self, resolver, repository, stored_entry):
        open_conflict = await _store(repository, _conflict(stored_entry.id, "client", "a", "b"))
        closed = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))
        await resolver.resolve_conflict(closed)

        pending = await resolver.get_pending_conflicts()

        assert [c.id for c in pending] == [open_conflict.id]

    async def test_pending_filters_by_platform(self, resolver, repository, stored_entry):
        await _store(repository, _conflict(stored_entry.id, "client", "a", "b"))
        mycase = await _store(
            repository, _conflict(stored_entry.id, "client", "a", "c", platform="mycase")
        )

        pending = await resolver.get_pending_conflicts(ConflictFilter(platform="mycase"))

        assert [c.id for c in pending] == [mycase.id]

    async def test_stats(self, resolver, repository, stored_entry):
        time_conflict = await _store(repository, _conflict(stored_entry.id, "time_spent", 2.5, 3.0))
        await _store(repository, _conflict(stored_entry.id, "client", "a", "b"))
        await _store(
            repository,
            _conflict(
                stored_entry.id,
                "duplicate_entry",
                {},
                [],
                conflict_type=ConflictType.DUPLICATE_ENTRY,
            ),
        )
        await resolver.resolve_conflict(time_conflict)

        now = utcnow()
        stats = await resolver.get_conflict_stats(now - timedelta(hours=1), now + timedelta(hours=1))

        assert stats.total_conflicts == 3
        assert stats.resolved_conflicts == 1
        assert stats.pending_conflicts == 2
        assert stats.conflicts_by_type == {"data_mismatch": 2, "duplicate_entry": 1}
        assert stats.resolutions_by_strategy == {"latest_wins": 1}

    async def test_stats_window_excludes_older_conflicts(self, resolver, repository, stored_entry):
        await _store(
            repository,
            _conflict(
                stored_entry.id, "client", "a", "b", detected_at=utcnow() - timedelta(days=30)
            ),
        )

        now = utcnow()
        stats = await resolver.get_conflict_stats(now - timedelta(days=1), now)

        assert stats.total_conflicts == 0
