"""Unit tests for AdapterRegistry, PlatformOrchestrator and the bulk helpers.

Uses AsyncMock adapters with the PlatformAdapter spec -- no network calls.
"""

from __future__ import annotations

import datetime as dt
from unittest.mock import patch

import pytest

from src.billsync.billing.schemas import BillingEntryRead
from src.billsync.platforms.adapter import PlatformAdapter
from src.billsync.platforms.bulk import bulk_create_time_entries, sync_time_entries
from src.billsync.platforms.errors import (
    ApiError,
    ErrorCode,
    PlatformNotConfiguredError,
    PlatformNotFoundError,
    ValidationError,
)
from src.billsync.platforms.orchestrator import PlatformOrchestrator, calculate_sync_summary
from src.billsync.platforms.registry import AdapterRegistry, build_default_registry
from src.billsync.platforms.schemas import Client, Matter, PlatformConfig, TimeEntry


def _entry(**overrides) -> TimeEntry:
    defaults = {
        "client_id": "c-1",
        "matter_id": "m-1",
        "date": dt.date(2026, 3, 2),
        "hours": 1.5,
        "description": "Research",
    }
    defaults.update(overrides)
    return TimeEntry(**defaults)


# ── AdapterRegistry ────────────────────────────────────────────────────────


class TestAdapterRegistry:
    """Lookup, configuration and health of registered adapters."""

    def test_default_registry_knows_three_platforms(self):
        registry = build_default_registry()

        assert set(registry.get_available_platforms()) == {"cleo", "practice-panther", "mycase"}
        assert registry.get_configured_platforms() == []

    def test_unknown_platform_raises_not_found(self, registry):
        with pytest.raises(PlatformNotFoundError) as exc_info:
            registry.get_adapter("clio")
        assert exc_info.value.code == ErrorCode.PLATFORM_NOT_FOUND

    def test_configure_unknown_platform_raises(self, registry):
        with pytest.raises(PlatformNotFoundError):
            registry.configure("clio", PlatformConfig(platform="clio"))

    def test_unconfigured_platform_raises_not_configured(self, adapter_factory):
        registry = AdapterRegistry([adapter_factory("cleo")])

        with pytest.raises(PlatformNotConfiguredError) as exc_info:
            registry.get_adapter("cleo")
        assert exc_info.value.code == ErrorCode.PLATFORM_NOT_CONFIGURED

    def test_configure_passes_config_to_adapter(self, adapter_factory):
        adapter = adapter_factory("cleo")
        registry = AdapterRegistry([adapter])

        registry.configure("cleo", PlatformConfig(platform="cleo", api_key="k", subdomain="acme"))

        assert registry.get_adapter("cleo") is adapter
        adapter.configure.assert_called_once()
        assert adapter.configure.call_args.args[0].api_key == "k"

    def test_configuration_hides_credentials(self, registry):
        config = registry.get_configuration("cleo")

        assert config["subdomain"] == "acme"
        assert "api_key" not in config
        assert "access_token" not in config
        assert registry.get_configuration("practice-panther") is None

    def test_remove_configuration(self, registry):
        registry.remove_configuration("cleo")

        assert registry.get_configured_platforms() == ["mycase"]
        with pytest.raises(PlatformNotConfiguredError):
            registry.get_adapter("cleo")

    def test_real_adapter_rejects_config_without_host(self):
        registry = build_default_registry()

        with pytest.raises(ValidationError):
            registry.configure("cleo", PlatformConfig(platform="cleo", api_key="k"))
        assert registry.get_configured_platforms() == []

    async def test_validate_connection_never_raises(self, registry, cleo_adapter, mycase_adapter):
        cleo_adapter.validate_connection.return_value = True
        mycase_adapter.validate_connection.side_effect = RuntimeError("boom")

        results = await registry.validate_all_connections()

        assert results == {"cleo": True, "mycase": False}
        assert await registry.validate_connection("clio") is False

    async def test_platform_health(self, registry, cleo_adapter, mycase_adapter):
        cleo_adapter.validate_connection.return_value = True
        mycase_adapter.validate_connection.return_value = False

        health = await registry.get_platform_health()

        assert health["cleo"].connected is True
        assert health["cleo"].error is None
        assert health["mycase"].connected is False
        assert health["mycase"].error
        assert health["cleo"].checked_at.tzinfo is not None


# ── Bulk Helpers ───────────────────────────────────────────────────────────


class TestBulkHelpers:
    """Partial-failure tolerant bulk operations."""

    async def test_bulk_create_collects_errors(self, adapter_factory):
        adapter = adapter_factory("cleo")
        ok = _entry(description="First")
        bad = _entry(description="Second")

        async def create(entry: TimeEntry) -> TimeEntry:
            if entry.description == "Second":
                raise ValidationError("cleo", "time_entry", "Matter is closed")
            return entry.model_copy(update={"id": "r-1"})

        adapter.create_time_entry.side_effect = create

        result = await bulk_create_time_entries(adapter, [ok, bad])

        assert [e.id for e in result.created] == ["r-1"]
        assert len(result.errors) == 1
        assert result.errors[0].entry.description == "Second"
        assert "Matter is closed" in result.errors[0].error

    async def test_sync_routes_by_remote_id(self, adapter_factory):
        adapter = adapter_factory("cleo")

        result = await sync_time_entries(adapter, [_entry(), _entry(id="r-9")])

        assert result.created == 1
        assert result.updated == 1
        adapter.update_time_entry.assert_awaited_once()
        assert adapter.update_time_entry.await_args.args[0] == "r-9"


# ── PlatformOrchestrator ───────────────────────────────────────────────────


class TestPlatformOrchestrator:
    """Fan-out isolation across configured platforms."""

    def test_summary(self):
        entries = [
            _entry(hours=1.0, client_id="c-1", matter_id="m-1"),
            _entry(hours=2.0, client_id="c-2", matter_id=None, billable=False),
            _entry(hours=0.5, client_id="c-1", matter_id="m-2"),
        ]

        summary = calculate_sync_summary(entries)

        assert summary.total_time == 3.5
        assert summary.billable_time == 1.5
        assert summary.clients == ["c-1", "c-2"]
        assert summary.matters == ["m-1", "m-2"]

    async def test_sync_to_all_platforms_isolates_failure(self, registry):
        """One platform raising yields success=False only for that platform."""
        orchestrator = PlatformOrchestrator(registry)
        entries = [_entry(), _entry(id="r-2")]
        real_sync = sync_time_entries

        async def flaky_sync(adapter: PlatformAdapter, batch: list[TimeEntry]):
            if adapter.platform == "mycase":
                raise ApiError("mycase", "HTTP 503: maintenance", 503)
            return await real_sync(adapter, batch)

        with patch("src.billsync.platforms.orchestrator.sync_time_entries", side_effect=flaky_sync):
            results = await orchestrator.sync_to_all_platforms(entries)

        assert set(results) == {"cleo", "mycase"}
        assert results["cleo"].success is True
        assert results["cleo"].processed == 2
        assert results["cleo"].created == 1
        assert results["cleo"].updated == 1
        assert results["cleo"].summary.total_time == 3.0
        assert results["mycase"].success is False
        assert "HTTP 503" in results["mycase"].errors[0].error

    async def test_entry_errors_do_not_fail_platform(self, registry, cleo_adapter):
        """Per-entry failures are reported inside a successful platform result."""
        cleo_adapter.create_time_entry.side_effect = ApiError("cleo", "HTTP 500: boom", 500)
        orchestrator = PlatformOrchestrator(registry)

        results = await orchestrator.sync_to_all_platforms([_entry()])

        assert results["cleo"].success is True
        assert len(results["cleo"].errors) == 1
        assert results["mycase"].errors == []

    async def test_no_configured_platforms(self, adapter_factory):
        orchestrator = PlatformOrchestrator(AdapterRegistry([adapter_factory("cleo")]))

        assert await orchestrator.sync_to_all_platforms([_entry()]) == {}

    async def test_search_clients_returns_empty_on_failure(self, registry, cleo_adapter, mycase_adapter):
        cleo_adapter.list_clients.return_value = [Client(id="1", name="Acme LLC")]
        mycase_adapter.list_clients.side_effect = ApiError("mycase", "HTTP 502: bad gateway", 502)
        orchestrator = PlatformOrchestrator(registry)

        results = await orchestrator.search_clients_across_platforms("acme")

        assert [c.name for c in results["cleo"]] == ["Acme LLC"]
        assert results["mycase"] == []
        filters = cleo_adapter.list_clients.await_args.args[0]
        assert filters.search == "acme"
        assert filters.limit == 20

    async def test_search_matters_passes_client(self, registry, cleo_adapter, mycase_adapter):
        cleo_adapter.list_matters.return_value = [Matter(id="m-1", client_id="c-1", name="Estate")]
        mycase_adapter.list_matters.return_value = []
        orchestrator = PlatformOrchestrator(registry)

        results = await orchestrator.search_matters_across_platforms("estate", client_id="c-1")

        assert [m.id for m in results["cleo"]] == ["m-1"]
        client_id, filters = cleo_adapter.list_matters.await_args.args
        assert client_id == "c-1"
        assert filters.search == "estate"

    async def test_create_billing_entries_uses_each_platform_remote_id(
        self, registry, cleo_adapter, mycase_adapter, entry_create
    ):
        """An entry synced to cleo is updated there and created on mycase."""
        entry = BillingEntryRead(
            id="entry-1",
            external_refs={"cleo": "cleo-77"},
            **entry_create().model_dump(),
        )
        orchestrator = PlatformOrchestrator(registry)

        results = await orchestrator.create_billing_entries([entry])

        assert (results["cleo"].created, results["cleo"].updated) == (0, 1)
        assert (results["mycase"].created, results["mycase"].updated) == (1, 0)
        assert cleo_adapter.update_time_entry.await_args.args[0] == "cleo-77"
        sent = mycase_adapter.create_time_entry.await_args.args[0]
        assert sent.client_id == "client-acme"
        assert sent.hours == 2.5
        assert results["mycase"].summary.total_time == 2.5
