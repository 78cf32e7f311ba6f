"""Tests for FieldCacheManager: TTL hits, forced refresh, failure isolation."""

from __future__ import annotations

import json

import pytest

from src.suitecrm_sync.crm.field_cache import META_KEY, FieldCacheManager, cache_key
from src.suitecrm_sync.settings_store import MAX_KEY_LENGTH


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def cache(crm_client, memory_store, clock) -> FieldCacheManager:
    return FieldCacheManager(crm_client, memory_store, cache_ttl_hours=24, clock=clock)


# ── Keys ───────────────────────────────────────────────────────────────────


class TestCacheKey:
    def test_prefix_and_lowercase(self):
        assert cache_key("Leads") == "scf_leads"

    def test_long_names_stay_within_limit_and_distinct(self):
        a = cache_key("A" * 60 + "one")
        b = cache_key("A" * 60 + "two")

        assert len(a) <= MAX_KEY_LENGTH
        assert a.startswith("scf_")
        assert a != b


# ── get_fields ─────────────────────────────────────────────────────────────


class TestGetFields:
    @pytest.mark.asyncio
    async def test_second_call_within_ttl_served_from_cache(self, cache, fake_crm):
        first = await cache.get_fields("Leads")
        second = await cache.get_fields("Leads")

        assert fake_crm.field_requests["Leads"] == 1
        assert first == second

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, cache, fake_crm, clock):
        await cache.get_fields("Leads")
        clock.now += 24 * 3600 + 1
        await cache.get_fields("Leads")

        assert fake_crm.field_requests["Leads"] == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, cache, fake_crm):
        await cache.get_fields("Leads")
        await cache.get_fields("Leads", force_refresh=True)

        assert fake_crm.field_requests["Leads"] == 2

    @pytest.mark.asyncio
    async def test_payload_and_meta_written(self, cache, memory_store, clock):
        await cache.get_fields("Leads")

        payload = await memory_store.get("scf_leads")
        meta = await memory_store.get(META_KEY)
        assert payload["last_name"]["required"] is True
        assert meta == {"scf_leads": {"cached_at": clock.now}}

    @pytest.mark.asyncio
    async def test_module_without_custom_fields_is_cached(self, cache, fake_crm):
        fake_crm.fields["Notes"] = {"id": {"type": "id"}, "deleted": {"type": "bool"}}

        first = await cache.get_fields("Notes")
        second = await cache.get_fields("Notes")

        assert first == second == {}
        assert fake_crm.field_requests["Notes"] == 1

    @pytest.mark.asyncio
    async def test_missing_payload_with_fresh_meta_is_a_miss(self, cache, memory_store, fake_crm, clock):
        await memory_store.set(META_KEY, {"scf_leads": {"cached_at": clock.now}})

        fields = await cache.get_fields("Leads")

        assert fake_crm.field_requests["Leads"] == 1
        assert "first_name" in fields

    @pytest.mark.asyncio
    async def test_failed_fetch_leaves_cache_untouched(self, cache, memory_store, fake_crm, clock):
        await cache.get_fields("Leads")
        before_payload = await memory_store.get("scf_leads")
        before_meta = await memory_store.get(META_KEY)

        fake_crm.fail_fields["Leads"] = (500, {"errors": [{"detail": "boom"}]})
        clock.now += 10
        with pytest.raises(Exception, match="boom"):
            await cache.get_fields("Leads", force_refresh=True)

        assert await memory_store.get("scf_leads") == before_payload
        assert await memory_store.get(META_KEY) == before_meta


# ── Multi-module helpers ───────────────────────────────────────────────────


class TestMultiModule:
    @pytest.mark.asyncio
    async def test_failing_module_yields_error_entry(self, cache):
        result = await cache.get_fields_for_modules(["Leads", "Nope"])

        assert "first_name" in result["Leads"]
        assert result["Nope"] == {"error": True, "message": "SuiteCRM API error: Module Nope not found"}

    @pytest.mark.asyncio
    async def test_dropdown_options(self, cache):
        options = await cache.get_fields_for_dropdown(["Cases"])

        key = json.dumps(
            {"module": "Cases", "field": "name", "label": "Subject", "type": "name"},
            separators=(",", ":"),
        )
        assert options[key] == "Cases: Subject *"
        assert "Cases: Description" in options.values()

    @pytest.mark.asyncio
    async def test_refresh_all_reports_each_module(self, cache, fake_crm):
        report = await cache.refresh_all_caches(["Leads", "Nope", "Cases"])

        assert report["Leads"].success is True
        assert report["Leads"].field_count == 9
        assert report["Nope"].success is False
        assert "Module Nope not found" in report["Nope"].error
        assert report["Cases"].success is True


# ── Maintenance ────────────────────────────────────────────────────────────


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_clear_cache(self, cache, memory_store, fake_crm):
        await cache.get_fields("Leads")
        await cache.get_fields("Cases")

        await cache.clear_cache("Leads")

        assert await memory_store.get("scf_leads") is None
        assert "scf_leads" not in await memory_store.get(META_KEY)
        await cache.get_fields("Leads")
        assert fake_crm.field_requests["Leads"] == 2

    @pytest.mark.asyncio
    async def test_clear_all_caches_removes_meta(self, cache, memory_store):
        await cache.get_fields("Leads")
        await cache.get_fields("Cases")

        await cache.clear_all_caches(["Leads", "Cases"])

        assert await memory_store.get(META_KEY) is None

    @pytest.mark.asyncio
    async def test_status(self, cache, clock):
        await cache.get_fields("Leads")
        fetched_at = clock.now
        clock.now += 25 * 3600

        status = await cache.get_cache_status(["Leads", "Cases"])

        assert status["Leads"].cached is True
        assert status["Leads"].cached_at == fetched_at
        assert status["Leads"].expires_at == fetched_at + 24 * 3600
        assert status["Leads"].is_valid is False
        assert status["Cases"].cached is False
