"""
Unit tests for server-to-client hydration.
"""

import asyncio
import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from service_petstore.app.caching.client import QueryClient
from service_petstore.app.caching.hydration import (
    DehydratedEntry,
    HydrationPayload,
    StreamedResult,
    hydrate,
    snapshot,
)
from service_petstore.app.caching.keys import PetstoreKeys, build_key
from service_petstore.app.caching.store import CacheEntry, CacheStore, QueryStatus
from shared.errors import HydrationError, NetworkError
from shared.metrics import MetricsCollector


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


PETS_KEY = PetstoreKeys.pets_by_status(["available"])
PETS = [{"id": 1, "name": "rex", "status": "available"}]


def _settled(key, data, fetched_at=1000.0):
    return CacheEntry(key=key, data=data, status=QueryStatus.SUCCESS, fetched_at=fetched_at)


class TestSnapshot:
    """Test cases for snapshot."""

    def test_snapshot_exports_settled_entries(self):
        store = CacheStore()
        store.put(PETS_KEY, _settled(PETS_KEY, PETS))

        payload = snapshot(store)

        assert len(payload) == 1
        assert payload.entries[0].cache_key == PETS_KEY
        assert payload.entries[0].data == PETS
        assert payload.entries[0].fetched_at == 1000.0

    def test_snapshot_omits_error_and_loading_entries(self):
        store = CacheStore()
        store.put(("petstore", "pets", 1), _settled(("petstore", "pets", 1), {"id": 1}))
        store.put(("petstore", "pets", 2), CacheEntry(key=("petstore", "pets", 2), status=QueryStatus.ERROR))
        store.put(("petstore", "pets", 3), CacheEntry(key=("petstore", "pets", 3), status=QueryStatus.LOADING))

        payload = snapshot(store)

        assert [entry.cache_key for entry in payload.entries] == [("petstore", "pets", 1)]

    def test_snapshot_filters_by_keys(self):
        store = CacheStore()
        store.put(PetstoreKeys.pet(1), _settled(PetstoreKeys.pet(1), {"id": 1}))
        store.put(PetstoreKeys.inventory(), _settled(PetstoreKeys.inventory(), {"sold": 2}))

        payload = snapshot(store, keys=[PetstoreKeys.inventory()])

        assert [entry.cache_key for entry in payload.entries] == [PetstoreKeys.inventory()]

    def test_snapshot_copies_data(self):
        """Mutating the store data afterwards does not leak into the payload."""
        data = [{"id": 1}]
        store = CacheStore()
        store.put(PETS_KEY, _settled(PETS_KEY, data))

        payload = snapshot(store)
        data.append({"id": 2})

        assert payload.entries[0].data == [{"id": 1}]

    def test_snapshot_includes_pending_when_asked(self):
        store = CacheStore()
        store.put(PetstoreKeys.inventory(), CacheEntry(key=PetstoreKeys.inventory(), status=QueryStatus.LOADING))

        assert len(snapshot(store)) == 0
        payload = snapshot(store, include_pending=True)
        assert payload.entries[0].status == "pending"
        assert payload.entries[0].fetched_at is None


class TestTransport:
    """Test cases for the payload wire format."""

    def test_transport_uses_fetched_at_alias(self):
        store = CacheStore()
        store.put(PETS_KEY, _settled(PETS_KEY, PETS))

        wire = snapshot(store).to_transport()

        assert wire == [{
            "key": ["petstore", "pets", "status", ["available"]],
            "data": PETS,
            "fetchedAt": 1000.0,
            "status": "success",
        }]

    def test_json_round_trip_restores_tuple_keys(self):
        store = CacheStore()
        store.put(PETS_KEY, _settled(PETS_KEY, PETS))

        raw = snapshot(store).to_json()
        restored = HydrationPayload.from_json(raw)

        assert json.loads(raw)[0]["fetchedAt"] == 1000.0
        assert restored.entries[0].cache_key == PETS_KEY

    def test_settled_entry_requires_fetched_at(self):
        with pytest.raises(PydanticValidationError):
            DehydratedEntry(key=["petstore", "inventory"], data={})

    def test_empty_key_rejected(self):
        with pytest.raises(PydanticValidationError):
            HydrationPayload.from_transport([{"key": [], "data": 1, "fetchedAt": 1.0}])


class TestHydrate:
    """Test cases for hydrate."""

    def test_hydrate_inserts_entries(self):
        source = CacheStore()
        source.put(PETS_KEY, _settled(PETS_KEY, PETS))
        target = CacheStore()

        inserted = hydrate(target, HydrationPayload.from_transport(snapshot(source).to_transport()))

        assert inserted == 1
        entry = target.get(PETS_KEY)
        assert entry.status == QueryStatus.SUCCESS
        assert entry.data == PETS
        assert entry.fetched_at == 1000.0

    def test_hydrate_never_overwrites(self):
        """Entries the client already holds win over the payload."""
        target = CacheStore()
        target.put(PETS_KEY, _settled(PETS_KEY, ["client"], fetched_at=2000.0))
        payload = HydrationPayload(entries=[
            DehydratedEntry(key=["petstore", "pets", "status", ["available"]], data=["server"], fetched_at=1000.0)
        ])

        assert hydrate(target, payload) == 0
        assert target.get(PETS_KEY).data == ["client"]

    def test_payload_is_single_use(self):
        payload = HydrationPayload(entries=[])
        hydrate(CacheStore(), payload)

        assert payload.consumed is True
        with pytest.raises(HydrationError):
            hydrate(CacheStore(), payload)

    def test_hydrate_counts_metric(self):
        metrics = MetricsCollector("test")
        payload = HydrationPayload(entries=[
            DehydratedEntry(key=["petstore", "inventory"], data={"sold": 1}, fetched_at=1000.0)
        ])

        hydrate(CacheStore(), payload, metrics=metrics)

        assert metrics.sample("hydrated_entries_total") == 1.0

    def test_pending_dropped_without_coordinator(self):
        payload = HydrationPayload(entries=[DehydratedEntry(key=["petstore", "inventory"], status="pending")])
        store = CacheStore()

        assert hydrate(store, payload) == 0
        assert len(store) == 0


class TestClientHydration:
    """End to end through QueryClient."""

    @pytest.mark.asyncio
    async def test_hydrated_key_is_a_hit(self):
        """The first read after hydration does not call the fetcher."""
        clock = FakeClock()
        server = QueryClient(stale_time=60.0, clock=clock)

        async def server_fetch(context):
            return PETS

        await server.prefetch_query(PETS_KEY, server_fetch)
        wire = server.dehydrate().to_transport()

        browser = QueryClient(stale_time=60.0, clock=clock)
        browser.hydrate(HydrationPayload.from_transport(wire))

        async def browser_fetch(context):
            raise AssertionError("hydrated key should not be fetched")

        assert await browser.fetch_query(PETS_KEY, browser_fetch) == PETS

    @pytest.mark.asyncio
    async def test_failed_server_fetch_is_fetched_cold(self):
        """A key that failed on the server is absent and fetched by the client."""
        clock = FakeClock()
        server = QueryClient(stale_time=60.0, clock=clock)

        async def failing(context):
            raise NetworkError("down")

        await server.prefetch_query(PETS_KEY, failing)
        wire = server.dehydrate().to_transport()
        assert wire == []

        browser = QueryClient(stale_time=60.0, clock=clock)
        browser.hydrate(HydrationPayload.from_transport(wire))
        calls = []

        async def browser_fetch(context):
            calls.append(context)
            return PETS

        assert await browser.fetch_query(PETS_KEY, browser_fetch) == PETS
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_streamed_placeholder_resolves_waiters(self):
        """Readers of a pending key wait for the streamed result."""
        browser = QueryClient(stale_time=60.0, clock=FakeClock())
        payload = HydrationPayload(entries=[DehydratedEntry(key=["petstore", "inventory"], status="pending")])
        browser.hydrate(payload)

        assert browser.get_entry(PetstoreKeys.inventory()).status == QueryStatus.LOADING

        async def never(context):
            raise AssertionError("streamed key should not be fetched")

        reader = asyncio.create_task(browser.fetch_query(PetstoreKeys.inventory(), never))
        await asyncio.sleep(0)
        browser.apply_streamed(StreamedResult(key=["petstore", "inventory"], data={"sold": 4}, fetchedAt=1000.0))

        assert await reader == {"sold": 4}
        assert browser.get_entry(PetstoreKeys.inventory()).status == QueryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_streamed_failure_falls_back_to_fetch(self):
        """A failed streamed key is fetched by the waiting reader."""
        browser = QueryClient(stale_time=60.0, clock=FakeClock())
        browser.hydrate(HydrationPayload(entries=[
            DehydratedEntry(key=["petstore", "inventory"], status="pending")
        ]))

        async def fetch(context):
            return {"sold": 9}

        reader = asyncio.create_task(browser.fetch_query(PetstoreKeys.inventory(), fetch))
        await asyncio.sleep(0)
        browser.apply_streamed(StreamedResult(key=["petstore", "inventory"], error="upstream exploded"))

        assert await reader == {"sold": 9}
        assert browser.get_entry(PetstoreKeys.inventory()).status == QueryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_mapping_filter_key_survives_json_round_trip(self):
        """A key built from a filter mapping is a hit after hydration."""
        clock = FakeClock()
        key = build_key("petstore", "orders", {"status": {"placed", "approved"}, "limit": 10, "order_by": ["id", "shipDate"]})
        mirror = build_key("petstore", "orders", {"status": {"placed", "approved"}, "limit": 10, "order_by": ["shipDate", "id"]})
        server = QueryClient(stale_time=60.0, clock=clock)
        server.set_query_data(key, [{"id": 5}])

        browser = QueryClient(stale_time=60.0, clock=clock)
        assert browser.hydrate(HydrationPayload.from_json(server.dehydrate().to_json())) == 1

        async def never(context):
            raise AssertionError("hydrated key should not be fetched")

        assert browser.store.keys() == [key]
        assert await browser.fetch_query(key, never) == [{"id": 5}]
        assert browser.get_entry(mirror) is None

    @pytest.mark.asyncio
    async def test_late_streamed_result_does_not_overwrite_existing_entry(self):
        """A placeholder skipped because the client already had the key stays skipped."""
        browser = QueryClient(stale_time=60.0, clock=FakeClock())
        browser.set_query_data(PetstoreKeys.inventory(), {"sold": 1})
        browser.hydrate(HydrationPayload(entries=[
            DehydratedEntry(key=["petstore", "inventory"], status="pending")
        ]))

        browser.apply_streamed(StreamedResult(key=["petstore", "inventory"], data={"sold": 99}, fetchedAt=900.0))
        browser.apply_streamed(StreamedResult(key=["petstore", "inventory"], error="upstream exploded"))

        entry = browser.get_entry(PetstoreKeys.inventory())
        assert entry.data == {"sold": 1}
        assert entry.status == QueryStatus.SUCCESS
        assert entry.fetched_at == 1000.0

    @pytest.mark.asyncio
    async def test_streamed_result_without_placeholder_fills_empty_key(self):
        """A streamed key the client never saw is simply stored."""
        browser = QueryClient(stale_time=60.0, clock=FakeClock())

        browser.apply_streamed(StreamedResult(key=["petstore", "inventory"], data={"sold": 2}, fetchedAt=990.0))

        assert browser.get_entry(PetstoreKeys.inventory()).data == {"sold": 2}
