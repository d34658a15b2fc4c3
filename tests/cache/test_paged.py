"""Paged resource cache behaviour."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from tests.conftest import FakeClock
from usogui.cache.paged import CachedPage, PagedResourceCache, filter_signature
from usogui.exceptions import FetchError
from usogui.schemas import PaginatedResponse
from usogui.storage import MemoryStore, encode_envelope


class CountingFetcher:
    """Fetcher returning a fixed-size resource, counting calls per page."""

    def __init__(self, total: int = 120, limit: int = 20, delay: float = 0.0) -> None:
        self.total = total
        self.limit = limit
        self.delay = delay
        self.calls: list[int] = []
        self.fail_with: Exception | None = None

    async def __call__(self, page: int) -> PaginatedResponse:
        self.calls.append(page)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        start = (page - 1) * self.limit
        data = [{"id": i} for i in range(start + 1, min(start + self.limit, self.total) + 1)]
        return PaginatedResponse(data=data, total=self.total, page=page, totalPages=-(-self.total // self.limit))


@pytest.fixture
def cache(clock: FakeClock) -> PagedResourceCache:
    return PagedResourceCache(ttl_seconds=60, max_entries=5, clock=clock)


class TestFilterSignature:
    """Test filter signatures."""

    def test_key_order_irrelevant(self) -> None:
        assert filter_signature({"b": 1, "a": "x"}) == filter_signature({"a": "x", "b": 1})

    def test_none_values_dropped(self) -> None:
        assert filter_signature({"search": None}) == filter_signature({}) == filter_signature(None)

    def test_distinct_filters_distinct_signatures(self) -> None:
        assert filter_signature({"search": "kaji"}) != filter_signature({"search": "baku"})

    def test_compact_json(self) -> None:
        assert filter_signature({"arc": 3, "search": "tower"}) == '{"arc":3,"search":"tower"}'


class TestGetPage:
    """Test page lookup and request sharing."""

    async def test_miss_then_hit(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher()
        first = await cache.get_page("characters", 1, {}, fetcher)
        second = await cache.get_page("characters", 1, {}, fetcher)

        assert fetcher.calls == [1]
        assert second is first
        assert first.total == 120
        assert first.total_pages == 6
        assert len(first.data) == 20
        assert cache.stats["hits"] == 1
        assert cache.stats["misses"] == 1

    async def test_accepts_mapping_envelope(self, cache: PagedResourceCache) -> None:
        async def fetcher(page: int) -> dict[str, Any]:
            return {"data": [{"id": 1}], "total": 1, "page": page, "totalPages": 1}

        entry = await cache.get_page("arcs", 1, None, fetcher)
        assert entry.data == [{"id": 1}]

    async def test_bad_envelope_is_fetch_error(self, cache: PagedResourceCache) -> None:
        async def fetcher(page: int) -> dict[str, Any]:
            return {"items": []}

        with pytest.raises(FetchError):
            await cache.get_page("arcs", 1, None, fetcher)
        assert len(cache) == 0

    async def test_pages_and_filters_are_separate_keys(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher()
        await cache.get_page("characters", 1, {}, fetcher)
        await cache.get_page("characters", 2, {}, fetcher)
        await cache.get_page("characters", 1, {"search": "kaji"}, fetcher)
        await cache.get_page("characters", 1, {"search": None}, fetcher)
        assert fetcher.calls == [1, 2, 1]
        assert len(cache) == 3

    async def test_concurrent_calls_share_one_fetch(self, cache: PagedResourceCache) -> None:
        """Two concurrent requests for the same page -> one network call, same payload."""
        fetcher = CountingFetcher(delay=0.2)
        a, b = await asyncio.gather(
            cache.get_page("characters", 1, {}, fetcher),
            cache.get_page("characters", 1, {}, fetcher),
        )
        assert fetcher.calls == [1]
        assert a.total == b.total == 120
        assert a.data == b.data
        assert cache.stats["dedup_waits"] == 1

    async def test_cancelled_caller_does_not_cancel_shared_fetch(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher(delay=0.05)
        first = asyncio.create_task(cache.get_page("characters", 1, {}, fetcher))
        await asyncio.sleep(0)
        second = asyncio.create_task(cache.get_page("characters", 1, {}, fetcher))
        await asyncio.sleep(0)
        first.cancel()

        entry = await second
        assert entry.total == 120
        assert fetcher.calls == [1]
        assert ("characters", 1, "{}") in cache


class TestExpiry:
    """Test TTL expiry."""

    async def test_ttl_expiry_refetches(self, cache: PagedResourceCache, clock: FakeClock) -> None:
        fetcher = CountingFetcher()
        await cache.get_page("users", 1, {}, fetcher, ttl_seconds=1.0)
        clock.advance(1.5)
        await cache.get_page("users", 1, {}, fetcher, ttl_seconds=1.0)
        assert fetcher.calls == [1, 1]

    async def test_within_ttl_served_from_cache(self, cache: PagedResourceCache, clock: FakeClock) -> None:
        fetcher = CountingFetcher()
        await cache.get_page("users", 1, {}, fetcher, ttl_seconds=1.0)
        clock.advance(0.9)
        await cache.get_page("users", 1, {}, fetcher, ttl_seconds=1.0)
        assert fetcher.calls == [1]

    async def test_stale_entry_discarded_on_access(self, cache: PagedResourceCache, clock: FakeClock) -> None:
        fetcher = CountingFetcher()
        await cache.get_page("users", 1, {}, fetcher)
        clock.advance(61)
        fetcher.fail_with = FetchError("offline")

        with pytest.raises(FetchError):
            await cache.get_page("users", 1, {}, fetcher)

        assert ("users", 1, "{}") not in cache
        assert cache.stats["stale_discards"] == 1

    async def test_peek_ignores_stale(self, cache: PagedResourceCache, clock: FakeClock) -> None:
        await cache.get_page("users", 1, {}, CountingFetcher())
        assert cache.peek("users", 1) is not None
        clock.advance(60)
        assert cache.peek("users", 1) is None


class TestFailures:
    """Test failed fetches."""

    async def test_failure_not_cached(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher()
        fetcher.fail_with = FetchError("HTTP 500", status=500)

        with pytest.raises(FetchError):
            await cache.get_page("characters", 1, {}, fetcher)
        assert len(cache) == 0

        fetcher.fail_with = None
        entry = await cache.get_page("characters", 1, {}, fetcher)
        assert entry.total == 120
        assert fetcher.calls == [1, 1]

    async def test_concurrent_waiters_all_see_failure(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher(delay=0.01)
        fetcher.fail_with = FetchError("HTTP 502", status=502)
        results = await asyncio.gather(
            cache.get_page("characters", 1, {}, fetcher),
            cache.get_page("characters", 1, {}, fetcher),
            return_exceptions=True,
        )
        assert all(isinstance(r, FetchError) for r in results)
        assert fetcher.calls == [1]


class TestEviction:
    """Test LRU eviction."""

    async def test_bound_never_exceeded(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher(total=1000)
        for page in range(1, 13):
            await cache.get_page("characters", page, {}, fetcher)
            assert len(cache) <= cache.max_entries
        assert len(cache) == 5
        assert cache.stats["evictions"] == 7

    async def test_least_recently_used_evicted_across_resources(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher(total=1000)
        await cache.get_page("users", 1, {}, fetcher)
        for page in range(1, 5):
            await cache.get_page("characters", page, {}, fetcher)

        # Touch users:1 so characters:1 becomes least recently used
        await cache.get_page("users", 1, {}, fetcher)
        await cache.get_page("gambles", 1, {}, fetcher)

        assert ("users", 1, "{}") in cache
        assert ("characters", 1, "{}") not in cache
        assert cache.keys()[0] == ("characters", 2, "{}")

    def test_invalid_bounds(self) -> None:
        with pytest.raises(ValueError):
            PagedResourceCache(max_entries=0)
        with pytest.raises(ValueError):
            PagedResourceCache(ttl_seconds=0)


class TestInvalidate:
    """Test resource invalidation."""

    async def test_invalidate_forces_refetch_within_ttl(self, cache: PagedResourceCache) -> None:
        fetcher = CountingFetcher()
        await cache.get_page("users", 1, {}, fetcher)
        await cache.get_page("users", 2, {"search": "x"}, fetcher)
        await cache.get_page("characters", 1, {}, fetcher)

        assert cache.invalidate("users") == 2

        await cache.get_page("users", 1, {}, fetcher)
        await cache.get_page("users", 2, {"search": "x"}, fetcher)
        await cache.get_page("characters", 1, {}, fetcher)
        assert fetcher.calls == [1, 2, 1, 1, 2]

    async def test_inflight_result_not_stored_after_invalidate(self, cache: PagedResourceCache) -> None:
        release = asyncio.Event()
        calls: list[int] = []

        async def fetcher(page: int) -> PaginatedResponse:
            calls.append(page)
            await release.wait()
            return PaginatedResponse(data=[{"id": len(calls)}], total=1, page=page, totalPages=1)

        pending = asyncio.create_task(cache.get_page("users", 1, {}, fetcher))
        await asyncio.sleep(0)
        cache.invalidate("users")

        follow_up = asyncio.create_task(cache.get_page("users", 1, {}, fetcher))
        await asyncio.sleep(0)
        release.set()

        old = await pending
        new = await follow_up
        assert old is not new
        assert len(calls) == 2
        assert cache.peek("users", 1) is new

    async def test_invalidate_unknown_resource(self, cache: PagedResourceCache) -> None:
        assert cache.invalidate("nothing") == 0


class TestPersistence:
    """Test the persisted mirror."""

    @pytest.fixture
    def persisted(self, clock: FakeClock, store: MemoryStore) -> PagedResourceCache:
        return PagedResourceCache(ttl_seconds=60, max_entries=5, persist=True, store=store, clock=clock)

    async def test_mirrors_entries(self, persisted: PagedResourceCache, store: MemoryStore, clock: FakeClock) -> None:
        await persisted.get_page("characters", 2, {"search": "kaji"}, CountingFetcher())
        raw = await store.get('usogui:paged:characters:2:{"search":"kaji"}')
        envelope = json.loads(raw)
        assert envelope["timestamp"] == clock.now
        assert envelope["value"]["total"] == 120
        assert envelope["value"]["totalPages"] == 6

    async def test_rehydrates_after_reload(self, store: MemoryStore, clock: FakeClock) -> None:
        fetcher = CountingFetcher()
        first = PagedResourceCache(persist=True, store=store, clock=clock)
        await first.get_page("characters", 1, {}, fetcher)

        clock.advance(10)
        reloaded = PagedResourceCache(persist=True, store=store, clock=clock)
        entry = await reloaded.get_page("characters", 1, {}, fetcher)

        assert fetcher.calls == [1]
        assert entry.total == 120
        assert reloaded.stats["restored"] == 1

    async def test_rehydrated_entry_subject_to_ttl(self, store: MemoryStore, clock: FakeClock) -> None:
        fetcher = CountingFetcher()
        first = PagedResourceCache(ttl_seconds=60, persist=True, store=store, clock=clock)
        await first.get_page("characters", 1, {}, fetcher)

        clock.advance(120)
        reloaded = PagedResourceCache(ttl_seconds=60, persist=True, store=store, clock=clock)
        await reloaded.get_page("characters", 1, {}, fetcher)
        assert fetcher.calls == [1, 1]

    async def test_malformed_persisted_entry_ignored(self, persisted: PagedResourceCache, store: MemoryStore) -> None:
        key = "usogui:paged:characters:1:{}"
        await store.set(key, "garbage")
        fetcher = CountingFetcher()
        entry = await persisted.get_page("characters", 1, {}, fetcher)
        assert fetcher.calls == [1]
        assert entry.total == 120

    async def test_wrong_shape_persisted_entry_ignored(
        self, persisted: PagedResourceCache, store: MemoryStore, clock: FakeClock
    ) -> None:
        await store.set("usogui:paged:characters:1:{}", encode_envelope({"rows": []}, clock.now))
        fetcher = CountingFetcher()
        await persisted.get_page("characters", 1, {}, fetcher)
        assert fetcher.calls == [1]

    async def test_ainvalidate_removes_persisted(self, persisted: PagedResourceCache, store: MemoryStore) -> None:
        fetcher = CountingFetcher()
        await persisted.get_page("users", 1, {}, fetcher)
        await persisted.get_page("characters", 1, {}, fetcher)

        await persisted.ainvalidate("users")

        assert await store.get("usogui:paged:users:1:{}") is None
        assert await store.get("usogui:paged:characters:1:{}") is not None

    async def test_sync_invalidate_ignores_older_persisted(
        self, store: MemoryStore, clock: FakeClock
    ) -> None:
        fetcher = CountingFetcher()
        cache = PagedResourceCache(persist=True, store=store, clock=clock)
        await cache.get_page("users", 1, {}, fetcher)
        clock.advance(1)
        cache.invalidate("users")
        clock.advance(1)

        await cache.get_page("users", 1, {}, fetcher)
        assert fetcher.calls == [1, 1]

    async def test_delete_outage_treated_as_absent(self, store: MemoryStore, clock: FakeClock) -> None:
        store.delete = AsyncMock(side_effect=ConnectionError("redis down"))  # type: ignore[method-assign]
        await store.set("usogui:paged:characters:1:{}", "garbage")
        cache = PagedResourceCache(persist=True, store=store, clock=clock)
        fetcher = CountingFetcher()

        entry = await cache.get_page("characters", 1, {}, fetcher)

        assert fetcher.calls == [1]
        assert entry.total == 120
        store.delete.assert_awaited_once_with("usogui:paged:characters:1:{}")

    async def test_delete_outage_on_expired_entry(self, store: MemoryStore, clock: FakeClock) -> None:
        expired = encode_envelope({"data": [], "total": 0, "page": 1, "totalPages": 0}, clock.now - 600)
        await store.set("usogui:paged:characters:1:{}", expired)
        store.delete = AsyncMock(side_effect=ConnectionError("redis down"))  # type: ignore[method-assign]
        cache = PagedResourceCache(ttl_seconds=60, persist=True, store=store, clock=clock)
        fetcher = CountingFetcher()

        entry = await cache.get_page("characters", 1, {}, fetcher)

        assert fetcher.calls == [1]
        assert entry.total == 120

    def test_persist_requires_store(self) -> None:
        with pytest.raises(ValueError):
            PagedResourceCache(persist=True)


def test_cached_page_payload() -> None:
    entry = CachedPage("users", 3, "{}", [{"id": 1}], 41, 3, 100.0)
    assert entry.key == ("users", 3, "{}")
    assert entry.payload() == {"data": [{"id": 1}], "total": 41, "page": 3, "totalPages": 3}
    assert entry.is_fresh(159.0, 60) is True
    assert entry.is_fresh(160.0, 60) is False
