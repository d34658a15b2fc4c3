"""Paged resource cache.

Keeps fetched list pages keyed by (resource, page, filter signature) in an
OrderedDict ordered by recency. Entries older than the TTL are dropped when
they are next looked up; inserting past ``max_entries`` evicts the least
recently used entry across every resource.

Concurrent lookups for a key that is already being fetched await the same
task, so a page is requested from the network at most once at a time.
Optionally every entry is mirrored to a persistent store and rehydrated on a
memory miss, still subject to the TTL.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import OrderedDict, defaultdict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from usogui.config import Settings
from usogui.exceptions import FetchError, MalformedCacheEntry
from usogui.schemas import PaginatedResponse
from usogui.storage import KeyValueStore, decode_envelope, encode_envelope

logger = structlog.get_logger()

CacheKey = tuple[str, int, str]
PageFetcher = Callable[[int], Awaitable[PaginatedResponse | Mapping[str, Any]]]


def filter_signature(filters: Mapping[str, Any] | None) -> str:
    """Deterministic string for a filter mapping.

    Keys are sorted and ``None`` values dropped, so ``{"q": None}`` and ``{}``
    share a signature.
    """
    if not filters:
        return "{}"
    cleaned = {k: v for k, v in filters.items() if v is not None}
    return json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)


@dataclass
class CachedPage:
    """One cached page of a list resource."""

    resource_key: str
    page: int
    filter_signature: str
    data: list[Any]
    total: int
    total_pages: int
    fetched_at: float

    @property
    def key(self) -> CacheKey:
        return (self.resource_key, self.page, self.filter_signature)

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.fetched_at < ttl_seconds

    def payload(self) -> dict[str, Any]:
        """The paginated envelope, as persisted."""
        return {
            "data": self.data,
            "total": self.total,
            "page": self.page,
            "totalPages": self.total_pages,
        }

    @classmethod
    def from_response(
        cls,
        key: CacheKey,
        response: PaginatedResponse,
        fetched_at: float,
    ) -> CachedPage:
        resource_key, page, signature = key
        return cls(
            resource_key=resource_key,
            page=page,
            filter_signature=signature,
            data=list(response.data),
            total=response.total,
            total_pages=response.total_pages if response.total_pages is not None else 0,
            fetched_at=fetched_at,
        )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    dedup_waits: int = 0
    evictions: int = 0
    stale_discards: int = 0
    restored: int = 0
    invalidations: dict[str, int] = field(default_factory=dict)


class PagedResourceCache:
    """Process-wide cache of paginated list results."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 200,
        persist: bool = False,
        store: KeyValueStore | None = None,
        namespace: str = "usogui",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            msg = "max_entries must be at least 1"
            raise ValueError(msg)
        if ttl_seconds <= 0:
            msg = "ttl_seconds must be positive"
            raise ValueError(msg)
        if persist and store is None:
            msg = "persist=True requires a store"
            raise ValueError(msg)

        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._persist = persist
        self._store = store
        self._prefix = f"{namespace}:paged:"
        self._clock = clock

        self._entries: OrderedDict[CacheKey, CachedPage] = OrderedDict()
        self._inflight: dict[CacheKey, asyncio.Task[CachedPage]] = {}
        # Bumped on invalidate; fetches started under an older generation are not stored
        self._generations: defaultdict[str, int] = defaultdict(int)
        self._invalidated_at: dict[str, float] = {}
        self._stats = CacheStats()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> PagedResourceCache:
        return cls(
            ttl_seconds=settings.paged_cache_ttl_seconds,
            max_entries=settings.paged_cache_max_entries,
            persist=settings.paged_cache_persist and store is not None,
            store=store,
            namespace=settings.key_namespace,
            clock=clock,
        )

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[CacheKey]:
        """Cached keys, least recently used first."""
        return list(self._entries)

    @property
    def stats(self) -> dict[str, Any]:
        stats = asdict(self._stats)
        stats["entries"] = len(self._entries)
        stats["inflight"] = len(self._inflight)
        return stats

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_page(
        self,
        resource_key: str,
        page: int,
        filters: Mapping[str, Any] | None,
        fetcher: PageFetcher,
        *,
        ttl_seconds: float | None = None,
        persist: bool | None = None,
    ) -> CachedPage:
        """Return page ``page`` of ``resource_key``, fetching only when needed.

        Raises:
            FetchError: Propagated from ``fetcher``. Nothing is cached.
        """
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        mirror = self._persist if persist is None else persist
        if mirror and self._store is None:
            msg = "persist=True requires a store"
            raise ValueError(msg)

        key: CacheKey = (resource_key, page, filter_signature(filters))

        entry = self._lookup(key, ttl)
        if entry is not None:
            self._stats.hits += 1
            logger.debug("paged_cache_hit", resource=resource_key, page=page)
            return entry

        task = self._inflight.get(key)
        if task is not None:
            self._stats.dedup_waits += 1
            logger.debug("paged_cache_join_inflight", resource=resource_key, page=page)
            return await asyncio.shield(task)

        self._stats.misses += 1
        generation = self._generations[resource_key]
        task = asyncio.ensure_future(self._load(key, generation, ttl, mirror, fetcher))
        self._inflight[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def peek(self, resource_key: str, page: int, filters: Mapping[str, Any] | None = None) -> CachedPage | None:
        """Return a fresh in-memory entry without fetching or touching recency."""
        key = (resource_key, page, filter_signature(filters))
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock(), self._ttl):
            return None
        return entry

    def _lookup(self, key: CacheKey, ttl: float) -> CachedPage | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock(), ttl):
            del self._entries[key]
            self._stats.stale_discards += 1
            logger.debug("paged_cache_stale", resource=key[0], page=key[1])
            return None
        self._entries.move_to_end(key)
        return entry

    def _forget(self, key: CacheKey, task: asyncio.Task[CachedPage]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _load(
        self,
        key: CacheKey,
        generation: int,
        ttl: float,
        mirror: bool,
        fetcher: PageFetcher,
    ) -> CachedPage:
        resource_key, page, _ = key
        store = self._store if mirror else None

        if store is not None:
            restored = await self._restore(store, key, ttl)
            if restored is not None:
                if self._generations[resource_key] == generation:
                    self._insert(restored)
                return restored

        try:
            response = await fetcher(page)
        except Exception:
            logger.warning("paged_cache_fetch_failed", resource=resource_key, page=page, exc_info=True)
            raise

        if not isinstance(response, PaginatedResponse):
            try:
                response = PaginatedResponse.model_validate(response)
            except ValueError as e:
                msg = f"Unexpected list envelope for {resource_key}"
                raise FetchError(msg, details=response) from e

        entry = CachedPage.from_response(key, response, fetched_at=self._clock())

        if self._generations[resource_key] != generation:
            logger.debug("paged_cache_discard_invalidated", resource=resource_key, page=page)
            return entry

        self._insert(entry)
        if store is not None:
            await self._mirror(store, entry, ttl)
        logger.debug("paged_cache_stored", resource=resource_key, page=page, total=entry.total)
        return entry

    def _insert(self, entry: CachedPage) -> None:
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("paged_cache_evicted", resource=evicted[0], page=evicted[1])

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def storage_key(self, key: CacheKey) -> str:
        resource_key, page, signature = key
        return f"{self._prefix}{resource_key}:{page}:{signature}"

    async def _mirror(self, store: KeyValueStore, entry: CachedPage, ttl: float) -> None:
        try:
            await store.set(
                self.storage_key(entry.key),
                encode_envelope(entry.payload(), entry.fetched_at),
                ttl_seconds=ttl,
            )
        except Exception:
            logger.warning("paged_cache_persist_failed", resource=entry.resource_key, exc_info=True)

    async def _restore(self, store: KeyValueStore, key: CacheKey, ttl: float) -> CachedPage | None:
        storage_key = self.storage_key(key)
        try:
            raw = await store.get(storage_key)
        except Exception:
            logger.warning("paged_cache_restore_failed", key=storage_key, exc_info=True)
            return None
        if raw is None:
            return None

        try:
            value, timestamp = decode_envelope(storage_key, raw)
            try:
                response = PaginatedResponse.model_validate(value)
            except ValueError as e:
                raise MalformedCacheEntry(storage_key, "not a paginated envelope") from e
        except MalformedCacheEntry as e:
            logger.warning("paged_cache_malformed_entry", key=storage_key, reason=e.reason)
            await self._discard(store, storage_key)
            return None

        entry = CachedPage.from_response(key, response, fetched_at=timestamp)
        invalidated_at = self._invalidated_at.get(key[0])
        if not entry.is_fresh(self._clock(), ttl) or (invalidated_at is not None and timestamp <= invalidated_at):
            await self._discard(store, storage_key)
            return None

        self._stats.restored += 1
        logger.debug("paged_cache_restored", resource=key[0], page=key[1])
        return entry

    async def _discard(self, store: KeyValueStore, storage_key: str) -> None:
        try:
            await store.delete(storage_key)
        except Exception:
            logger.warning("paged_cache_discard_failed", key=storage_key, exc_info=True)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, resource_key: str) -> int:
        """Drop every in-memory entry for ``resource_key``.

        Takes effect for the next ``get_page`` call. Fetches already in
        flight still resolve for their waiters but are not stored, and
        persisted mirror entries written before this call are ignored.
        Returns the number of entries dropped.
        """
        self._generations[resource_key] += 1
        self._invalidated_at[resource_key] = self._clock()
        doomed = [key for key in self._entries if key[0] == resource_key]
        for key in doomed:
            del self._entries[key]
        for key in [k for k in self._inflight if k[0] == resource_key]:
            del self._inflight[key]

        self._stats.invalidations[resource_key] = self._stats.invalidations.get(resource_key, 0) + 1
        logger.info("paged_cache_invalidated", resource=resource_key, dropped=len(doomed))
        return len(doomed)

    async def ainvalidate(self, resource_key: str) -> int:
        """Invalidate in memory, then remove the persisted mirror entries."""
        dropped = self.invalidate(resource_key)
        if self._store is not None:
            await self._store.delete_prefix(f"{self._prefix}{resource_key}:")
        return dropped

    def clear(self) -> None:
        """Drop every in-memory entry and forget in-flight fetches."""
        for resource_key in {key[0] for key in self._entries} | {key[0] for key in self._inflight}:
            self._generations[resource_key] += 1
        self._entries.clear()
        self._inflight.clear()
