"""List-page consumer of the paged cache.

Holds what a list page currently displays. A failed load keeps the data
already on screen and only sets ``error``; results that arrive after
``close()`` or after a newer load was started are dropped.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from usogui.cache.paged import CachedPage, PagedResourceCache, PageFetcher
from usogui.client import ApiClient
from usogui.exceptions import FetchError

logger = structlog.get_logger()

FetcherFactory = Callable[[Mapping[str, Any]], PageFetcher]


class PagedView:
    """Display state for one paginated list."""

    def __init__(
        self,
        cache: PagedResourceCache,
        resource_key: str,
        fetcher_factory: FetcherFactory,
        *,
        ttl_seconds: float | None = None,
        persist: bool | None = None,
    ) -> None:
        self._cache = cache
        self.resource_key = resource_key
        self._fetcher_factory = fetcher_factory
        self._ttl = ttl_seconds
        self._persist = persist

        self.data: list[Any] = []
        self.total = 0
        self.page = 1
        self.total_pages = 0
        self.filters: dict[str, Any] = {}
        self.loading = False
        self.error: FetchError | None = None

        self._loaded = False
        self._alive = True
        self._seq = 0

    @classmethod
    def for_resource(
        cls,
        cache: PagedResourceCache,
        api: ApiClient,
        resource_key: str,
        *,
        limit: int = 20,
        ttl_seconds: float | None = None,
        persist: bool | None = None,
    ) -> PagedView:
        """View over a REST list endpoint of the wiki API."""
        return cls(
            cache,
            resource_key,
            lambda filters: api.list_fetcher(resource_key, limit=limit, filters=filters),
            ttl_seconds=ttl_seconds,
            persist=persist,
        )

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def status(self) -> str:
        """One of idle, loading, error, empty, ready."""
        if self.loading:
            return "loading"
        if self.error is not None:
            return "error"
        if not self._loaded:
            return "idle"
        return "ready" if self.data else "empty"

    async def load(self, page: int | None = None, filters: Mapping[str, Any] | None = None) -> CachedPage | None:
        """Load a page through the cache and apply it if still relevant.

        Returns the applied page, or None when the load failed or its result
        was discarded.
        """
        if not self._alive:
            return None

        target_page = self.page if page is None else page
        target_filters = dict(self.filters if filters is None else filters)

        self._seq += 1
        seq = self._seq
        self.loading = True
        self.error = None

        try:
            entry = await self._cache.get_page(
                self.resource_key,
                target_page,
                target_filters,
                self._fetcher_factory(target_filters),
                ttl_seconds=self._ttl,
                persist=self._persist,
            )
        except FetchError as e:
            if self._current(seq):
                self.loading = False
                self.error = e
                logger.warning("paged_view_load_failed", resource=self.resource_key, page=target_page, error=str(e))
            return None
        except BaseException:
            if self._current(seq):
                self.loading = False
            raise

        if not self._current(seq):
            logger.debug("paged_view_result_discarded", resource=self.resource_key, page=target_page)
            return None

        self.data = entry.data
        self.total = entry.total
        self.page = entry.page
        self.total_pages = entry.total_pages
        self.filters = target_filters
        self.loading = False
        self._loaded = True
        return entry

    async def set_filters(self, filters: Mapping[str, Any]) -> CachedPage | None:
        """Apply new filters, starting back at page 1."""
        return await self.load(1, filters)

    async def refresh(self) -> CachedPage | None:
        """Drop the resource from the cache and reload the current page."""
        self._cache.invalidate(self.resource_key)
        return await self.load()

    def close(self) -> None:
        """Mark the view unmounted. Late results are discarded."""
        self._alive = False
        self.loading = False

    def _current(self, seq: int) -> bool:
        return self._alive and seq == self._seq
