"""Reader context: the process-wide services, constructed explicitly.

Built once at startup with ``await ReaderContext.init(settings)`` and passed
by reference to whatever needs the cache or the stores. Closed on shutdown.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType

import httpx
import structlog

from usogui.cache.paged import PagedResourceCache
from usogui.cache.view import PagedView
from usogui.client import ApiClient
from usogui.config import Settings
from usogui.progress.store import ReaderProgressStore
from usogui.spoilers.gate import SpoilerGate, should_hide
from usogui.spoilers.settings import SpoilerSettingsStore
from usogui.storage import KeyValueStore, open_store

logger = structlog.get_logger()


@dataclass
class ReaderContext:
    """Everything a reader session shares."""

    settings: Settings
    store: KeyValueStore
    api: ApiClient
    cache: PagedResourceCache
    progress: ReaderProgressStore
    spoiler_settings: SpoilerSettingsStore
    owns_store: bool = True

    @classmethod
    async def init(
        cls,
        settings: Settings,
        *,
        token: str | None = None,
        store: KeyValueStore | None = None,
        cache: PagedResourceCache | None = None,
        reader_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        load: bool = True,
    ) -> ReaderContext:
        """Build the context and, unless ``load`` is False, load persisted state.

        A ``store`` or ``cache`` passed in is shared with the caller and left
        open by ``close``. ``reader_id`` keeps this reader's progress and
        spoiler settings apart from other readers on the same store.
        """
        kv = store if store is not None else open_store(settings)
        namespace = settings.key_namespace if reader_id is None else f"{settings.key_namespace}:reader:{reader_id}"
        api = ApiClient.from_settings(settings, token=token, transport=transport)
        ctx = cls(
            settings=settings,
            store=kv,
            api=api,
            cache=cache if cache is not None else PagedResourceCache.from_settings(settings, store=kv, clock=clock),
            progress=ReaderProgressStore(
                kv,
                api,
                max_chapter=settings.max_chapter,
                min_progress=settings.min_progress,
                namespace=namespace,
            ),
            spoiler_settings=SpoilerSettingsStore(kv, max_chapter=settings.max_chapter, namespace=namespace),
            owns_store=store is None,
        )
        if load:
            try:
                await ctx.spoiler_settings.load()
                await ctx.progress.load()
            except BaseException:
                await ctx.close()
                raise
        logger.info(
            "reader_context_ready",
            authenticated=api.is_authenticated,
            reader=reader_id,
            storage=settings.storage_backend,
            persist=settings.paged_cache_persist,
        )
        return ctx

    async def close(self) -> None:
        await self.api.close()
        if self.owns_store:
            await self.store.close()

    async def __aenter__(self) -> ReaderContext:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def list_view(self, resource_key: str, *, limit: int | None = None) -> PagedView:
        """A list consumer for a REST resource, sharing this context's cache."""
        return PagedView.for_resource(
            self.cache,
            self.api,
            resource_key,
            limit=limit or self.settings.paged_cache_page_size,
        )

    def gate(self, content: object, chapter_number: int | None) -> SpoilerGate[object]:
        return SpoilerGate(content, chapter_number)

    def is_hidden(self, chapter_number: int | None) -> bool:
        """Gate decision against the live progress and settings."""
        return should_hide(chapter_number, self.spoiler_settings.get(), self.progress.display_progress)
