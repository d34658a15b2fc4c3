"""Reader sessions for the HTTP surface.

Every browser talking to the reader service is a separate reader. A reader
is identified by its bearer token or, when anonymous, by an opaque session
id it sends in ``X-Reader-Session``. Each reader gets its own API client,
progress store and spoiler settings, namespaced on the shared key-value
store. The paged cache and the store itself are shared by all readers.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
from collections import OrderedDict
from collections.abc import Callable

import httpx
import structlog

from usogui.config import Settings
from usogui.context import ReaderContext
from usogui.storage import KeyValueStore

logger = structlog.get_logger()

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


def reader_key(*, token: str | None = None, session_id: str | None = None) -> str:
    """Stable store-safe id for a reader. Tokens are hashed, never stored.

    Raises:
        ValueError: If neither identity is given or the session id is malformed.
    """
    if token:
        return "t-" + hashlib.sha256(token.encode()).hexdigest()[:32]
    if session_id is None:
        msg = "A bearer token or reader session id is required"
        raise ValueError(msg)
    if not SESSION_ID_PATTERN.match(session_id):
        msg = "Reader session id must be 8-128 characters of letters, digits, '-' or '_'"
        raise ValueError(msg)
    return f"s-{session_id}"


class ReaderSessions:
    """Per-reader contexts around one shared store and cache.

    Idle readers beyond ``max_readers`` are closed least recently used first
    and rebuilt from persisted state on their next request.
    """

    def __init__(
        self,
        shared: ReaderContext,
        *,
        max_readers: int = 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_readers < 1:
            msg = "max_readers must be at least 1"
            raise ValueError(msg)
        self.shared = shared
        self._max_readers = max_readers
        self._transport = transport
        self._readers: OrderedDict[str, ReaderContext] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    async def open(
        cls,
        settings: Settings,
        *,
        store: KeyValueStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> ReaderSessions:
        """Build the shared context used for list pages and chapters."""
        shared = await ReaderContext.init(
            settings,
            token=settings.api_token,
            store=store,
            transport=transport,
            clock=clock,
            load=False,
        )
        return cls(shared, max_readers=settings.max_reader_sessions, transport=transport)

    @property
    def settings(self) -> Settings:
        return self.shared.settings

    def __len__(self) -> int:
        return len(self._readers)

    async def resolve(self, *, token: str | None = None, session_id: str | None = None) -> ReaderContext:
        """Return the context for one reader, building and loading it on first use.

        Raises:
            ValueError: If the reader cannot be identified.
            FetchError: If loading an authenticated reader's progress fails.
        """
        token = token or None
        key = reader_key(token=token, session_id=session_id)
        ctx = self._readers.get(key)
        if ctx is not None:
            self._readers.move_to_end(key)
            return ctx

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                ctx = self._readers.get(key)
                if ctx is None:
                    ctx = await self._build(key, token)
                    await self._evict()
                else:
                    self._readers.move_to_end(key)
        finally:
            if self._locks.get(key) is lock and not lock.locked():
                del self._locks[key]
        return ctx

    async def _build(self, key: str, token: str | None) -> ReaderContext:
        ctx = await ReaderContext.init(
            self.settings,
            token=token,
            store=self.shared.store,
            cache=self.shared.cache,
            reader_id=key,
            transport=self._transport,
        )
        existing = self._readers.get(key)
        if existing is not None:
            await ctx.close()
            self._readers.move_to_end(key)
            return existing
        self._readers[key] = ctx
        logger.info("reader_session_opened", reader=key, authenticated=token is not None, readers=len(self._readers))
        return ctx

    async def _evict(self) -> None:
        while len(self._readers) > self._max_readers:
            key, ctx = self._readers.popitem(last=False)
            await ctx.close()
            logger.info("reader_session_evicted", reader=key)

    async def close(self) -> None:
        """Close every reader, then the shared context."""
        while self._readers:
            _, ctx = self._readers.popitem(last=False)
            await ctx.close()
        await self.shared.close()
