"""Reader progress store.

Single source of truth for the highest chapter the reader has read.
Authenticated readers are backed by the remote profile, anonymous readers by
the local persistent store. Updates are optimistic: the pending value is
shown immediately and only becomes the confirmed value once persisted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from usogui.client import ApiClient
from usogui.exceptions import InvalidRangeError, MalformedCacheEntry
from usogui.storage import KeyValueStore, decode_envelope, encode_envelope

logger = structlog.get_logger()

ProgressListener = Callable[[int], None]


def validate_progress(value: int, max_chapter: int) -> int:
    """Return ``value`` if it is a chapter in ``1..max_chapter``.

    Raises:
        InvalidRangeError: If the value is out of range or not an integer.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRangeError(value, 1, max_chapter)
    if value < 1 or value > max_chapter:
        raise InvalidRangeError(value, 1, max_chapter)
    return value


class ReaderProgressStore:
    """One reader's reading progress with subscriber notification."""

    def __init__(
        self,
        store: KeyValueStore,
        api: ApiClient | None = None,
        *,
        max_chapter: int = 539,
        min_progress: int = 0,
        namespace: str = "usogui",
    ) -> None:
        self._store = store
        self._api = api
        self.max_chapter = max_chapter
        self._min_progress = min_progress
        self._key = f"{namespace}:progress"

        self._confirmed = min_progress
        self._pending: int | None = None
        # Writes go out one at a time in call order
        self._write_lock = asyncio.Lock()
        self._issued = 0
        self._listeners: list[ProgressListener] = []

    @property
    def authenticated(self) -> bool:
        return self._api is not None and self._api.is_authenticated

    def _remote(self) -> ApiClient | None:
        """The API client when progress lives on the remote profile."""
        return self._api if self.authenticated else None

    @property
    def display_progress(self) -> int:
        """What the reader sees: the pending value while an update is in flight."""
        return self._confirmed if self._pending is None else self._pending

    @property
    def pending(self) -> int | None:
        return self._pending

    def get_progress(self) -> int:
        """Last confirmed progress."""
        return self._confirmed

    async def load(self) -> int:
        """Populate the confirmed value from the remote profile or local store.

        Raises:
            FetchError: If the authenticated profile fetch fails.
        """
        api = self._remote()
        if api is not None:
            value = await api.get_progress()
            self._confirmed = value
            logger.info("progress_loaded", source="remote", progress=value)
        else:
            self._confirmed = await self._read_local()
            logger.info("progress_loaded", source="local", progress=self._confirmed)

        self._notify()
        return self._confirmed

    async def update_progress(self, value: int) -> int:
        """Validate and persist a new progress value.

        Overlapping calls are written in the order they were made, and only
        the most recent call decides what stays pending.

        Raises:
            InvalidRangeError: Before any I/O when out of ``1..max_chapter``.
            FetchError: When remote persistence fails. The confirmed value is
                kept and subscribers are told to show it again.
        """
        validate_progress(value, self.max_chapter)

        self._issued += 1
        seq = self._issued
        self._pending = value
        self._notify()

        try:
            async with self._write_lock:
                api = self._remote()
                if api is not None:
                    stored = await api.update_progress(value)
                else:
                    await self._store.set(self._key, encode_envelope(value))
                    stored = value
        except Exception:
            if seq == self._issued:
                self._pending = None
            self._notify()
            logger.warning("progress_update_failed", progress=value, confirmed=self._confirmed)
            raise

        self._confirmed = stored
        if seq == self._issued:
            self._pending = None
        self._notify()
        logger.info("progress_updated", progress=stored, remote=api is not None)
        return stored

    async def reset_local(self) -> None:
        """Forget the anonymous progress record."""
        await self._store.delete(self._key)
        if not self.authenticated:
            self._confirmed = self._min_progress
            self._notify()

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener called with the displayed progress after every change.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        value = self.display_progress
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.warning("progress_listener_failed", exc_info=True)

    async def _read_local(self) -> int:
        raw = await self._store.get(self._key)
        if raw is None:
            return self._min_progress
        try:
            value, _ = decode_envelope(self._key, raw)
            return validate_progress(value, self.max_chapter)
        except MalformedCacheEntry as e:
            logger.warning("progress_record_malformed", key=self._key, reason=e.reason)
        except InvalidRangeError:
            logger.warning("progress_record_out_of_range", key=self._key)
        await self._store.delete(self._key)
        return self._min_progress
