"""Spoiler settings store.

Holds the client-wide ``SpoilerSettings`` in the local persistent store.
Created with defaults on first use and only changed through ``update``.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from pydantic import ValidationError

from usogui.exceptions import InvalidRangeError, MalformedCacheEntry
from usogui.schemas import SpoilerSettings
from usogui.storage import KeyValueStore, decode_envelope, encode_envelope

logger = structlog.get_logger()

SettingsListener = Callable[[SpoilerSettings], None]


class SpoilerSettingsStore:
    """Persisted spoiler preferences."""

    def __init__(self, store: KeyValueStore, *, max_chapter: int = 539, namespace: str = "usogui") -> None:
        self._store = store
        self.max_chapter = max_chapter
        self._key = f"{namespace}:spoiler-settings"
        self._settings = SpoilerSettings()
        self._listeners: list[SettingsListener] = []

    def get(self) -> SpoilerSettings:
        return self._settings

    async def load(self) -> SpoilerSettings:
        """Read persisted settings, falling back to defaults on a bad record."""
        raw = await self._store.get(self._key)
        if raw is None:
            self._settings = SpoilerSettings()
            return self._settings

        try:
            value, _ = decode_envelope(self._key, raw)
            try:
                self._settings = SpoilerSettings.model_validate(value)
            except ValidationError as e:
                raise MalformedCacheEntry(self._key, "invalid spoiler settings") from e
        except MalformedCacheEntry as e:
            logger.warning("spoiler_settings_malformed", key=self._key, reason=e.reason)
            await self._store.delete(self._key)
            self._settings = SpoilerSettings()

        self._notify()
        return self._settings

    async def update(
        self,
        *,
        show_all_spoilers: bool | None = None,
        chapter_tolerance: int | None = None,
    ) -> SpoilerSettings:
        """Change the provided fields and persist the result.

        Raises:
            InvalidRangeError: If ``chapter_tolerance`` is outside ``0..max_chapter``.
        """
        changes: dict[str, object] = {}
        if show_all_spoilers is not None:
            changes["show_all_spoilers"] = bool(show_all_spoilers)
        if chapter_tolerance is not None:
            if chapter_tolerance < 0 or chapter_tolerance > self.max_chapter:
                raise InvalidRangeError(chapter_tolerance, 0, self.max_chapter)
            changes["chapter_tolerance"] = chapter_tolerance

        if not changes:
            return self._settings

        updated = self._settings.model_copy(update=changes)
        await self._store.set(self._key, encode_envelope(updated.model_dump(by_alias=True)))
        self._settings = updated
        self._notify()
        logger.info("spoiler_settings_updated", **changes)
        return updated

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._settings)
            except Exception:
                logger.warning("spoiler_settings_listener_failed", exc_info=True)
