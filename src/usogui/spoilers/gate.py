"""Spoiler gate.

``should_hide`` decides whether chapter-tagged content is past the reader's
effective progress. ``SpoilerGate`` wraps one rendered content instance: it
recomputes the decision on every render and holds the click-to-reveal
override, which is one-way for the lifetime of the instance.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from usogui.schemas import SpoilerSettings

if TYPE_CHECKING:
    from usogui.progress.store import ReaderProgressStore
    from usogui.spoilers.settings import SpoilerSettingsStore

T = TypeVar("T")


def effective_progress(settings: SpoilerSettings, progress: int) -> int:
    """Chapter tolerance, when set, replaces tracked progress."""
    return settings.chapter_tolerance if settings.chapter_tolerance > 0 else progress


def should_hide(chapter_number: int | None, settings: SpoilerSettings, progress: int) -> bool:
    """Whether content tagged ``chapter_number`` must be hidden from this reader.

    Content without a chapter is never hidden. A chapter equal to the
    effective progress is visible.
    """
    if settings.show_all_spoilers:
        return False
    baseline = effective_progress(settings, progress)
    if chapter_number is None:
        return False
    return chapter_number > baseline


def spoiler_label(chapter_number: int | None) -> str:
    return f"Chapter {chapter_number} Spoiler" if chapter_number else "Spoiler"


def spoiler_tooltip(chapter_number: int | None, baseline: int) -> str:
    if chapter_number:
        return f"Chapter {chapter_number} spoiler - You're at Chapter {baseline}. Click to reveal."
    return "Spoiler content. Click to reveal."


class GateState(enum.Enum):
    HIDDEN = "hidden"
    REVEALED = "revealed"


class RevealEvent(Protocol):
    """The click/tap that revealed the content."""

    def stop_propagation(self) -> None: ...


@dataclass(frozen=True)
class GatedView(Generic[T]):
    """Render output of a gate.

    ``content`` is always present, hidden or not: a hidden view draws the
    placeholder over it instead of leaving it out.
    """

    content: T
    state: GateState
    chapter_number: int | None
    label: str
    tooltip: str

    @property
    def hidden(self) -> bool:
        return self.state is GateState.HIDDEN


class SpoilerGate(Generic[T]):
    """Gate for a single rendered content item."""

    def __init__(self, content: T, chapter_number: int | None = None) -> None:
        self.content = content
        self.chapter_number = chapter_number
        self._revealed = False

    @property
    def revealed(self) -> bool:
        return self._revealed

    def state(self, progress: int, settings: SpoilerSettings) -> GateState:
        if self._revealed or not should_hide(self.chapter_number, settings, progress):
            return GateState.REVEALED
        return GateState.HIDDEN

    def render(self, progress: int, settings: SpoilerSettings) -> GatedView[T]:
        """Compute the view from the latest progress and settings."""
        baseline = effective_progress(settings, progress)
        return GatedView(
            content=self.content,
            state=self.state(progress, settings),
            chapter_number=self.chapter_number,
            label=spoiler_label(self.chapter_number),
            tooltip=spoiler_tooltip(self.chapter_number, baseline),
        )

    def render_from(self, progress_store: ReaderProgressStore, settings_store: SpoilerSettingsStore) -> GatedView[T]:
        """Render against the live stores."""
        return self.render(progress_store.display_progress, settings_store.get())

    def reveal(self, event: RevealEvent | None = None) -> None:
        """Reveal the content. Stops the click reaching enclosing containers."""
        if event is not None:
            event.stop_propagation()
            prevent_default = getattr(event, "prevent_default", None)
            if callable(prevent_default):
                prevent_default()
        self._revealed = True


def filter_visible(
    items: Iterable[T],
    settings: SpoilerSettings,
    progress: int,
    chapter_of: Callable[[T], int | None] | None = None,
) -> list[T]:
    """Drop items that the gate would hide.

    ``chapter_of`` extracts the chapter from an item; by default the
    ``chapterNumber``/``chapter_number`` key or attribute is used.
    """
    extract = chapter_of or _chapter_of
    return [item for item in items if not should_hide(extract(item), settings, progress)]


def _chapter_of(item: Any) -> int | None:
    if isinstance(item, dict):
        value = item.get("chapterNumber", item.get("chapter_number"))
    else:
        value = getattr(item, "chapter_number", None)
    return value if isinstance(value, int) and not isinstance(value, bool) else None
