"""Spoiler gating of chapter-tagged content."""

from usogui.spoilers.gate import (
    GatedView,
    GateState,
    SpoilerGate,
    effective_progress,
    filter_visible,
    should_hide,
)
from usogui.spoilers.markdown import MarkdownSegment, render_segments, split_spoilers
from usogui.spoilers.settings import SpoilerSettingsStore

__all__ = [
    "GateState",
    "GatedView",
    "MarkdownSegment",
    "SpoilerGate",
    "SpoilerSettingsStore",
    "effective_progress",
    "filter_visible",
    "render_segments",
    "should_hide",
    "split_spoilers",
]
