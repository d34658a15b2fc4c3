"""Inline spoiler blocks in markdown content.

Wiki text can mark passages as spoilers in two ways::

    > [!SPOILER Chapter 120] Kaji was ...

    :::spoiler Chapter 120
    Kaji was ...
    :::

The chapter tag is optional in both. ``split_spoilers`` cuts a document into
plain and spoiler segments; every spoiler segment carries its own
``SpoilerGate`` so it can be rendered and revealed independently of the
rest of the page. A blockquote without the marker is plain text.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from usogui.schemas import SpoilerSettings
from usogui.spoilers.gate import GatedView, SpoilerGate

QUOTE_LINE = re.compile(r"^\s{0,3}>\s?(.*)$")
QUOTE_MARKER = re.compile(r"^\[!SPOILER(?:\s+Chapter\s+(\d+))?\]\s*(.*)", re.IGNORECASE | re.DOTALL)
CONTAINER_OPEN = re.compile(r"^\s{0,3}:::\s*spoiler\b(.*)$", re.IGNORECASE)
CONTAINER_CLOSE = re.compile(r"^\s{0,3}:::\s*$")
CHAPTER_TAG = re.compile(r"Chapter\s+(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class MarkdownSegment:
    """A run of plain markdown, or one gated spoiler block."""

    text: str
    gate: SpoilerGate[str] | None = None

    @property
    def is_spoiler(self) -> bool:
        return self.gate is not None

    @property
    def chapter_number(self) -> int | None:
        return self.gate.chapter_number if self.gate is not None else None


def _spoiler(text: str, chapter: str | None) -> MarkdownSegment:
    return MarkdownSegment(text=text, gate=SpoilerGate(text, int(chapter) if chapter else None))


def split_spoilers(content: str) -> list[MarkdownSegment]:
    """Split ``content`` into plain and spoiler segments, in document order.

    An unterminated ``:::spoiler`` container runs to the end of the text.
    """
    lines = content.splitlines()
    segments: list[MarkdownSegment] = []
    plain: list[str] = []

    def flush_plain() -> None:
        if plain:
            segments.append(MarkdownSegment(text="\n".join(plain)))
            plain.clear()

    i = 0
    while i < len(lines):
        line = lines[i]

        opened = CONTAINER_OPEN.match(line)
        if opened:
            header = opened.group(1)
            body: list[str] = []
            i += 1
            while i < len(lines) and not CONTAINER_CLOSE.match(lines[i]):
                body.append(lines[i])
                i += 1
            i += 1  # closing fence
            text = "\n".join(body)
            tag = CHAPTER_TAG.search(header) or CHAPTER_TAG.search(text)
            flush_plain()
            segments.append(_spoiler(text, tag.group(1) if tag else None))
            continue

        if QUOTE_LINE.match(line):
            start = i
            quoted: list[str] = []
            while i < len(lines) and (m := QUOTE_LINE.match(lines[i])):
                quoted.append(m.group(1))
                i += 1
            marker = QUOTE_MARKER.match("\n".join(quoted))
            if marker is None:
                plain.extend(lines[start:i])
                continue
            flush_plain()
            segments.append(_spoiler(marker.group(2), marker.group(1)))
            continue

        plain.append(line)
        i += 1

    flush_plain()
    return segments


def render_segments(
    segments: Iterable[MarkdownSegment],
    progress: int,
    settings: SpoilerSettings,
) -> list[str | GatedView[str]]:
    """Plain text as-is, spoiler blocks as gate views against current progress."""
    return [s.gate.render(progress, settings) if s.gate is not None else s.text for s in segments]
