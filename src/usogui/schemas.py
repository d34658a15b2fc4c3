"""Wire and value schemas shared by the client, stores and HTTP surface."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# REST collaborator envelopes
# ---------------------------------------------------------------------------


class PaginatedResponse(BaseModel):
    """Paginated list envelope every list endpoint returns."""

    model_config = ConfigDict(populate_by_name=True)

    data: list[Any]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    total_pages: int | None = Field(None, alias="totalPages", ge=0)

    def with_page_count(self, limit: int) -> PaginatedResponse:
        """Fill ``total_pages`` from ``total`` when the server omitted it."""
        if self.total_pages is not None:
            return self
        pages = math.ceil(self.total / limit) if limit > 0 else 0
        return self.model_copy(update={"total_pages": pages})


class ProgressResponse(BaseModel):
    """Body of GET/PUT /users/profile/progress."""

    model_config = ConfigDict(populate_by_name=True)

    user_progress: int = Field(..., alias="userProgress")
    username: str | None = None
    message: str | None = None


class Chapter(BaseModel):
    """Chapter metadata. Display only, never used for gating."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    number: int
    title: str | None = None
    summary: str | None = None


# ---------------------------------------------------------------------------
# Reader preferences
# ---------------------------------------------------------------------------


class SpoilerSettings(BaseModel):
    """Client-wide spoiler preferences."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    show_all_spoilers: bool = Field(False, alias="showAllSpoilers")
    chapter_tolerance: int = Field(0, alias="chapterTolerance", ge=0)


# ---------------------------------------------------------------------------
# Reader HTTP surface
# ---------------------------------------------------------------------------


class ProgressUpdateRequest(BaseModel):
    """Set the reader's highest chapter read."""

    model_config = ConfigDict(populate_by_name=True)

    user_progress: int = Field(..., alias="userProgress")


class ProgressStateResponse(BaseModel):
    """Confirmed and displayed reading progress."""

    progress: int
    display_progress: int
    authenticated: bool
    max_chapter: int


class SpoilerSettingsUpdateRequest(BaseModel):
    """Partial spoiler settings update. Omitted fields are unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    show_all_spoilers: bool | None = Field(None, alias="showAllSpoilers")
    chapter_tolerance: int | None = Field(None, alias="chapterTolerance")


class SpoilerCheckItem(BaseModel):
    """A content item to run through the spoiler gate."""

    model_config = ConfigDict(populate_by_name=True)

    id: int | str
    chapter_number: int | None = Field(None, alias="chapterNumber")


class SpoilerCheckRequest(BaseModel):
    """Batch of content items to gate against the current reader."""

    items: list[SpoilerCheckItem] = Field(default_factory=list, max_length=500)


class SpoilerCheckResult(BaseModel):
    """Gate decision for one item."""

    id: int | str
    chapter_number: int | None
    hidden: bool
    label: str


class SpoilerCheckResponse(BaseModel):
    """Gate decisions plus the baseline they were computed against."""

    effective_progress: int
    results: list[SpoilerCheckResult]


class MarkdownGateRequest(BaseModel):
    """Markdown content whose inline spoiler blocks should be gated."""

    content: str = Field(..., max_length=200_000)


class MarkdownSegmentResult(BaseModel):
    """One plain or spoiler segment of a markdown document."""

    text: str
    spoiler: bool
    chapter_number: int | None = None
    hidden: bool = False
    label: str | None = None


class MarkdownGateResponse(BaseModel):
    effective_progress: int
    segments: list[MarkdownSegmentResult]


class PageResponse(BaseModel):
    """A cached page as returned by the reader HTTP surface."""

    resource: str
    data: list[Any]
    total: int
    page: int
    total_pages: int
    fetched_at: float


class InvalidateResponse(BaseModel):
    """Result of dropping a resource from the cache."""

    resource: str
    dropped: int
