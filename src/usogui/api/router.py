"""Reader router: all /api/v1/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query, Request

from usogui.context import ReaderContext
from usogui.dependencies import get_context, get_reader
from usogui.exceptions import InvalidRangeError
from usogui.schemas import (
    Chapter,
    InvalidateResponse,
    MarkdownGateRequest,
    MarkdownGateResponse,
    MarkdownSegmentResult,
    PageResponse,
    ProgressStateResponse,
    ProgressUpdateRequest,
    SpoilerCheckRequest,
    SpoilerCheckResponse,
    SpoilerCheckResult,
    SpoilerSettings,
    SpoilerSettingsUpdateRequest,
)
from usogui.spoilers.gate import effective_progress, should_hide, spoiler_label
from usogui.spoilers.markdown import split_spoilers

router = APIRouter(prefix="/api/v1", tags=["Reader"])

RESOURCE_PATTERN = r"^[a-z][a-z0-9-]*$"
RESERVED_PARAMS = {"page", "limit"}


def _progress_state(ctx: ReaderContext) -> ProgressStateResponse:
    return ProgressStateResponse(
        progress=ctx.progress.get_progress(),
        display_progress=ctx.progress.display_progress,
        authenticated=ctx.progress.authenticated,
        max_chapter=ctx.progress.max_chapter,
    )


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@router.get("/progress", response_model=ProgressStateResponse)
async def get_progress(ctx: ReaderContext = Depends(get_reader)) -> ProgressStateResponse:  # noqa: B008
    """Current reading progress."""
    return _progress_state(ctx)


@router.put("/progress", response_model=ProgressStateResponse)
async def update_progress(
    body: ProgressUpdateRequest,
    ctx: ReaderContext = Depends(get_reader),  # noqa: B008
) -> ProgressStateResponse:
    """Set the highest chapter read. 400 when out of range, 502 when the API fails."""
    await ctx.progress.update_progress(body.user_progress)
    return _progress_state(ctx)


# ---------------------------------------------------------------------------
# Spoilers
# ---------------------------------------------------------------------------


@router.get("/spoiler-settings", response_model=SpoilerSettings)
async def get_spoiler_settings(ctx: ReaderContext = Depends(get_reader)) -> SpoilerSettings:  # noqa: B008
    return ctx.spoiler_settings.get()


@router.put("/spoiler-settings", response_model=SpoilerSettings)
async def update_spoiler_settings(
    body: SpoilerSettingsUpdateRequest,
    ctx: ReaderContext = Depends(get_reader),  # noqa: B008
) -> SpoilerSettings:
    return await ctx.spoiler_settings.update(
        show_all_spoilers=body.show_all_spoilers,
        chapter_tolerance=body.chapter_tolerance,
    )


@router.post("/spoilers/check", response_model=SpoilerCheckResponse)
async def check_spoilers(
    body: SpoilerCheckRequest,
    ctx: ReaderContext = Depends(get_reader),  # noqa: B008
) -> SpoilerCheckResponse:
    """Gate a batch of items against the reader's current progress and settings."""
    settings = ctx.spoiler_settings.get()
    progress = ctx.progress.display_progress
    return SpoilerCheckResponse(
        effective_progress=effective_progress(settings, progress),
        results=[
            SpoilerCheckResult(
                id=item.id,
                chapter_number=item.chapter_number,
                hidden=should_hide(item.chapter_number, settings, progress),
                label=spoiler_label(item.chapter_number),
            )
            for item in body.items
        ],
    )


@router.post("/spoilers/markdown", response_model=MarkdownGateResponse)
async def gate_markdown(
    body: MarkdownGateRequest,
    ctx: ReaderContext = Depends(get_reader),  # noqa: B008
) -> MarkdownGateResponse:
    """Split markdown into plain and spoiler segments gated for this reader."""
    settings = ctx.spoiler_settings.get()
    progress = ctx.progress.display_progress
    segments: list[MarkdownSegmentResult] = []
    for segment in split_spoilers(body.content):
        if segment.gate is None:
            segments.append(MarkdownSegmentResult(text=segment.text, spoiler=False))
            continue
        view = segment.gate.render(progress, settings)
        segments.append(
            MarkdownSegmentResult(
                text=segment.text,
                spoiler=True,
                chapter_number=view.chapter_number,
                hidden=view.hidden,
                label=view.label,
            )
        )
    return MarkdownGateResponse(effective_progress=effective_progress(settings, progress), segments=segments)


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


@router.get("/lists/{resource}", response_model=PageResponse)
async def get_list_page(
    request: Request,
    resource: str = Path(..., pattern=RESOURCE_PATTERN),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=100),
    ctx: ReaderContext = Depends(get_context),  # noqa: B008
) -> PageResponse:
    """Page of a wiki list resource, served from the cache when fresh.

    Query parameters other than ``page`` and ``limit`` are passed through as filters.
    """
    filters = {k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS}
    page_size = limit or ctx.settings.paged_cache_page_size
    entry = await ctx.cache.get_page(
        resource,
        page,
        {**filters, "limit": page_size},
        ctx.api.list_fetcher(resource, limit=page_size, filters=filters),
    )
    return PageResponse(
        resource=resource,
        data=entry.data,
        total=entry.total,
        page=entry.page,
        total_pages=entry.total_pages,
        fetched_at=entry.fetched_at,
    )


@router.post("/lists/{resource}/invalidate", response_model=InvalidateResponse)
async def invalidate_list(
    resource: str = Path(..., pattern=RESOURCE_PATTERN),
    ctx: ReaderContext = Depends(get_context),  # noqa: B008
) -> InvalidateResponse:
    """Drop every cached page of a resource, in memory and persisted."""
    dropped = await ctx.cache.ainvalidate(resource)
    return InvalidateResponse(resource=resource, dropped=dropped)


# ---------------------------------------------------------------------------
# Chapters
# ---------------------------------------------------------------------------


@router.get("/chapters/{number}", response_model=Chapter)
async def get_chapter(
    number: int = Path(..., ge=1),
    ctx: ReaderContext = Depends(get_context),  # noqa: B008
) -> Chapter:
    """Chapter metadata for display next to gated content."""
    if number > ctx.settings.max_chapter:
        raise InvalidRangeError(number, 1, ctx.settings.max_chapter)
    return await ctx.api.get_chapter(number)
