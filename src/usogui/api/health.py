"""Health and version endpoints."""

from fastapi import APIRouter, Depends

from usogui.context import ReaderContext
from usogui.dependencies import get_context

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/version")
async def version(ctx: ReaderContext = Depends(get_context)) -> dict[str, str]:  # noqa: B008
    """Return reader version and environment."""
    return {
        "version": ctx.settings.app_version,
        "environment": ctx.settings.environment,
    }
