"""Profile mutations that change list membership."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from usogui.context import ReaderContext

logger = structlog.get_logger()

USERS_RESOURCE = "users"


async def update_profile(ctx: ReaderContext, **fields: Any) -> dict[str, Any]:
    """PATCH the reader's profile, then drop cached public user lists.

    Raises:
        FetchError: If the API rejects the update. The cache is left as is.
    """
    body = await ctx.api.update_profile(**fields)
    dropped = await ctx.cache.ainvalidate(USERS_RESOURCE)
    logger.info("profile_updated", fields=sorted(fields), users_pages_dropped=dropped)
    return body


async def update_username(ctx: ReaderContext, username: str) -> dict[str, Any]:
    """Change the reader's username.

    Raises:
        ValueError: If the username is blank.
        FetchError: If the API rejects the update.
    """
    username = username.strip()
    if not username:
        msg = "Username must not be empty"
        raise ValueError(msg)
    return await update_profile(ctx, username=username)
