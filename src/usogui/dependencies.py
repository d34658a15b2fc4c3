"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from usogui.context import ReaderContext
from usogui.sessions import ReaderSessions

_bearer = HTTPBearer(auto_error=False)


def get_sessions(request: Request) -> ReaderSessions:
    """Return the reader sessions built during app startup."""
    sessions: ReaderSessions | None = getattr(request.app.state, "readers", None)
    if sessions is None:
        msg = "Reader sessions not initialized. Start the app through its lifespan."
        raise RuntimeError(msg)
    return sessions


def get_context(request: Request) -> ReaderContext:
    """The shared context: list cache and chapter lookups, no reader state."""
    return get_sessions(request).shared


async def get_reader(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),  # noqa: B008
    x_reader_session: str | None = Header(None),
) -> ReaderContext:
    """The calling reader's context, from its bearer token or X-Reader-Session.

    Raises 401 when the request carries neither.
    """
    token = credentials.credentials if credentials is not None else None
    try:
        return await get_sessions(request).resolve(token=token, session_id=x_reader_session)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
