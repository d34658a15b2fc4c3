"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from usogui.api.health import router as health_router
from usogui.api.router import router as reader_router
from usogui.config import Settings, get_settings
from usogui.middleware import setup_middleware
from usogui.sessions import ReaderSessions


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    readers = await ReaderSessions.open(settings)
    app.state.readers = readers

    yield

    app.state.readers = None
    await readers.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the reader application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Usogui Reader",
        description="Spoiler-aware reading progress and cached wiki lists",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.readers = None

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(reader_router)

    return app
