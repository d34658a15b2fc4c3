"""Global error handlers: consistent JSON error responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from usogui.exceptions import FetchError, InvalidRangeError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(InvalidRangeError)
    async def invalid_range_handler(_request: Request, exc: InvalidRangeError) -> JSONResponse:
        """Out-of-range chapter values are client errors."""
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "minimum": exc.minimum, "maximum": exc.maximum},
        )

    @app.exception_handler(FetchError)
    async def fetch_error_handler(request: Request, exc: FetchError) -> JSONResponse:
        """Upstream API failures are retryable gateway errors."""
        logger.warning(
            "upstream_fetch_failed",
            path=request.url.path,
            upstream_url=exc.url,
            upstream_status=exc.status,
            error=str(exc),
        )
        return JSONResponse(
            status_code=502,
            content={"detail": str(exc), "upstream_status": exc.status, "retryable": exc.retryable},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
