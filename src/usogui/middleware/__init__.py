"""Middleware registration."""

from fastapi import FastAPI

from usogui.config import Settings
from usogui.middleware.cors import setup_cors
from usogui.middleware.error_handler import setup_error_handlers
from usogui.middleware.logging import setup_logging
from usogui.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette runs middleware in reverse-add order, so CORS is added last to
    wrap error responses from the inner layers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
