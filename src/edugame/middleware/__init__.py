"""Middleware registration."""

from fastapi import FastAPI

from edugame.config import Settings
from edugame.middleware.error_handler import setup_error_handlers
from edugame.middleware.logging import setup_logging
from edugame.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and the request id middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
