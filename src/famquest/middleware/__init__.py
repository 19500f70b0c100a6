"""Middleware registration."""

from fastapi import FastAPI

from famquest.config import Settings
from famquest.middleware.error_handler import setup_error_handlers
from famquest.middleware.logging import setup_logging
from famquest.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and the request id middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
