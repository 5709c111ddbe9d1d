"""HTTP middleware and error handlers for the deadline tracker API."""

from fastapi import FastAPI

from dtrack.config import Settings
from dtrack.middleware.cors import setup_cors
from dtrack.middleware.error_handler import setup_error_handlers
from dtrack.middleware.logging import setup_logging
from dtrack.middleware.rate_limit import RateLimitMiddleware
from dtrack.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    # Added innermost first: rate limit, then request id, then CORS outermost
    setup_logging(settings, component="api")
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
