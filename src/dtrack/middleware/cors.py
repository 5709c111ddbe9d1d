"""CORS for the deadline tracker frontend."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dtrack.config import Settings
from dtrack.middleware.request_id import REQUEST_ID_HEADER


def setup_cors(app: FastAPI, settings: Settings) -> None:
    # The frontend origin that builds links in emails is always allowed
    origins = list(dict.fromkeys([*settings.cors_origins, settings.frontend_base_url]))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"],
        max_age=600,
    )
