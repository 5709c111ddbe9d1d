"""structlog setup shared by the API process and the scheduler worker."""

import logging

import structlog

from dtrack.config import Settings

# Libraries that log every statement or job at INFO
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "arq.worker", "httpx")


def setup_logging(settings: Settings, component: str = "api") -> None:
    """Configure structlog and stdlib logging.

    ``component`` ("api" or "scheduler") is bound to every event so both
    processes can share one log stream.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(component=component, environment=settings.environment)

    logging.basicConfig(level=level, format="%(message)s")
    quiet = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)
