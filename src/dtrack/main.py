"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dtrack.config import get_settings
from dtrack.database import close_db, init_db
from dtrack.deadlines.router import router as deadlines_router
from dtrack.health.router import router as health_router
from dtrack.middleware import setup_middleware
from dtrack.notifications.router import router as notifications_router
from dtrack.redis_client import close_redis, init_redis
from dtrack.users.router import router as users_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Deadline Tracker API",
        description="Collaborative deadline tracking with scheduled email and in-app notifications",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(deadlines_router)
    app.include_router(notifications_router)
    app.include_router(users_router)

    return app


app = create_app()
