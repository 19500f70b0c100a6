"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from famquest.analytics.router import router as analytics_router
from famquest.behavior.router import router as behavior_router
from famquest.config import get_settings
from famquest.database import close_db, init_db
from famquest.health.router import router as health_router
from famquest.middleware import setup_middleware
from famquest.redis_client import close_redis, init_redis


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
        title="FamQuest Behavior Engine",
        description="Penalty rules, streaks, goals and family analytics for FamQuest",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(behavior_router)
    app.include_router(analytics_router)

    return app


app = create_app()
