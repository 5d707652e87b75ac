"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from noorboard.config import get_settings
from noorboard.database import close_db, create_tables, init_db
from noorboard.health.router import router as health_router
from noorboard.leaderboard.router import router as leaderboard_router
from noorboard.middleware import setup_middleware
from noorboard.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    if settings.database_url:
        await init_db(settings.database_url)
        if settings.auto_create_tables:
            await create_tables()
    else:
        logger.warning("database_not_configured", hint="set NOOR_DATABASE_URL")
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Noor Leaderboard API",
        description="Anonymous leaderboard sync for the Noor adhkar app",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(leaderboard_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("noorboard.main:app", host="127.0.0.1", port=8000)
