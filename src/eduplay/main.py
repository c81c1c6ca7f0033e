"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from eduplay.config import get_settings
from eduplay.database import close_db, init_db
from eduplay.health.router import router as health_router
from eduplay.middleware import setup_middleware
from eduplay.notifications.router import router as notifications_router
from eduplay.redis_client import close_redis, init_redis
from eduplay.social.friends_router import router as friends_router
from eduplay.social.guild_router import router as guild_router
from eduplay.teacher.router import router as teacher_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, settings.redis_max_connections)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="EduPlay API",
        description="Backend API for EduPlay: friends, guilds, classrooms, assignments and notifications",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(friends_router)
    app.include_router(guild_router)
    app.include_router(teacher_router)
    app.include_router(notifications_router)

    return app


app = create_app()
