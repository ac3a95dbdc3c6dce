"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from academy.certificates.router import router as certificates_router
from academy.config import get_settings
from academy.courses.router import router as courses_router
from academy.database import close_db, get_session, init_db
from academy.gamification.router import router as gamification_router
from academy.gamification.seed import seed_achievements
from academy.health.router import router as health_router
from academy.middleware import setup_middleware
from academy.profiles.router import router as profiles_router
from academy.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed achievement catalog (idempotent)
    try:
        async for db in get_session():
            await seed_achievements(db)
            break
    except SQLAlchemyError:
        logger.warning("Achievement seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Academy API",
        description="Course progress, gamification and on-chain completion certificates",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(courses_router)
    app.include_router(gamification_router)
    app.include_router(certificates_router)
    app.include_router(profiles_router)

    return app


app = create_app()
