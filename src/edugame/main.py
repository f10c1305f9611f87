"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from edugame.api.dependencies import init_gamification, reset_gamification
from edugame.api.router import router as gamification_router
from edugame.config import get_settings
from edugame.database import close_db, get_store, init_db
from edugame.events import RedisEventSink
from edugame.gamification.seed import seed_badges
from edugame.health.router import router as health_router
from edugame.middleware import setup_middleware
from edugame.redis_client import close_redis, get_redis, init_redis
from edugame.scheduler.runner import Scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_redis(settings.redis_url)
    redis = get_redis()
    await init_db(
        settings.database_url,
        retry_backoff_seconds=settings.transient_retry_backoff_seconds,
        event_sink=RedisEventSink(redis) if redis is not None else None,
    )
    game = init_gamification()

    # Seed badge definitions (idempotent)
    try:
        await seed_badges(get_store())
    except Exception:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    scheduler: Scheduler | None = None
    scheduler_task: asyncio.Task[None] | None = None
    if settings.scheduler_enabled:
        scheduler = Scheduler(game)
        scheduler_task = asyncio.create_task(scheduler.run_forever())

    yield

    if scheduler is not None and scheduler_task is not None:
        scheduler.stop()
        scheduler_task.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler_task

    reset_gamification()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Edugame Gamification API",
        description="XP, badges, challenges and leaderboards for the learning platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)

    return app


app = create_app()
