"""
Ops Dashboard Core API

FastAPI application hosting:
1. Cache administration (/api/cache)
2. Notifications and their SSE stream (/api/notifications)

create_app() builds the cache and notification services at startup,
stores them on app.state, and tears them down at shutdown.
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI

from src import __version__
from src.cache import CacheConfig, CacheService, create_cache_service
from src.notifications import NotificationService
from src.utils.config import Settings, get_settings
from api import cache as cache_api
from api import notifications as notifications_api


logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    """Log to stdout (platforms treat stderr as errors)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    # Quiet down chatty loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[CacheService] = None,
    notifications: Optional[NotificationService] = None,
) -> FastAPI:
    """
    Build the application.

    Services passed in are used as-is (tests); otherwise they are
    created from settings on startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting ops dashboard core ({settings.ENVIRONMENT})")
        app.state.started_at = time.monotonic()

        if cache is None:
            config = CacheConfig(redis_url=settings.REDIS_URL)
            app.state.cache = await create_cache_service(config)
        else:
            app.state.cache = cache

        if notifications is None:
            app.state.notifications = NotificationService(
                max_notifications=settings.NOTIFICATIONS_MAX,
            )
        else:
            app.state.notifications = notifications
        app.state.cache.start_cleanup()

        try:
            yield
        finally:
            logger.info("Shutting down ops dashboard core")
            await app.state.cache.close()

    app = FastAPI(
        title="Ops Dashboard Core",
        description="Caching and notification services for the operations dashboard",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(cache_api.router)
    app.include_router(notifications_api.router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "Ops Dashboard Core"}

    @app.get("/api/health")
    async def health():
        """Detailed health check including cache backend."""
        cache_health = await app.state.cache.health_check()
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
            "cache": cache_health["status"],
            "notification_subscribers": app.state.notifications.subscriber_count,
        }

    return app


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    configure_logging(get_settings().LOG_LEVEL)
    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
