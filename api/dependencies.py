"""
FastAPI dependencies for the shared services.

Services are created once by the app factory and stored on app.state;
handlers receive them through Depends() rather than module globals.
"""

from fastapi import HTTPException, Request

from src.cache import CacheService
from src.notifications import NotificationService
from src.utils.config import Settings, get_settings


def get_cache_service(request: Request) -> CacheService:
    """Cache service for the current application."""
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Cache service not initialized")
    return cache


def get_notification_service(request: Request) -> NotificationService:
    """Notification hub for the current application."""
    hub = getattr(request.app.state, "notifications", None)
    if hub is None:
        raise HTTPException(status_code=503, detail="Notification service not initialized")
    return hub


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()
