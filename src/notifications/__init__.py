"""
Notification Hub

Real-time notifications for alerts, escalations, reports and system
events, pushed to browsers over Server-Sent Events.

Usage:
    hub = NotificationService(max_notifications=100)
    hub.alert_critical("Error spike", "Sentry reports 240 errors/min")

    # One stream per SSE client
    stream = NotificationStream(hub, heartbeat_seconds=30)
    async for frame in stream.events(request.is_disconnected):
        ...
"""

from src.notifications.models import (
    Notification,
    NotificationPriority,
    NotificationType,
)
from src.notifications.service import (
    NotificationService,
    DEFAULT_MAX_NOTIFICATIONS,
    generate_notification_id,
)
from src.notifications.stream import NotificationStream, format_sse

__all__ = [
    # Models
    "Notification",
    "NotificationPriority",
    "NotificationType",
    # Hub
    "NotificationService",
    "DEFAULT_MAX_NOTIFICATIONS",
    "generate_notification_id",
    # Transport
    "NotificationStream",
    "format_sse",
]
