"""
API Endpoints for Notifications

Handles:
1. List notifications (filter by unread/type/priority)
2. Create notification (webhooks, schedulers)
3. Mark one or all as read
4. Delete one or all
5. Live stream via Server-Sent Events
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from src.notifications import (
    Notification,
    NotificationPriority,
    NotificationService,
    NotificationStream,
    NotificationType,
)
from src.utils.config import Settings
from api.dependencies import get_app_settings, get_notification_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class CreateNotificationRequest(BaseModel):
    """Request to create a notification. All four core fields are required."""
    model_config = ConfigDict(populate_by_name=True)

    type: NotificationType
    priority: NotificationPriority
    title: str = Field(..., min_length=1, max_length=500)
    message: str = Field(..., min_length=1)
    metadata: Optional[Dict[str, Any]] = None
    action_url: Optional[str] = Field(default=None, alias="actionUrl")


class NotificationResponse(BaseModel):
    """Single notification."""
    id: str
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    timestamp: datetime
    read: bool
    metadata: Optional[Dict[str, Any]] = None
    action_url: Optional[str] = None

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            type=notification.type,
            priority=notification.priority,
            title=notification.title,
            message=notification.message,
            timestamp=notification.timestamp,
            read=notification.read,
            metadata=notification.metadata,
            action_url=notification.action_url,
        )


class NotificationListResponse(BaseModel):
    """Filtered notifications plus the overall unread count."""
    notifications: List[NotificationResponse]
    total: int
    unread: int


class SuccessResponse(BaseModel):
    success: bool
    affected: int = 0


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread: bool = Query(default=False, description="Only unread notifications"),
    type: Optional[NotificationType] = Query(default=None),
    priority: Optional[NotificationPriority] = Query(default=None),
    hub: NotificationService = Depends(get_notification_service),
):
    """List notifications, newest first. Filters combine."""
    selections = []
    if unread:
        selections.append(hub.get_unread())
    if type:
        selections.append(hub.get_by_type(type))
    if priority:
        selections.append(hub.get_by_priority(priority))

    if not selections:
        notifications = hub.get_all()
    else:
        notifications = selections[0]
        for other in selections[1:]:
            ids = {n.id for n in other}
            notifications = [n for n in notifications if n.id in ids]

    return NotificationListResponse(
        notifications=[NotificationResponse.from_notification(n) for n in notifications],
        total=len(notifications),
        unread=hub.unread_count(),
    )


@router.post("", response_model=NotificationResponse, status_code=201)
async def create_notification(
    request: CreateNotificationRequest,
    hub: NotificationService = Depends(get_notification_service),
):
    """Create a notification and push it to all live streams."""
    try:
        notification = hub.add(
            type=request.type,
            priority=request.priority,
            title=request.title,
            message=request.message,
            metadata=request.metadata,
            action_url=request.action_url,
        )
    except Exception as e:
        logger.error(f"Failed to create notification: {e}")
        raise HTTPException(status_code=500, detail="Failed to create notification")

    return NotificationResponse.from_notification(notification)


@router.delete("", response_model=SuccessResponse)
async def clear_notifications(hub: NotificationService = Depends(get_notification_service)):
    """Clear all notifications."""
    count = len(hub)
    hub.clear()
    return SuccessResponse(success=True, affected=count)


@router.post("/read-all", response_model=SuccessResponse)
async def mark_all_read(hub: NotificationService = Depends(get_notification_service)):
    """Mark every notification as read."""
    changed = hub.mark_all_as_read()
    return SuccessResponse(success=True, affected=changed)


@router.get("/sse")
async def notification_stream(
    request: Request,
    hub: NotificationService = Depends(get_notification_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Server-Sent Events stream of new notifications.

    Sends a "connected" message, then each notification as it is added,
    plus a heartbeat every SSE_HEARTBEAT_SECONDS.
    """
    stream = NotificationStream(
        hub,
        heartbeat_seconds=settings.SSE_HEARTBEAT_SECONDS,
        buffer_size=settings.SSE_BUFFER_SIZE,
    )

    return StreamingResponse(
        stream.events(request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/{notification_id}/read", response_model=SuccessResponse)
async def mark_read(
    notification_id: str,
    hub: NotificationService = Depends(get_notification_service),
):
    """Mark one notification as read. Unknown ids are ignored."""
    changed = hub.mark_as_read(notification_id)
    return SuccessResponse(success=True, affected=int(changed))


@router.delete("/{notification_id}", response_model=SuccessResponse)
async def delete_notification(
    notification_id: str,
    hub: NotificationService = Depends(get_notification_service),
):
    """Delete one notification."""
    if not hub.delete(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return SuccessResponse(success=True, affected=1)
