"""
Notification Service

In-memory notification log with live fan-out:
- Bounded history (newest first, oldest evicted)
- Filtering by type, priority, and read state
- Subscribers receive every notification added after they subscribe
  (no backlog replay)

A failing subscriber is logged and skipped; it never blocks delivery to
the others or surfaces to the caller of add().

All state is guarded by one re-entrant lock, so producers may call in
from worker threads. Subscribers are invoked while the lock is held,
which keeps delivery order identical to add() order; callbacks must be
quick and must not block (hand off to a queue).
"""

import itertools
import logging
import secrets
import string
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union

from src.notifications.models import (
    Notification,
    NotificationPriority,
    NotificationType,
)


logger = logging.getLogger(__name__)

DEFAULT_MAX_NOTIFICATIONS = 100

Subscriber = Callable[[Notification], Any]
Unsubscribe = Callable[[], None]

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_notification_id() -> str:
    """notif-<epoch ms>-<9 random chars>"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"notif-{int(time.time() * 1000)}-{suffix}"


class NotificationService:
    """
    Notification hub.

    Constructed explicitly (one per application) and handed to
    producers and to the SSE transport.
    """

    def __init__(self, max_notifications: int = DEFAULT_MAX_NOTIFICATIONS):
        if max_notifications < 1:
            raise ValueError("max_notifications must be at least 1")
        self.max_notifications = max_notifications
        self._notifications: List[Notification] = []
        self._subscribers: Dict[int, Subscriber] = {}
        self._subscriber_ids = itertools.count(1)
        self._lock = threading.RLock()

    # =========================================================================
    # Producing
    # =========================================================================

    def add(
        self,
        type: Union[NotificationType, str],
        priority: Union[NotificationPriority, str],
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        action_url: Optional[str] = None,
    ) -> Notification:
        """
        Record a notification and deliver it to every subscriber.

        Callers are expected to validate input; type and priority strings
        are converted to their enums (ValueError if unknown).
        """
        notification = Notification(
            id=generate_notification_id(),
            type=NotificationType(type),
            priority=NotificationPriority(priority),
            title=title,
            message=message,
            metadata=metadata,
            action_url=action_url,
        )

        with self._lock:
            self._notifications.insert(0, notification)
            if len(self._notifications) > self.max_notifications:
                evicted = len(self._notifications) - self.max_notifications
                del self._notifications[self.max_notifications:]
                logger.debug(f"Evicted {evicted} old notifications")

            for subscriber_id, subscriber in list(self._subscribers.items()):
                try:
                    subscriber(notification.copy())
                except Exception:
                    logger.exception(f"Error notifying subscriber {subscriber_id}")

            logger.info(
                f"Notification added: [{notification.type.value}/"
                f"{notification.priority.value}] {notification.title}"
            )
            return notification.copy()

    # =========================================================================
    # Reading
    # =========================================================================

    def _select(self, predicate=None) -> List[Notification]:
        with self._lock:
            return [
                n.copy() for n in self._notifications
                if predicate is None or predicate(n)
            ]

    def get_all(self) -> List[Notification]:
        """All notifications, newest first."""
        return self._select()

    def get_unread(self) -> List[Notification]:
        return self._select(lambda n: not n.read)

    def get_by_type(self, type: Union[NotificationType, str]) -> List[Notification]:
        wanted = NotificationType(type)
        return self._select(lambda n: n.type == wanted)

    def get_by_priority(
        self,
        priority: Union[NotificationPriority, str],
    ) -> List[Notification]:
        wanted = NotificationPriority(priority)
        return self._select(lambda n: n.priority == wanted)

    def get(self, notification_id: str) -> Optional[Notification]:
        with self._lock:
            for n in self._notifications:
                if n.id == notification_id:
                    return n.copy()
        return None

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._notifications if not n.read)

    def __len__(self) -> int:
        return len(self._notifications)

    # =========================================================================
    # Read state and removal
    # =========================================================================

    def mark_as_read(self, notification_id: str) -> bool:
        """
        Mark one notification read.

        Returns False if no such notification exists (not an error).
        """
        with self._lock:
            for n in self._notifications:
                if n.id == notification_id:
                    n.read = True
                    return True
        return False

    def mark_all_as_read(self) -> int:
        """Mark everything read. Returns how many were unread."""
        with self._lock:
            changed = 0
            for n in self._notifications:
                if not n.read:
                    n.read = True
                    changed += 1
            return changed

    def delete(self, notification_id: str) -> bool:
        with self._lock:
            before = len(self._notifications)
            self._notifications = [
                n for n in self._notifications if n.id != notification_id
            ]
            return len(self._notifications) < before

    def clear(self):
        with self._lock:
            self._notifications = []
        logger.info("Notifications cleared")

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """
        Register a listener for new notifications.

        Returns a function that removes exactly this registration; calling
        it again is a no-op.
        """
        with self._lock:
            subscriber_id = next(self._subscriber_ids)
            self._subscribers[subscriber_id] = callback

        logger.debug(f"Subscriber {subscriber_id} registered")

        def unsubscribe():
            with self._lock:
                removed = self._subscribers.pop(subscriber_id, None)
            if removed is not None:
                logger.debug(f"Subscriber {subscriber_id} removed")

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # =========================================================================
    # Convenience constructors
    # =========================================================================

    def alert_critical(
        self,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """Critical alert (e.g. Sentry error spike)."""
        return self.add(
            type=NotificationType.ALERT,
            priority=NotificationPriority.CRITICAL,
            title=title,
            message=message,
            metadata=metadata,
        )

    def escalation(
        self,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """High-priority escalation."""
        return self.add(
            type=NotificationType.ESCALATION,
            priority=NotificationPriority.HIGH,
            title=title,
            message=message,
            action_url=action_url,
            metadata=metadata,
        )

    def report_ready(
        self,
        title: str,
        message: str,
        action_url: Optional[str] = None,
    ) -> Notification:
        """Report generation finished."""
        return self.add(
            type=NotificationType.REPORT,
            priority=NotificationPriority.INFO,
            title=title,
            message=message,
            action_url=action_url,
        )

    def system_info(self, title: str, message: str) -> Notification:
        return self.add(
            type=NotificationType.SYSTEM,
            priority=NotificationPriority.INFO,
            title=title,
            message=message,
        )
