"""
Notification data model.

Notifications are created only by NotificationService.add(); the only
mutation afterwards is the one-way unread -> read transition.
"""

import copy
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class NotificationType(str, Enum):
    """What produced the notification."""
    ALERT = "alert"
    ESCALATION = "escalation"
    REPORT = "report"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    """Severity, most severe first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        """0 for critical up to 4 for info."""
        return list(NotificationPriority).index(self)


@dataclass
class Notification:
    """A single operational notification."""
    id: str
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = False
    metadata: Optional[Dict[str, Any]] = None
    action_url: Optional[str] = None

    def copy(self) -> "Notification":
        """Detached copy; metadata is deep-copied."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation."""
        data = asdict(self)
        data["type"] = self.type.value
        data["priority"] = self.priority.value
        data["timestamp"] = self.timestamp.isoformat()
        return data
