"""Crisis alert and notification domain models.

CrisisAlert is the only mutable record in the pipeline: status, severity
and metadata change over its lifecycle under the alert manager's state
machine. Notifications are append-only apart from the read flag.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .risk import AlertSeverity, AlertStatus, TriggerSource


@dataclass
class CrisisAlert:
    """A pending or handled crisis escalation for one piece of content."""
    alert_id: str
    subject_user_id: str
    content_id: str
    severity: AlertSeverity
    content_snippet: str
    trigger_source: TriggerSource
    created_at: datetime
    updated_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: AlertStatus = AlertStatus.PENDING
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "alert_id": self.alert_id,
            "subject_user_id": self.subject_user_id,
            "content_id": self.content_id,
            "severity": self.severity.value,
            "content_snippet": self.content_snippet,
            "trigger_source": self.trigger_source.value,
            "metadata": self.metadata,
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "notes": self.notes,
        }


class NotificationAudience(Enum):
    """Who a crisis notification is addressed to."""
    AUTHOR = "author"
    MODERATOR = "moderator"


@dataclass(frozen=True)
class Notification:
    """In-app notification created by the router. Only `read` ever changes."""
    notification_id: str
    recipient_id: str
    audience: NotificationAudience
    title: str
    message: str
    created_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    type: str = "crisis_alert"
    read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "recipient_id": self.recipient_id,
            "type": self.type,
            "audience": self.audience.value,
            "title": self.title,
            "message": self.message,
            "payload": self.payload,
            "read": self.read,
            "created_at": self.created_at.isoformat(),
        }
