"""Notification Router - two-tier escalation for crisis alerts.

Tier 1: a supportive in-app notification to the content author, worded
by severity and always carrying crisis resources. Sent only if the
author has not switched crisis notifications off.

Tier 2: an urgent notification to every active moderator, for the
configured severities (critical by default). Never gated by the
author's preferences. A failed batch insert falls back to one insert
per moderator so a single bad row cannot drop the whole fan-out.

Routing failures are logged and reported, never raised.
"""
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from mindbridge.shared.database import DuplicateError, NotFoundError
from mindbridge.shared.models import (
    AlertSeverity,
    CrisisAlert,
    Notification,
    NotificationAudience,
)
from mindbridge.shared.utils import hash_pii
from .notification_repository import NotificationRepository
from .preferences import (
    DEFAULT_PREFERENCES,
    ModeratorDirectory,
    NotificationPreferencesProvider,
)

logger = logging.getLogger(__name__)


CRISIS_RESOURCES: Dict[str, str] = {
    "crisis_hotline": "1800-599-0019",
    "text_line": "9152987821",
    "chat_url": "https://www.vandrevalafoundation.com/",
}

# (title, message) per severity, escalating in urgency
AUTHOR_TEMPLATES: Dict[AlertSeverity, Tuple[str, str]] = {
    AlertSeverity.CRITICAL: (
        "Immediate Support Available",
        "We noticed you might be going through a difficult time. Immediate "
        "professional help is available. Crisis Hotline: KIRAN 1800-599-0019 "
        "(FREE 24/7)",
    ),
    AlertSeverity.HIGH: (
        "Support Resources Available",
        "It sounds like you're struggling. You're not alone - support is "
        "available 24/7. Would you like to connect with crisis resources?",
    ),
    AlertSeverity.MEDIUM: (
        "Community Support",
        "We're here for you. Consider reaching out to our community "
        "moderators or exploring our mental health resources.",
    ),
    AlertSeverity.LOW: (
        "Wellness Check",
        "Remember that it's okay to not be okay. Our community and resources "
        "are here whenever you need support.",
    ),
}

URGENCY: Dict[AlertSeverity, str] = {
    AlertSeverity.CRITICAL: "high",
    AlertSeverity.HIGH: "high",
    AlertSeverity.MEDIUM: "normal",
    AlertSeverity.LOW: "low",
}


class NotificationNotFoundError(Exception):
    """Notification ID does not exist."""
    pass


@dataclass(frozen=True)
class NotificationSettings:
    """Escalation routing configuration."""
    moderator_severities: FrozenSet[AlertSeverity] = frozenset({AlertSeverity.CRITICAL})
    moderator_ids: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> "NotificationSettings":
        """Create settings from environment variables.

        Environment variables:
            MODERATOR_BROADCAST_SEVERITIES: Comma-separated severities that
                fan out to moderators (default critical)
            MODERATOR_IDS: Comma-separated moderator ids for the static
                moderator directory
        """
        severities = os.getenv("MODERATOR_BROADCAST_SEVERITIES", "critical")
        moderator_ids = os.getenv("MODERATOR_IDS", "")
        return cls(
            moderator_severities=frozenset(
                AlertSeverity(s.strip().lower()) for s in severities.split(",") if s.strip()
            ),
            moderator_ids=tuple(m.strip() for m in moderator_ids.split(",") if m.strip()),
        )


@dataclass(frozen=True)
class RoutingReport:
    """What the router managed to deliver for one alert."""
    author_notified: bool = False
    moderators_notified: int = 0
    moderator_failures: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, object]:
        return {
            "author_notified": self.author_notified,
            "moderators_notified": self.moderators_notified,
            "moderator_failures": list(self.moderator_failures),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationRouter:
    """Routes crisis alerts to the author and the moderator pool."""

    def __init__(
        self,
        repository: NotificationRepository,
        preferences: NotificationPreferencesProvider,
        moderators: ModeratorDirectory,
        settings: Optional[NotificationSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.preferences = preferences
        self.moderators = moderators
        self.settings = settings or NotificationSettings()
        self._clock = clock

        logger.info(
            "NOTIFICATION_ROUTER_INITIALIZED",
            extra={
                "moderator_severities": sorted(s.value for s in self.settings.moderator_severities),
            }
        )

    def route(self, alert: CrisisAlert, escalated: bool = False) -> RoutingReport:
        """Deliver notifications for a newly created or escalated alert.

        Args:
            alert: The alert to route
            escalated: True when an existing alert's severity just went up

        Returns:
            RoutingReport describing what was delivered
        """
        author_notified = self._notify_author(alert, escalated)

        moderators_notified = 0
        failures: Tuple[str, ...] = ()
        if alert.severity in self.settings.moderator_severities:
            moderators_notified, failures = self._notify_moderators(alert, escalated)

        report = RoutingReport(
            author_notified=author_notified,
            moderators_notified=moderators_notified,
            moderator_failures=failures,
        )

        logger.info(
            "ALERT_ROUTED",
            extra={
                "alert_id": alert.alert_id,
                "severity": alert.severity.value,
                "escalated": escalated,
                **report.to_dict(),
            }
        )
        return report

    def _author_allows(self, user_id: str) -> bool:
        try:
            prefs = self.preferences.get(user_id)
        except Exception as e:
            # Unknown preferences default to enabled
            logger.error(
                "PREFERENCES_LOOKUP_FAILED",
                extra={"user_id_hash": hash_pii(user_id), "error": str(e)}
            )
            prefs = None
        return (prefs or DEFAULT_PREFERENCES).crisis_notifications

    def _notify_author(self, alert: CrisisAlert, escalated: bool) -> bool:
        user_hash = hash_pii(alert.subject_user_id)

        if not self._author_allows(alert.subject_user_id):
            logger.info(
                "AUTHOR_NOTIFICATION_SKIPPED",
                extra={
                    "alert_id": alert.alert_id,
                    "user_id_hash": user_hash,
                    "reason": "crisis_notifications_disabled",
                }
            )
            return False

        title, message = AUTHOR_TEMPLATES[alert.severity]
        notification = Notification(
            notification_id=f"notif_{uuid.uuid4().hex[:16]}",
            recipient_id=alert.subject_user_id,
            audience=NotificationAudience.AUTHOR,
            title=title,
            message=message,
            created_at=self._clock(),
            payload={
                "alert_id": alert.alert_id,
                "severity": alert.severity.value,
                "urgency": URGENCY[alert.severity],
                "escalated": escalated,
                "resources": dict(CRISIS_RESOURCES),
            },
        )

        try:
            self.repository.insert(notification)
        except Exception as e:
            logger.error(
                "AUTHOR_NOTIFICATION_FAILED",
                extra={
                    "alert_id": alert.alert_id,
                    "user_id_hash": user_hash,
                    "error": str(e),
                }
            )
            return False

        return True

    def _moderator_notification(
        self,
        alert: CrisisAlert,
        moderator_id: str,
        escalated: bool,
    ) -> Notification:
        severity_label = alert.severity.value.capitalize()
        return Notification(
            notification_id=f"notif_{uuid.uuid4().hex[:16]}",
            recipient_id=moderator_id,
            audience=NotificationAudience.MODERATOR,
            title=f"{severity_label} Crisis Alert",
            message=(
                f"A community member has triggered a {alert.severity.value} "
                "crisis alert. Immediate intervention may be required."
            ),
            created_at=self._clock(),
            payload={
                "alert_id": alert.alert_id,
                "alert_user_id": alert.subject_user_id,
                "severity": alert.severity.value,
                "trigger_source": alert.trigger_source.value,
                "escalated": escalated,
                "requires_immediate_action": alert.severity == AlertSeverity.CRITICAL,
            },
        )

    def _notify_moderators(
        self,
        alert: CrisisAlert,
        escalated: bool,
    ) -> Tuple[int, Tuple[str, ...]]:
        try:
            moderator_ids = self.moderators.active_moderator_ids()
        except Exception as e:
            logger.critical(
                "MODERATOR_DIRECTORY_UNAVAILABLE",
                extra={
                    "alert_id": alert.alert_id,
                    "error": str(e),
                    "action": "MANUAL_ESCALATION_REQUIRED",
                }
            )
            return 0, ()

        if not moderator_ids:
            logger.critical(
                "NO_ACTIVE_MODERATORS",
                extra={"alert_id": alert.alert_id, "severity": alert.severity.value}
            )
            return 0, ()

        batch = [self._moderator_notification(alert, m, escalated) for m in moderator_ids]
        try:
            self.repository.insert_many(batch)
            return len(batch), ()
        except Exception as e:
            logger.error(
                "MODERATOR_BATCH_INSERT_FAILED",
                extra={
                    "alert_id": alert.alert_id,
                    "batch_size": len(batch),
                    "error": str(e),
                    "action": "RETRYING_PER_RECIPIENT",
                }
            )

        delivered = 0
        failures: List[str] = []
        for notification in batch:
            try:
                self.repository.insert(notification)
                delivered += 1
            except DuplicateError:
                # Already stored by an earlier attempt
                delivered += 1
            except Exception as e:
                failures.append(notification.recipient_id)
                logger.critical(
                    "MODERATOR_NOTIFICATION_FAILED",
                    extra={
                        "alert_id": alert.alert_id,
                        "moderator_id": notification.recipient_id,
                        "error": str(e),
                    }
                )

        return delivered, tuple(failures)

    def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        return self.repository.list_for_recipient(recipient_id, unread_only, limit)

    def mark_read(self, notification_id: str) -> Notification:
        """Raises NotificationNotFoundError for unknown ids."""
        try:
            return self.repository.mark_read(notification_id)
        except NotFoundError as e:
            raise NotificationNotFoundError(str(e)) from e

    def unread_count(self, recipient_id: str) -> int:
        return self.repository.unread_count(recipient_id)
