"""Notification Service - author support messages and moderator escalation."""
from .router import (
    NotificationRouter,
    NotificationSettings,
    NotificationNotFoundError,
    RoutingReport,
    AUTHOR_TEMPLATES,
    CRISIS_RESOURCES,
)
from .notification_repository import NotificationRepository
from .preferences import (
    NotificationPreferences,
    NotificationPreferencesProvider,
    ModeratorDirectory,
    InMemoryPreferencesProvider,
    StaticModeratorDirectory,
)

__all__ = [
    "NotificationRouter",
    "NotificationSettings",
    "NotificationNotFoundError",
    "RoutingReport",
    "AUTHOR_TEMPLATES",
    "CRISIS_RESOURCES",
    "NotificationRepository",
    "NotificationPreferences",
    "NotificationPreferencesProvider",
    "ModeratorDirectory",
    "InMemoryPreferencesProvider",
    "StaticModeratorDirectory",
]
