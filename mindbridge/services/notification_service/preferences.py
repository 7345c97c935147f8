"""Read-only collaborators: notification preferences and moderator roster.

Both are owned by other platform services. The in-memory versions are
used in development, tests and by the bootstrap when no external
source is wired in.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPreferences:
    """A user's notification settings. Missing settings mean enabled."""
    crisis_notifications: bool = True


DEFAULT_PREFERENCES = NotificationPreferences()


class NotificationPreferencesProvider(ABC):
    """Looks up a user's notification preferences."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        """Return preferences, or None if the user never set any."""
        pass


class ModeratorDirectory(ABC):
    """Lists moderators currently on the crisis-response rota."""

    @abstractmethod
    def active_moderator_ids(self) -> List[str]:
        pass


class InMemoryPreferencesProvider(NotificationPreferencesProvider):

    def __init__(self, preferences: Optional[Dict[str, NotificationPreferences]] = None):
        self._preferences = dict(preferences or {})
        self._lock = threading.Lock()

    def set(self, user_id: str, preferences: NotificationPreferences) -> None:
        with self._lock:
            self._preferences[user_id] = preferences

    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        with self._lock:
            return self._preferences.get(user_id)


class StaticModeratorDirectory(ModeratorDirectory):
    """Fixed moderator list, e.g. from the MODERATOR_IDS setting."""

    def __init__(self, moderator_ids: Iterable[str] = ()):
        self._moderator_ids = [m for m in moderator_ids if m]
        logger.info(
            "MODERATOR_DIRECTORY_LOADED",
            extra={"moderator_count": len(self._moderator_ids)}
        )

    def active_moderator_ids(self) -> List[str]:
        return list(self._moderator_ids)
