"""Notification storage. Append-only apart from the read flag."""
import json
import logging
import threading
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

import psycopg2

from mindbridge.shared.database import (
    BaseRepository,
    ConnectionManager,
    DuplicateError,
    NotFoundError,
    RepositoryError,
)
from mindbridge.shared.models import Notification, NotificationAudience

logger = logging.getLogger(__name__)

_COLUMNS = (
    "notification_id, recipient_id, type, audience, title, message, "
    "payload, read, created_at"
)


class NotificationRepository(BaseRepository[Notification]):
    """Repository for in-app notifications."""

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        super().__init__(connection_manager, "notifications")
        self._memory_store: Dict[str, Notification] = {}
        self._lock = threading.Lock()

    def insert(self, notification: Notification) -> None:
        """Store one notification.

        Raises:
            RepositoryError: If storage fails
        """
        self.insert_many([notification])

    def insert_many(self, notifications: Sequence[Notification]) -> None:
        """Store a batch in one transaction; all or nothing.

        Raises:
            DuplicateError: If a notification_id is already stored
            RepositoryError: If storage fails
        """
        if not notifications:
            return

        if not self.uses_database:
            with self._lock:
                for notification in notifications:
                    if notification.notification_id in self._memory_store:
                        raise DuplicateError(
                            f"Notification already stored: {notification.notification_id}"
                        )
                self._memory_store.update((n.notification_id, n) for n in notifications)
            return

        try:
            with self.connection_manager.transaction() as cur:
                cur.executemany(
                    f"""
                    INSERT INTO notifications ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    [self._to_params(n) for n in notifications],
                )
        except psycopg2.IntegrityError as e:
            raise DuplicateError(f"Notification already stored: {e}") from e
        except Exception as e:
            logger.error(
                "NOTIFICATION_INSERT_FAILED",
                extra={"batch_size": len(notifications), "error": str(e)}
            )
            raise RepositoryError(f"Notification insert failed: {e}") from e

    def mark_read(self, notification_id: str) -> Notification:
        """Set the read flag.

        Raises:
            NotFoundError: Unknown notification_id
        """
        if not self.uses_database:
            with self._lock:
                current = self._memory_store.get(notification_id)
                if current is None:
                    raise NotFoundError(f"Notification not found: {notification_id}")
                updated = replace(current, read=True)
                self._memory_store[notification_id] = updated
                return updated

        updated = self._fetch_one(
            f"UPDATE notifications SET read = TRUE WHERE notification_id = %s "
            f"RETURNING {_COLUMNS}",
            (notification_id,),
        )
        if updated is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        return updated

    def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        """Notifications for one recipient, newest first."""
        if not self.uses_database:
            with self._lock:
                results = [
                    n for n in self._memory_store.values()
                    if n.recipient_id == recipient_id and not (unread_only and n.read)
                ]
            results.sort(key=lambda n: n.created_at, reverse=True)
            return results[:limit]

        query = f"SELECT {_COLUMNS} FROM notifications WHERE recipient_id = %s"
        params: list = [recipient_id]
        if unread_only:
            query += " AND read = FALSE"
        query += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)
        return self._fetch_all(query, params)

    def unread_count(self, recipient_id: str) -> int:
        if not self.uses_database:
            with self._lock:
                return sum(
                    1 for n in self._memory_store.values()
                    if n.recipient_id == recipient_id and not n.read
                )

        return self._count("recipient_id = %s AND read = FALSE", (recipient_id,))

    @staticmethod
    def _to_params(n: Notification) -> tuple:
        return (
            n.notification_id,
            n.recipient_id,
            n.type,
            n.audience.value,
            n.title,
            n.message,
            json.dumps(n.payload),
            n.read,
            n.created_at,
        )

    def _row_to_entity(self, row: tuple) -> Notification:
        payload = row[6]
        if isinstance(payload, str):
            payload = json.loads(payload)

        return Notification(
            notification_id=row[0],
            recipient_id=row[1],
            type=row[2],
            audience=NotificationAudience(row[3]),
            title=row[4],
            message=row[5],
            payload=payload or {},
            read=row[7],
            created_at=row[8],
        )
