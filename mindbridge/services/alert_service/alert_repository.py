"""Crisis alert storage with an atomic find-or-create.

The dedup rule (one open alert per subject/content pair inside the
window) holds only if lookup and insert are a single critical section:

- In-memory backend: a fixed pool of threading.Locks, one chosen per
  (subject_user_id, content_id) by hash
- PostgreSQL backend: one transaction holding pg_advisory_xact_lock on
  the pair, then SELECT ... FOR UPDATE followed by UPDATE or INSERT

Status changes go through modify(), which holds the same pair stripe
(memory) or a row lock (PostgreSQL) while the mutation runs.
"""
import copy
import json
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import psycopg2

from mindbridge.shared.database import (
    BaseRepository,
    ConnectionManager,
    DuplicateError,
    NotFoundError,
    RepositoryError,
)
from mindbridge.shared.models import (
    AlertSeverity,
    AlertStatus,
    CrisisAlert,
    TriggerSource,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES: Tuple[AlertStatus, ...] = (
    AlertStatus.PENDING,
    AlertStatus.ACKNOWLEDGED,
    AlertStatus.CONTACTED,
)

_COLUMNS = (
    "alert_id, subject_user_id, content_id, severity, content_snippet, "
    "trigger_source, metadata, status, assigned_to, created_at, updated_at, "
    "resolved_at, resolved_by, notes"
)

# Pairs sharing a stripe serialise; the pool never grows
PAIR_LOCK_STRIPES = 64

# Merges a fresh candidate into an existing open alert; returns True if escalated
MergeFn = Callable[[CrisisAlert, CrisisAlert], bool]


class AlertRepository(BaseRepository[CrisisAlert]):
    """Repository for crisis alerts."""

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        super().__init__(connection_manager, "crisis_alerts")
        self._memory_store: Dict[str, CrisisAlert] = {}
        self._lock = threading.Lock()
        self._pair_locks: List[threading.Lock] = [
            threading.Lock() for _ in range(PAIR_LOCK_STRIPES)
        ]

    def find_or_create(
        self,
        candidate: CrisisAlert,
        window_start: datetime,
        merge: MergeFn,
    ) -> Tuple[CrisisAlert, bool, bool]:
        """Merge into the open alert for the pair, or insert the candidate.

        Args:
            candidate: Alert to insert if no open alert matches
            window_start: Open alerts created before this are ignored
            merge: Applied to (existing, candidate) when a match is found

        Returns:
            (stored alert, created, escalated)

        Raises:
            DuplicateError: If the candidate's alert_id is already stored
            RepositoryError: If storage fails
        """
        if self.uses_database:
            return self._find_or_create_postgres(candidate, window_start, merge)
        return self._find_or_create_memory(candidate, window_start, merge)

    def _pair_lock(self, subject_user_id: str, content_id: str) -> threading.Lock:
        return self._pair_locks[hash((subject_user_id, content_id)) % len(self._pair_locks)]

    def _find_or_create_memory(
        self,
        candidate: CrisisAlert,
        window_start: datetime,
        merge: MergeFn,
    ) -> Tuple[CrisisAlert, bool, bool]:
        with self._pair_lock(candidate.subject_user_id, candidate.content_id):
            existing = self._find_open_memory(
                candidate.subject_user_id, candidate.content_id, window_start
            )
            if existing is None:
                with self._lock:
                    if candidate.alert_id in self._memory_store:
                        raise DuplicateError(f"Alert already stored: {candidate.alert_id}")
                    self._memory_store[candidate.alert_id] = copy.deepcopy(candidate)
                return copy.deepcopy(candidate), True, False

            updated = copy.deepcopy(existing)
            escalated = merge(updated, candidate)
            self._memory_store[updated.alert_id] = updated
            return copy.deepcopy(updated), False, escalated

    def _find_open_memory(
        self,
        subject_user_id: str,
        content_id: str,
        window_start: datetime,
    ) -> Optional[CrisisAlert]:
        with self._lock:
            matches = [
                a for a in self._memory_store.values()
                if a.subject_user_id == subject_user_id
                and a.content_id == content_id
                and a.status in OPEN_STATUSES
                and a.created_at >= window_start
            ]
        if not matches:
            return None
        return max(matches, key=lambda a: a.created_at)

    def _find_or_create_postgres(
        self,
        candidate: CrisisAlert,
        window_start: datetime,
        merge: MergeFn,
    ) -> Tuple[CrisisAlert, bool, bool]:
        try:
            with self.connection_manager.transaction() as cur:
                cur.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))",
                    (f"{candidate.subject_user_id}:{candidate.content_id}",),
                )
                cur.execute(
                    f"""
                    SELECT {_COLUMNS} FROM crisis_alerts
                    WHERE subject_user_id = %s AND content_id = %s
                      AND status = ANY(%s) AND created_at >= %s
                    ORDER BY created_at DESC
                    LIMIT 1
                    FOR UPDATE
                    """,
                    (
                        candidate.subject_user_id,
                        candidate.content_id,
                        [s.value for s in OPEN_STATUSES],
                        window_start,
                    ),
                )
                row = cur.fetchone()

                if row is None:
                    self._insert(cur, candidate)
                    return candidate, True, False

                existing = self._row_to_entity(row)
                escalated = merge(existing, candidate)
                self._update(cur, existing)
                return existing, False, escalated

        except psycopg2.IntegrityError as e:
            logger.error(
                "ALERT_DUPLICATE_INSERT",
                extra={"alert_id": candidate.alert_id, "error": str(e)}
            )
            raise DuplicateError(f"Alert already stored: {candidate.alert_id}") from e
        except psycopg2.Error as e:
            logger.error(
                "ALERT_FIND_OR_CREATE_FAILED",
                extra={"error": str(e)}
            )
            raise RepositoryError(f"Alert find-or-create failed: {e}") from e

    def modify(
        self,
        alert_id: str,
        mutate: Callable[[CrisisAlert], None],
    ) -> CrisisAlert:
        """Apply a mutation to one alert atomically.

        If mutate raises, nothing is stored and the exception propagates.

        Raises:
            NotFoundError: If the alert does not exist
            RepositoryError: If storage fails
        """
        if self.uses_database:
            return self._modify_postgres(alert_id, mutate)

        with self._lock:
            current = self._memory_store.get(alert_id)
        if current is None:
            raise NotFoundError(f"Alert not found: {alert_id}")

        with self._pair_lock(current.subject_user_id, current.content_id):
            updated = copy.deepcopy(self._memory_store[alert_id])
            mutate(updated)
            self._memory_store[alert_id] = updated
            return copy.deepcopy(updated)

    def _modify_postgres(
        self,
        alert_id: str,
        mutate: Callable[[CrisisAlert], None],
    ) -> CrisisAlert:
        try:
            with self.connection_manager.transaction() as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM crisis_alerts WHERE alert_id = %s FOR UPDATE",
                    (alert_id,),
                )
                row = cur.fetchone()
                if row is None:
                    raise NotFoundError(f"Alert not found: {alert_id}")

                alert = self._row_to_entity(row)
                mutate(alert)
                self._update(cur, alert)
                return alert

        except psycopg2.Error as e:
            logger.error(
                "ALERT_MODIFY_FAILED",
                extra={"alert_id": alert_id, "error": str(e)}
            )
            raise RepositoryError(f"Alert update failed: {e}") from e

    def get(self, alert_id: str) -> Optional[CrisisAlert]:
        if not self.uses_database:
            with self._lock:
                alert = self._memory_store.get(alert_id)
            return copy.deepcopy(alert) if alert else None

        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM crisis_alerts WHERE alert_id = %s",
            (alert_id,),
        )

    def list(
        self,
        status: Optional[AlertStatus] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> List[CrisisAlert]:
        """List alerts, newest first."""
        if not self.uses_database:
            with self._lock:
                results = [copy.deepcopy(a) for a in self._memory_store.values()]
            if status:
                results = [a for a in results if a.status == status]
            if severity:
                results = [a for a in results if a.severity == severity]
            results.sort(key=lambda a: a.created_at, reverse=True)
            return results[:limit]

        query = f"SELECT {_COLUMNS} FROM crisis_alerts WHERE 1=1"
        params: list = []
        if status:
            query += " AND status = %s"
            params.append(status.value)
        if severity:
            query += " AND severity = %s"
            params.append(severity.value)
        query += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)

        return self._fetch_all(query, params)

    def list_created_since(self, since: datetime) -> List[CrisisAlert]:
        if not self.uses_database:
            with self._lock:
                return [
                    copy.deepcopy(a) for a in self._memory_store.values()
                    if a.created_at >= since
                ]

        return self._fetch_all(
            f"SELECT {_COLUMNS} FROM crisis_alerts WHERE created_at >= %s",
            (since,),
        )

    def count_open(self) -> int:
        if not self.uses_database:
            with self._lock:
                return sum(1 for a in self._memory_store.values() if a.status in OPEN_STATUSES)

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT COUNT(*) FROM crisis_alerts WHERE status = ANY(%s)",
                        ([s.value for s in OPEN_STATUSES],),
                    )
                    row = cur.fetchone()
        except Exception as e:
            raise RepositoryError(f"Open alert count failed: {e}") from e

        return row[0] if row else 0

    def _insert(self, cur, alert: CrisisAlert) -> None:
        cur.execute(
            f"""
            INSERT INTO crisis_alerts ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                alert.alert_id,
                alert.subject_user_id,
                alert.content_id,
                alert.severity.value,
                alert.content_snippet,
                alert.trigger_source.value,
                json.dumps(alert.metadata),
                alert.status.value,
                alert.assigned_to,
                alert.created_at,
                alert.updated_at,
                alert.resolved_at,
                alert.resolved_by,
                json.dumps(alert.notes),
            ),
        )

    def _update(self, cur, alert: CrisisAlert) -> None:
        cur.execute(
            """
            UPDATE crisis_alerts
            SET severity = %s, content_snippet = %s, metadata = %s, status = %s,
                assigned_to = %s, updated_at = %s, resolved_at = %s,
                resolved_by = %s, notes = %s
            WHERE alert_id = %s
            """,
            (
                alert.severity.value,
                alert.content_snippet,
                json.dumps(alert.metadata),
                alert.status.value,
                alert.assigned_to,
                alert.updated_at,
                alert.resolved_at,
                alert.resolved_by,
                json.dumps(alert.notes),
                alert.alert_id,
            ),
        )

    def _row_to_entity(self, row: tuple) -> CrisisAlert:
        metadata = row[6]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        notes = row[13]
        if isinstance(notes, str):
            notes = json.loads(notes)

        return CrisisAlert(
            alert_id=row[0],
            subject_user_id=row[1],
            content_id=row[2],
            severity=AlertSeverity(row[3]),
            content_snippet=row[4],
            trigger_source=TriggerSource(row[5]),
            metadata=metadata or {},
            status=AlertStatus(row[7]),
            assigned_to=row[8],
            created_at=row[9],
            updated_at=row[10],
            resolved_at=row[11],
            resolved_by=row[12],
            notes=notes or [],
        )
