"""Storage for the append-only analysis log.

PostgreSQL backend: the analysis_log table rejects UPDATE and DELETE
via trigger (schema.sql). Appends serialise on a transaction-scoped
advisory lock so two writers can never chain onto the same previous
hash. The in-memory backend does the same under a threading.Lock and
hands out copies, so callers cannot edit stored entries.
"""
import copy
import json
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from mindbridge.shared.database import BaseRepository, ConnectionManager, RepositoryError
from mindbridge.shared.models import AnalysisSource, ContentType, RiskLevel
from .analysis_log import GENESIS_HASH, AnalysisLogEntry

logger = logging.getLogger(__name__)

_COLUMNS = (
    "entry_id, created_at, content_type, subject_user_id, content_id, "
    "source, result, previous_hash, entry_hash"
)

# Advisory lock key shared by every analysis_log writer
_CHAIN_LOCK_KEY = "analysis_log_chain"


class AnalysisLogRepository(BaseRepository[AnalysisLogEntry]):
    """Append-only analysis log store."""

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        super().__init__(connection_manager, "analysis_log")
        self._memory_store: List[AnalysisLogEntry] = []
        self._lock = threading.Lock()

    def append_chained(
        self,
        seal: Callable[[str], AnalysisLogEntry],
    ) -> AnalysisLogEntry:
        """Append an entry chained onto the current tail.

        Args:
            seal: Builds the final entry given the previous entry's hash

        Returns:
            Stored entry

        Raises:
            RepositoryError: If storage fails
        """
        if self.uses_database:
            return self._append_postgres(seal)
        return self._append_memory(seal)

    def _append_memory(self, seal: Callable[[str], AnalysisLogEntry]) -> AnalysisLogEntry:
        with self._lock:
            previous = self._memory_store[-1].entry_hash if self._memory_store else GENESIS_HASH
            entry = seal(previous)
            self._memory_store.append(copy.deepcopy(entry))

        logger.debug("ANALYSIS_LOG_STORED_MEMORY", extra={"entry_id": entry.entry_id})
        return entry

    def _append_postgres(self, seal: Callable[[str], AnalysisLogEntry]) -> AnalysisLogEntry:
        try:
            with self.connection_manager.transaction() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (_CHAIN_LOCK_KEY,))
                cur.execute("SELECT entry_hash FROM analysis_log ORDER BY seq DESC LIMIT 1")
                row = cur.fetchone()
                entry = seal(row[0] if row else GENESIS_HASH)

                cur.execute(
                    f"""
                    INSERT INTO analysis_log (
                        {_COLUMNS}, risk_level, confidence_score
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        entry.entry_id,
                        entry.created_at,
                        entry.content_type.value,
                        entry.subject_user_id,
                        entry.content_id,
                        entry.source.value,
                        json.dumps(entry.result),
                        entry.previous_hash,
                        entry.entry_hash,
                        entry.risk_level.value,
                        entry.confidence_score,
                    ),
                )
        except Exception as e:
            logger.error("ANALYSIS_LOG_APPEND_FAILED", extra={"error": str(e)})
            raise RepositoryError(f"Failed to append to analysis_log: {e}") from e

        logger.debug("ANALYSIS_LOG_STORED_POSTGRES", extra={"entry_id": entry.entry_id})
        return entry

    def iter_chain(self) -> Iterator[AnalysisLogEntry]:
        """Yield every entry in append order."""
        if not self.uses_database:
            with self._lock:
                snapshot = list(self._memory_store)
            for entry in snapshot:
                yield copy.deepcopy(entry)
            return

        yield from self._fetch_all(
            f"SELECT {_COLUMNS} FROM analysis_log ORDER BY seq ASC", ()
        )

    def query(
        self,
        subject_user_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        source: Optional[AnalysisSource] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AnalysisLogEntry]:
        """Query entries, newest first.

        Args:
            subject_user_id: Filter by content author
            risk_level: Filter by reconciled risk level
            source: Filter by analysis source
            start_date: Inclusive lower bound on created_at
            end_date: Inclusive upper bound on created_at
            limit: Maximum entries to return

        Returns:
            List of matching AnalysisLogEntry objects
        """
        if not self.uses_database:
            with self._lock:
                results = list(self._memory_store)

            if subject_user_id:
                results = [e for e in results if e.subject_user_id == subject_user_id]
            if risk_level:
                results = [e for e in results if e.risk_level == risk_level]
            if source:
                results = [e for e in results if e.source == source]
            if start_date:
                results = [e for e in results if e.created_at >= start_date]
            if end_date:
                results = [e for e in results if e.created_at <= end_date]

            results.reverse()
            return [copy.deepcopy(e) for e in results[:limit]]

        query = f"SELECT {_COLUMNS} FROM analysis_log WHERE 1=1"
        params: list = []

        if subject_user_id:
            query += " AND subject_user_id = %s"
            params.append(subject_user_id)
        if risk_level:
            query += " AND risk_level = %s"
            params.append(risk_level.value)
        if source:
            query += " AND source = %s"
            params.append(source.value)
        if start_date:
            query += " AND created_at >= %s"
            params.append(start_date)
        if end_date:
            query += " AND created_at <= %s"
            params.append(end_date)

        query += " ORDER BY seq DESC LIMIT %s"
        params.append(limit)

        return self._fetch_all(query, params)

    def count_by_risk_level(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[RiskLevel, int]:
        """Count entries per risk level within an optional date range."""
        if not self.uses_database:
            counts: Dict[RiskLevel, int] = {}
            with self._lock:
                snapshot = list(self._memory_store)
            for entry in snapshot:
                if start_date and entry.created_at < start_date:
                    continue
                if end_date and entry.created_at > end_date:
                    continue
                counts[entry.risk_level] = counts.get(entry.risk_level, 0) + 1
            return counts

        query = "SELECT risk_level, COUNT(*) FROM analysis_log WHERE 1=1"
        params: list = []
        if start_date:
            query += " AND created_at >= %s"
            params.append(start_date)
        if end_date:
            query += " AND created_at <= %s"
            params.append(end_date)
        query += " GROUP BY risk_level"

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except Exception as e:
            raise RepositoryError(f"Risk level count failed: {e}") from e

        return {RiskLevel(level): count for level, count in rows}

    def _row_to_entity(self, row: tuple) -> AnalysisLogEntry:
        result = row[6]
        if isinstance(result, str):
            result = json.loads(result)

        return AnalysisLogEntry(
            entry_id=row[0],
            created_at=row[1],
            content_type=ContentType(row[2]),
            subject_user_id=row[3],
            content_id=row[4],
            source=AnalysisSource(row[5]),
            result=result or {},
            previous_hash=row[7],
            entry_hash=row[8],
        )
