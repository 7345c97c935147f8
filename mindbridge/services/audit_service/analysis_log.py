"""Analysis log - append-only record of every reconciled analysis.

Every submission is logged, whether or not it raised an alert, and
always with the reconciled result (never the losing path's). Entries
are hash-chained: each stores the previous entry's hash, starting from
"genesis", so deletion or editing is detectable by verify_chain().
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from mindbridge.shared.models import (
    AnalysisResult,
    AnalysisSource,
    ContentType,
    RiskLevel,
)
from mindbridge.shared.utils import hash_pii

if TYPE_CHECKING:
    from .analysis_log_repository import AnalysisLogRepository

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"


@dataclass(frozen=True)
class AnalysisLogEntry:
    """Immutable analysis log entry."""
    entry_id: str
    created_at: datetime
    content_type: ContentType
    subject_user_id: str
    content_id: Optional[str]
    source: AnalysisSource
    result: Dict[str, Any] = field(default_factory=dict)  # AnalysisResult wire form
    previous_hash: str = GENESIS_HASH
    entry_hash: str = ""

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel(self.result["riskLevel"])

    @property
    def confidence_score(self) -> float:
        return float(self.result["confidenceScore"])

    @property
    def analysis_result(self) -> AnalysisResult:
        return AnalysisResult.from_dict(self.result)

    def compute_hash(self) -> str:
        """Compute SHA-256 over every field except entry_hash.

        Returns:
            Hex-encoded hash string
        """
        content = {
            "entry_id": self.entry_id,
            "created_at": self.created_at.astimezone(timezone.utc).isoformat(),
            "content_type": self.content_type.value,
            "subject_user_id": self.subject_user_id,
            "content_id": self.content_id,
            "source": self.source.value,
            "result": self.result,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True)
        return hashlib.sha256(content_str.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "created_at": self.created_at.isoformat(),
            "content_type": self.content_type.value,
            "subject_user_id": self.subject_user_id,
            "content_id": self.content_id,
            "source": self.source.value,
            "result": self.result,
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
        }


class AnalysisLog:
    """Appends analysis entries and answers read-only analytics queries."""

    def __init__(self, repository: "AnalysisLogRepository"):
        """Initialize analysis log.

        Args:
            repository: Storage backend (PostgreSQL or in-memory)
        """
        self.repository = repository
        logger.info("ANALYSIS_LOG_INITIALIZED")

    def append(
        self,
        content_type: ContentType,
        subject_user_id: str,
        content_id: Optional[str],
        result: AnalysisResult,
        source: AnalysisSource,
    ) -> AnalysisLogEntry:
        """Append one reconciled analysis.

        Args:
            content_type: Kind of content analysed
            subject_user_id: Author of the content
            content_id: Content identifier, if any
            result: Reconciled analysis result
            source: Which path produced the result

        Returns:
            The stored, sealed entry

        Raises:
            RepositoryError: If storage fails
        """
        draft = AnalysisLogEntry(
            entry_id=f"analysis_{uuid.uuid4().hex[:16]}",
            created_at=datetime.now(timezone.utc),
            content_type=content_type,
            subject_user_id=subject_user_id,
            content_id=content_id,
            source=source,
            result=result.to_dict(),
        )

        def seal(previous_hash: str) -> AnalysisLogEntry:
            chained = replace(draft, previous_hash=previous_hash)
            return replace(chained, entry_hash=chained.compute_hash())

        entry = self.repository.append_chained(seal)

        logger.info(
            "ANALYSIS_LOG_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "user_id_hash": hash_pii(subject_user_id),
                "content_type": content_type.value,
                "risk_level": result.risk_level.value,
                "source": source.value,
                "entry_hash": entry.entry_hash[:16],
            }
        )
        return entry

    def verify_chain(self) -> bool:
        """Verify integrity of the whole log.

        Returns:
            True if chain is valid, False if tampered
        """
        expected_prev = GENESIS_HASH
        count = 0
        for entry in self.repository.iter_chain():
            if entry.previous_hash != expected_prev:
                logger.critical(
                    "ANALYSIS_LOG_CHAIN_BROKEN",
                    extra={
                        "entry_id": entry.entry_id,
                        "expected_prev": expected_prev[:16],
                        "actual_prev": entry.previous_hash[:16],
                    }
                )
                return False

            computed = entry.compute_hash()
            if computed != entry.entry_hash:
                logger.critical(
                    "ANALYSIS_LOG_ENTRY_TAMPERED",
                    extra={
                        "entry_id": entry.entry_id,
                        "computed": computed[:16],
                        "stored": entry.entry_hash[:16],
                    }
                )
                return False

            expected_prev = entry.entry_hash
            count += 1

        logger.info("ANALYSIS_LOG_CHAIN_VERIFIED", extra={"entry_count": count})
        return True

    def query(
        self,
        subject_user_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        source: Optional[AnalysisSource] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AnalysisLogEntry]:
        """Query entries, newest first."""
        return self.repository.query(
            subject_user_id=subject_user_id,
            risk_level=risk_level,
            source=source,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )

    def risk_level_counts(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[RiskLevel, int]:
        """Count entries per risk level; every level is present."""
        counts = {level: 0 for level in RiskLevel}
        counts.update(self.repository.count_by_risk_level(start_date, end_date))
        return counts
