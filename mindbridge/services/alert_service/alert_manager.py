"""Alert Manager - creates, deduplicates and drives crisis alerts.

State machine:
    pending      -> acknowledged | false_positive | resolved
    acknowledged -> contacted | resolved
    contacted    -> resolved
    resolved, false_positive: terminal

Re-analysis of the same content within the dedup window updates the
open alert instead of creating another one. Severity only ever moves
up on re-analysis; status is never touched by it.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from mindbridge.shared.database import NotFoundError
from mindbridge.shared.models import (
    AlertSeverity,
    AlertStatus,
    AnalysisResult,
    ContentType,
    CrisisAlert,
    RiskLevel,
    TriggerSource,
)
from mindbridge.shared.utils import hash_pii, privacy_snippet
from .alert_repository import AlertRepository

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.PENDING: frozenset({
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.FALSE_POSITIVE,
        AlertStatus.RESOLVED,
    }),
    AlertStatus.ACKNOWLEDGED: frozenset({
        AlertStatus.CONTACTED,
        AlertStatus.RESOLVED,
    }),
    AlertStatus.CONTACTED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.FALSE_POSITIVE: frozenset(),
}

MANUAL_TRIGGER_SOURCES = (TriggerSource.USER_REPORT, TriggerSource.MODERATOR_ESCALATION)

_KEYWORD_TIERS = ("critical", "high", "medium", "low")


class AlertServiceError(Exception):
    """Base exception for alert service errors."""
    pass


class AlertNotFoundError(AlertServiceError):
    """Alert ID does not exist."""
    pass


class InvalidTransition(AlertServiceError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current: AlertStatus, requested: AlertStatus):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot transition alert from {current.value} to {requested.value}"
        )


@dataclass(frozen=True)
class AlertSettings:
    """Alerting thresholds and dedup configuration."""
    alert_threshold: RiskLevel = RiskLevel.MEDIUM
    dedup_window_minutes: int = 60
    snippet_length: int = 200

    @classmethod
    def from_env(cls) -> "AlertSettings":
        """Create settings from environment variables.

        Environment variables:
            ALERT_THRESHOLD: Minimum risk level that raises an alert (default medium)
            ALERT_DEDUP_WINDOW_MINUTES: Dedup window (default 60)
            ALERT_SNIPPET_LENGTH: Max stored content snippet (default 200)
        """
        return cls(
            alert_threshold=RiskLevel(os.getenv("ALERT_THRESHOLD", "medium").lower()),
            dedup_window_minutes=int(os.getenv("ALERT_DEDUP_WINDOW_MINUTES", "60")),
            snippet_length=int(os.getenv("ALERT_SNIPPET_LENGTH", "200")),
        )


@dataclass(frozen=True)
class AlertRecord:
    """Outcome of recording an analysis against the alert store."""
    alert: CrisisAlert
    created: bool
    escalated: bool

    @property
    def should_notify(self) -> bool:
        return self.created or self.escalated


@dataclass(frozen=True)
class CrisisMetrics:
    """Weekly crisis response metrics for the moderation dashboard."""
    active_alerts: int
    alerts_this_week: int
    weekly_trend_percent: int
    average_response_minutes: int
    resolution_rate_percent: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "active_alerts": self.active_alerts,
            "alerts_this_week": self.alerts_this_week,
            "weekly_trend_percent": self.weekly_trend_percent,
            "average_response_minutes": self.average_response_minutes,
            "resolution_rate_percent": self.resolution_rate_percent,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def matched_keywords(detected_concerns) -> List[str]:
    """Extract lexicon phrases from tier-tagged concerns."""
    keywords = []
    for concern in detected_concerns:
        tier, sep, phrase = concern.partition(": ")
        if sep and tier in _KEYWORD_TIERS:
            keywords.append(phrase)
    return keywords


def merge_reanalysis(existing: CrisisAlert, candidate: CrisisAlert) -> bool:
    """Fold a fresh alert candidate into an existing open alert.

    Returns:
        True if severity was escalated
    """
    escalated = candidate.severity.rank > existing.severity.rank
    if escalated:
        existing.severity = candidate.severity

    # One entry per analysis occurrence; matched_keywords is the distinct view
    concerns = list(existing.metadata.get("detected_concerns", []))
    concerns.extend(candidate.metadata.get("detected_concerns", []))

    keywords = list(existing.metadata.get("matched_keywords", []))
    for keyword in candidate.metadata.get("matched_keywords", []):
        if keyword not in keywords:
            keywords.append(keyword)

    analysis_count = existing.metadata.get("analysis_count", 1) + 1

    # Last write wins for the remaining metadata
    existing.metadata.update(candidate.metadata)
    existing.metadata["detected_concerns"] = concerns
    existing.metadata["matched_keywords"] = keywords
    existing.metadata["analysis_count"] = analysis_count

    existing.content_snippet = candidate.content_snippet
    existing.updated_at = candidate.updated_at
    return escalated


class AlertManager:
    """Creates and manages crisis alerts."""

    def __init__(
        self,
        repository: AlertRepository,
        settings: Optional[AlertSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize alert manager.

        Args:
            repository: Alert storage
            settings: Thresholds and dedup window
            clock: Returns the current UTC time, injectable for tests
        """
        self.repository = repository
        self.settings = settings or AlertSettings()
        self._clock = clock

        logger.info(
            "ALERT_MANAGER_INITIALIZED",
            extra={
                "alert_threshold": self.settings.alert_threshold.value,
                "dedup_window_minutes": self.settings.dedup_window_minutes,
            }
        )

    def should_alert(self, result: AnalysisResult) -> bool:
        return (
            result.risk_level >= self.settings.alert_threshold
            or result.requires_intervention
        )

    def record_analysis(
        self,
        result: AnalysisResult,
        subject_user_id: str,
        content_id: str,
        content_type: ContentType,
        content: str,
    ) -> Optional[AlertRecord]:
        """Raise or update an alert for an analysis result.

        Args:
            result: Reconciled analysis result
            subject_user_id: Author of the content
            content_id: Content identifier (dedup key with the author)
            content_type: Kind of content
            content: Raw content, stored only as a bounded snippet

        Returns:
            AlertRecord, or None if the result is below the threshold

        Raises:
            RepositoryError: If storage fails
        """
        if not self.should_alert(result):
            return None

        metadata = {
            "detected_concerns": list(result.detected_concerns),
            "matched_keywords": matched_keywords(result.detected_concerns),
            "confidence_score": result.confidence_score,
            "risk_level": result.risk_level.value,
            "requires_intervention": result.requires_intervention,
            "content_type": content_type.value,
            "content_id": content_id,
            "analysis_count": 1,
        }

        return self._find_or_create(
            subject_user_id=subject_user_id,
            content_id=content_id,
            severity=result.risk_level.to_severity(),
            content=content,
            trigger_source=TriggerSource.CONTENT_KEYWORD,
            metadata=metadata,
        )

    def raise_manual_alert(
        self,
        subject_user_id: str,
        content_id: str,
        content: str,
        trigger_source: TriggerSource,
        severity: AlertSeverity = AlertSeverity.HIGH,
        reporter_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AlertRecord:
        """Raise an alert from a user report or moderator escalation.

        Goes through the same dedup path as content analysis.

        Raises:
            ValueError: If trigger_source is not a manual source
        """
        if trigger_source not in MANUAL_TRIGGER_SOURCES:
            raise ValueError(f"Not a manual trigger source: {trigger_source.value}")

        metadata = {
            "detected_concerns": [],
            "matched_keywords": [],
            "content_id": content_id,
            "reporter_id": reporter_id,
            "reason": reason,
            "analysis_count": 1,
        }

        return self._find_or_create(
            subject_user_id=subject_user_id,
            content_id=content_id,
            severity=severity,
            content=content,
            trigger_source=trigger_source,
            metadata=metadata,
        )

    def _find_or_create(
        self,
        subject_user_id: str,
        content_id: str,
        severity: AlertSeverity,
        content: str,
        trigger_source: TriggerSource,
        metadata: Dict[str, Any],
    ) -> AlertRecord:
        now = self._clock()
        candidate = CrisisAlert(
            alert_id=f"alert_{uuid.uuid4().hex[:16]}",
            subject_user_id=subject_user_id,
            content_id=content_id,
            severity=severity,
            content_snippet=privacy_snippet(content, self.settings.snippet_length),
            trigger_source=trigger_source,
            created_at=now,
            updated_at=now,
            metadata=metadata,
        )
        window_start = now - timedelta(minutes=self.settings.dedup_window_minutes)

        alert, created, escalated = self.repository.find_or_create(
            candidate, window_start, merge_reanalysis
        )
        record = AlertRecord(alert=alert, created=created, escalated=escalated)

        log_extra = {
            "alert_id": alert.alert_id,
            "user_id_hash": hash_pii(subject_user_id),
            "severity": alert.severity.value,
            "trigger_source": trigger_source.value,
            "status": alert.status.value,
        }
        if created:
            log_level = logging.CRITICAL if severity == AlertSeverity.CRITICAL else logging.WARNING
            logger.log(log_level, "ALERT_CREATED", extra=log_extra)
        elif escalated:
            logger.warning("ALERT_ESCALATED", extra=log_extra)
        else:
            logger.info(
                "ALERT_DEDUPLICATED",
                extra={**log_extra, "analysis_count": alert.metadata.get("analysis_count")}
            )

        return record

    def update_alert_status(
        self,
        alert_id: str,
        new_status: AlertStatus,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CrisisAlert:
        """Move an alert through the state machine.

        Args:
            alert_id: Alert to update
            new_status: Requested status
            actor_id: Moderator making the change
            notes: Free-text note kept in the alert history

        Returns:
            Updated alert

        Raises:
            AlertNotFoundError: Unknown alert_id
            InvalidTransition: new_status not reachable from the current status
        """
        def apply(alert: CrisisAlert) -> None:
            if new_status not in ALLOWED_TRANSITIONS[alert.status]:
                raise InvalidTransition(alert.status, new_status)

            now = self._clock()
            alert.notes.append({
                "at": now.isoformat(),
                "actor_id": actor_id,
                "from": alert.status.value,
                "to": new_status.value,
                "notes": notes,
            })
            alert.status = new_status
            alert.updated_at = now
            if new_status.is_terminal:
                alert.resolved_at = now
                alert.resolved_by = actor_id

        try:
            alert = self.repository.modify(alert_id, apply)
        except NotFoundError as e:
            raise AlertNotFoundError(f"Alert not found: {alert_id}") from e
        except InvalidTransition as e:
            logger.warning(
                "ALERT_TRANSITION_REJECTED",
                extra={
                    "alert_id": alert_id,
                    "current": e.current.value,
                    "requested": e.requested.value,
                }
            )
            raise

        logger.info(
            "ALERT_STATUS_UPDATED",
            extra={
                "alert_id": alert_id,
                "status": new_status.value,
                "actor_id": actor_id,
            }
        )
        return alert

    def assign(self, alert_id: str, moderator_id: str) -> CrisisAlert:
        """Assign an open alert to a moderator.

        Raises:
            AlertNotFoundError: Unknown alert_id
            AlertServiceError: Alert is already closed
        """
        def apply(alert: CrisisAlert) -> None:
            if not alert.is_open:
                raise AlertServiceError(
                    f"Cannot assign {alert.status.value} alert {alert.alert_id}"
                )
            alert.assigned_to = moderator_id
            alert.updated_at = self._clock()

        try:
            alert = self.repository.modify(alert_id, apply)
        except NotFoundError as e:
            raise AlertNotFoundError(f"Alert not found: {alert_id}") from e

        logger.info(
            "ALERT_ASSIGNED",
            extra={"alert_id": alert_id, "moderator_id": moderator_id}
        )
        return alert

    def get_alert(self, alert_id: str) -> CrisisAlert:
        """Raises AlertNotFoundError for unknown ids."""
        alert = self.repository.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return alert

    def list_alerts(
        self,
        status: Optional[AlertStatus] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> List[CrisisAlert]:
        return self.repository.list(status=status, severity=severity, limit=limit)

    def metrics(self) -> CrisisMetrics:
        """Compute weekly crisis metrics.

        - alerts_this_week: alerts created in the last 7 days
        - weekly_trend_percent: change vs the 7 days before that (0 if none)
        - average_response_minutes: created to resolved, this week's resolved alerts
        - resolution_rate_percent: resolved share of this week's alerts
        """
        now = self._clock()
        one_week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)

        recent = self.repository.list_created_since(two_weeks_ago)
        this_week = [a for a in recent if a.created_at >= one_week_ago]
        last_week = [a for a in recent if a.created_at < one_week_ago]

        weekly_trend = 0.0
        if last_week:
            weekly_trend = (len(this_week) - len(last_week)) / len(last_week) * 100

        resolved = [a for a in this_week if a.status == AlertStatus.RESOLVED]
        avg_response = 0.0
        if resolved:
            minutes = [
                ((a.resolved_at or a.updated_at) - a.created_at).total_seconds() / 60
                for a in resolved
            ]
            avg_response = sum(minutes) / len(minutes)

        resolution_rate = 0.0
        if this_week:
            resolution_rate = len(resolved) / len(this_week) * 100

        return CrisisMetrics(
            active_alerts=self.repository.count_open(),
            alerts_this_week=len(this_week),
            weekly_trend_percent=round(weekly_trend),
            average_response_minutes=round(avg_response),
            resolution_rate_percent=round(resolution_rate),
        )
