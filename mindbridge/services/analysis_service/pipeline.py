"""Crisis pipeline - the single entry point for analysing content.

analyze() runs the dual-path reconciler, then the side effects in a
fixed order:

1. Analysis log append (always, with the reconciled result)
2. Alert find-or-create (only at or above the alert threshold)
3. Notification routing (only for new or escalated alerts)

Side effects are best-effort: a failure is logged and reported in
AnalysisOutcome.warnings, and never blocks the content submission.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from mindbridge.services.alert_service import AlertManager
from mindbridge.services.audit_service import AnalysisLog
from mindbridge.services.notification_service import NotificationRouter, RoutingReport
from mindbridge.shared.models import (
    AnalysisResult,
    AnalysisSource,
    ContentType,
    CrisisAlert,
)
from mindbridge.shared.utils import hash_pii, hash_text_for_audit
from .reconciler import DualPathReconciler, RemoteStatus
from .remote_client import AnalysisRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisOutcome:
    """Everything the caller learns from one analyze() call."""
    result: AnalysisResult
    source: AnalysisSource
    remote_status: RemoteStatus
    content_id: str
    alert: Optional[CrisisAlert] = None
    routing: Optional[RoutingReport] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "analysis": self.result.to_dict(),
            "source": self.source.value,
            "remote_status": self.remote_status.value,
            "content_id": self.content_id,
            "alert_id": self.alert.alert_id if self.alert else None,
            "alert_severity": self.alert.severity.value if self.alert else None,
            "routing": self.routing.to_dict() if self.routing else None,
            "warnings": list(self.warnings),
        }


class CrisisPipeline:
    """Analyse content, log it, and escalate when needed."""

    def __init__(
        self,
        reconciler: DualPathReconciler,
        analysis_log: AnalysisLog,
        alert_manager: AlertManager,
        router: NotificationRouter,
    ):
        self.reconciler = reconciler
        self.analysis_log = analysis_log
        self.alert_manager = alert_manager
        self.router = router

    def get_status(self) -> Dict[str, Any]:
        """Analysis path status for readiness checks."""
        return self.reconciler.get_status()

    def analyze(
        self,
        content: str,
        content_type: Union[ContentType, str],
        subject_user_id: str,
        content_id: Optional[str] = None,
    ) -> AnalysisOutcome:
        """Analyse one piece of content and run escalation side effects.

        Args:
            content: Raw text
            content_type: post, comment or message
            subject_user_id: Author of the content
            content_id: Content identifier; chat messages without one are
                keyed by a fingerprint of their text

        Returns:
            AnalysisOutcome with the reconciled result and side-effect report

        Raises:
            ValueError: If content_type is not a known content type
        """
        content_type = ContentType(content_type) if isinstance(content_type, str) else content_type
        content_id = content_id or hash_text_for_audit(content)
        user_hash = hash_pii(subject_user_id)
        warnings = []

        reconciled = self.reconciler.analyze(
            AnalysisRequest(
                content=content,
                content_type=content_type,
                subject_user_id=subject_user_id,
                content_id=content_id,
            )
        )
        result = reconciled.result

        try:
            self.analysis_log.append(
                content_type=content_type,
                subject_user_id=subject_user_id,
                content_id=content_id,
                result=result,
                source=reconciled.source,
            )
        except Exception as e:
            logger.error(
                "ANALYSIS_LOG_APPEND_FAILED",
                extra={"user_id_hash": user_hash, "error": str(e)}
            )
            warnings.append(f"analysis_log_failed: {e}")

        alert = None
        routing = None
        try:
            record = self.alert_manager.record_analysis(
                result=result,
                subject_user_id=subject_user_id,
                content_id=content_id,
                content_type=content_type,
                content=content,
            )
        except Exception as e:
            logger.critical(
                "ALERT_RECORD_FAILED",
                extra={
                    "user_id_hash": user_hash,
                    "risk_level": result.risk_level.value,
                    "error": str(e),
                    "action": "MANUAL_REVIEW_REQUIRED",
                }
            )
            warnings.append(f"alert_failed: {e}")
            record = None

        if record is not None:
            alert = record.alert
            if record.should_notify:
                try:
                    routing = self.router.route(alert, escalated=record.escalated)
                except Exception as e:
                    logger.error(
                        "NOTIFICATION_ROUTING_FAILED",
                        extra={"alert_id": alert.alert_id, "error": str(e)}
                    )
                    warnings.append(f"notification_failed: {e}")
                else:
                    if routing.moderator_failures:
                        warnings.append(
                            f"moderator_notifications_failed: {len(routing.moderator_failures)}"
                        )

        logger.info(
            "CONTENT_ANALYZED",
            extra={
                "user_id_hash": user_hash,
                "content_type": content_type.value,
                "risk_level": result.risk_level.value,
                "source": reconciled.source.value,
                "alert_id": alert.alert_id if alert else None,
                "warning_count": len(warnings),
            }
        )

        return AnalysisOutcome(
            result=result,
            source=reconciled.source,
            remote_status=reconciled.remote_status,
            content_id=content_id,
            alert=alert,
            routing=routing,
            warnings=tuple(warnings),
        )
