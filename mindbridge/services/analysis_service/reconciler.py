"""Dual-path reconciliation of local and remote crisis analysis.

The local classifier is fast and always available; the remote service
is slower and may fail. Both run for every submission:

1. Remote request is submitted first (returns a future immediately)
2. Local classification runs inline on the caller's thread
3. The remote future is awaited for whatever is left of the time budget
4. Remote wins only when it succeeded AND is strictly more confident

A remote timeout or error never blocks or fails the submission; the
local result (or the local fallback) stands.
"""
import logging
import time
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from mindbridge.shared.models import (
    AnalysisResult,
    AnalysisSource,
    EmotionalIndicators,
    RiskLevel,
)
from mindbridge.shared.utils import hash_pii
from .classifier import RiskClassifier
from .config import BASE_RESOURCES, FALLBACK_ACTIONS
from .remote_client import AnalysisRequest, RemoteClassifier

logger = logging.getLogger(__name__)


class RemoteStatus(Enum):
    """Outcome of the remote path for one submission."""
    DISABLED = "disabled"
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


def fallback_result() -> AnalysisResult:
    """Result used when local classification itself fails. Never low."""
    return AnalysisResult(
        risk_level=RiskLevel.MEDIUM,
        confidence_score=0.5,
        detected_concerns=("Unable to perform full analysis",),
        emotional_indicators=EmotionalIndicators(
            distress=0.5,
            hopelessness=0.3,
            isolation=0.3,
            urgency=0.4,
        ),
        suggested_actions=FALLBACK_ACTIONS,
        recommended_resources=BASE_RESOURCES,
        requires_intervention=False,
    )


def reconcile(
    local: AnalysisResult,
    remote: Optional[AnalysisResult],
) -> AnalysisResult:
    """Pick the result to keep.

    Remote is adopted in full when present and strictly more confident
    than local; ties keep local.
    """
    if remote is not None and remote.confidence_score > local.confidence_score:
        return remote
    return local


@dataclass(frozen=True)
class ReconciledAnalysis:
    """Reconciled result plus where it came from."""
    result: AnalysisResult
    source: AnalysisSource
    remote_status: RemoteStatus
    latency_ms: float = 0.0


class DualPathReconciler:
    """Runs local and remote classification and keeps the better result."""

    def __init__(
        self,
        classifier: RiskClassifier,
        remote: Optional[RemoteClassifier] = None,
        time_budget_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize reconciler.

        Args:
            classifier: Local risk classifier
            remote: Remote classification path, None to run local only
            time_budget_seconds: Total wait allowed for one submission
            clock: Monotonic clock, injectable for tests
        """
        if time_budget_seconds <= 0:
            raise ValueError("time_budget_seconds must be positive")

        self.classifier = classifier
        self.remote = remote
        self.time_budget_seconds = time_budget_seconds
        self._clock = clock

        logger.info(
            "RECONCILER_INITIALIZED",
            extra={
                "remote_enabled": remote is not None,
                "time_budget_seconds": time_budget_seconds,
            }
        )

    def analyze(self, request: AnalysisRequest) -> ReconciledAnalysis:
        """Classify content on both paths and reconcile.

        Never raises for classifier or remote failures.

        Args:
            request: Content plus caller identity

        Returns:
            ReconciledAnalysis with the adopted result
        """
        start = self._clock()
        user_hash = hash_pii(request.subject_user_id)

        future, remote_status = self._submit_remote(request, user_hash)

        try:
            local = self.classifier.classify(request.content)
            local_source = AnalysisSource.LOCAL
        except Exception as e:
            logger.error(
                "LOCAL_CLASSIFICATION_FAILED",
                extra={
                    "user_id_hash": user_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "USING_FALLBACK",
                }
            )
            local = fallback_result()
            local_source = AnalysisSource.FALLBACK

        remote_result = None
        if future is not None:
            remaining = max(0.0, self.time_budget_seconds - (self._clock() - start))
            remote_result, remote_status = self._await_remote(future, remaining, user_hash)

        chosen = reconcile(local, remote_result)
        source = AnalysisSource.REMOTE if chosen is remote_result else local_source

        if remote_result is not None and remote_result.risk_level != local.risk_level:
            logger.warning(
                "RECONCILE_RISK_DISAGREEMENT",
                extra={
                    "user_id_hash": user_hash,
                    "local_risk_level": local.risk_level.value,
                    "local_confidence": local.confidence_score,
                    "remote_risk_level": remote_result.risk_level.value,
                    "remote_confidence": remote_result.confidence_score,
                    "adopted": source.value,
                }
            )

        latency_ms = round((self._clock() - start) * 1000, 2)
        logger.info(
            "ANALYSIS_RECONCILED",
            extra={
                "user_id_hash": user_hash,
                "risk_level": chosen.risk_level.value,
                "confidence": chosen.confidence_score,
                "source": source.value,
                "remote_status": remote_status.value,
                "latency_ms": latency_ms,
            }
        )

        return ReconciledAnalysis(
            result=chosen,
            source=source,
            remote_status=remote_status,
            latency_ms=latency_ms,
        )

    def get_status(self) -> dict:
        return {
            "local": self.classifier.get_status(),
            "remote_enabled": self.remote is not None,
            "time_budget_seconds": self.time_budget_seconds,
        }

    def _submit_remote(self, request: AnalysisRequest, user_hash: str):
        if self.remote is None:
            return None, RemoteStatus.DISABLED

        try:
            return self.remote.submit(request), RemoteStatus.OK
        except Exception as e:
            logger.error(
                "REMOTE_ANALYSIS_SUBMIT_FAILED",
                extra={"user_id_hash": user_hash, "error": str(e)}
            )
            return None, RemoteStatus.ERROR

    def _await_remote(
        self,
        future: "Future[AnalysisResult]",
        timeout: float,
        user_hash: str,
    ):
        # Abandoned futures are left to finish on their own; no cancel
        try:
            return future.result(timeout=timeout), RemoteStatus.OK
        except FuturesTimeoutError:
            logger.warning(
                "REMOTE_ANALYSIS_TIMEOUT",
                extra={"user_id_hash": user_hash, "waited_seconds": round(timeout, 3)}
            )
            return None, RemoteStatus.TIMEOUT
        except Exception as e:
            logger.warning(
                "REMOTE_ANALYSIS_FAILED",
                extra={
                    "user_id_hash": user_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "KEEPING_LOCAL",
                }
            )
            return None, RemoteStatus.ERROR
