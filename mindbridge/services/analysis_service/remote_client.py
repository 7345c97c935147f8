"""Remote crisis analysis client.

The remote analysis service receives the same text plus caller identity
and answers with an AnalysisResult in the shared wire format:

    {"success": true, "analysis": {"riskLevel": "...", ...}}

Requests run on a dedicated asyncio event loop in a background thread,
so synchronous callers (Flask workers) get a concurrent.futures.Future
they can wait on with a timeout. Abandoning the wait does not cancel
the request; it finishes on the background loop and is discarded.
"""
import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from mindbridge.shared.models import AnalysisResult, ContentType

logger = logging.getLogger(__name__)


class RemoteAnalysisError(Exception):
    """Remote analysis failed or returned an unusable response."""
    pass


@dataclass(frozen=True)
class AnalysisRequest:
    """One piece of content submitted for crisis analysis."""
    content: str
    content_type: ContentType
    subject_user_id: str
    content_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "contentType": self.content_type.value,
            "userId": self.subject_user_id,
            "postId": self.content_id,
        }


class RemoteClassifier(ABC):
    """Remote classification path used by the dual-path reconciler."""

    @abstractmethod
    def submit(self, request: AnalysisRequest) -> "Future[AnalysisResult]":
        """Start a remote classification and return immediately."""
        pass


class RemoteAnalysisClient(RemoteClassifier):
    """aiohttp client for the remote analysis endpoint."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        request_timeout_seconds: float = 10.0,
    ):
        """Initialize client and start its event loop thread.

        Args:
            url: Remote analysis endpoint
            token: Bearer token sent as Authorization header
            request_timeout_seconds: Hard limit for the HTTP request itself.
                Independent of the reconciler's wait budget.
        """
        if not url:
            raise ValueError("Remote analysis url required")

        self.url = url
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.request_timeout_seconds = request_timeout_seconds

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="remote-analysis-loop",
            daemon=True,
        )
        self._thread.start()

        logger.info(
            "REMOTE_ANALYSIS_CLIENT_INITIALIZED",
            extra={"url": url, "request_timeout_seconds": request_timeout_seconds}
        )

    def submit(self, request: AnalysisRequest) -> "Future[AnalysisResult]":
        return asyncio.run_coroutine_threadsafe(self._analyze(request), self._loop)

    async def _analyze(self, request: AnalysisRequest) -> AnalysisResult:
        start_time = time.time()

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    headers=self.headers,
                    json=request.to_payload(),
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout_seconds),
                ) as response:
                    response.raise_for_status()
                    body = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteAnalysisError(f"Remote analysis request failed: {e}") from e

        result = self.parse_response(body)

        logger.info(
            "REMOTE_ANALYSIS_RECEIVED",
            extra={
                "risk_level": result.risk_level.value,
                "confidence": result.confidence_score,
                "latency_ms": round((time.time() - start_time) * 1000, 2),
            }
        )
        return result

    @staticmethod
    def parse_response(body: Any) -> AnalysisResult:
        """Extract the AnalysisResult from a remote response body.

        A response flagged success=false carries the remote side's own
        fallback analysis; it is treated as a failure, not a result.

        Raises:
            RemoteAnalysisError: If the body is not a usable analysis
        """
        if not isinstance(body, dict):
            raise RemoteAnalysisError("Remote response is not a JSON object")

        if body.get("success") is False:
            raise RemoteAnalysisError(
                f"Remote analysis reported failure: {body.get('error', 'unknown')}"
            )

        analysis = body.get("analysis", body)
        try:
            return AnalysisResult.from_dict(analysis)
        except (ValueError, TypeError, AttributeError) as e:
            raise RemoteAnalysisError(f"Malformed remote analysis: {e}") from e

    def close(self) -> None:
        """Stop the background loop. Call during application shutdown."""
        if self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._loop.close()
        logger.info("REMOTE_ANALYSIS_CLIENT_CLOSED")
