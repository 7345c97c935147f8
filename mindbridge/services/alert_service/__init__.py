"""Alert Service - crisis alert dedup, state machine and metrics."""
from .alert_manager import (
    AlertManager,
    AlertSettings,
    AlertRecord,
    CrisisMetrics,
    AlertServiceError,
    AlertNotFoundError,
    InvalidTransition,
    ALLOWED_TRANSITIONS,
)
from .alert_repository import AlertRepository

__all__ = [
    "AlertManager",
    "AlertSettings",
    "AlertRecord",
    "CrisisMetrics",
    "AlertServiceError",
    "AlertNotFoundError",
    "InvalidTransition",
    "ALLOWED_TRANSITIONS",
    "AlertRepository",
]
