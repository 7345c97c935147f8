"""Shared domain models for the MindBridge crisis pipeline."""
from .risk import (
    RiskLevel,
    AlertSeverity,
    AlertStatus,
    TriggerSource,
    ContentType,
    AnalysisSource,
    EmotionalIndicators,
    AnalysisResult,
)
from .alert import (
    CrisisAlert,
    Notification,
    NotificationAudience,
)

__all__ = [
    "RiskLevel",
    "AlertSeverity",
    "AlertStatus",
    "TriggerSource",
    "ContentType",
    "AnalysisSource",
    "EmotionalIndicators",
    "AnalysisResult",
    "CrisisAlert",
    "Notification",
    "NotificationAudience",
]
