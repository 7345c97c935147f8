"""Risk level, alert and analysis result domain models.

This file defines the closed enums and value types shared by every
service in the crisis pipeline. Risk and status values are never passed
around as bare strings inside the pipeline; they are converted at the
edges (HTTP, database rows, remote responses).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


class RiskLevel(Enum):
    """Ordered classification of detected crisis severity.

    low < medium < high < crisis
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRISIS = "crisis"

    @property
    def rank(self) -> int:
        return _RISK_ORDER[self]

    def __lt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    def to_severity(self) -> "AlertSeverity":
        """Map to alert severity naming (crisis is called critical)."""
        return _RISK_TO_SEVERITY[self]


_RISK_ORDER = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRISIS: 3,
}


class AlertSeverity(Enum):
    """Severity of a crisis alert. Mirrors RiskLevel."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER[self]


_SEVERITY_ORDER = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}

_RISK_TO_SEVERITY = {
    RiskLevel.LOW: AlertSeverity.LOW,
    RiskLevel.MEDIUM: AlertSeverity.MEDIUM,
    RiskLevel.HIGH: AlertSeverity.HIGH,
    RiskLevel.CRISIS: AlertSeverity.CRITICAL,
}


class AlertStatus(Enum):
    """State machine for crisis alert lifecycle."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    CONTACTED = "contacted"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"

    @property
    def is_terminal(self) -> bool:
        return self in (AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE)


class TriggerSource(Enum):
    """Origin of a crisis alert."""
    CONTENT_KEYWORD = "content_keyword"
    USER_REPORT = "user_report"
    MODERATOR_ESCALATION = "moderator_escalation"


class ContentType(Enum):
    """Kind of user content submitted for analysis."""
    POST = "post"
    COMMENT = "comment"
    MESSAGE = "message"


@dataclass(frozen=True)
class EmotionalIndicators:
    """Four normalized distress-axis scores, each 0.0 to 1.0."""
    distress: float = 0.0
    hopelessness: float = 0.0
    isolation: float = 0.0
    urgency: float = 0.0

    def __post_init__(self):
        for axis in ("distress", "hopelessness", "isolation", "urgency"):
            value = getattr(self, axis)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{axis} must be 0.0-1.0, got {value}")

    @property
    def risk_average(self) -> float:
        """Mean of the axes that feed risk fusion (isolation excluded)."""
        return (self.distress + self.hopelessness + self.urgency) / 3

    def to_dict(self) -> Dict[str, float]:
        return {
            "distress": self.distress,
            "hopelessness": self.hopelessness,
            "isolation": self.isolation,
            "urgency": self.urgency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmotionalIndicators":
        return cls(
            distress=float(data.get("distress", 0.0)),
            hopelessness=float(data.get("hopelessness", 0.0)),
            isolation=float(data.get("isolation", 0.0)),
            urgency=float(data.get("urgency", 0.0)),
        )


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one crisis risk analysis.

    Immutable - produced once per invocation, then handed to the alert
    manager and appended to the analysis log. The dict form uses the
    camelCase wire names shared with the remote analysis service.
    """
    risk_level: RiskLevel
    confidence_score: float
    detected_concerns: Tuple[str, ...] = ()
    emotional_indicators: EmotionalIndicators = field(default_factory=EmotionalIndicators)
    suggested_actions: Tuple[str, ...] = ()
    recommended_resources: Tuple[str, ...] = ()
    requires_intervention: bool = False

    def __post_init__(self):
        if not 0.1 <= self.confidence_score <= 1.0:
            raise ValueError(
                f"Confidence score must be 0.1-1.0, got {self.confidence_score}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and storage."""
        return {
            "riskLevel": self.risk_level.value,
            "confidenceScore": self.confidence_score,
            "detectedConcerns": list(self.detected_concerns),
            "emotionalIndicators": self.emotional_indicators.to_dict(),
            "suggestedActions": list(self.suggested_actions),
            "recommendedResources": list(self.recommended_resources),
            "requiresIntervention": self.requires_intervention,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """Build from the wire format.

        Raises:
            ValueError: If risk level or confidence are missing or invalid
        """
        if "riskLevel" not in data or "confidenceScore" not in data:
            raise ValueError("riskLevel and confidenceScore are required")

        return cls(
            risk_level=RiskLevel(data["riskLevel"]),
            confidence_score=float(data["confidenceScore"]),
            detected_concerns=tuple(data.get("detectedConcerns") or ()),
            emotional_indicators=EmotionalIndicators.from_dict(
                data.get("emotionalIndicators") or {}
            ),
            suggested_actions=tuple(data.get("suggestedActions") or ()),
            recommended_resources=tuple(data.get("recommendedResources") or ()),
            requires_intervention=bool(data.get("requiresIntervention", False)),
        )


class AnalysisSource(Enum):
    """Which path produced the reconciled analysis result."""
    LOCAL = "local"
    REMOTE = "remote"
    FALLBACK = "fallback"
