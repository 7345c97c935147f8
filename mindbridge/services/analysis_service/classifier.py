"""Risk classifier - fuses keyword, emotional and toxicity signals.

score = 0.4 * keyword + 0.4 * avg(distress, hopelessness, urgency)
        + 0.2 * toxicity

Any critical-tier keyword forces CRISIS regardless of the fused score.
Confidence rewards agreement between the three independent signals:
confidence = max(0.1, 1 - population variance of the three inputs).
"""
import logging
import time
from typing import List, Optional

from mindbridge.shared.models import AnalysisResult, EmotionalIndicators, RiskLevel
from .config import (
    BASE_RESOURCES,
    HOPELESSNESS_ACTION,
    ISOLATION_ACTION,
    ISOLATION_RESOURCES,
    LEVEL_RESOURCES,
    SUGGESTED_ACTIONS,
    FusionWeights,
    RiskThresholds,
)
from .emotional_indicators import EmotionalEstimator, LexicalEmotionalEstimator
from .signal_extractor import SignalExtractor
from .toxicity import ToxicityEstimator

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.1


def fused_score(
    keyword_score: float,
    emotional_score: float,
    toxicity_score: float,
    weights: FusionWeights = FusionWeights(),
) -> float:
    """Weighted combination of the three signal scores."""
    return (
        weights.keyword * keyword_score
        + weights.emotional * emotional_score
        + weights.toxicity * toxicity_score
    )


def confidence_score(
    keyword_score: float,
    emotional_score: float,
    toxicity_score: float,
) -> float:
    """Agreement-based confidence: low variance means high confidence."""
    mean = (keyword_score + emotional_score + toxicity_score) / 3
    variance = (
        (keyword_score - mean) ** 2
        + (emotional_score - mean) ** 2
        + (toxicity_score - mean) ** 2
    ) / 3
    return max(MIN_CONFIDENCE, 1 - variance)


def level_for_score(
    score: float,
    immediate_danger: bool = False,
    thresholds: RiskThresholds = RiskThresholds(),
) -> RiskLevel:
    """Map a fused score to a risk level (non-decreasing step function)."""
    if immediate_danger or score >= thresholds.CRISIS_MIN:
        return RiskLevel.CRISIS
    if score >= thresholds.HIGH_MIN:
        return RiskLevel.HIGH
    if score >= thresholds.MEDIUM_MIN:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RiskClassifier:
    """Local crisis risk classification over one piece of text.

    Dependencies are injected so the model-backed estimators can replace
    the lexical defaults without touching fusion.
    """

    def __init__(
        self,
        signal_extractor: Optional[SignalExtractor] = None,
        emotional_estimator: Optional[EmotionalEstimator] = None,
        toxicity_estimator: Optional[ToxicityEstimator] = None,
        weights: Optional[FusionWeights] = None,
        thresholds: Optional[RiskThresholds] = None,
    ):
        self.signal_extractor = signal_extractor or SignalExtractor()
        self.emotional_estimator = emotional_estimator or LexicalEmotionalEstimator()
        self.toxicity_estimator = toxicity_estimator or ToxicityEstimator()
        self.weights = weights or FusionWeights()
        self.thresholds = thresholds or RiskThresholds()

    def classify(self, text: str) -> AnalysisResult:
        """Classify text into a risk level with confidence.

        Args:
            text: Raw content

        Returns:
            AnalysisResult built from the three local signal sets
        """
        start_time = time.perf_counter()

        signals = self.signal_extractor.extract(text)
        emotional = self.emotional_estimator.estimate(text)
        toxicity = self.toxicity_estimator.estimate(text)

        keyword_score = signals.keyword_score
        emotional_score = emotional.indicators.risk_average
        toxicity_score = toxicity.toxicity

        score = fused_score(keyword_score, emotional_score, toxicity_score, self.weights)
        risk_level = level_for_score(
            score, signals.has_immediate_danger_match, self.thresholds
        )
        confidence = confidence_score(keyword_score, emotional_score, toxicity_score)

        requires_intervention = (
            risk_level == RiskLevel.CRISIS
            or (
                risk_level == RiskLevel.HIGH
                and confidence > self.thresholds.HIGH_INTERVENTION_CONFIDENCE
            )
            or signals.has_immediate_danger_match
        )

        concerns = [match.tagged() for match in signals.matches]
        concerns.extend(f"{axis}: {cue}" for axis, cue in emotional.matched_cues)

        result = AnalysisResult(
            risk_level=risk_level,
            confidence_score=confidence,
            detected_concerns=tuple(concerns),
            emotional_indicators=emotional.indicators,
            suggested_actions=tuple(self._suggested_actions(risk_level, emotional.indicators)),
            recommended_resources=tuple(self._recommended_resources(risk_level, emotional.indicators)),
            requires_intervention=requires_intervention,
        )

        logger.info(
            "LOCAL_CLASSIFICATION_COMPLETED",
            extra={
                "risk_level": risk_level.value,
                "fused_score": round(score, 4),
                "keyword_score": keyword_score,
                "emotional_score": round(emotional_score, 4),
                "toxicity_score": toxicity_score,
                "confidence": round(confidence, 4),
                "immediate_danger": signals.has_immediate_danger_match,
                "estimator": emotional.estimator,
                "latency_ms": round((time.perf_counter() - start_time) * 1000, 2),
            }
        )

        return result

    def get_status(self) -> dict:
        """Which estimators back the local path."""
        return {
            "emotional": self.emotional_estimator.get_status(),
            "toxicity_classifier": type(self.toxicity_estimator.classifier).__name__,
        }

    def _suggested_actions(
        self,
        risk_level: RiskLevel,
        indicators: EmotionalIndicators,
    ) -> List[str]:
        actions = list(SUGGESTED_ACTIONS[risk_level.value])
        if indicators.isolation > self.thresholds.ISOLATION_ACTION_MIN:
            actions.append(ISOLATION_ACTION)
        if indicators.hopelessness > self.thresholds.HOPELESSNESS_ACTION_MIN:
            actions.append(HOPELESSNESS_ACTION)
        return actions

    def _recommended_resources(
        self,
        risk_level: RiskLevel,
        indicators: EmotionalIndicators,
    ) -> List[str]:
        resources = list(BASE_RESOURCES)
        resources.extend(LEVEL_RESOURCES[risk_level.value])
        if indicators.isolation > self.thresholds.ISOLATION_RESOURCE_MIN:
            resources.extend(ISOLATION_RESOURCES)
        return resources
