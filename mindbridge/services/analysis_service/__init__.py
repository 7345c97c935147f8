"""Analysis Service - local and remote crisis risk classification.

Signal extraction, emotional and toxicity estimation feed the risk
classifier; the dual-path reconciler races it against the remote
analysis service; CrisisPipeline ties analysis to logging and alerting.
"""
from .classifier import RiskClassifier, confidence_score, fused_score, level_for_score
from .config import AnalysisSettings, FusionWeights, RiskThresholds
from .pipeline import AnalysisOutcome, CrisisPipeline
from .reconciler import (
    DualPathReconciler,
    ReconciledAnalysis,
    RemoteStatus,
    fallback_result,
    reconcile,
)
from .remote_client import (
    AnalysisRequest,
    RemoteAnalysisClient,
    RemoteAnalysisError,
    RemoteClassifier,
)
from .signal_extractor import SignalExtraction, SignalExtractor, SignalTier

__all__ = [
    "RiskClassifier",
    "confidence_score",
    "fused_score",
    "level_for_score",
    "AnalysisSettings",
    "FusionWeights",
    "RiskThresholds",
    "AnalysisOutcome",
    "CrisisPipeline",
    "DualPathReconciler",
    "ReconciledAnalysis",
    "RemoteStatus",
    "fallback_result",
    "reconcile",
    "AnalysisRequest",
    "RemoteAnalysisClient",
    "RemoteAnalysisError",
    "RemoteClassifier",
    "SignalExtraction",
    "SignalExtractor",
    "SignalTier",
]
