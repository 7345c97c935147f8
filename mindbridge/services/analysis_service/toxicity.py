"""Toxicity estimation - optional external classifier.

The contract is seven axis scores in [0, 1]. When no classifier is
configured, or it fails, near-zero defaults are returned so risk fusion
degrades gracefully instead of failing.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToxicityScores:
    """Seven toxicity axes, each 0.0 to 1.0."""
    toxicity: float = 0.1
    identity_attack: float = 0.05
    insult: float = 0.05
    profanity: float = 0.02
    threat: float = 0.03
    sexually_explicit: float = 0.01
    flirtation: float = 0.01

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{f.name} must be 0.0-1.0, got {value}")

    @classmethod
    def clamped(cls, raw: Dict[str, float]) -> "ToxicityScores":
        """Build from possibly out-of-range values; missing axes use defaults."""
        defaults = cls()
        values = {}
        for f in fields(cls):
            value = raw.get(f.name, getattr(defaults, f.name))
            values[f.name] = min(max(float(value), 0.0), 1.0)
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_TOXICITY = ToxicityScores()


class ToxicityClassifier(ABC):
    """External text-toxicity classifier contract."""

    @abstractmethod
    def classify(self, text: str) -> Dict[str, float]:
        """Return raw axis scores keyed by axis name."""
        pass


class DefaultToxicityClassifier(ToxicityClassifier):
    """Stand-in used when no external classifier is configured."""

    def classify(self, text: str) -> Dict[str, float]:
        return DEFAULT_TOXICITY.to_dict()


class TransformersToxicityClassifier(ToxicityClassifier):
    """HuggingFace text-classification model mapped onto the seven axes.

    The default model (toxic-bert, Jigsaw labels) has no flirtation or
    sexually_explicit head; those axes keep their defaults.
    """

    DEFAULT_MODEL = "unitary/toxic-bert"
    MAX_CHARS = 2000

    LABEL_MAP: Dict[str, str] = {
        "toxic": "toxicity",
        "toxicity": "toxicity",
        "identity_hate": "identity_attack",
        "identity_attack": "identity_attack",
        "insult": "insult",
        "obscene": "profanity",
        "threat": "threat",
        "sexual_explicit": "sexually_explicit",
    }

    def __init__(self, model_name: Optional[str] = None, device: str = "cpu"):
        """Load the model.

        Raises:
            ImportError: If transformers is not installed
        """
        from transformers import pipeline

        self.model_name = model_name or self.DEFAULT_MODEL
        logger.info("TOXICITY_MODEL_LOADING", extra={"model_name": self.model_name})
        self._pipeline = pipeline(
            "text-classification",
            model=self.model_name,
            top_k=None,
            function_to_apply="sigmoid",
            device=-1 if device == "cpu" else 0,
        )
        logger.info("TOXICITY_MODEL_LOADED", extra={"model_name": self.model_name})

    def classify(self, text: str) -> Dict[str, float]:
        output = self._pipeline(text[: self.MAX_CHARS])
        # Single-string input may come back wrapped in an extra list
        if output and isinstance(output[0], list):
            output = output[0]

        scores: Dict[str, float] = {}
        for item in output:
            axis = self.LABEL_MAP.get(item["label"].lower())
            if axis:
                scores[axis] = max(scores.get(axis, 0.0), float(item["score"]))
        return scores


class ToxicityEstimator:
    """Wraps a classifier so fusion always gets valid scores."""

    def __init__(self, classifier: Optional[ToxicityClassifier] = None):
        self.classifier = classifier or DefaultToxicityClassifier()

    def estimate(self, text: str) -> ToxicityScores:
        if not text.strip():
            return DEFAULT_TOXICITY

        try:
            raw = self.classifier.classify(text)
        except Exception as e:
            logger.warning(
                "TOXICITY_CLASSIFIER_FAILED",
                extra={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "USING_DEFAULTS",
                }
            )
            return DEFAULT_TOXICITY

        return ToxicityScores.clamped(raw or {})


def build_toxicity_estimator(enabled: bool, model_name: str) -> ToxicityEstimator:
    """Create the estimator, loading the model only when enabled."""
    if not enabled:
        return ToxicityEstimator()

    try:
        return ToxicityEstimator(TransformersToxicityClassifier(model_name=model_name))
    except Exception as e:
        logger.error(
            "TOXICITY_MODEL_INIT_ERROR",
            extra={"error": str(e), "model_name": model_name, "action": "USING_DEFAULTS"}
        )
        return ToxicityEstimator()
