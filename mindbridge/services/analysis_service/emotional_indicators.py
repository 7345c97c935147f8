"""Emotional indicator estimation: distress, hopelessness, isolation, urgency.

Two interchangeable estimators share one output contract:
- LexicalEmotionalEstimator: fixed word lists, no external dependency
- ZeroShotEmotionalEstimator: HuggingFace zero-shot model, falls back to
  the lexical estimator when the model is unavailable

The risk classifier never knows which one produced the scores.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

from mindbridge.shared.models import EmotionalIndicators
from .config import EMOTIONAL_LEXICON

logger = logging.getLogger(__name__)

AXES: Tuple[str, ...] = ("distress", "hopelessness", "isolation", "urgency")


@dataclass(frozen=True)
class EmotionalEstimate:
    """Axis scores plus the lexical cues behind them (if any)."""
    indicators: EmotionalIndicators
    matched_cues: Tuple[Tuple[str, str], ...] = ()  # (axis, cue)
    estimator: str = "lexical"


class EmotionalEstimator(ABC):
    """Produces four normalized distress-axis scores from text."""

    @abstractmethod
    def estimate(self, text: str) -> EmotionalEstimate:
        pass

    def get_status(self) -> dict:
        return {"estimator": type(self).__name__, "enabled": True}


class LexicalEmotionalEstimator(EmotionalEstimator):
    """Cue-density scorer.

    score = min(matched cue count / word list size, 1) per axis, using
    case-insensitive substring matching. Monotonically non-decreasing
    in the number of distinct cues present.
    """

    def __init__(self, word_lists: Optional[Mapping[str, Sequence[str]]] = None):
        source = word_lists if word_lists is not None else EMOTIONAL_LEXICON
        missing = [axis for axis in AXES if not source.get(axis)]
        if missing:
            raise ValueError(f"Word lists required for axes: {missing}")
        self._word_lists: Dict[str, Tuple[str, ...]] = {
            axis: tuple(w.lower() for w in source[axis]) for axis in AXES
        }

    def estimate(self, text: str) -> EmotionalEstimate:
        lowered = text.lower()
        scores = {}
        cues = []

        for axis in AXES:
            words = self._word_lists[axis]
            matched = [w for w in words if w in lowered]
            scores[axis] = min(len(matched) / len(words), 1.0)
            cues.extend((axis, w) for w in matched)

        return EmotionalEstimate(
            indicators=EmotionalIndicators(**scores),
            matched_cues=tuple(cues),
            estimator="lexical",
        )


class ZeroShotEmotionalEstimator(EmotionalEstimator):
    """Model-based estimator using a zero-shot NLI classifier.

    Each axis is scored independently (multi-label) against a natural
    language hypothesis. Loading takes seconds and inference adds
    ~200ms on CPU, so this is opt-in via EMOTION_MODEL_ENABLED.
    """

    DEFAULT_MODEL = "facebook/bart-large-mnli"
    MAX_CHARS = 2000

    AXIS_LABELS: Dict[str, str] = {
        "distress": "emotional distress",
        "hopelessness": "hopelessness",
        "isolation": "loneliness and social isolation",
        "urgency": "urgent need for help",
    }

    def __init__(
        self,
        model_name: Optional[str] = None,
        enabled: bool = True,
        device: str = "cpu",
        fallback: Optional[EmotionalEstimator] = None,
    ):
        """Initialize zero-shot estimator.

        Args:
            model_name: HuggingFace model name
            enabled: Whether to load the model at all
            device: "cpu" or "cuda"
            fallback: Estimator used when the model is unavailable
        """
        self.model_name = model_name or self.DEFAULT_MODEL
        self.enabled = enabled
        self.device = device
        self.fallback = fallback or LexicalEmotionalEstimator()
        self._pipeline = None
        self._init_error: Optional[str] = None

        if enabled:
            self._initialize_model()

    def _initialize_model(self) -> None:
        try:
            from transformers import pipeline

            logger.info(
                "EMOTION_MODEL_LOADING",
                extra={"model_name": self.model_name, "device": self.device}
            )
            self._pipeline = pipeline(
                "zero-shot-classification",
                model=self.model_name,
                device=-1 if self.device == "cpu" else 0,
            )
            logger.info("EMOTION_MODEL_LOADED", extra={"model_name": self.model_name})

        except ImportError as e:
            self._init_error = f"transformers not installed: {e}"
            logger.warning("EMOTION_MODEL_IMPORT_ERROR", extra={"error": self._init_error})
            self.enabled = False

        except Exception as e:
            self._init_error = str(e)
            logger.error(
                "EMOTION_MODEL_INIT_ERROR",
                extra={"error": self._init_error, "model_name": self.model_name}
            )
            self.enabled = False

    @property
    def is_available(self) -> bool:
        return self.enabled and self._pipeline is not None

    def estimate(self, text: str) -> EmotionalEstimate:
        if not self.is_available or not text.strip():
            return self.fallback.estimate(text)

        try:
            output = self._pipeline(
                text[: self.MAX_CHARS],
                candidate_labels=list(self.AXIS_LABELS.values()),
                multi_label=True,
            )
            by_label = dict(zip(output["labels"], output["scores"]))
            scores = {
                axis: min(max(float(by_label.get(label, 0.0)), 0.0), 1.0)
                for axis, label in self.AXIS_LABELS.items()
            }
        except Exception as e:
            logger.error("EMOTION_MODEL_INFERENCE_ERROR", extra={"error": str(e)})
            return self.fallback.estimate(text)

        return EmotionalEstimate(
            indicators=EmotionalIndicators(**scores),
            estimator=self.model_name,
        )

    def get_status(self) -> dict:
        """Get estimator status for health checks."""
        return {
            "estimator": type(self).__name__,
            "enabled": self.enabled,
            "available": self.is_available,
            "model_name": self.model_name,
            "device": self.device,
            "error": self._init_error,
        }
