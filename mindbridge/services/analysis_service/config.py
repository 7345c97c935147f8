"""Analysis Service configuration, lexicons and fusion weights.

Lexicon tiers are plain phrase lists matched by case-insensitive
substring containment. Updated: 2026-10-01 - merged the client and
server keyword sets into one tiered lexicon.
"""
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class FusionWeights:
    """Weights for combining the three signal sets into one score."""
    keyword: float = 0.4
    emotional: float = 0.4
    toxicity: float = 0.2


@dataclass(frozen=True)
class RiskThresholds:
    """Fused-score thresholds for each risk level (inclusive lower bounds)."""
    CRISIS_MIN: float = 0.8
    HIGH_MIN: float = 0.6
    MEDIUM_MIN: float = 0.4
    # requires_intervention for HIGH results above this confidence
    HIGH_INTERVENTION_CONFIDENCE: float = 0.8
    # Emotional axes above these add targeted actions/resources
    ISOLATION_ACTION_MIN: float = 0.6
    HOPELESSNESS_ACTION_MIN: float = 0.6
    ISOLATION_RESOURCE_MIN: float = 0.4


@dataclass(frozen=True)
class AnalysisSettings:
    """Runtime configuration for the analysis pipeline."""

    # Remote analysis endpoint; None disables the remote path
    remote_url: Optional[str] = None
    remote_token: Optional[str] = None

    # Bounded wait for local + remote analysis (seconds)
    time_budget_seconds: float = 3.0

    # Optional model-backed estimators
    toxicity_model_enabled: bool = False
    toxicity_model_name: str = "unitary/toxic-bert"
    emotion_model_enabled: bool = False
    emotion_model_name: str = "facebook/bart-large-mnli"

    # Version tracking for the analysis log
    lexicon_version: str = "2026.10.01"

    @classmethod
    def from_env(cls) -> "AnalysisSettings":
        """Create settings from environment variables.

        Environment variables:
            REMOTE_ANALYSIS_URL: Remote analysis endpoint (optional)
            REMOTE_ANALYSIS_TOKEN: Bearer token for the remote endpoint
            ANALYSIS_TIME_BUDGET_SECONDS: Bounded wait (default 3.0)
            TOXICITY_MODEL_ENABLED: Load the toxicity model (default false)
            TOXICITY_MODEL_NAME: HuggingFace model for toxicity
            EMOTION_MODEL_ENABLED: Load the zero-shot emotion model
            EMOTION_MODEL_NAME: HuggingFace model for zero-shot scoring
        """
        return cls(
            remote_url=os.getenv("REMOTE_ANALYSIS_URL") or None,
            remote_token=os.getenv("REMOTE_ANALYSIS_TOKEN") or None,
            time_budget_seconds=float(os.getenv("ANALYSIS_TIME_BUDGET_SECONDS", "3.0")),
            toxicity_model_enabled=os.getenv("TOXICITY_MODEL_ENABLED", "false").lower() == "true",
            toxicity_model_name=os.getenv("TOXICITY_MODEL_NAME", "unitary/toxic-bert"),
            emotion_model_enabled=os.getenv("EMOTION_MODEL_ENABLED", "false").lower() == "true",
            emotion_model_name=os.getenv("EMOTION_MODEL_NAME", "facebook/bart-large-mnli"),
            lexicon_version=os.getenv("LEXICON_VERSION", "2026.10.01"),
        )


# Tiered crisis lexicon, highest severity first.
# A single CRITICAL match forces the final classification to crisis.
CRISIS_LEXICON: Dict[str, Tuple[str, ...]] = {
    "critical": (
        # Direct self-harm / suicidal language
        "suicide",
        "kill myself",
        "end my life",
        "end it all",
        "ending it all",
        "want to die",
        "ready to die",
        "plan to die",
        "take my own life",
        "not worth living",
        "no point living",
        "better off dead",
        "self harm",
        "self-harm",
        "hurt myself",
        "cut myself",
        "hang myself",
        "jump off",
        "overdose",
        "planning to hurt myself",
        # Imminent plan indicators
        "tonight is the night",
        "goodbye forever",
    ),
    "high": (
        "hopeless",
        "worthless",
        "burden to everyone",
        "trapped",
        "can't go on",
        "no way out",
        "unbearable pain",
        "empty inside",
        "nobody cares",
        "failed at everything",
        "giving up",
        "give up completely",
        "no point",
    ),
    "medium": (
        "depressed",
        "helpless",
        "numb",
        "desperate",
        "can't cope",
        "falling apart",
        "breaking down",
        "losing control",
        "lost control",
        "panic attack",
        "severe anxiety",
        "can't breathe",
        "worried sick",
        "isolating",
        "avoid everyone",
    ),
    "low": (
        "stressed",
        "overwhelmed",
        "anxious",
        "worried",
        "sad",
        "upset",
        "frustrated",
        "tired",
        "exhausted",
        "struggling",
        "difficult time",
        "hard time",
        "hard to focus",
        "sleep problems",
        "mood swings",
        "irritable",
        "lonely",
    ),
}

# Word lists for the four emotional indicator axes
EMOTIONAL_LEXICON: Dict[str, Tuple[str, ...]] = {
    "distress": (
        "pain",
        "hurt",
        "suffering",
        "agony",
        "torment",
        "anguish",
        "devastating",
        "crushing",
        "unbearable",
        "excruciating",
    ),
    "hopelessness": (
        "hopeless",
        "pointless",
        "meaningless",
        "futile",
        "useless",
        "no future",
        "no hope",
        "never get better",
        "permanent",
        "forever",
    ),
    "isolation": (
        "alone",
        "lonely",
        "isolated",
        "abandoned",
        "rejected",
        "nobody understands",
        "all by myself",
        "disconnected",
        "outcast",
    ),
    "urgency": (
        "now",
        "today",
        "tonight",
        "immediately",
        "can't wait",
        "right now",
        "this moment",
        "before it's too late",
        "urgent",
    ),
}

# Suggested actions per risk level
SUGGESTED_ACTIONS: Dict[str, Tuple[str, ...]] = {
    "crisis": (
        "Immediate intervention required - contact crisis hotline",
        "Connect with emergency mental health services",
        "Reach out to trusted friends or family members",
        "Consider contacting emergency services if in immediate danger",
    ),
    "high": (
        "Prioritize professional mental health support",
        "Contact a crisis counselor or therapist",
        "Reach out to supportive community members",
        "Consider joining a support group",
    ),
    "medium": (
        "Consider speaking with a mental health professional",
        "Connect with supportive community members",
        "Explore self-care and coping strategies",
        "Monitor emotional well-being closely",
    ),
    "low": (
        "Continue engaging with supportive community",
        "Practice self-care and mindfulness",
        "Consider preventive mental health resources",
    ),
}

ISOLATION_ACTION = "Focus on building social connections"
HOPELESSNESS_ACTION = "Explore goal-setting and future planning activities"

FALLBACK_ACTIONS: Tuple[str, ...] = ("Consider reaching out for support",)

# Resources always recommended, followed by level-specific ones
BASE_RESOURCES: Tuple[str, ...] = (
    "KIRAN Mental Health Helpline: 1800-599-0019 (FREE 24/7)",
    "iCALL Crisis Support: 9152987821",
    "Vandrevala Foundation chat: https://www.vandrevalafoundation.com/",
)

LEVEL_RESOURCES: Dict[str, Tuple[str, ...]] = {
    "crisis": (
        "Local emergency services: 112",
        "Campus counseling centre (urgent walk-in)",
    ),
    "high": (
        "Campus counseling centre (urgent walk-in)",
        "Tele-MANAS: 14416",
    ),
    "medium": (
        "Book a session with a campus counselor",
        "Peer support community",
    ),
    "low": (
        "Self-help library: mindfulness and sleep guides",
        "Peer support community",
    ),
}

ISOLATION_RESOURCES: Tuple[str, ...] = (
    "Campus clubs and volunteer opportunities",
    "Peer listener chat",
)
