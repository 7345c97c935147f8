"""Lexicon-based crisis signal extraction.

Matching is case-insensitive substring containment, not tokenized:
"hopelessness" matches "hopeless", and a phrase that contains a shorter
phrase from another tier matches both. Every match is kept.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .config import CRISIS_LEXICON

logger = logging.getLogger(__name__)


class SignalTier(Enum):
    """Severity tiers of the crisis lexicon, highest first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def keyword_score(self) -> float:
        """Score fed into risk fusion when this is the highest tier matched."""
        return _TIER_SCORES[self]


_TIER_SCORES = {
    SignalTier.CRITICAL: 1.0,
    SignalTier.HIGH: 0.8,
    SignalTier.MEDIUM: 0.5,
    SignalTier.LOW: 0.2,
}

# Keyword score when no tier matched at all
NO_MATCH_KEYWORD_SCORE = 0.2

TIER_ORDER: Tuple[SignalTier, ...] = (
    SignalTier.CRITICAL,
    SignalTier.HIGH,
    SignalTier.MEDIUM,
    SignalTier.LOW,
)


@dataclass(frozen=True)
class SignalMatch:
    """A single lexicon phrase found in the text."""
    tier: SignalTier
    phrase: str

    def tagged(self) -> str:
        return f"{self.tier.value}: {self.phrase}"


@dataclass(frozen=True)
class SignalExtraction:
    """Result of scanning one text against the tiered lexicon."""
    matches: Tuple[SignalMatch, ...] = ()
    tier_counts: Dict[SignalTier, int] = field(default_factory=dict)

    @property
    def has_immediate_danger_match(self) -> bool:
        return self.tier_counts.get(SignalTier.CRITICAL, 0) > 0

    @property
    def highest_tier(self) -> Optional[SignalTier]:
        for tier in TIER_ORDER:
            if self.tier_counts.get(tier, 0) > 0:
                return tier
        return None

    @property
    def keyword_score(self) -> float:
        tier = self.highest_tier
        return tier.keyword_score if tier else NO_MATCH_KEYWORD_SCORE

    @property
    def matched_phrases(self) -> Tuple[str, ...]:
        return tuple(match.phrase for match in self.matches)


class SignalExtractor:
    """Matches text against a tiered crisis lexicon.

    The lexicon maps tier names to phrase lists. Phrases are lowercased
    once at construction; text is lowercased per call.
    """

    def __init__(self, lexicon: Optional[Mapping[str, Sequence[str]]] = None):
        """Initialize extractor.

        Args:
            lexicon: Tier name -> phrases. Defaults to CRISIS_LEXICON.

        Raises:
            ValueError: If the lexicon names an unknown tier
        """
        source = lexicon if lexicon is not None else CRISIS_LEXICON
        self._lexicon: Dict[SignalTier, Tuple[str, ...]] = {}
        for tier_name, phrases in source.items():
            tier = SignalTier(tier_name)
            self._lexicon[tier] = tuple(p.lower() for p in phrases if p.strip())

        logger.info(
            "SIGNAL_EXTRACTOR_INITIALIZED",
            extra={
                "tier_sizes": {t.value: len(p) for t, p in self._lexicon.items()},
            }
        )

    def extract(self, text: str) -> SignalExtraction:
        """Scan text for lexicon phrases in every tier.

        Args:
            text: Raw content

        Returns:
            SignalExtraction with matches in tier then lexicon order
        """
        lowered = text.lower()
        matches = []
        tier_counts: Dict[SignalTier, int] = {}

        for tier in TIER_ORDER:
            for phrase in self._lexicon.get(tier, ()):
                if phrase in lowered:
                    matches.append(SignalMatch(tier=tier, phrase=phrase))
                    tier_counts[tier] = tier_counts.get(tier, 0) + 1

        extraction = SignalExtraction(matches=tuple(matches), tier_counts=tier_counts)

        if extraction.has_immediate_danger_match:
            logger.warning(
                "SIGNAL_IMMEDIATE_DANGER_MATCH",
                extra={
                    "critical_count": tier_counts[SignalTier.CRITICAL],
                    "total_matches": len(matches),
                }
            )

        return extraction
