"""Tests for tiered crisis lexicon matching."""
import pytest

from mindbridge.shared.utils import configure_pii_salt
from mindbridge.services.analysis_service.config import CRISIS_LEXICON
from mindbridge.services.analysis_service.signal_extractor import (
    NO_MATCH_KEYWORD_SCORE,
    SignalExtractor,
    SignalTier,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def extractor():
    return SignalExtractor()


class TestMatching:

    def test_case_insensitive(self, extractor):
        extraction = extractor.extract("I Want To DIE")

        assert extraction.has_immediate_danger_match
        assert "want to die" in extraction.matched_phrases

    def test_substring_not_tokenized(self, extractor):
        # "hopelessness" contains the high-tier phrase "hopeless"
        extraction = extractor.extract("so much hopelessness lately")

        assert extraction.highest_tier == SignalTier.HIGH
        assert "hopeless" in extraction.matched_phrases

    def test_every_tier_match_kept(self, extractor):
        extraction = extractor.extract("I want to die, I have a plan and can't go on")

        assert extraction.tier_counts[SignalTier.CRITICAL] >= 1
        assert extraction.tier_counts[SignalTier.HIGH] >= 1
        tiers = [m.tier for m in extraction.matches]
        assert tiers == sorted(tiers, key=lambda t: list(SignalTier).index(t))

    def test_tagged_concern_format(self, extractor):
        extraction = extractor.extract("feeling stressed")

        assert [m.tagged() for m in extraction.matches] == ["low: stressed"]

    def test_no_match(self, extractor):
        extraction = extractor.extract("great day at the library")

        assert extraction.matches == ()
        assert extraction.highest_tier is None
        assert extraction.keyword_score == NO_MATCH_KEYWORD_SCORE
        assert not extraction.has_immediate_danger_match

    def test_empty_text(self, extractor):
        extraction = extractor.extract("")

        assert extraction.matches == ()
        assert extraction.keyword_score == 0.2


class TestKeywordScore:

    @pytest.mark.parametrize("text,expected", [
        ("thinking about suicide", 1.0),
        ("everything feels hopeless", 0.8),
        ("I feel numb", 0.5),
        ("a bit tired", 0.2),
    ])
    def test_highest_tier_score(self, extractor, text, expected):
        assert extractor.extract(text).keyword_score == expected

    def test_every_critical_phrase_is_immediate_danger(self, extractor):
        for phrase in CRISIS_LEXICON["critical"]:
            assert extractor.extract(f"honestly {phrase}").has_immediate_danger_match, phrase


class TestCustomLexicon:

    def test_injected_lexicon(self):
        extractor = SignalExtractor({"critical": ["red flag"], "low": ["meh"]})

        assert extractor.extract("this is a RED FLAG").has_immediate_danger_match
        assert extractor.extract("want to die").matches == ()

    def test_unknown_tier_rejected(self):
        with pytest.raises(ValueError):
            SignalExtractor({"severe": ["x"]})
