"""End-to-end tests for the crisis pipeline on in-memory storage."""
import pytest
from unittest.mock import MagicMock

from mindbridge.bootstrap import Settings, build_components
from mindbridge.shared.utils import configure_pii_salt, hash_text_for_audit
from mindbridge.shared.models import (
    AlertSeverity,
    AlertStatus,
    AnalysisSource,
    ContentType,
    NotificationAudience,
    RiskLevel,
)
from mindbridge.services.analysis_service.reconciler import RemoteStatus
from mindbridge.services.notification_service import (
    InMemoryPreferencesProvider,
    NotificationPreferences,
    StaticModeratorDirectory,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def preferences():
    return InMemoryPreferencesProvider()


@pytest.fixture
def components(preferences):
    built = build_components(
        Settings(),
        preferences=preferences,
        moderators=StaticModeratorDirectory(["mod_1", "mod_2"]),
    )
    yield built
    built.close()


CRISIS_TEXT = "I want to die, I have a plan and can't go on"


class TestCrisisPipeline:

    def test_mild_stress_logged_without_alert(self, components):
        outcome = components.pipeline.analyze(
            "I'm stressed about exams and feeling a bit anxious",
            ContentType.POST,
            "student_1",
            "post_1",
        )

        assert outcome.result.risk_level == RiskLevel.LOW
        assert outcome.source == AnalysisSource.LOCAL
        assert outcome.remote_status == RemoteStatus.DISABLED
        assert outcome.alert is None
        assert outcome.routing is None
        assert outcome.warnings == ()

        entries = components.analysis_log.query(subject_user_id="student_1")
        assert len(entries) == 1
        assert entries[0].risk_level == RiskLevel.LOW
        assert entries[0].content_id == "post_1"

    def test_crisis_alerts_author_and_moderators(self, components):
        outcome = components.pipeline.analyze(CRISIS_TEXT, "post", "student_2", "post_2")

        assert outcome.result.risk_level == RiskLevel.CRISIS
        assert outcome.alert.severity == AlertSeverity.CRITICAL
        assert outcome.routing.author_notified is True
        assert outcome.routing.moderators_notified == 2

        author_notes = components.router.list_for_recipient("student_2")
        assert author_notes[0].title == "Immediate Support Available"
        assert author_notes[0].payload["resources"]["crisis_hotline"] == "1800-599-0019"

        moderator_notes = components.router.list_for_recipient("mod_1")
        assert moderator_notes[0].audience == NotificationAudience.MODERATOR
        assert moderator_notes[0].payload["alert_id"] == outcome.alert.alert_id
        assert moderator_notes[0].payload["requires_immediate_action"] is True

    def test_reanalysis_deduplicates_without_renotifying(self, components):
        first = components.pipeline.analyze(CRISIS_TEXT, "post", "student_3", "post_3")
        second = components.pipeline.analyze(CRISIS_TEXT, "post", "student_3", "post_3")

        assert second.alert.alert_id == first.alert.alert_id
        assert second.alert.metadata["analysis_count"] == 2
        assert second.alert.status == AlertStatus.PENDING
        first_concerns = first.alert.metadata["detected_concerns"]
        assert len(second.alert.metadata["detected_concerns"]) == 2 * len(first_concerns)
        assert second.routing is None
        assert len(components.router.list_for_recipient("mod_1")) == 1
        assert len(components.analysis_log.query(subject_user_id="student_3")) == 2

    def test_disabled_preferences_still_reach_moderators(self, components, preferences):
        preferences.set("student_4", NotificationPreferences(crisis_notifications=False))

        outcome = components.pipeline.analyze(CRISIS_TEXT, "comment", "student_4", "c_4")

        assert outcome.routing.author_notified is False
        assert outcome.routing.moderators_notified == 2
        assert components.router.list_for_recipient("student_4") == []

    def test_message_without_id_keyed_by_text(self, components):
        outcome = components.pipeline.analyze(CRISIS_TEXT, "message", "student_5")

        assert outcome.content_id == hash_text_for_audit(CRISIS_TEXT)
        assert outcome.alert.content_id == outcome.content_id

    def test_lone_surrogate_still_analysed_and_logged(self, components):
        text = "\ud800 " + CRISIS_TEXT

        outcome = components.pipeline.analyze(text, "message", "student_9")

        assert outcome.result.risk_level == RiskLevel.CRISIS
        assert outcome.content_id == hash_text_for_audit(text)
        assert len(components.analysis_log.query(subject_user_id="student_9")) == 1
        assert components.analysis_log.verify_chain() is True

    def test_invalid_content_type(self, components):
        with pytest.raises(ValueError):
            components.pipeline.analyze("hello", "tweet", "student_6")

    def test_log_failure_reported_not_raised(self, components):
        components.pipeline.analysis_log = MagicMock()
        components.pipeline.analysis_log.append.side_effect = RuntimeError("disk full")

        outcome = components.pipeline.analyze(CRISIS_TEXT, "post", "student_7", "post_7")

        assert outcome.alert is not None
        assert any(w.startswith("analysis_log_failed") for w in outcome.warnings)

    def test_alert_failure_reported_not_raised(self, components):
        components.pipeline.alert_manager = MagicMock()
        components.pipeline.alert_manager.record_analysis.side_effect = RuntimeError("db down")

        outcome = components.pipeline.analyze(CRISIS_TEXT, "post", "student_8", "post_8")

        assert outcome.result.risk_level == RiskLevel.CRISIS
        assert outcome.alert is None
        assert any(w.startswith("alert_failed") for w in outcome.warnings)

    def test_routing_failure_reported_not_raised(self, components):
        components.pipeline.router = MagicMock()
        components.pipeline.router.route.side_effect = RuntimeError("queue down")

        outcome = components.pipeline.analyze(CRISIS_TEXT, "post", "student_9", "post_9")

        assert outcome.alert is not None
        assert any(w.startswith("notification_failed") for w in outcome.warnings)

    def test_log_chain_valid_after_traffic(self, components):
        for i in range(5):
            components.pipeline.analyze(f"feeling stressed {i}", "post", "student_10", f"p{i}")

        assert components.analysis_log.verify_chain() is True

    def test_outcome_dict(self, components):
        data = components.pipeline.analyze(CRISIS_TEXT, "post", "student_11", "post_11").to_dict()

        assert data["success"] is True
        assert data["analysis"]["riskLevel"] == "crisis"
        assert data["source"] == "local"
        assert data["alert_severity"] == "critical"
        assert data["routing"]["moderators_notified"] == 2
