"""Tests for crisis alert creation, dedup and the status state machine."""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from mindbridge.shared.utils import configure_pii_salt
from mindbridge.shared.models import (
    AlertSeverity,
    AlertStatus,
    AnalysisResult,
    ContentType,
    RiskLevel,
    TriggerSource,
)
from mindbridge.services.alert_service import (
    ALLOWED_TRANSITIONS,
    AlertManager,
    AlertNotFoundError,
    AlertRepository,
    AlertServiceError,
    AlertSettings,
    InvalidTransition,
)
from mindbridge.services.alert_service.alert_manager import matched_keywords


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class FakeClock:

    def __init__(self):
        self.now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(clock):
    return AlertManager(AlertRepository(), clock=clock)


def _result(level, intervention=None, concerns=("high: hopeless",)):
    return AnalysisResult(
        risk_level=level,
        confidence_score=0.8,
        detected_concerns=concerns,
        requires_intervention=(level == RiskLevel.CRISIS) if intervention is None else intervention,
    )


def _record(manager, level, user="student_1", content="post_1", **kwargs):
    return manager.record_analysis(
        result=_result(level, **kwargs),
        subject_user_id=user,
        content_id=content,
        content_type=ContentType.POST,
        content="everything feels hopeless lately",
    )


class TestAlertThreshold:

    def test_low_risk_raises_nothing(self, manager):
        assert _record(manager, RiskLevel.LOW) is None
        assert manager.list_alerts() == []

    def test_medium_and_above_alert(self, manager):
        record = _record(manager, RiskLevel.MEDIUM)

        assert record.created is True
        assert record.should_notify is True
        assert record.alert.severity == AlertSeverity.MEDIUM
        assert record.alert.status == AlertStatus.PENDING
        assert record.alert.trigger_source == TriggerSource.CONTENT_KEYWORD

    def test_intervention_flag_alerts_below_threshold(self, manager):
        record = _record(manager, RiskLevel.LOW, intervention=True)

        assert record is not None
        assert record.alert.severity == AlertSeverity.LOW

    def test_configurable_threshold(self, clock):
        manager = AlertManager(
            AlertRepository(), AlertSettings(alert_threshold=RiskLevel.HIGH), clock=clock
        )

        assert _record(manager, RiskLevel.MEDIUM) is None
        assert _record(manager, RiskLevel.HIGH) is not None

    def test_crisis_maps_to_critical(self, manager):
        record = _record(manager, RiskLevel.CRISIS)

        assert record.alert.severity == AlertSeverity.CRITICAL
        assert record.alert.metadata["requires_intervention"] is True

    def test_metadata_and_snippet(self, clock):
        manager = AlertManager(AlertRepository(), AlertSettings(snippet_length=10), clock=clock)

        alert = _record(manager, RiskLevel.HIGH).alert

        assert alert.metadata["matched_keywords"] == ["hopeless"]
        assert alert.metadata["detected_concerns"] == ["high: hopeless"]
        assert alert.metadata["content_type"] == "post"
        assert alert.metadata["analysis_count"] == 1
        assert len(alert.content_snippet) <= 10


class TestDeduplication:

    def test_same_pair_updates_open_alert(self, manager, clock):
        first = _record(manager, RiskLevel.MEDIUM)
        clock.advance(minutes=5)
        second = _record(manager, RiskLevel.MEDIUM, concerns=("medium: numb",))

        assert second.alert.alert_id == first.alert.alert_id
        assert second.created is False
        assert second.escalated is False
        assert second.should_notify is False
        assert second.alert.metadata["analysis_count"] == 2
        assert second.alert.metadata["detected_concerns"] == ["high: hopeless", "medium: numb"]
        assert second.alert.metadata["matched_keywords"] == ["hopeless", "numb"]
        assert len(manager.list_alerts()) == 1

    def test_identical_resubmission_appends_concerns(self, manager):
        first = _record(manager, RiskLevel.HIGH)
        second = _record(manager, RiskLevel.HIGH)

        assert second.alert.alert_id == first.alert.alert_id
        assert second.alert.status == AlertStatus.PENDING
        assert second.alert.metadata["detected_concerns"] == ["high: hopeless", "high: hopeless"]
        assert second.alert.metadata["matched_keywords"] == ["hopeless"]

    def test_escalation_only_upward(self, manager):
        _record(manager, RiskLevel.MEDIUM)

        escalated = _record(manager, RiskLevel.CRISIS)
        assert escalated.escalated is True
        assert escalated.should_notify is True
        assert escalated.alert.severity == AlertSeverity.CRITICAL

        lower = _record(manager, RiskLevel.MEDIUM)
        assert lower.escalated is False
        assert lower.alert.severity == AlertSeverity.CRITICAL

    def test_reanalysis_leaves_status_alone(self, manager):
        alert = _record(manager, RiskLevel.HIGH).alert
        manager.update_alert_status(alert.alert_id, AlertStatus.ACKNOWLEDGED, "mod_1")

        record = _record(manager, RiskLevel.CRISIS)

        assert record.alert.alert_id == alert.alert_id
        assert record.alert.status == AlertStatus.ACKNOWLEDGED

    def test_different_content_new_alert(self, manager):
        first = _record(manager, RiskLevel.HIGH, content="post_1")
        second = _record(manager, RiskLevel.HIGH, content="post_2")

        assert first.alert.alert_id != second.alert.alert_id
        assert second.created is True

    def test_window_expiry_creates_new_alert(self, manager, clock):
        first = _record(manager, RiskLevel.HIGH)
        clock.advance(minutes=61)

        second = _record(manager, RiskLevel.HIGH)

        assert second.created is True
        assert second.alert.alert_id != first.alert.alert_id

    def test_closed_alert_not_reused(self, manager):
        first = _record(manager, RiskLevel.HIGH).alert
        manager.update_alert_status(first.alert_id, AlertStatus.FALSE_POSITIVE, "mod_1")

        second = _record(manager, RiskLevel.HIGH)

        assert second.created is True
        assert second.alert.alert_id != first.alert_id

    def test_concurrent_analyses_create_one_alert(self, manager):
        with ThreadPoolExecutor(max_workers=16) as pool:
            records = list(pool.map(lambda _: _record(manager, RiskLevel.CRISIS), range(40)))

        assert sum(1 for r in records if r.created) == 1
        assert len({r.alert.alert_id for r in records}) == 1
        assert manager.list_alerts()[0].metadata["analysis_count"] == 40


class TestStatusTransitions:

    @pytest.mark.parametrize("current", list(AlertStatus))
    @pytest.mark.parametrize("requested", list(AlertStatus))
    def test_transition_matrix(self, manager, current, requested):
        alert = _record(manager, RiskLevel.HIGH).alert
        path = {
            AlertStatus.PENDING: [],
            AlertStatus.ACKNOWLEDGED: [AlertStatus.ACKNOWLEDGED],
            AlertStatus.CONTACTED: [AlertStatus.ACKNOWLEDGED, AlertStatus.CONTACTED],
            AlertStatus.RESOLVED: [AlertStatus.RESOLVED],
            AlertStatus.FALSE_POSITIVE: [AlertStatus.FALSE_POSITIVE],
        }[current]
        for step in path:
            manager.update_alert_status(alert.alert_id, step, "mod_1")

        if requested in ALLOWED_TRANSITIONS[current]:
            updated = manager.update_alert_status(alert.alert_id, requested, "mod_1")
            assert updated.status == requested
        else:
            with pytest.raises(InvalidTransition) as exc_info:
                manager.update_alert_status(alert.alert_id, requested, "mod_1")
            assert exc_info.value.current == current
            assert manager.get_alert(alert.alert_id).status == current

    def test_resolution_stamps(self, manager, clock):
        alert = _record(manager, RiskLevel.HIGH).alert
        clock.advance(minutes=15)

        resolved = manager.update_alert_status(
            alert.alert_id, AlertStatus.RESOLVED, "mod_1", notes="Spoke with student"
        )

        assert resolved.resolved_at == clock.now
        assert resolved.resolved_by == "mod_1"
        assert resolved.notes[-1]["from"] == "pending"
        assert resolved.notes[-1]["to"] == "resolved"
        assert resolved.notes[-1]["notes"] == "Spoke with student"

    def test_non_terminal_has_no_resolution(self, manager):
        alert = _record(manager, RiskLevel.HIGH).alert

        acknowledged = manager.update_alert_status(alert.alert_id, AlertStatus.ACKNOWLEDGED, "mod_1")

        assert acknowledged.resolved_at is None
        assert acknowledged.resolved_by is None

    def test_unknown_alert(self, manager):
        with pytest.raises(AlertNotFoundError):
            manager.update_alert_status("alert_missing", AlertStatus.RESOLVED)
        with pytest.raises(AlertNotFoundError):
            manager.get_alert("alert_missing")


class TestAssignment:

    def test_assign_open_alert(self, manager):
        alert = _record(manager, RiskLevel.HIGH).alert

        assert manager.assign(alert.alert_id, "mod_2").assigned_to == "mod_2"

    def test_assign_closed_alert_rejected(self, manager):
        alert = _record(manager, RiskLevel.HIGH).alert
        manager.update_alert_status(alert.alert_id, AlertStatus.RESOLVED, "mod_1")

        with pytest.raises(AlertServiceError):
            manager.assign(alert.alert_id, "mod_2")

    def test_assign_unknown(self, manager):
        with pytest.raises(AlertNotFoundError):
            manager.assign("alert_missing", "mod_2")


class TestManualAlerts:

    def test_user_report(self, manager):
        record = manager.raise_manual_alert(
            subject_user_id="student_1",
            content_id="post_9",
            content="reported text",
            trigger_source=TriggerSource.USER_REPORT,
            reporter_id="student_2",
            reason="worried",
        )

        assert record.created is True
        assert record.alert.severity == AlertSeverity.HIGH
        assert record.alert.metadata["reporter_id"] == "student_2"

    def test_report_shares_dedup_with_analysis(self, manager):
        analysed = _record(manager, RiskLevel.MEDIUM, content="post_9")

        reported = manager.raise_manual_alert(
            subject_user_id="student_1",
            content_id="post_9",
            content="reported text",
            trigger_source=TriggerSource.MODERATOR_ESCALATION,
            severity=AlertSeverity.CRITICAL,
        )

        assert reported.alert.alert_id == analysed.alert.alert_id
        assert reported.escalated is True

    def test_automatic_source_rejected(self, manager):
        with pytest.raises(ValueError):
            manager.raise_manual_alert(
                subject_user_id="student_1",
                content_id="post_9",
                content="text",
                trigger_source=TriggerSource.CONTENT_KEYWORD,
            )


class TestMetrics:

    def test_weekly_metrics(self, manager, clock):
        start = clock.now
        clock.now = start - timedelta(days=10)
        _record(manager, RiskLevel.HIGH, content="old_1")
        _record(manager, RiskLevel.HIGH, content="old_2")

        clock.now = start - timedelta(days=1)
        resolved = _record(manager, RiskLevel.HIGH, content="new_1").alert
        _record(manager, RiskLevel.HIGH, content="new_2")
        _record(manager, RiskLevel.HIGH, content="new_3")
        clock.advance(minutes=30)
        manager.update_alert_status(resolved.alert_id, AlertStatus.RESOLVED, "mod_1")

        clock.now = start
        metrics = manager.metrics()

        assert metrics.alerts_this_week == 3
        assert metrics.weekly_trend_percent == 50
        assert metrics.resolution_rate_percent == 33
        assert metrics.average_response_minutes == 30
        assert metrics.active_alerts == 4

    def test_empty_metrics(self, manager):
        assert manager.metrics().to_dict() == {
            "active_alerts": 0,
            "alerts_this_week": 0,
            "weekly_trend_percent": 0,
            "average_response_minutes": 0,
            "resolution_rate_percent": 0,
        }


class TestHelpers:

    def test_matched_keywords_only_from_tiers(self):
        concerns = ["critical: want to die", "isolation: alone", "Unable to perform full analysis"]

        assert matched_keywords(concerns) == ["want to die"]

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("ALERT_THRESHOLD", "HIGH")
        monkeypatch.setenv("ALERT_DEDUP_WINDOW_MINUTES", "15")

        settings = AlertSettings.from_env()

        assert settings.alert_threshold == RiskLevel.HIGH
        assert settings.dedup_window_minutes == 15
        assert settings.snippet_length == 200
