"""Tests for the alert service HTTP handler."""
import json

import pytest

from mindbridge.bootstrap import Settings, build_components
from mindbridge.shared.utils import configure_pii_salt
from mindbridge.shared.models import AnalysisResult, ContentType, RiskLevel
from mindbridge.services.alert_service.handler import create_app
from mindbridge.services.notification_service import NotificationSettings, StaticModeratorDirectory


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def components():
    built = build_components(
        Settings(notifications=NotificationSettings()),
        moderators=StaticModeratorDirectory(["mod_1"]),
    )
    yield built
    built.close()


@pytest.fixture
def client(components):
    app = create_app(components.alert_manager, components.router)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def alert_id(components):
    record = components.alert_manager.record_analysis(
        result=AnalysisResult(risk_level=RiskLevel.HIGH, confidence_score=0.9),
        subject_user_id="student_1",
        content_id="post_1",
        content_type=ContentType.POST,
        content="everything feels hopeless",
    )
    return record.alert.alert_id


class TestHealthEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert json.loads(response.data)["service"] == "alert-service"


class TestListAndGet:

    def test_list_with_filters(self, client, alert_id):
        response = client.get("/alerts?status=pending&severity=high")

        data = json.loads(response.data)
        assert response.status_code == 200
        assert data["count"] == 1
        assert data["alerts"][0]["alert_id"] == alert_id

    def test_list_invalid_filter(self, client):
        assert client.get("/alerts?status=closed").status_code == 400
        assert client.get("/alerts?limit=many").status_code == 400

    def test_get(self, client, alert_id):
        response = client.get(f"/alerts/{alert_id}")

        assert response.status_code == 200
        assert json.loads(response.data)["severity"] == "high"

    def test_get_missing(self, client):
        assert client.get("/alerts/alert_missing").status_code == 404

    def test_metrics(self, client, alert_id):
        data = json.loads(client.get("/alerts/metrics").data)

        assert data["active_alerts"] == 1
        assert data["alerts_this_week"] == 1


class TestStatusEndpoint:

    def test_acknowledge(self, client, alert_id):
        response = client.post(f"/alerts/{alert_id}/status", json={
            "status": "acknowledged", "actor_id": "mod_1", "notes": "On it",
        })

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "acknowledged"
        assert data["notes"][0]["actor_id"] == "mod_1"

    def test_invalid_transition_conflict(self, client, alert_id):
        response = client.post(f"/alerts/{alert_id}/status", json={"status": "contacted"})

        assert response.status_code == 409
        data = json.loads(response.data)
        assert data["current_status"] == "pending"
        assert data["requested_status"] == "contacted"

    def test_bad_requests(self, client, alert_id):
        assert client.post(f"/alerts/{alert_id}/status", json={}).status_code == 400
        assert client.post(
            f"/alerts/{alert_id}/status", json={"status": "archived"}
        ).status_code == 400

    def test_missing_alert(self, client):
        response = client.post("/alerts/alert_missing/status", json={"status": "resolved"})

        assert response.status_code == 404


class TestAssignEndpoint:

    def test_assign(self, client, alert_id):
        response = client.post(f"/alerts/{alert_id}/assign", json={"moderator_id": "mod_1"})

        assert response.status_code == 200
        assert json.loads(response.data)["assigned_to"] == "mod_1"

    def test_assign_closed(self, client, alert_id):
        client.post(f"/alerts/{alert_id}/status", json={"status": "false_positive"})

        response = client.post(f"/alerts/{alert_id}/assign", json={"moderator_id": "mod_1"})

        assert response.status_code == 409

    def test_assign_missing_field(self, client, alert_id):
        assert client.post(f"/alerts/{alert_id}/assign", json={}).status_code == 400


class TestReportEndpoint:

    def test_user_report_created_and_routed(self, client, components):
        response = client.post("/alerts/report", json={
            "user_id": "student_2",
            "content_id": "post_7",
            "content": "I can't take this anymore",
            "severity": "critical",
            "reporter_id": "student_3",
        })

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data["created"] is True
        assert data["alert"]["trigger_source"] == "user_report"
        assert data["routing"]["moderators_notified"] == 1
        assert components.router.unread_count("mod_1") == 1

    def test_repeat_report_deduplicated(self, client):
        body = {"user_id": "student_2", "content_id": "post_8", "content": "text"}
        client.post("/alerts/report", json=body)

        response = client.post("/alerts/report", json=body)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["created"] is False
        assert data["routing"] is None

    @pytest.mark.parametrize("body", [
        {"content_id": "post_1"},
        {"user_id": "student_1"},
        {"user_id": "student_1", "content_id": "post_1", "trigger_source": "content_keyword"},
        {"user_id": "student_1", "content_id": "post_1", "severity": "extreme"},
    ])
    def test_bad_reports(self, client, body):
        assert client.post("/alerts/report", json=body).status_code == 400
