"""Tests for two-tier crisis notification routing."""
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock

from mindbridge.shared.utils import configure_pii_salt
from mindbridge.shared.database import DuplicateError, RepositoryError
from mindbridge.shared.models import (
    AlertSeverity,
    CrisisAlert,
    NotificationAudience,
    TriggerSource,
)
from mindbridge.services.notification_service import (
    AUTHOR_TEMPLATES,
    InMemoryPreferencesProvider,
    ModeratorDirectory,
    NotificationNotFoundError,
    NotificationPreferences,
    NotificationRepository,
    NotificationRouter,
    NotificationSettings,
    StaticModeratorDirectory,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _alert(severity=AlertSeverity.CRITICAL, user="student_1"):
    return CrisisAlert(
        alert_id="alert_1",
        subject_user_id=user,
        content_id="post_1",
        severity=severity,
        content_snippet="snippet",
        trigger_source=TriggerSource.CONTENT_KEYWORD,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def repository():
    return NotificationRepository()


@pytest.fixture
def preferences():
    return InMemoryPreferencesProvider()


def _router(repository, preferences, moderators=("mod_1", "mod_2"), settings=None):
    directory = moderators if isinstance(moderators, ModeratorDirectory) else StaticModeratorDirectory(moderators)
    return NotificationRouter(repository, preferences, directory, settings, clock=lambda: NOW)


class TestAuthorNotification:

    @pytest.mark.parametrize("severity,title", [
        (AlertSeverity.CRITICAL, "Immediate Support Available"),
        (AlertSeverity.HIGH, "Support Resources Available"),
        (AlertSeverity.MEDIUM, "Community Support"),
        (AlertSeverity.LOW, "Wellness Check"),
    ])
    def test_template_per_severity(self, repository, preferences, severity, title):
        router = _router(repository, preferences)

        report = router.route(_alert(severity))

        assert report.author_notified is True
        notification = router.list_for_recipient("student_1")[0]
        assert notification.title == title
        assert notification.message == AUTHOR_TEMPLATES[severity][1]
        assert notification.audience == NotificationAudience.AUTHOR
        assert notification.payload["alert_id"] == "alert_1"
        assert notification.payload["resources"]["text_line"] == "9152987821"

    def test_opted_out_author_skipped(self, repository, preferences):
        preferences.set("student_1", NotificationPreferences(crisis_notifications=False))
        router = _router(repository, preferences)

        report = router.route(_alert())

        assert report.author_notified is False
        assert report.moderators_notified == 2
        assert router.list_for_recipient("student_1") == []

    def test_unset_preferences_mean_enabled(self, repository, preferences):
        preferences.set("student_2", NotificationPreferences(crisis_notifications=False))

        assert preferences.get("student_1") is None
        assert _router(repository, preferences).route(_alert()).author_notified is True

    def test_preference_lookup_failure_means_enabled(self, repository):
        broken = MagicMock()
        broken.get.side_effect = RuntimeError("profile service down")

        assert _router(repository, broken).route(_alert()).author_notified is True

    def test_author_insert_failure_reported(self, preferences):
        repository = MagicMock()
        repository.insert.side_effect = RepositoryError("insert failed")

        report = _router(repository, preferences).route(_alert())

        assert report.author_notified is False
        assert report.moderators_notified == 2


class TestModeratorBroadcast:

    def test_critical_reaches_every_moderator(self, repository, preferences):
        router = _router(repository, preferences)

        report = router.route(_alert(), escalated=True)

        assert report.moderators_notified == 2
        for moderator in ("mod_1", "mod_2"):
            notification = router.list_for_recipient(moderator)[0]
            assert notification.title == "Critical Crisis Alert"
            assert notification.payload["alert_user_id"] == "student_1"
            assert notification.payload["escalated"] is True
            assert notification.payload["requires_immediate_action"] is True

    def test_high_not_broadcast_by_default(self, repository, preferences):
        router = _router(repository, preferences)

        report = router.route(_alert(AlertSeverity.HIGH))

        assert report.moderators_notified == 0
        assert router.list_for_recipient("mod_1") == []

    def test_broadcast_severities_configurable(self, repository, preferences):
        settings = NotificationSettings(
            moderator_severities=frozenset({AlertSeverity.HIGH, AlertSeverity.CRITICAL})
        )
        router = _router(repository, preferences, settings=settings)

        report = router.route(_alert(AlertSeverity.HIGH))

        assert report.moderators_notified == 2
        assert router.list_for_recipient("mod_1")[0].payload["requires_immediate_action"] is False

    def test_no_moderators(self, repository, preferences):
        report = _router(repository, preferences, moderators=()).route(_alert())

        assert report.author_notified is True
        assert report.moderators_notified == 0

    def test_directory_failure(self, repository, preferences):
        directory = MagicMock(spec=ModeratorDirectory)
        directory.active_moderator_ids.side_effect = RuntimeError("roster unavailable")

        report = _router(repository, preferences, moderators=directory).route(_alert())

        assert report.author_notified is True
        assert report.moderators_notified == 0

    def test_batch_failure_retries_per_recipient(self, preferences):
        repository = MagicMock()
        repository.insert_many.side_effect = RepositoryError("batch failed")

        def insert(notification):
            if notification.recipient_id == "mod_2":
                raise RepositoryError("row failed")

        repository.insert.side_effect = insert

        report = _router(repository, preferences).route(_alert())

        assert report.author_notified is True
        assert report.moderators_notified == 1
        assert report.moderator_failures == ("mod_2",)

    def test_retry_counts_already_stored_rows(self, preferences):
        repository = MagicMock()
        repository.insert_many.side_effect = RepositoryError("batch timed out")
        repository.insert.side_effect = DuplicateError("already stored")

        report = _router(repository, preferences).route(_alert())

        assert report.moderators_notified == 2
        assert report.moderator_failures == ()


class TestInbox:

    def test_mark_read_and_unread_count(self, repository, preferences):
        router = _router(repository, preferences)
        router.route(_alert())
        notification = router.list_for_recipient("mod_1")[0]

        assert router.unread_count("mod_1") == 1
        assert router.mark_read(notification.notification_id).read is True
        assert router.unread_count("mod_1") == 0
        assert router.list_for_recipient("mod_1", unread_only=True) == []

    def test_mark_read_unknown(self, repository, preferences):
        with pytest.raises(NotificationNotFoundError):
            _router(repository, preferences).mark_read("notif_missing")


class TestSettings:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MODERATOR_BROADCAST_SEVERITIES", "high, critical")
        monkeypatch.setenv("MODERATOR_IDS", "mod_a,,mod_b ")

        settings = NotificationSettings.from_env()

        assert settings.moderator_severities == frozenset({AlertSeverity.HIGH, AlertSeverity.CRITICAL})
        assert settings.moderator_ids == ("mod_a", "mod_b")

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("MODERATOR_BROADCAST_SEVERITIES", raising=False)
        monkeypatch.delenv("MODERATOR_IDS", raising=False)

        settings = NotificationSettings.from_env()

        assert settings.moderator_severities == frozenset({AlertSeverity.CRITICAL})
        assert settings.moderator_ids == ()


class TestNotificationRepository:

    def test_duplicate_id_rejected_whole_batch(self, repository, preferences):
        _router(repository, preferences).route(_alert())
        stored = repository.list_for_recipient("mod_1")[0]
        fresh = replace(stored, notification_id="notif_fresh", recipient_id="mod_3")

        with pytest.raises(DuplicateError):
            repository.insert_many([fresh, stored])

        assert repository.list_for_recipient("mod_3") == []

    def test_postgres_unread_count(self):
        cursor = MagicMock()
        cursor.fetchone.return_value = (4,)
        manager = MagicMock()
        manager.get_connection.return_value.__enter__.return_value.cursor.return_value.__enter__.return_value = cursor

        assert NotificationRepository(manager).unread_count("mod_1") == 4
        sql, params = cursor.execute.call_args[0]
        assert "SELECT COUNT(*) FROM notifications WHERE recipient_id = %s AND read = FALSE" in sql
        assert params == ("mod_1",)
