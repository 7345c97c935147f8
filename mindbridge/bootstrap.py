"""Explicit construction of the crisis pipeline and its collaborators.

Every service handler builds its components here at startup; nothing
in the pipeline initialises itself lazily on first call. Storage is
PostgreSQL when DB_SECRET_ARN or DB_HOST is set, in-memory otherwise.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from mindbridge.services.alert_service import AlertManager, AlertRepository, AlertSettings
from mindbridge.services.analysis_service.classifier import RiskClassifier
from mindbridge.services.analysis_service.config import AnalysisSettings
from mindbridge.services.analysis_service.emotional_indicators import (
    EmotionalEstimator,
    LexicalEmotionalEstimator,
    ZeroShotEmotionalEstimator,
)
from mindbridge.services.analysis_service.pipeline import CrisisPipeline
from mindbridge.services.analysis_service.reconciler import DualPathReconciler
from mindbridge.services.analysis_service.remote_client import RemoteAnalysisClient
from mindbridge.services.analysis_service.toxicity import build_toxicity_estimator
from mindbridge.services.audit_service import AnalysisLog, AnalysisLogRepository
from mindbridge.services.notification_service import (
    InMemoryPreferencesProvider,
    ModeratorDirectory,
    NotificationPreferencesProvider,
    NotificationRepository,
    NotificationRouter,
    NotificationSettings,
    StaticModeratorDirectory,
)
from mindbridge.shared.database import ConnectionManager, DatabaseConfig
from mindbridge.shared.utils import configure_pii_salt

logger = logging.getLogger(__name__)

DEV_PII_SALT = "default_dev_salt_change_in_production_32chars"


@dataclass(frozen=True)
class Settings:
    """All runtime configuration for one service process."""
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    database: Optional[DatabaseConfig] = None
    pii_salt: str = DEV_PII_SALT

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Environment variables:
            PII_HASH_SALT: Salt for hashing student identifiers in logs
            DB_SECRET_ARN: Secrets Manager ARN with database credentials
            DB_HOST: Database host (used when no secret ARN is given)
            AWS_REGION: Region for Secrets Manager (default us-east-1)
        """
        database = None
        secret_arn = os.getenv("DB_SECRET_ARN")
        if secret_arn:
            database = DatabaseConfig.from_secrets_manager(
                secret_arn, region=os.getenv("AWS_REGION", "us-east-1")
            )
        elif os.getenv("DB_HOST"):
            database = DatabaseConfig.from_env()

        return cls(
            analysis=AnalysisSettings.from_env(),
            alerts=AlertSettings.from_env(),
            notifications=NotificationSettings.from_env(),
            database=database,
            pii_salt=os.getenv("PII_HASH_SALT", DEV_PII_SALT),
        )


@dataclass
class Components:
    """Wired collaborators shared by the service handlers."""
    pipeline: CrisisPipeline
    alert_manager: AlertManager
    router: NotificationRouter
    analysis_log: AnalysisLog
    connection_manager: Optional[ConnectionManager] = None
    remote_client: Optional[RemoteAnalysisClient] = None

    def close(self) -> None:
        """Release the remote loop thread and the connection pool."""
        if self.remote_client is not None:
            self.remote_client.close()
        if self.connection_manager is not None:
            self.connection_manager.close()


def _emotional_estimator(settings: AnalysisSettings) -> EmotionalEstimator:
    if settings.emotion_model_enabled:
        return ZeroShotEmotionalEstimator(model_name=settings.emotion_model_name)
    return LexicalEmotionalEstimator()


def build_components(
    settings: Settings,
    preferences: Optional[NotificationPreferencesProvider] = None,
    moderators: Optional[ModeratorDirectory] = None,
) -> Components:
    """Construct every pipeline component from settings.

    Args:
        settings: Runtime configuration
        preferences: Preferences source; in-memory (all enabled) if omitted
        moderators: Moderator roster; MODERATOR_IDS list if omitted

    Returns:
        Components ready to serve requests
    """
    configure_pii_salt(settings.pii_salt)

    connection_manager = None
    if settings.database is not None:
        connection_manager = ConnectionManager(settings.database)
        connection_manager.initialize()

    classifier = RiskClassifier(
        emotional_estimator=_emotional_estimator(settings.analysis),
        toxicity_estimator=build_toxicity_estimator(
            settings.analysis.toxicity_model_enabled,
            settings.analysis.toxicity_model_name,
        ),
    )

    remote_client = None
    if settings.analysis.remote_url:
        remote_client = RemoteAnalysisClient(
            url=settings.analysis.remote_url,
            token=settings.analysis.remote_token,
        )

    reconciler = DualPathReconciler(
        classifier=classifier,
        remote=remote_client,
        time_budget_seconds=settings.analysis.time_budget_seconds,
    )

    analysis_log = AnalysisLog(AnalysisLogRepository(connection_manager))
    alert_manager = AlertManager(AlertRepository(connection_manager), settings.alerts)
    router = NotificationRouter(
        repository=NotificationRepository(connection_manager),
        preferences=preferences or InMemoryPreferencesProvider(),
        moderators=moderators or StaticModeratorDirectory(settings.notifications.moderator_ids),
        settings=settings.notifications,
    )

    pipeline = CrisisPipeline(
        reconciler=reconciler,
        analysis_log=analysis_log,
        alert_manager=alert_manager,
        router=router,
    )

    logger.info(
        "PIPELINE_BUILT",
        extra={
            "backend": "postgresql" if connection_manager else "memory",
            "remote_enabled": remote_client is not None,
            "lexicon_version": settings.analysis.lexicon_version,
        }
    )

    return Components(
        pipeline=pipeline,
        alert_manager=alert_manager,
        router=router,
        analysis_log=analysis_log,
        connection_manager=connection_manager,
        remote_client=remote_client,
    )
