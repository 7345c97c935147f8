"""Alert Service HTTP handler - moderator crisis alert endpoints.

Moderators list and work alerts through the state machine here. User
reports and moderator escalations raise alerts through /alerts/report
and share the dedup path with content analysis.
"""
import logging
import os
from typing import Optional

from flask import Flask, jsonify, request

from mindbridge.bootstrap import Settings, build_components
from mindbridge.services.notification_service import NotificationRouter
from mindbridge.shared.models import AlertSeverity, AlertStatus, TriggerSource
from .alert_manager import (
    AlertManager,
    AlertNotFoundError,
    AlertServiceError,
    InvalidTransition,
)

logger = logging.getLogger(__name__)


def create_app(
    alert_manager: AlertManager,
    router: Optional[NotificationRouter] = None,
) -> Flask:
    """Build the Flask app around an alert manager.

    Args:
        alert_manager: Alert store and state machine
        router: Routes notifications for manually raised alerts
    """
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "alert-service",
        }), 200

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check."""
        return jsonify({"status": "ready"}), 200

    @app.route("/alerts", methods=["GET"])
    def list_alerts():
        """List alerts, newest first.

        Query Parameters:
            status: Filter by alert status
            severity: Filter by severity
            limit: Maximum alerts (default 50)
        """
        try:
            status = request.args.get("status")
            severity = request.args.get("severity")
            limit = int(request.args.get("limit", "50"))
            alerts = alert_manager.list_alerts(
                status=AlertStatus(status) if status else None,
                severity=AlertSeverity(severity) if severity else None,
                limit=limit,
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            logger.error("ALERT_LIST_ERROR", extra={"error": str(e)})
            return jsonify({"error": "Failed to list alerts"}), 500

        return jsonify({
            "alerts": [a.to_dict() for a in alerts],
            "count": len(alerts),
        }), 200

    @app.route("/alerts/metrics", methods=["GET"])
    def metrics():
        """Weekly crisis metrics for the moderation dashboard."""
        try:
            return jsonify(alert_manager.metrics().to_dict()), 200
        except Exception as e:
            logger.error("ALERT_METRICS_ERROR", extra={"error": str(e)})
            return jsonify({"error": "Failed to compute metrics"}), 500

    @app.route("/alerts/<alert_id>", methods=["GET"])
    def get_alert(alert_id: str):
        try:
            alert = alert_manager.get_alert(alert_id)
        except AlertNotFoundError:
            return jsonify({"error": "Alert not found"}), 404
        except Exception as e:
            logger.error("ALERT_GET_ERROR", extra={"alert_id": alert_id, "error": str(e)})
            return jsonify({"error": "Failed to load alert"}), 500

        return jsonify(alert.to_dict()), 200

    @app.route("/alerts/<alert_id>/status", methods=["POST"])
    def update_status(alert_id: str):
        """Move an alert through the state machine.

        Request Body:
            {
                "status": "acknowledged",
                "actor_id": "moderator_123",
                "notes": "Reached out via chat"
            }
        """
        data = request.get_json(silent=True)
        if not data or not data.get("status"):
            return jsonify({"error": "Missing required field: status"}), 400

        try:
            new_status = AlertStatus(data["status"])
        except ValueError:
            return jsonify({"error": f"Invalid status: {data['status']}"}), 400

        try:
            alert = alert_manager.update_alert_status(
                alert_id=alert_id,
                new_status=new_status,
                actor_id=data.get("actor_id"),
                notes=data.get("notes"),
            )
        except AlertNotFoundError:
            return jsonify({"error": "Alert not found"}), 404
        except InvalidTransition as e:
            return jsonify({
                "error": str(e),
                "current_status": e.current.value,
                "requested_status": e.requested.value,
            }), 409
        except Exception as e:
            logger.error("ALERT_STATUS_ERROR", extra={"alert_id": alert_id, "error": str(e)})
            return jsonify({"error": "Failed to update alert"}), 500

        return jsonify(alert.to_dict()), 200

    @app.route("/alerts/<alert_id>/assign", methods=["POST"])
    def assign(alert_id: str):
        """Assign an open alert.

        Request Body:
            {"moderator_id": "moderator_123"}
        """
        data = request.get_json(silent=True)
        if not data or not data.get("moderator_id"):
            return jsonify({"error": "Missing required field: moderator_id"}), 400

        try:
            alert = alert_manager.assign(alert_id, data["moderator_id"])
        except AlertNotFoundError:
            return jsonify({"error": "Alert not found"}), 404
        except AlertServiceError as e:
            return jsonify({"error": str(e)}), 409
        except Exception as e:
            logger.error("ALERT_ASSIGN_ERROR", extra={"alert_id": alert_id, "error": str(e)})
            return jsonify({"error": "Failed to assign alert"}), 500

        return jsonify(alert.to_dict()), 200

    @app.route("/alerts/report", methods=["POST"])
    def report():
        """Raise an alert from a user report or moderator escalation.

        Request Body:
            {
                "user_id": "user_123",
                "content_id": "post_456",
                "content": "reported text",
                "trigger_source": "user_report" | "moderator_escalation",
                "severity": "high",
                "reporter_id": "user_789",
                "reason": "Worried about this post"
            }
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        user_id = data.get("user_id")
        content_id = data.get("content_id")
        if not user_id or not content_id:
            return jsonify({"error": "Missing required fields: user_id, content_id"}), 400

        try:
            record = alert_manager.raise_manual_alert(
                subject_user_id=user_id,
                content_id=content_id,
                content=data.get("content", ""),
                trigger_source=TriggerSource(data.get("trigger_source", "user_report")),
                severity=AlertSeverity(data.get("severity", "high")),
                reporter_id=data.get("reporter_id"),
                reason=data.get("reason"),
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            logger.error("ALERT_REPORT_ERROR", extra={"error": str(e)})
            return jsonify({"error": "Failed to raise alert"}), 500

        routing = None
        if router is not None and record.should_notify:
            try:
                routing = router.route(record.alert, escalated=record.escalated)
            except Exception as e:
                logger.error(
                    "REPORT_ROUTING_ERROR",
                    extra={"alert_id": record.alert.alert_id, "error": str(e)}
                )

        return jsonify({
            "alert": record.alert.to_dict(),
            "created": record.created,
            "escalated": record.escalated,
            "routing": routing.to_dict() if routing else None,
        }), 201 if record.created else 200

    return app


components = build_components(Settings.from_env())
app = create_app(components.alert_manager, components.router)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    port = int(os.getenv("PORT", "8002"))
    app.run(host="0.0.0.0", port=port, debug=False)
