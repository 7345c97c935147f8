"""Notification Service HTTP handler - in-app crisis notification inbox."""
import logging
import os

from flask import Flask, jsonify, request

from mindbridge.bootstrap import Settings, build_components
from .router import NotificationNotFoundError, NotificationRouter

logger = logging.getLogger(__name__)


def create_app(router: NotificationRouter) -> Flask:
    """Build the Flask app around a notification router."""
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "notification-service",
        }), 200

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check."""
        return jsonify({"status": "ready"}), 200

    @app.route("/notifications/<recipient_id>", methods=["GET"])
    def list_notifications(recipient_id: str):
        """List a recipient's notifications, newest first.

        Query Parameters:
            unread_only: "true" to hide read notifications
            limit: Maximum notifications (default 50)
        """
        unread_only = request.args.get("unread_only", "false").lower() == "true"
        try:
            limit = int(request.args.get("limit", "50"))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400

        try:
            notifications = router.list_for_recipient(recipient_id, unread_only, limit)
            unread = router.unread_count(recipient_id)
        except Exception as e:
            logger.error("NOTIFICATION_LIST_ERROR", extra={"error": str(e)})
            return jsonify({"error": "Failed to list notifications"}), 500

        return jsonify({
            "notifications": [n.to_dict() for n in notifications],
            "unread_count": unread,
        }), 200

    @app.route("/notifications/<notification_id>/read", methods=["POST"])
    def mark_read(notification_id: str):
        try:
            notification = router.mark_read(notification_id)
        except NotificationNotFoundError:
            return jsonify({"error": "Notification not found"}), 404
        except Exception as e:
            logger.error(
                "NOTIFICATION_MARK_READ_ERROR",
                extra={"notification_id": notification_id, "error": str(e)}
            )
            return jsonify({"error": "Failed to update notification"}), 500

        return jsonify(notification.to_dict()), 200

    return app


components = build_components(Settings.from_env())
app = create_app(components.router)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    port = int(os.getenv("PORT", "8003"))
    app.run(host="0.0.0.0", port=port, debug=False)
