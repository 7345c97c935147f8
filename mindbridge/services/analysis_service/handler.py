"""Analysis Service HTTP handler - content crisis analysis endpoint.

Every post, reply and chat message is submitted to /analyze before it
is published. The endpoint never fails open: on any unexpected error
it answers 200 with a medium-risk fallback analysis and success=false,
so clients still surface support resources.
"""
import logging
import os

from flask import Flask, jsonify, request

from mindbridge.bootstrap import Settings, build_components
from mindbridge.shared.models import ContentType
from mindbridge.shared.utils import hash_pii
from .pipeline import CrisisPipeline
from .reconciler import fallback_result

logger = logging.getLogger(__name__)


def create_app(pipeline: CrisisPipeline) -> Flask:
    """Build the Flask app around an already constructed pipeline."""
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "analysis-service",
        }), 200

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check."""
        if pipeline is None:
            return jsonify({"status": "not_ready", "reason": "pipeline_not_initialized"}), 503
        return jsonify({"status": "ready", "analysis": pipeline.get_status()}), 200

    @app.route("/analyze", methods=["POST"])
    def analyze():
        """Analyse one piece of content.

        Request Body:
            {
                "content": "text to analyse",
                "contentType": "post" | "comment" | "message",
                "userId": "user_123",
                "postId": "post_456"        (optional)
            }

        Response:
            {
                "success": true,
                "analysis": {"riskLevel": "low", "confidenceScore": 0.99, ...},
                "source": "local",
                "alert_id": null,
                ...
            }
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        content = data.get("content")
        user_id = data.get("userId")
        if not isinstance(content, str) or not user_id:
            return jsonify({"error": "Missing required fields: content, userId"}), 400

        try:
            content_type = ContentType(data.get("contentType", "post"))
        except ValueError:
            return jsonify({"error": f"Invalid contentType: {data.get('contentType')}"}), 400

        try:
            outcome = pipeline.analyze(
                content=content,
                content_type=content_type,
                subject_user_id=user_id,
                content_id=data.get("postId"),
            )
        except Exception as e:
            logger.error(
                "ANALYZE_REQUEST_FAILED",
                extra={
                    "user_id_hash": hash_pii(str(user_id)),
                    "error": str(e),
                    "action": "RETURNING_FALLBACK",
                }
            )
            return jsonify({
                "success": False,
                "error": "Analysis failed",
                "analysis": fallback_result().to_dict(),
            }), 200

        return jsonify(outcome.to_dict()), 200

    return app


components = build_components(Settings.from_env())
app = create_app(components.pipeline)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    port = int(os.getenv("PORT", "8001"))
    app.run(host="0.0.0.0", port=port, debug=False)
