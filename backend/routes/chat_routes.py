from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, g, jsonify, request, stream_with_context

from auth import require_login
from core import ChatQueryValidator, HistoryQueryValidator, get_logger, safe_route
from pipeline.transport import format_sse, project_events

logger = get_logger(__name__)

chat_bp = Blueprint("chat", __name__, url_prefix="/api/chat")


def _services():
    return current_app.extensions["finsight"]


@chat_bp.route("/query/stream", methods=["POST"])
@require_login
@safe_route
def query_stream():
    data = ChatQueryValidator.validate(request.get_json(silent=True))
    user_id = g.user["id"]
    orchestrator = _services()["orchestrator"]

    logger.info("chat_stream_requested", user_id=user_id)

    def generate():
        for event in project_events(orchestrator.converse(user_id, data["message"])):
            yield format_sse(event)

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@chat_bp.route("/query", methods=["POST"])
@require_login
@safe_route
def query():
    data = ChatQueryValidator.validate(request.get_json(silent=True))
    user_id = g.user["id"]
    turn = _services()["orchestrator"].answer(user_id, data["message"])
    return jsonify(
        {
            "response": turn.ai_response,
            "timestamp": turn.timestamp.isoformat(),
        }
    ), 200


@chat_bp.route("/history", methods=["GET"])
@require_login
@safe_route
def get_history():
    params = HistoryQueryValidator.validate(request.args)
    history = _services()["history_store"].get_history(
        g.user["id"], page=params["page"], limit=params["limit"]
    )
    return jsonify(history), 200


@chat_bp.route("/history", methods=["DELETE"])
@require_login
@safe_route
def clear_history():
    deleted = _services()["history_store"].clear_history(g.user["id"])
    return jsonify(
        {
            "success": True,
            "deleted": deleted,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    ), 200
