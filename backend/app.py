"""Flask application factory.

Builds the app and wires the orchestration engine's collaborators. Tests pass
their own gateway, facade and history store; production uses the DeepSeek
gateway and the PostgreSQL-backed facade and history store.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, jsonify

import config
from core import get_logger, handle_errors
from core.logger import AppLogger
from database import close_db
from llm.executor import ToolDispatcher
from llm.gateway import LLMGateway
from llm.tools import TOOL_REGISTRY
from memory import HistoryStore, PgHistoryStore
from pipeline.orchestrator import ConversationOrchestrator
from routes.chat_routes import chat_bp
from services.finance_facade import FinanceFacade, PgFinanceFacade

logger = get_logger(__name__)


def create_app(
    config_overrides: Optional[Dict[str, Any]] = None,
    *,
    gateway=None,
    facade: Optional[FinanceFacade] = None,
    history_store: Optional[HistoryStore] = None,
    sleep=None,
) -> Flask:
    app = Flask(__name__)
    app.config.update(config.FLASK_CONFIG)
    if config_overrides:
        app.config.update(config_overrides)

    AppLogger.set_level(app.config.get("LOG_LEVEL", config.LOG_LEVEL))

    if facade is None:
        facade = PgFinanceFacade()
    if history_store is None:
        history_store = PgHistoryStore()
    if gateway is None:
        gateway = LLMGateway()

    orchestrator_kwargs: Dict[str, Any] = {
        "history_window": app.config["HISTORY_WINDOW"],
        "context_limit": app.config["RECENT_TRANSACTIONS_LIMIT"],
        "max_tool_calls": app.config["MAX_TOOL_CALLS_PER_ROUND"],
        "chunk_size": app.config["FABRICATED_CHUNK_SIZE"],
        "chunk_delay": app.config["FABRICATED_CHUNK_DELAY"],
    }
    if sleep is not None:
        orchestrator_kwargs["sleep"] = sleep

    orchestrator = ConversationOrchestrator(
        gateway,
        ToolDispatcher(facade, TOOL_REGISTRY),
        facade,
        history_store,
        TOOL_REGISTRY,
        **orchestrator_kwargs,
    )
    app.extensions["finsight"] = {
        "gateway": gateway,
        "facade": facade,
        "history_store": history_store,
        "orchestrator": orchestrator,
    }

    app.teardown_appcontext(close_db)
    handle_errors(app)
    app.register_blueprint(chat_bp)

    @app.route("/api/health", methods=["GET"])
    def health_check():
        """Simple health check endpoint for uptime monitoring"""
        return jsonify(
            {
                "status": "ok",
                "service": config.SERVICE_NAME,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ), 200

    logger.info("app_created", model=getattr(gateway, "model", None), tools=len(TOOL_REGISTRY))
    return app
