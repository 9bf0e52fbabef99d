"""Error handling middleware and the application error taxonomy

Provides:
- AppError hierarchy shared by the HTTP layer and the orchestration engine
- Centralized error handlers for Flask
- safe_route decorator for logging unexpected route failures
"""

from functools import wraps
from flask import jsonify, request, g
import traceback
from typing import Callable, Any, Optional, Tuple
from .logger import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base application error"""

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        status_code: int = 400,
        details: dict = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Request body or tool argument failed validation"""

    def __init__(self, message: str, field: str = None, details: dict = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details or {},
        )
        self.field = field
        if field:
            self.details["field"] = field


class DomainError(AppError):
    """A finance operation was rejected by the domain (missing entity, duplicate)"""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR", status_code: int = 422):
        super().__init__(message=message, code=code, status_code=status_code)


class NotFoundError(DomainError):
    """Resource not found error"""

    def __init__(self, resource: str = "Resource", message: Optional[str] = None):
        super().__init__(
            message=message or f"{resource} not found",
            code="NOT_FOUND",
            status_code=404,
        )
        self.resource = resource


class ConflictError(DomainError):
    """Conflict error (e.g., duplicate entry)"""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(
            message=message,
            code="CONFLICT",
            status_code=409,
        )


class ExternalServiceError(AppError):
    """Error from external service (language model, database, etc)"""

    def __init__(self, service: str, message: str):
        super().__init__(
            message=f"Error from {service}: {message}",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
        )
        self.service = service


class LLMUnavailableError(ExternalServiceError):
    """Language model could not be reached or refused the request

    ``reason`` is one of: timeout, connection, rate_limited, server_error,
    rejected.
    """

    def __init__(self, reason: str, message: str = ""):
        super().__init__("language model", message or reason)
        self.code = "LLM_UNAVAILABLE"
        self.reason = reason


class LLMUnparsableError(ExternalServiceError):
    """Language model answered with content that could not be decoded"""

    def __init__(self, message: str, raw_content: str = ""):
        super().__init__("language model", message)
        self.code = "LLM_UNPARSABLE"
        self.raw_content = raw_content or ""


class FatalConversationError(AppError):
    """Unrecoverable failure while running a conversation turn"""

    def __init__(self, message: str, stage: str = "unknown"):
        super().__init__(
            message=message,
            code="CONVERSATION_FAILED",
            status_code=500,
            details={"stage": stage},
        )
        self.stage = stage


# Generic HTTP failures raised by Flask/werkzeug before a route runs
_HTTP_ERRORS = {
    400: ("Bad request", "BAD_REQUEST"),
    401: ("Unauthorized", "AUTHENTICATION_ERROR"),
    404: ("Endpoint not found", "NOT_FOUND"),
    405: ("Method not allowed", "METHOD_NOT_ALLOWED"),
}


def error_response(message: str, code: str, status_code: int, details: Optional[dict] = None):
    """Uniform JSON error body: {success, error, code[, details][, request_id]}"""
    body = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    if hasattr(g, "request_id"):
        body["request_id"] = g.request_id
    return jsonify(body), status_code


def handle_errors(app):
    """Register error handlers with Flask app"""

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        log = logger.error if error.status_code >= 500 else logger.warning
        log("app_error", code=error.code, error=error.message, status_code=error.status_code, **error.details)
        return error_response(error.message, error.code, error.status_code, error.details)

    def _register(status_code: int, message: str, code: str):
        def handler(error):
            logger.warning("http_error", status_code=status_code, path=request.path, error=str(error))
            return error_response(message, code, status_code)

        app.register_error_handler(status_code, handler)

    for status_code, (message, code) in _HTTP_ERRORS.items():
        _register(status_code, message, code)

    @app.errorhandler(500)
    def handle_internal_error(error):
        logger.error("internal_server_error", error=str(error), traceback=traceback.format_exc())
        return error_response("Internal server error", "INTERNAL_SERVER_ERROR", 500)


def safe_route(f: Callable) -> Callable:
    """
    Decorator that lets AppError through to the registered handler and turns
    anything else into a logged 500.

    Usage:
        @chat_bp.route("/query", methods=["POST"])
        @require_login
        @safe_route
        def query():
            ...
    """

    @wraps(f)
    def decorated_function(*args, **kwargs) -> Tuple[Any, int]:
        route = f"{request.method} {request.path}"
        logger.debug("route_start", route=route)
        try:
            result = f(*args, **kwargs)
        except AppError as e:
            logger.warning("route_rejected", route=route, code=e.code, status=e.status_code)
            raise
        except Exception as e:
            logger.error("route_crashed", exc=e, route=route, error_type=type(e).__name__)
            raise AppError(
                message="An unexpected error occurred",
                code="INTERNAL_ERROR",
                status_code=500,
            )
        logger.debug("route_success", route=route)
        return result

    return decorated_function
