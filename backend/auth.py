"""Authentication middleware and decorators

Sessions are issued elsewhere; this module only resolves a session token to
the user it belongs to.
"""

from functools import wraps
from datetime import datetime, timezone
from flask import request, g
from core import get_logger, error_response
from database import get_db

logger = get_logger(__name__)


def _request_token():
    """Token from Authorization: Bearer, X-Session-Token or the session cookie"""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return request.headers.get("X-Session-Token") or request.cookies.get("session_token")


def get_current_user():
    """Get current authenticated user from session token with expiry check"""
    token = _request_token()
    if not token:
        return None

    db = get_db()
    row = db.execute(
        """
        SELECT users.id, users.name, users.email, users.role, sessions.expires_at
        FROM sessions JOIN users ON sessions.user_id = users.id
        WHERE sessions.session_token = ?
        """,
        (token,),
    ).fetchone()

    if not row:
        return None

    expires_at = row["expires_at"]
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            # Session expired -> remove it
            db.execute("DELETE FROM sessions WHERE session_token = ?", (token,))
            db.commit()
            logger.info("session_expired", user_id=row["id"])
            return None

    return {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "role": row["role"],
    }


def require_login(f):
    """Decorator to require authentication"""

    @wraps(f)
    def wrapper(*args, **kwargs):
        user = get_current_user()
        if not user:
            logger.info("unauthorized_request", path=request.path)
            return error_response("Unauthorized", "AUTHENTICATION_ERROR", 401)
        g.user = user
        return f(*args, **kwargs)

    return wrapper
