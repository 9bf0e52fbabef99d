"""Input validation for chat API requests

Covers:
- Chat queries (length, control characters)
- History pagination parameters
"""

from typing import Any, Dict

from .error_handler import ValidationError


class ChatQueryValidator:
    """Validates chat query request bodies"""

    MIN_LENGTH = 1
    MAX_LENGTH = 1000

    @classmethod
    def validate(cls, data: Any) -> Dict[str, Any]:
        """
        Validate a chat request body.

        Raises:
            ValidationError: If the body or message is invalid

        Returns:
            Dict with the sanitized message
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        raw = data.get("message")
        if raw is None:
            raise ValidationError("Message is required", field="message")
        if not isinstance(raw, str):
            raise ValidationError("Message must be a string", field="message")

        message = cls._sanitize_message(raw)
        if len(message) < cls.MIN_LENGTH:
            raise ValidationError("Message cannot be empty", field="message")
        if len(message) > cls.MAX_LENGTH:
            raise ValidationError(
                f"Message too long (max {cls.MAX_LENGTH} characters, got {len(message)})",
                field="message",
            )

        return {"message": message}

    @staticmethod
    def _sanitize_message(message: str) -> str:
        """Remove dangerous characters from message"""
        message = message.replace("\x00", "")

        # Remove other control characters except newline and tab
        message = "".join(ch for ch in message if ord(ch) >= 32 or ch in "\n\t\r")

        return message.strip()


class HistoryQueryValidator:
    """Validates page/limit query parameters of the history endpoint"""

    DEFAULT_LIMIT = 20
    MAX_LIMIT = 100

    @classmethod
    def validate(cls, args) -> Dict[str, int]:
        page = cls._as_int(args.get("page"), "page", 1)
        limit = cls._as_int(args.get("limit"), "limit", cls.DEFAULT_LIMIT)

        if page < 1:
            raise ValidationError("Page must be at least 1", field="page")
        if limit < 1 or limit > cls.MAX_LIMIT:
            raise ValidationError(
                f"Limit must be between 1 and {cls.MAX_LIMIT}", field="limit"
            )
        return {"page": page, "limit": limit}

    @staticmethod
    def _as_int(value, field: str, default: int) -> int:
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be an integer", field=field)
