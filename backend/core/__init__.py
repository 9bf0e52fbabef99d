"""Core Infrastructure Package

Centralized utilities for logging, error handling and validation.

Modules:
- logger: Structured logging configuration
- error_handler: Error taxonomy and Flask error handlers
- validators: Request validation utilities
"""

from .logger import get_logger
from .error_handler import (
    AppError,
    ValidationError,
    DomainError,
    NotFoundError,
    ConflictError,
    ExternalServiceError,
    LLMUnavailableError,
    LLMUnparsableError,
    FatalConversationError,
    error_response,
    handle_errors,
    safe_route,
)
from .validators import ChatQueryValidator, HistoryQueryValidator

__all__ = [
    "get_logger",
    "AppError",
    "ValidationError",
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "LLMUnavailableError",
    "LLMUnparsableError",
    "FatalConversationError",
    "error_response",
    "handle_errors",
    "safe_route",
    "ChatQueryValidator",
    "HistoryQueryValidator",
]
