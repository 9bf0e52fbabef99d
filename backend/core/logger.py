"""Structured logging configuration for FinSight

Provides JSON-structured logging for the orchestration engine.
Every record carries: timestamp, level, logger name, event and the keyword
context passed to the StructuredLogger call.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter


class ContextualJsonFormatter(JsonFormatter):
    """JSON formatter that flattens StructuredLogger context into the record"""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.pop("extra_data", None)
        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()

        extra = getattr(record, "extra_data", None)
        if extra:
            for key, value in extra.items():
                # Reserved keys keep their formatter value
                if key not in log_record:
                    log_record[key] = value


class AppLogger:
    """Application logger with structured logging support"""

    _instance = None
    _loggers: Dict[str, logging.Logger] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    @classmethod
    def configure(cls, name: str = "finsight", level: int = logging.INFO):
        """Configure the service root logger with structured logging"""
        instance = cls()

        if instance._initialized:
            return

        root_logger = logging.getLogger(name)
        root_logger.setLevel(level)
        root_logger.propagate = False
        root_logger.handlers.clear()

        # Handler 1: JSON to stdout
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.setFormatter(
            ContextualJsonFormatter(
                "%(levelname)s %(name)s %(message)s",
                rename_fields={"levelname": "level", "name": "logger"},
            )
        )
        root_logger.addHandler(stdout_handler)

        # Handler 2: plain text to stderr for warnings and above
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(
            logging.Formatter("[%(levelname)s] %(asctime)s - %(name)s - %(message)s")
        )
        root_logger.addHandler(stderr_handler)

        instance._initialized = True

    @classmethod
    def set_level(cls, level: str) -> None:
        """Change the level of the service root logger and its stdout handler"""
        numeric = logging.getLevelName(str(level).upper())
        if not isinstance(numeric, int):
            return
        root_logger = logging.getLogger("finsight")
        root_logger.setLevel(numeric)
        for handler in root_logger.handlers:
            if getattr(handler, "stream", None) is sys.stdout:
                handler.setLevel(numeric)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get or create a logger below the service root"""
        if not name.startswith("finsight"):
            name = f"finsight.{name}"
        if name not in cls._loggers:
            cls._loggers[name] = logging.getLogger(name)
        return cls._loggers[name]


class StructuredLogger:
    """Wrapper for structured logging with common patterns"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _emit(self, level: int, event: str, exc: Optional[BaseException], context):
        if not self.logger.isEnabledFor(level):
            return
        exc_info = (type(exc), exc, exc.__traceback__) if exc is not None else None
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "(unknown file)",
            0,
            event,
            (),
            exc_info,
        )
        record.extra_data = context
        self.logger.handle(record)

    def info(self, event: str, **context):
        """Log info with context"""
        self._emit(logging.INFO, event, None, context)

    def warning(self, event: str, **context):
        """Log warning with context"""
        self._emit(logging.WARNING, event, None, context)

    def error(self, event: str, exc: Optional[BaseException] = None, **context):
        """Log error with context and optional exception"""
        self._emit(logging.ERROR, event, exc, context)

    def debug(self, event: str, **context):
        """Log debug with context"""
        self._emit(logging.DEBUG, event, None, context)


# Initialize on module load
AppLogger.configure()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module"""
    return StructuredLogger(AppLogger.get_logger(name))
