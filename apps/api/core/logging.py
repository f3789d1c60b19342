"""
Structured logging configuration.

JSON logs in production, text in development. Every record is stamped with
the bound request context: the request id set by the HTTP middleware, plus
the Stripe event id while a webhook event is being reconciled. Context lives
in a ContextVar, so it follows the request into threadpool workers.
"""
import logging
import sys
import json
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def bind_log_context(**fields: Any) -> Token:
    """Add fields to the current log context. Pass the token to reset_log_context."""
    return _log_context.set({**_log_context.get(), **fields})


def reset_log_context(token: Token) -> None:
    _log_context.reset(token)


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


class LogContextFilter(logging.Filter):
    """Copy the bound context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get()
        record.log_context = context
        record.request_id = context.get("request_id", "-")
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = getattr(record, "log_context", None)
        if context is None:
            context = _log_context.get()
        log_data.update(context)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Per-call fields win over bound context
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(LogContextFilter())
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    return root_logger


# Initialize logging on import
setup_logging()
