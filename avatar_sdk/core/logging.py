"""Structured logging configuration for the SDK.

The SDK only obtains loggers; applications opt into this configuration
by calling ``setup_logging()``. JSON formatting is available for
production environments that ship logs to an aggregator.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from avatar_sdk.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Attributes:
        fields: List of fields to include in JSON output
    """

    # Standard fields always included
    STANDARD_FIELDS = ["name", "levelname", "message", "timestamp"]

    # Contextual fields for request tracking
    CONTEXT_FIELDS = [
        "character_id",  # Character being fetched
        "model_type",    # full | base
        "cache_kind",    # discover | characters | models
        "url",           # Outbound request URL
        "status_code",   # HTTP response status
        "duration_ms",   # Request duration in milliseconds
    ]

    # LogRecord attributes that are never copied into "extra"
    _RESERVED = frozenset((
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "timestamp", "logger", "level", "source", "taskName",
    ))

    def __init__(
        self,
        fields: Optional[list] = None,
        datefmt: Optional[str] = None,
    ):
        super().__init__(datefmt=datefmt)
        self.fields = fields or (self.STANDARD_FIELDS + self.CONTEXT_FIELDS)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {}
        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message
        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds default contextual fields to log records."""

    CONTEXT_DEFAULTS = {
        "character_id": None,
        "model_type": None,
        "cache_kind": None,
        "url": None,
        "status_code": None,
        "duration_ms": None,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - character_id=%(character_id)s - cache_kind=%(cache_kind)s - url=%(url)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "avatar_sdk.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "avatar_sdk.core.logging.ContextFilter",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": default_formatter,
                "stream": sys.stderr,
                "filters": ["context"],
            },
        },
        "loggers": {
            "avatar_sdk": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging() -> None:
    """Configure logging for the SDK loggers."""
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str = "avatar_sdk") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    character_id: Optional[str] = None,
    model_type: Optional[str] = None,
    cache_kind: Optional[str] = None,
    url: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the extra parameter.

    Example:
        >>> logger.info(
        ...     "Downloading model",
        ...     extra=get_log_context(character_id="soren", model_type="full")
        ... )
    """
    context = {
        "character_id": character_id,
        "model_type": model_type,
        "cache_kind": cache_kind,
        "url": url,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
