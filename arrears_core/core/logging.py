"""
Standardized Logging Configuration

Structured logging for the invoicing core. JSON output for production,
human-readable console output for development.
"""

import logging
import sys
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog


# =============================================================================
# Configuration
# =============================================================================


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    PRETTY = "pretty"


SERVICE_NAME = "arrears-core"


def _add_service_name(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


# =============================================================================
# Logger Setup
# =============================================================================


def setup_logging(
    level: Optional[str] = None,
    format: Optional[str] = None,
    service_name: Optional[str] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json, pretty)
        service_name: Service name for log entries

    Missing arguments are taken from the application settings.
    """
    global SERVICE_NAME

    if level is None or format is None or service_name is None:
        from arrears_core.config import get_settings

        settings = get_settings()
        level = level or settings.log_level
        # Production output is always machine readable
        format = format or (LogFormat.JSON.value if settings.is_production else settings.log_format)
        service_name = service_name or settings.service_name

    SERVICE_NAME = service_name
    numeric_level = getattr(logging, LogLevel(level.upper()).value)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    if format == LogFormat.JSON or format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=_shared_processors() + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    get_logger(__name__).info(
        "logging_configured",
        level=level,
        format=format,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structlog bound logger
    """
    return structlog.get_logger(name)


# =============================================================================
# Context Logging
# =============================================================================


class LogContext:
    """
    Binds fields to every log line emitted inside the block.

    Usage:
        with LogContext(subscription_id="sub_1", invoice_id="inv_1"):
            logger.info("computing_usage_items")
    """

    def __init__(self, **kwargs: Any):
        self._kwargs = kwargs
        self._tokens: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self._kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
