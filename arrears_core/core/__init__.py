# Core infrastructure: structured logging

from arrears_core.core.logging import (
    LogContext,
    LogFormat,
    LogLevel,
    get_logger,
    setup_logging,
)

__all__ = [
    "LogContext",
    "LogFormat",
    "LogLevel",
    "get_logger",
    "setup_logging",
]
