"""
Logger factory for stepgate.

Provides:
- get_logger(): Get a configured logger instance
- log_with_context(): Bind request-scoped context to a logger
"""

import structlog
from structlog.stdlib import BoundLogger

from shared.logging_config import configure_structlog, setup_logging


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance

    Example:
        >>> from shared.logging import get_logger
        >>> log = get_logger(__name__)
        >>> log.info("session_created", user_id="123")
    """
    return structlog.get_logger(name)


def log_with_context(logger: BoundLogger, **context) -> BoundLogger:
    """
    Bind context to a logger for all subsequent log calls.

    Example:
        >>> log = log_with_context(get_logger(__name__), user_id="123")
        >>> log.info("step_up_required")  # includes user_id
    """
    return logger.bind(**context)


__all__ = [
    "get_logger",
    "log_with_context",
    "configure_structlog",
    "setup_logging",
]
