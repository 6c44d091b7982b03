"""Core logging implementation for voxlayout.

Records emitted by the invoker carry correlation fields (``session_id``,
``request_id``) through ``extra``. Records from other loggers do not, so the
handler installed here fills those fields with ``-`` before formatting.
"""

import logging
import sys
from typing import Optional

__all__ = ["LOG_FORMAT", "ContextDefaultsFilter", "get_logger", "setup_logging"]

LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - "
    "[%(session_id)s %(request_id)s] %(message)s"
)

# Correlation fields every formatted record is expected to carry
CONTEXT_FIELDS = ("session_id", "request_id")


class ContextDefaultsFilter(logging.Filter):
    """Fill missing correlation fields so LOG_FORMAT never raises KeyError."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


def setup_logging(level: int = logging.INFO, stream=sys.stderr) -> None:
    """Configure root logging for CLI and server entry points.

    Args:
        level: Logging level.
        stream: Output stream.
    """
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=stream)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, ContextDefaultsFilter) for f in handler.filters):
            handler.addFilter(ContextDefaultsFilter())


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Name of the logger.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name or "voxlayout")
