"""Logging micro API for voxlayout."""

from .lib import LOG_FORMAT, ContextDefaultsFilter, get_logger, setup_logging

__all__ = ["LOG_FORMAT", "ContextDefaultsFilter", "get_logger", "setup_logging"]
