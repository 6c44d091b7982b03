"""Core utilities shared by all voxlayout modules."""

from .log import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
