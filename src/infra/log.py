"""Logging entry point for routes and jobs; see src.services.structured_logging."""

from src.services.structured_logging import get_logger, init_logging

__all__ = ["get_logger", "init_logging"]
