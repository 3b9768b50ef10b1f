"""
Model Cache - Monitoring Module

Structured logging for the caching layer.
"""

from .logging import configure_logging, configure_logging_from_settings, get_logger, log_duration

__all__ = [
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    "log_duration",
]
