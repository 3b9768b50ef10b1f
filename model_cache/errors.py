"""
Model Cache Exceptions
======================

Only ``ConfigurationError`` is meant to reach callers. The other two are
raised by backends and recovered inside the caching layer.
"""

from __future__ import annotations

from collections.abc import Sequence


class ModelCacheError(Exception):
    """Base exception for model cache errors."""
    pass


class ConfigurationError(ModelCacheError, ValueError):
    """Invalid signature input, missing capability or bad setup."""
    pass


class BackendUnavailableError(ModelCacheError):
    """The cache store could not be reached."""
    pass


class InvalidationFailure(ModelCacheError):
    """A tag flush failed after the triggering mutation committed."""

    def __init__(self, tags: Sequence[str], reason: str) -> None:
        self.tags = tuple(tags)
        self.reason = reason
        super().__init__(f"Failed to flush tags {list(self.tags)}: {reason}")
