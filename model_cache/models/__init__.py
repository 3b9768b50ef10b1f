"""
Model Cache Models

Entity descriptors and result models.
"""

from model_cache.models.base import EntityType, Page, validate_identifier

__all__ = [
    "EntityType",
    "Page",
    "validate_identifier",
]
