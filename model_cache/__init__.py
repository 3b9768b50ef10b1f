"""
Model Cache

Query result caching with tag-scoped invalidation for relational query
executors.
"""

__version__ = "1.0.0"

from model_cache.config import ModelCacheSettings, get_settings
from model_cache.database import DatabasePivotTable, DatabaseQueryExecutor, Query, query_for
from model_cache.errors import (
    BackendUnavailableError,
    ConfigurationError,
    InvalidationFailure,
    ModelCacheError,
)
from model_cache.manager import EntityCache, ModelCache
from model_cache.models import EntityType, Page
from model_cache.repositories import EntityRepository

__all__ = [
    "__version__",
    "ModelCacheSettings",
    "get_settings",
    "Query",
    "query_for",
    "DatabaseQueryExecutor",
    "DatabasePivotTable",
    "EntityType",
    "Page",
    "EntityRepository",
    "EntityCache",
    "ModelCache",
    "ModelCacheError",
    "ConfigurationError",
    "BackendUnavailableError",
    "InvalidationFailure",
]
