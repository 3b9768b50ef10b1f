"""
Model Cache Database Layer

Query value object, executor interface and the non-caching reference
executor the caching decorator wraps.
"""

from model_cache.database.base import PivotRelation, QueryExecutor
from model_cache.database.executor import DatabaseQueryExecutor
from model_cache.database.pivot import DatabasePivotTable
from model_cache.database.query import Query, query_for

__all__ = [
    "DatabasePivotTable",
    "DatabaseQueryExecutor",
    "PivotRelation",
    "Query",
    "QueryExecutor",
    "query_for",
]
