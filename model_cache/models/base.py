"""
Base Models and Common Types

Entity type descriptors and the paginated result model shared by the
query executors and the caching layer.
"""

import math
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from model_cache.errors import ConfigurationError

# Regex for valid SQL identifiers (table and column names)
VALID_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


def validate_identifier(name: str, param_name: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Prevents SQL injection through table and column names, which cannot be
    passed as bound parameters.

    Args:
        name: The identifier to validate
        param_name: Name of the parameter (for error messages)

    Returns:
        The validated identifier

    Raises:
        ConfigurationError: If the identifier is invalid
    """
    if not name:
        raise ConfigurationError(f"{param_name} cannot be empty")
    if not VALID_IDENTIFIER_PATTERN.match(name):
        raise ConfigurationError(f"Invalid {param_name}: must be alphanumeric with underscores, starting with letter or underscore")
    if len(name) > 64:
        raise ConfigurationError(f"{param_name} too long (max 64 characters)")
    return name


class CacheModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class EntityType(CacheModel):
    """
    A logical entity kind mapped onto a table.

    Several entity types may share one table (single-table inheritance);
    ``name`` is what keeps their cache scopes apart.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, description="Unique logical entity name")
    table: str = Field(description="Physical table name")
    primary_key: str = Field(default="id")
    soft_deletes: bool = Field(default=False)
    deleted_at_column: str = Field(default="deleted_at")
    updated_at_column: str | None = Field(default="updated_at")
    per_page: int = Field(default=15, ge=1)

    @field_validator("table", "primary_key", "deleted_at_column")
    @classmethod
    def validate_columns(cls, v: str, info: ValidationInfo) -> str:
        return validate_identifier(v, info.field_name or "identifier")

    @field_validator("updated_at_column")
    @classmethod
    def validate_updated_at(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_identifier(v, "updated_at_column")

    def __str__(self) -> str:
        return self.name


class Page(CacheModel):
    """A page of rows plus the totals needed to render pagination."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    per_page: int = Field(ge=1)
    current_page: int = Field(default=1, ge=1)
    page_name: str = Field(default="page")

    @property
    def last_page(self) -> int:
        """Number of the last page (at least 1)."""
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page
