"""
Exception classes for metasync.
"""

from typing import Any, Dict, Optional


class MetaSyncError(Exception):
    """Base exception for all metasync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(MetaSyncError):
    """Raised when there's an error in configuration."""

    pass


class ValidationError(MetaSyncError):
    """Raised when a table or column cannot be materialized in the catalog."""

    pass


class DatabaseError(MetaSyncError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class IntrospectionError(DatabaseError):
    """Raised when the live schema of a source cannot be read."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {"source_id": source_id} if source_id else None
        super().__init__(message, details, cause)
        self.source_id = source_id


class CatalogError(MetaSyncError):
    """Raised when there's an error with catalog operations."""

    pass


class ReferentialInconsistencyError(CatalogError):
    """Raised when a catalog entity points at something that no longer exists."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        missing: str,
    ) -> None:
        super().__init__(
            f"{entity} '{entity_id}' references missing {missing}",
            {"entity": entity, "entity_id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id
        self.missing = missing


class CacheInconsistencyError(CatalogError):
    """Raised when the cache backend fails or disagrees with the store."""

    pass


class SyncError(MetaSyncError):
    """Raised when a meta sync run cannot be started or completed."""

    pass
