"""
metasync: keeps a table catalog consistent with live database schemas.

metasync introspects the tables, columns, views and foreign keys of a
source database, diffs them against the catalog it maintains, and
applies the changes while keeping the dependent virtual columns valid.
"""

__version__ = "0.1.0"
__author__ = "metasync Contributors"

from .config import MetaSyncConfig
from .exceptions import MetaSyncError, ConfigurationError, DatabaseError, CatalogError, SyncError

__all__ = [
    "__version__",
    "MetaSyncConfig",
    "MetaSyncError",
    "ConfigurationError",
    "DatabaseError",
    "CatalogError",
    "SyncError",
]
