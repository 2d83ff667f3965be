"""
Catalog package for metasync.

This package provides:
- Catalog entities (tables, columns, column options, views)
- Persistent meta storage with transactions
- A two-level cache over catalog reads
"""

from .cache import CacheDelDirection, CacheScope, CatalogCache, create_cache
from .meta_store import MemoryMetaStore, MetaStore, MetaTable, PostgresMetaStore, create_meta_store
from .models import CatalogContext, Column, RelationOptions, Table, View, ViewColumn
from .store import CatalogStore, create_store
from .types import ModelType, RelationType, UIType

__all__ = [
    "CacheDelDirection",
    "CacheScope",
    "CatalogCache",
    "create_cache",
    "MetaStore",
    "MemoryMetaStore",
    "PostgresMetaStore",
    "MetaTable",
    "create_meta_store",
    "CatalogContext",
    "Column",
    "RelationOptions",
    "Table",
    "View",
    "ViewColumn",
    "CatalogStore",
    "create_store",
    "ModelType",
    "RelationType",
    "UIType",
]
