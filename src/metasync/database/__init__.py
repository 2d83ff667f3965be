"""
Database integration package for metasync.

This package provides:
- Async PostgreSQL connection pooling
- Live schema introspection of source databases
"""

from .connection import ConnectionConfig, ConnectionPool
from .introspection import (
    ColumnInfo,
    PostgresIntrospector,
    RelationInfo,
    SchemaIntrospector,
    TableInfo,
    create_introspector,
)

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "SchemaIntrospector",
    "PostgresIntrospector",
    "ColumnInfo",
    "TableInfo",
    "RelationInfo",
    "create_introspector",
]
