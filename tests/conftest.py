"""
Pytest configuration and shared fixtures for metasync tests.

This module provides an in-memory catalog, an introspector serving a
mutable fake schema, and configuration fixtures shared by all tests.
"""

import tempfile
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from metasync.catalog.cache import CatalogCache, MemoryCacheManager
from metasync.catalog.meta_store import MemoryMetaStore
from metasync.catalog.models import CatalogContext
from metasync.catalog.store import CatalogStore
from metasync.config import BaseConfig, MetaSyncConfig, SourceConfig
from metasync.database.introspection import (
    ColumnInfo,
    RelationInfo,
    SchemaIntrospector,
    TableInfo,
)
from metasync.sync.hooks import AppHooks
from metasync.sync.service import MetaDiffService


# ============================================================================
# Test Utilities
# ============================================================================

def pk_column(name: str = "id", data_type: str = "integer", auto_increment: bool = True) -> ColumnInfo:
    """Primary key column as the introspector reports it."""
    return ColumnInfo(
        name=name,
        data_type=data_type,
        is_nullable=False,
        is_primary_key=True,
        is_auto_increment=auto_increment,
    )


def column(name: str, data_type: str = "character varying", **kwargs) -> ColumnInfo:
    """Plain physical column."""
    return ColumnInfo(name=name, data_type=data_type, **kwargs)


def fk(child_table: str, child_column: str, parent_table: str, parent_column: str = "id") -> RelationInfo:
    return RelationInfo(
        child_table=child_table,
        child_column=child_column,
        parent_table=parent_table,
        parent_column=parent_column,
        constraint_name=f"{child_table}_{child_column}_fkey",
    )


class FakeIntrospector(SchemaIntrospector):
    """Introspector serving a schema held in plain dictionaries."""

    def __init__(
        self,
        tables: Optional[Dict[str, List[ColumnInfo]]] = None,
        views: Optional[Dict[str, List[ColumnInfo]]] = None,
        relations: Optional[List[RelationInfo]] = None,
    ):
        self.table_columns: Dict[str, List[ColumnInfo]] = dict(tables or {})
        self.view_columns: Dict[str, List[ColumnInfo]] = dict(views or {})
        self.relation_list: List[RelationInfo] = list(relations or [])
        self.close_count = 0

    async def tables(self, schema=None):
        return [TableInfo(name=name, schema=schema) for name in self.table_columns]

    async def views(self, schema=None):
        return [TableInfo(name=name, schema=schema, table_type="view") for name in self.view_columns]

    async def columns(self, table, schema=None):
        if table in self.table_columns:
            return list(self.table_columns[table])
        return list(self.view_columns.get(table, []))

    async def relations(self, schema=None):
        return list(self.relation_list)

    async def close(self):
        self.close_count += 1

    def drop_table(self, name: str) -> None:
        self.table_columns.pop(name, None)
        self.relation_list = [
            r for r in self.relation_list if name not in (r.child_table, r.parent_table)
        ]

    def drop_column(self, table: str, name: str) -> None:
        self.table_columns[table] = [c for c in self.table_columns[table] if c.name != name]
        self.relation_list = [
            r
            for r in self.relation_list
            if not (r.child_table == table and r.child_column == name)
            and not (r.parent_table == table and r.parent_column == name)
        ]


# ============================================================================
# Catalog Fixtures
# ============================================================================

@pytest.fixture
def context() -> CatalogContext:
    """Catalog context matching the sample base."""
    return CatalogContext(workspace_id="ws1", base_id="base1")


@pytest.fixture
def meta_store() -> MemoryMetaStore:
    return MemoryMetaStore()


@pytest.fixture
def cache() -> CatalogCache:
    return CatalogCache(MemoryCacheManager(prefix="test"))


@pytest.fixture
def store(meta_store, cache) -> CatalogStore:
    """Catalog store over in-memory storage and cache."""
    return CatalogStore(meta_store, cache)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def source() -> SourceConfig:
    return SourceConfig(id="src1", alias="Primary", client="pg", schema_name="public")


@pytest.fixture
def base(source) -> BaseConfig:
    return BaseConfig(id="base1", workspace_id="ws1", title="Base", sources=[source])


@pytest.fixture
def sample_config_data() -> Dict:
    """Configuration as written in a YAML file."""
    return {
        "service_name": "metasync-test",
        "catalog": {"backend": "memory"},
        "cache": {"backend": "memory", "prefix": "test"},
        "bases": [
            {
                "id": "base1",
                "workspace_id": "ws1",
                "sources": [
                    {
                        "id": "src1",
                        "client": "pg",
                        "schema": "public",
                        "connection": {
                            "host": "localhost",
                            "port": 5432,
                            "database": "test_db",
                            "user": "test_user",
                            "password": "test_password",
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def sample_config(sample_config_data) -> MetaSyncConfig:
    return MetaSyncConfig(**sample_config_data)


@pytest.fixture
def temp_config_file(sample_config_data) -> str:
    """Temporary configuration file for testing."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(sample_config_data, f)
        return f.name


# ============================================================================
# Sync Fixtures
# ============================================================================

@pytest.fixture
def schema() -> FakeIntrospector:
    """Empty live schema; tests fill it in."""
    return FakeIntrospector()


@pytest.fixture
def hooks() -> AppHooks:
    return AppHooks()


@pytest.fixture
def service(store, schema, hooks) -> MetaDiffService:
    """Sync service reading the fake schema."""
    return MetaDiffService(store, introspector_factory=lambda source: schema, hooks=hooks)


# ============================================================================
# Database Test Fixtures
# ============================================================================

@pytest.fixture
def mock_pool():
    """Mock connection pool for introspection tests."""
    pool = MagicMock()
    pool.is_initialized = True
    pool.initialize = AsyncMock()
    pool.fetch = AsyncMock()
    pool.execute = AsyncMock()
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def mock_redis_client():
    """Mock Redis client for testing."""
    redis_mock = AsyncMock()
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.set = AsyncMock()
    redis_mock.delete = AsyncMock()
    redis_mock.aclose = AsyncMock()
    return redis_mock
