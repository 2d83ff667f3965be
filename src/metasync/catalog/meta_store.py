"""
Row-level persistence for catalog entities.

A ``MetaStore`` keeps rows of the catalog meta tables (models, columns,
column options, views, view columns) scoped by workspace and base, and
provides the transaction boundary a sync run executes in.
"""

import asyncio
import copy
import json
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from contextvars import ContextVar
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..config import CatalogConfig
from ..database.connection import ConnectionConfig, ConnectionPool
from ..exceptions import CatalogError, ConfigurationError
from .models import CatalogContext


logger = logging.getLogger(__name__)


class MetaTable(str, Enum):
    """Catalog meta tables."""

    MODELS = "nc_models"
    COLUMNS = "nc_columns"
    COL_RELATIONS = "nc_col_relations"
    COL_FORMULA = "nc_col_formula"
    COL_BUTTON = "nc_col_button"
    COL_LOOKUP = "nc_col_lookup"
    COL_ROLLUP = "nc_col_rollup"
    COL_QRCODE = "nc_col_qrcode"
    COL_BARCODE = "nc_col_barcode"
    COL_LONG_TEXT = "nc_col_long_text"
    VIEWS = "nc_views"
    VIEW_COLUMNS = "nc_view_columns"


ID_PREFIXES = {
    MetaTable.MODELS.value: "md",
    MetaTable.COLUMNS.value: "cl",
    MetaTable.COL_RELATIONS.value: "ln",
    MetaTable.COL_FORMULA.value: "fm",
    MetaTable.COL_BUTTON.value: "bt",
    MetaTable.COL_LOOKUP.value: "lk",
    MetaTable.COL_ROLLUP.value: "rl",
    MetaTable.COL_QRCODE.value: "qr",
    MetaTable.COL_BARCODE.value: "br",
    MetaTable.COL_LONG_TEXT.value: "lt",
    MetaTable.VIEWS.value: "vw",
    MetaTable.VIEW_COLUMNS.value: "nvc",
}


def _table_name(table) -> str:
    return table.value if isinstance(table, Enum) else table


def generate_id(table) -> str:
    """New id carrying the meta table's prefix."""
    prefix = ID_PREFIXES.get(_table_name(table), "nc")
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _matches(row: Dict[str, Any], condition: Optional[Dict[str, Any]]) -> bool:
    if not condition:
        return True
    return all(row.get(k) == v for k, v in condition.items())


def _sort_rows(rows: List[Dict[str, Any]], order_by: Optional[Sequence[str]]) -> List[Dict[str, Any]]:
    if not order_by:
        return rows
    for key in reversed(order_by):
        rows.sort(key=lambda r: (r.get(key) is None, r.get(key) if r.get(key) is not None else 0))
    return rows


class MetaStore(ABC):
    """Scoped CRUD over catalog meta tables."""

    async def setup(self) -> None:
        """Prepare backing storage."""
        return None

    @abstractmethod
    async def insert(self, context: CatalogContext, table, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get(self, context: CatalogContext, table, row_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list(
        self,
        context: CatalogContext,
        table,
        condition: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def update(
        self, context: CatalogContext, table, row_id: str, values: Dict[str, Any]
    ) -> None:
        ...

    @abstractmethod
    async def delete(
        self, context: CatalogContext, table, condition: Dict[str, Any]
    ) -> int:
        ...

    @abstractmethod
    def transaction(self):
        """Async context manager making every call inside it all-or-nothing."""
        ...

    async def close(self) -> None:
        return None

    @staticmethod
    def _scoped(context: CatalogContext, table, row: Dict[str, Any]) -> Dict[str, Any]:
        scoped = dict(row)
        if not scoped.get("id"):
            scoped["id"] = generate_id(table)
        scoped["fk_workspace_id"] = context.workspace_id
        scoped["base_id"] = context.base_id
        return scoped


class MemoryMetaStore(MetaStore):
    """In-process store. Transactions snapshot all tables and restore them on error."""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._tx_lock = asyncio.Lock()
        self._tx_depth: ContextVar[int] = ContextVar(f"memory_tx_{id(self)}", default=0)

    def _rows(self, table) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(_table_name(table), {})

    @staticmethod
    def _in_scope(context: CatalogContext, row: Dict[str, Any]) -> bool:
        return (
            row.get("fk_workspace_id") == context.workspace_id
            and row.get("base_id") == context.base_id
        )

    async def insert(self, context, table, row):
        scoped = self._scoped(context, table, row)
        rows = self._rows(table)
        if scoped["id"] in rows:
            raise CatalogError(
                f"Duplicate id '{scoped['id']}' in {_table_name(table)}"
            )
        rows[scoped["id"]] = copy.deepcopy(scoped)
        return copy.deepcopy(scoped)

    async def get(self, context, table, row_id):
        row = self._rows(table).get(row_id)
        if row is None or not self._in_scope(context, row):
            return None
        return copy.deepcopy(row)

    async def list(self, context, table, condition=None, order_by=None):
        rows = [
            copy.deepcopy(row)
            for row in self._rows(table).values()
            if self._in_scope(context, row) and _matches(row, condition)
        ]
        return _sort_rows(rows, order_by)

    async def update(self, context, table, row_id, values):
        row = self._rows(table).get(row_id)
        if row is None or not self._in_scope(context, row):
            return
        values = {k: v for k, v in values.items() if k not in ("id", "base_id", "fk_workspace_id")}
        row.update(copy.deepcopy(values))

    async def delete(self, context, table, condition):
        rows = self._rows(table)
        doomed = [
            row_id
            for row_id, row in rows.items()
            if self._in_scope(context, row) and _matches(row, condition)
        ]
        for row_id in doomed:
            del rows[row_id]
        return len(doomed)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        depth = self._tx_depth.get()
        if depth:
            token = self._tx_depth.set(depth + 1)
            try:
                yield
            finally:
                self._tx_depth.reset(token)
            return

        async with self._tx_lock:
            snapshot = copy.deepcopy(self._tables)
            token = self._tx_depth.set(1)
            try:
                yield
            except BaseException:
                self._tables = snapshot
                logger.debug("Memory catalog transaction rolled back")
                raise
            finally:
                self._tx_depth.reset(token)


class PostgresMetaStore(MetaStore):
    """Catalog rows kept as JSONB documents in a single PostgreSQL table."""

    def __init__(self, pool: ConnectionPool, schema: str = "metasync", owns_pool: bool = False):
        self.pool = pool
        self.schema = schema
        self._owns_pool = owns_pool
        self._tx_conn: ContextVar[Optional[Any]] = ContextVar(
            f"pg_tx_{id(self)}", default=None
        )

    @property
    def qualified_table(self) -> str:
        return f'"{self.schema}".nc_catalog'

    async def setup(self) -> None:
        """Create the catalog schema and table if they don't exist."""
        if not self.pool.is_initialized:
            await self.pool.initialize()
        try:
            await self.pool.execute(f'CREATE SCHEMA IF NOT EXISTS "{self.schema}"')
            await self.pool.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.qualified_table} (
                    meta_table TEXT NOT NULL,
                    id TEXT NOT NULL,
                    workspace_id TEXT NOT NULL,
                    base_id TEXT NOT NULL,
                    data JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (meta_table, id)
                )
                """
            )
            await self.pool.execute(
                f"CREATE INDEX IF NOT EXISTS nc_catalog_scope_idx "
                f"ON {self.qualified_table} (meta_table, workspace_id, base_id)"
            )
            logger.info(f"Catalog table {self.qualified_table} ready")
        except Exception as e:
            logger.error(f"Catalog setup failed: {e}")
            raise CatalogError(f"Failed to set up catalog storage: {e}", cause=e) from e

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        active = self._tx_conn.get()
        if active is not None:
            conn, lock = active
            # one connection carries the whole transaction
            async with lock:
                yield conn
            return
        async with self.pool.acquire() as conn:
            yield conn

    async def insert(self, context, table, row):
        scoped = self._scoped(context, table, row)
        async with self._connection() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self.qualified_table} (meta_table, id, workspace_id, base_id, data)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                """,
                _table_name(table),
                scoped["id"],
                context.workspace_id,
                context.base_id,
                json.dumps(scoped),
            )
        return scoped

    async def get(self, context, table, row_id):
        async with self._connection() as conn:
            data = await conn.fetchval(
                f"""
                SELECT data::text FROM {self.qualified_table}
                WHERE meta_table = $1 AND id = $2 AND workspace_id = $3 AND base_id = $4
                """,
                _table_name(table),
                row_id,
                context.workspace_id,
                context.base_id,
            )
        return json.loads(data) if data else None

    async def list(self, context, table, condition=None, order_by=None):
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT data::text AS data FROM {self.qualified_table}
                WHERE meta_table = $1 AND workspace_id = $2 AND base_id = $3
                AND data @> $4::jsonb
                ORDER BY created_at, id
                """,
                _table_name(table),
                context.workspace_id,
                context.base_id,
                json.dumps(condition or {}),
            )
        return _sort_rows([json.loads(r["data"]) for r in rows], order_by)

    async def update(self, context, table, row_id, values):
        values = {k: v for k, v in values.items() if k not in ("id", "base_id", "fk_workspace_id")}
        async with self._connection() as conn:
            await conn.execute(
                f"""
                UPDATE {self.qualified_table}
                SET data = data || $5::jsonb, updated_at = NOW()
                WHERE meta_table = $1 AND id = $2 AND workspace_id = $3 AND base_id = $4
                """,
                _table_name(table),
                row_id,
                context.workspace_id,
                context.base_id,
                json.dumps(values),
            )

    async def delete(self, context, table, condition):
        async with self._connection() as conn:
            status = await conn.execute(
                f"""
                DELETE FROM {self.qualified_table}
                WHERE meta_table = $1 AND workspace_id = $2 AND base_id = $3
                AND data @> $4::jsonb
                """,
                _table_name(table),
                context.workspace_id,
                context.base_id,
                json.dumps(condition or {}),
            )
        # asyncpg returns "DELETE <count>"
        try:
            return int(status.split()[-1])
        except (AttributeError, ValueError, IndexError):
            return 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._tx_conn.get() is not None:
            yield
            return

        if not self.pool.is_initialized:
            await self.pool.initialize()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token = self._tx_conn.set((conn, asyncio.Lock()))
                try:
                    yield
                finally:
                    self._tx_conn.reset(token)

    async def close(self) -> None:
        if self._owns_pool:
            await self.pool.close()


def create_meta_store(config: CatalogConfig) -> MetaStore:
    """Build the meta store described by configuration."""
    if config.backend == "memory":
        return MemoryMetaStore()
    if config.backend == "postgres":
        if config.connection is None:
            raise ConfigurationError("Catalog backend 'postgres' requires a connection")
        pool = ConnectionPool(
            ConnectionConfig.from_connection(config.connection, application_name="metasync-catalog")
        )
        return PostgresMetaStore(pool, schema=config.schema_name, owns_pool=True)
    raise ConfigurationError(f"Unknown catalog backend '{config.backend}'")
