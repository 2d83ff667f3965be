"""
Database schema introspection for metasync.

Read-only access to the live schema of a source: tables, views, columns
and foreign key relations. Nothing in this module issues DDL.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import SourceConfig
from ..exceptions import ConfigurationError, IntrospectionError
from .connection import ConnectionConfig, ConnectionPool


logger = logging.getLogger(__name__)


@dataclass
class ColumnInfo:
    """Information about a physical column."""

    name: str
    data_type: str
    is_nullable: bool = True
    type_params: Optional[str] = None
    type_scale: Optional[str] = None
    is_primary_key: bool = False
    is_unique: bool = False
    is_auto_increment: bool = False
    is_unsigned: bool = False
    default_value: Optional[str] = None
    max_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    ordinal_position: int = 0
    udt_name: Optional[str] = None

    @property
    def required(self) -> bool:
        return not self.is_nullable

    def to_column_attrs(self) -> Dict[str, object]:
        """Physical attributes in the shape stored on catalog columns."""
        return {
            "column_name": self.name,
            "dt": self.data_type,
            "dtxp": self.type_params,
            "dtxs": self.type_scale,
            "clen": self.max_length,
            "np": self.numeric_precision,
            "ns": self.numeric_scale,
            "cdf": self.default_value,
            "pk": self.is_primary_key,
            "rqd": self.required,
            "unique": self.is_unique,
            "ai": self.is_auto_increment,
            "un": self.is_unsigned,
        }

    def __str__(self) -> str:
        result = f"{self.name} {self.data_type}"
        if self.type_params:
            result += f"({self.type_params})"
        if not self.is_nullable:
            result += " NOT NULL"
        if self.is_primary_key:
            result += " PRIMARY KEY"
        return result


@dataclass
class TableInfo:
    """A physical table or view."""

    name: str
    schema: Optional[str] = None
    table_type: str = "table"

    @property
    def is_view(self) -> bool:
        return self.table_type == "view"


@dataclass
class RelationInfo:
    """A physical foreign key, one column pair per record."""

    child_table: str
    child_column: str
    parent_table: str
    parent_column: str
    constraint_name: Optional[str] = None

    @property
    def key(self):
        return (self.child_table, self.child_column, self.parent_table, self.parent_column)


class SchemaIntrospector(ABC):
    """Read-only view of a source's live schema. Results carry no ordering guarantee."""

    @abstractmethod
    async def tables(self, schema: Optional[str] = None) -> List[TableInfo]:
        ...

    @abstractmethod
    async def columns(self, table: str, schema: Optional[str] = None) -> List[ColumnInfo]:
        ...

    @abstractmethod
    async def views(self, schema: Optional[str] = None) -> List[TableInfo]:
        ...

    @abstractmethod
    async def relations(self, schema: Optional[str] = None) -> List[RelationInfo]:
        ...

    async def close(self) -> None:
        """Release any resources held by the introspector."""
        return None


class PostgresIntrospector(SchemaIntrospector):
    """Schema introspection against PostgreSQL's information_schema."""

    def __init__(
        self,
        pool: ConnectionPool,
        source_id: Optional[str] = None,
        default_schema: str = "public",
        owns_pool: bool = False,
    ):
        self.pool = pool
        self.source_id = source_id
        self.default_schema = default_schema
        self._owns_pool = owns_pool

    async def _ensure_pool(self) -> None:
        if not self.pool.is_initialized:
            try:
                await self.pool.initialize()
            except Exception as e:
                raise IntrospectionError(
                    f"Cannot connect to source: {e}", self.source_id, e
                ) from e

    async def tables(self, schema: Optional[str] = None) -> List[TableInfo]:
        """List base tables in a schema."""
        schema = schema or self.default_schema
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """

        await self._ensure_pool()
        try:
            rows = await self.pool.fetch(query, schema)
            return [TableInfo(name=row["table_name"], schema=schema) for row in rows]
        except Exception as e:
            logger.error(f"Error listing tables in {schema}: {e}")
            raise IntrospectionError(f"Failed to list tables: {e}", self.source_id, e) from e

    async def views(self, schema: Optional[str] = None) -> List[TableInfo]:
        """List views in a schema."""
        schema = schema or self.default_schema
        query = """
            SELECT table_name
            FROM information_schema.views
            WHERE table_schema = $1
            ORDER BY table_name
        """

        await self._ensure_pool()
        try:
            rows = await self.pool.fetch(query, schema)
            return [
                TableInfo(name=row["table_name"], schema=schema, table_type="view")
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Error listing views in {schema}: {e}")
            raise IntrospectionError(f"Failed to list views: {e}", self.source_id, e) from e

    async def columns(self, table: str, schema: Optional[str] = None) -> List[ColumnInfo]:
        """Get all columns of a table or view, in ordinal order."""
        schema = schema or self.default_schema
        query = """
            SELECT
                c.column_name,
                c.data_type,
                c.udt_name,
                c.udt_schema,
                c.is_nullable,
                c.column_default,
                c.character_maximum_length,
                c.numeric_precision,
                c.numeric_scale,
                c.ordinal_position,
                c.is_identity,
                EXISTS (
                    SELECT 1
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                        AND tc.table_name = kcu.table_name
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                    AND tc.table_schema = c.table_schema
                    AND tc.table_name = c.table_name
                    AND kcu.column_name = c.column_name
                ) AS is_primary_key,
                EXISTS (
                    SELECT 1
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                        AND tc.table_name = kcu.table_name
                    WHERE tc.constraint_type = 'UNIQUE'
                    AND tc.table_schema = c.table_schema
                    AND tc.table_name = c.table_name
                    AND kcu.column_name = c.column_name
                ) AS is_unique
            FROM information_schema.columns c
            WHERE c.table_schema = $1 AND c.table_name = $2
            ORDER BY c.ordinal_position
        """

        await self._ensure_pool()
        try:
            rows = await self.pool.fetch(query, schema, table)
            columns = []

            for row in rows:
                default = row["column_default"]
                type_params = None
                if row["data_type"] == "USER-DEFINED":
                    type_params = await self._enum_values(row["udt_name"], row["udt_schema"])
                elif row["character_maximum_length"] is not None:
                    type_params = str(row["character_maximum_length"])
                elif row["numeric_precision"] is not None and row["data_type"] == "numeric":
                    type_params = str(row["numeric_precision"])

                columns.append(
                    ColumnInfo(
                        name=row["column_name"],
                        data_type=row["data_type"],
                        is_nullable=row["is_nullable"] == "YES",
                        type_params=type_params,
                        type_scale=(
                            str(row["numeric_scale"])
                            if row["numeric_scale"] is not None
                            else None
                        ),
                        is_primary_key=bool(row["is_primary_key"]),
                        is_unique=bool(row["is_unique"]),
                        is_auto_increment=(
                            row["is_identity"] == "YES"
                            or (default or "").startswith("nextval(")
                        ),
                        default_value=default,
                        max_length=row["character_maximum_length"],
                        numeric_precision=row["numeric_precision"],
                        numeric_scale=row["numeric_scale"],
                        ordinal_position=row["ordinal_position"],
                        udt_name=row["udt_name"],
                    )
                )

            return columns

        except IntrospectionError:
            raise
        except Exception as e:
            logger.error(f"Error getting columns for {schema}.{table}: {e}")
            raise IntrospectionError(f"Failed to get columns: {e}", self.source_id, e) from e

    async def _enum_values(self, udt_name: str, udt_schema: str) -> Optional[str]:
        """Enum labels formatted as a quoted, comma separated list."""
        query = """
            SELECT e.enumlabel
            FROM pg_type t
            JOIN pg_namespace n ON n.oid = t.typnamespace
            JOIN pg_enum e ON e.enumtypid = t.oid
            WHERE t.typname = $1 AND n.nspname = $2
            ORDER BY e.enumsortorder
        """
        try:
            rows = await self.pool.fetch(query, udt_name, udt_schema)
        except Exception as e:
            raise IntrospectionError(
                f"Failed to read enum values for {udt_name}: {e}", self.source_id, e
            ) from e
        if not rows:
            return None
        return ",".join(f"'{row['enumlabel']}'" for row in rows)

    async def relations(self, schema: Optional[str] = None) -> List[RelationInfo]:
        """List every foreign key column pair in a schema."""
        schema = schema or self.default_schema
        query = """
            SELECT
                rc.constraint_name,
                kcu.table_name AS child_table,
                kcu.column_name AS child_column,
                pk.table_name AS parent_table,
                pk.column_name AS parent_column
            FROM information_schema.referential_constraints rc
            JOIN information_schema.key_column_usage kcu
                ON kcu.constraint_schema = rc.constraint_schema
                AND kcu.constraint_name = rc.constraint_name
            JOIN information_schema.key_column_usage pk
                ON pk.constraint_schema = rc.unique_constraint_schema
                AND pk.constraint_name = rc.unique_constraint_name
                AND pk.ordinal_position = kcu.position_in_unique_constraint
            WHERE kcu.table_schema = $1
            ORDER BY kcu.table_name, kcu.column_name
        """

        await self._ensure_pool()
        try:
            rows = await self.pool.fetch(query, schema)
            return [
                RelationInfo(
                    child_table=row["child_table"],
                    child_column=row["child_column"],
                    parent_table=row["parent_table"],
                    parent_column=row["parent_column"],
                    constraint_name=row["constraint_name"],
                )
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Error listing relations in {schema}: {e}")
            raise IntrospectionError(f"Failed to list relations: {e}", self.source_id, e) from e

    async def close(self) -> None:
        if self._owns_pool:
            await self.pool.close()


def create_introspector(source: SourceConfig) -> SchemaIntrospector:
    """Build the introspector matching a source's client type."""
    if source.client != "pg":
        raise ConfigurationError(
            f"No introspector available for client '{source.client}'"
        )
    if source.connection is None:
        raise ConfigurationError(f"Source '{source.id}' has no connection configured")

    pool = ConnectionPool(
        ConnectionConfig.from_connection(
            source.connection, application_name="metasync-introspect", read_only=True
        )
    )
    return PostgresIntrospector(
        pool,
        source_id=source.id,
        default_schema=source.schema_name,
        owns_pool=True,
    )
