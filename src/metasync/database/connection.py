"""
PostgreSQL connection pools for metasync.

Two kinds of pools exist: read-only pools over source databases, used by
the schema introspector, and a read-write pool over the catalog database
used by the PostgreSQL meta store.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..config import DatabaseConnection
from ..exceptions import DatabaseConfigurationError, DatabaseConnectionError


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Settings for one asyncpg pool."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")

    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(5, description="Maximum connections in pool")
    connect_timeout: float = Field(30.0, description="Connect timeout in seconds")
    command_timeout: float = Field(60.0, description="Command timeout in seconds")
    ssl_mode: Optional[str] = Field(None, description="SSL mode")

    application_name: str = Field("metasync", description="Reported to pg_stat_activity")
    read_only: bool = Field(False, description="Open every session read-only")

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @property
    def dsn_label(self) -> str:
        """host:port/database, safe for logs."""
        return f"{self.host}:{self.port}/{self.database}"

    @classmethod
    def from_connection(cls, connection: DatabaseConnection, **overrides) -> "ConnectionConfig":
        """Pool settings for a configured source or catalog connection."""
        values = connection.model_dump(
            include={"host", "port", "database", "user", "password", "min_size", "max_size", "ssl_mode"}
        )
        values["connect_timeout"] = float(connection.connect_timeout)
        values["command_timeout"] = float(connection.command_timeout)
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as e:
            raise DatabaseConfigurationError(f"Invalid connection settings: {e}") from e

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``asyncpg.create_pool``."""
        server_settings = {"application_name": self.application_name}
        if self.read_only:
            server_settings["default_transaction_read_only"] = "on"

        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "server_settings": server_settings,
            "min_size": self.min_size,
            "max_size": self.max_size,
        }
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode
        return kwargs


class ConnectionPool:
    """Lazily created asyncpg pool."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self) -> None:
        async with self._lock:
            if self._pool is not None:
                return

            mode = "read-only" if self.config.read_only else "read-write"
            logger.info(f"Opening {mode} pool to {self.config.dsn_label}")
            try:
                self._pool = await asyncpg.create_pool(**self.config.to_connection_kwargs())
            except Exception as e:
                logger.error(f"Failed to initialize connection pool for {self.config.dsn_label}: {e}")
                raise DatabaseConnectionError(f"Failed to initialize connection pool: {e}") from e

    async def close(self) -> None:
        async with self._lock:
            if self._pool is None:
                return
            logger.info(f"Closing pool to {self.config.dsn_label}")
            pool, self._pool = self._pool, None
            await pool.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")
        async with self._pool.acquire() as connection:
            yield connection

    async def execute(self, query: str, *args) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)
