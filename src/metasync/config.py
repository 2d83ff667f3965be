"""
Configuration system for metasync using Pydantic.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError


ClientType = Literal["pg", "mysql", "mysql2", "sqlite3", "mssql"]


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field("", description="Database user")
    password: str = Field("", description="Database password")
    ssl_mode: str = Field("prefer", description="SSL mode")
    connect_timeout: int = Field(30, description="Connection timeout in seconds")
    command_timeout: int = Field(60, description="Command timeout in seconds")
    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(5, description="Maximum connections in pool")


class SourceConfig(BaseModel):
    """An external database whose schema is mirrored into the catalog."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Source identifier")
    alias: Optional[str] = Field(None, description="Human readable source name")
    client: ClientType = Field("pg", description="Database client type")
    connection: Optional[DatabaseConnection] = Field(
        None, description="Connection details"
    )
    schema_name: str = Field(
        "public", alias="schema", description="Database schema to introspect"
    )
    is_meta: bool = Field(
        False, description="Source stores the platform's own metadata"
    )
    enabled: bool = Field(True, description="Include source in base-wide syncs")
    inflection_table: Literal["none", "camelize"] = Field(
        "none", description="Inflection applied to table titles"
    )
    inflection_column: Literal["none", "camelize"] = Field(
        "none", description="Inflection applied to column titles"
    )

    @property
    def display_name(self) -> str:
        return self.alias or self.id


class BaseConfig(BaseModel):
    """A base groups the sources whose tables share one catalog."""

    id: str = Field(..., description="Base identifier")
    workspace_id: str = Field("default", description="Owning workspace")
    title: Optional[str] = Field(None, description="Base title")
    prefix: str = Field("", description="Table name prefix used by meta sources")
    sources: List[SourceConfig] = Field(
        default_factory=list, description="Sources in this base"
    )

    @field_validator("sources")
    @classmethod
    def unique_source_ids(cls, v: List[SourceConfig]) -> List[SourceConfig]:
        seen = set()
        for source in v:
            if source.id in seen:
                raise ValueError(f"Duplicate source id '{source.id}'")
            seen.add(source.id)
        return v

    def get_source(self, source_id: str) -> SourceConfig:
        """Get source configuration by id."""
        for source in self.sources:
            if source.id == source_id:
                return source
        raise ConfigurationError(
            f"Source '{source_id}' not found in base '{self.id}'"
        )


class CatalogConfig(BaseModel):
    """Where the catalog itself is persisted."""

    model_config = ConfigDict(populate_by_name=True)

    backend: Literal["memory", "postgres"] = Field(
        "memory", description="Catalog storage backend"
    )
    connection: Optional[DatabaseConnection] = Field(
        None, description="Connection details for the postgres backend"
    )
    schema_name: str = Field(
        "metasync", alias="schema", description="Schema holding catalog tables"
    )


class CacheConfig(BaseModel):
    """Catalog cache configuration."""

    backend: Literal["memory", "redis", "disabled"] = Field(
        "memory", description="Cache backend"
    )
    url: Optional[str] = Field(None, description="Redis URL")
    prefix: str = Field("nc:meta", description="Cache key prefix")


class ConcurrencyConfig(BaseModel):
    """Bounds for queued virtual column inserts, per client type."""

    default_limit: int = Field(5, ge=1, description="Limit for unlisted clients")
    limits: Dict[str, int] = Field(
        default_factory=lambda: {"sqlite3": 1},
        description="Per client type limits",
    )

    def limit_for(self, client: str) -> int:
        return max(1, self.limits.get(client, self.default_limit))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")

    def configure(self) -> None:
        """Install handlers on the root logger."""
        handlers: List[logging.Handler] = [logging.StreamHandler()]
        if self.file:
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    self.file,
                    maxBytes=self.max_size,
                    backupCount=self.backup_count,
                    encoding="utf-8",
                )
            )
        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            handlers=handlers,
            force=True,
        )


class MetaSyncConfig(BaseSettings):
    """Main metasync configuration."""

    service_name: str = Field("metasync", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    catalog: CatalogConfig = Field(
        default_factory=CatalogConfig, description="Catalog storage"
    )
    cache: CacheConfig = Field(
        default_factory=CacheConfig, description="Catalog cache"
    )
    bases: List[BaseConfig] = Field(
        default_factory=list, description="Bases and their sources"
    )
    concurrency: ConcurrencyConfig = Field(
        default_factory=ConcurrencyConfig,
        description="Virtual column insert concurrency",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="METASYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MetaSyncConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_base(self, base_id: str) -> BaseConfig:
        """Get base configuration by id."""
        for base in self.bases:
            if base.id == base_id:
                return base
        raise ConfigurationError(f"Base configuration '{base_id}' not found")

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        if self.catalog.backend == "postgres" and self.catalog.connection is None:
            raise ConfigurationError(
                "Catalog backend 'postgres' requires a connection"
            )
        if self.cache.backend == "redis" and not self.cache.url:
            raise ConfigurationError("Cache backend 'redis' requires a url")

        base_ids = set()
        for base in self.bases:
            if base.id in base_ids:
                raise ConfigurationError(f"Duplicate base id '{base.id}'")
            base_ids.add(base.id)

            for source in base.sources:
                if source.is_meta:
                    continue
                if source.connection is None:
                    raise ConfigurationError(
                        f"Source '{source.id}' in base '{base.id}' has no connection"
                    )
                if source.client != "pg":
                    raise ConfigurationError(
                        f"Source '{source.id}' uses client '{source.client}', "
                        f"only 'pg' sources can be introspected"
                    )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True, by_alias=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )
