"""Centralized configuration management for the Notably fact store.

Type-safe configuration using Pydantic Settings with environment variable
override support. Configuration is hierarchical:
- StoreConfig: backing store selection, DuckDB location, pooling and retries
- ObservabilityConfig: logging and metrics settings
- NotablyConfig: main configuration aggregating all sub-configs

Environment variables follow the pattern: NOTABLY_{COMPONENT}_{PARAMETER}

Examples:
    NOTABLY_STORE_BACKEND=duckdb
    NOTABLY_STORE_DATABASE=/var/lib/notably/facts.duckdb
    NOTABLY_OBSERVABILITY_LOG_LEVEL=DEBUG

Usage:
    from notably.common.config import config

    print(config.store.backend)
    print(config.store.pool_size)
"""

import re
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MEMORY_LIMIT = re.compile(r"^\d+(\.\d+)?\s*(B|KB|MB|GB|TB|KiB|MiB|GiB|TiB)$", re.IGNORECASE)


class StoreConfig(BaseSettings):
    """Backing store configuration.

    Selects the adapter implementation and controls the DuckDB connection
    pool and transport-level retry policy.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTABLY_STORE_", case_sensitive=False, extra="ignore",
    )

    backend: Literal["memory", "duckdb"] = Field(
        default="duckdb", description="Backing store adapter implementation",
    )

    database: str = Field(
        default=":memory:", description="DuckDB database path (':memory:' for in-process)",
    )

    table_name: str = Field(default="facts", description="Table holding fact versions")

    pool_size: int = Field(
        default=5, description="Number of pooled DuckDB cursors", ge=1, le=256,
    )

    acquire_timeout_seconds: float = Field(
        default=30.0, description="Max seconds to wait for a pooled connection", gt=0,
    )

    adapter_page_size: int = Field(
        default=500,
        description="Items fetched per backing-store range query",
        ge=1,
        le=100_000,
    )

    max_retries: int = Field(
        default=3, description="Transport retries for transient DuckDB errors", ge=0, le=10,
    )

    retry_initial_delay: float = Field(
        default=0.05, description="Initial retry delay in seconds", ge=0,
    )

    retry_max_delay: float = Field(default=2.0, description="Maximum retry delay in seconds", ge=0)

    memory_limit: Optional[str] = Field(
        default=None, description="DuckDB memory limit, e.g. '1GB' (None = DuckDB default)",
    )

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """Table name is interpolated into SQL, so it must be a plain identifier."""
        v = v.strip()
        if not _IDENTIFIER.match(v):
            raise ValueError("table_name must be a SQL identifier ([A-Za-z_][A-Za-z0-9_]*)")
        return v

    @field_validator("database")
    @classmethod
    def validate_database(cls, v: str) -> str:
        """Ensure database path is not empty."""
        if not v or not v.strip():
            raise ValueError("database cannot be empty")
        return v.strip()

    @field_validator("memory_limit")
    @classmethod
    def validate_memory_limit(cls, v: Optional[str]) -> Optional[str]:
        """Memory limit is interpolated into a SET statement."""
        if v is None:
            return None
        v = v.strip()
        if not _MEMORY_LIMIT.match(v):
            raise ValueError("memory_limit must look like '512MB' or '1.5GB'")
        return v


class ObservabilityConfig(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NOTABLY_OBSERVABILITY_", case_sensitive=False, extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    json_logs: bool = Field(default=False, description="Emit JSON logs instead of console format")

    enable_metrics: bool = Field(default=True, description="Enable Prometheus metrics collection")


class NotablyConfig(BaseSettings):
    """Main configuration.

    Aggregates all sub-configurations into a single config object.
    Automatically loads from environment variables with NOTABLY_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTABLY_",
        case_sensitive=False,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    environment: Literal["local", "test", "staging", "production"] = Field(
        default="local", description="Deployment environment",
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# Import this in other modules: from notably.common.config import config
config = NotablyConfig()
