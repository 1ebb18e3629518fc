"""
Configuration management for FieldSync.

All configuration comes from environment variables through pydantic-settings.
Each section has its own prefix; ServerConfig aggregates them.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Document every new variable in the section docstring
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

LOG_FORMATS = ("json", "text")


class StorageConfig(BaseSettings):
    """SQLite storage configuration.

    Attributes:
        path: SQLite database file
        wal_mode: Enable SQLite WAL journal mode
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size (negative = KB)
    """

    path: str = Field(default="data/app.db", description="SQLite database file")
    wal_mode: bool = Field(default=True)
    busy_timeout_ms: int = Field(default=5000)
    cache_size_pages: int = Field(default=-64000)

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_DB_")


class SyncConfig(BaseSettings):
    """Delta sync and queue behaviour.

    Attributes:
        page_limit: Maximum rows returned per collection per sync call
        ticket_ttl_days: Default lifetime of client-created tickets
    """

    page_limit: int = Field(default=2000, description="Rows per collection per sync")
    ticket_ttl_days: int = Field(default=7, description="Default ticket lifetime in days")

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_SYNC_")


class HttpConfig(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    cors_origins: list[str] = Field(default=["*"])

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_HTTP_")


class ObservabilityConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_")


class ServerConfig(BaseModel):
    """Complete server configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig(),
            sync=SyncConfig(),
            http=HttpConfig(),
            observability=ObservabilityConfig(),
        )
        config.validate_settings()
        return config

    def validate_settings(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.sync.page_limit <= 0:
            raise ValueError("FIELDSYNC_SYNC_PAGE_LIMIT must be positive")
        if self.sync.ticket_ttl_days <= 0:
            raise ValueError("FIELDSYNC_SYNC_TICKET_TTL_DAYS must be positive")
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid FIELDSYNC_LOG_FORMAT '{self.observability.log_format}'. "
                f"Must be one of: {', '.join(LOG_FORMATS)}"
            )

        db_dir = Path(self.storage.path).parent
        if not db_dir.exists():
            logger.warning(
                f"Database directory does not exist: {db_dir}. It will be created on startup."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": self.storage.path,
                "wal_mode": self.storage.wal_mode,
                "page_limit": self.sync.page_limit,
                "ticket_ttl_days": self.sync.ticket_ttl_days,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
