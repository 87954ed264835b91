"""
Configuration management for SyncDB Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The record store never reads the environment; values are injected
    - Invalid settings fail at startup, not on the first request

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep PORT and STORAGE_PATH: existing deployments mount volumes by them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_BYTES = 64 * 1024 * 1024


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class StorageBackendKind(Enum):
    """Supported storage backends."""

    MEMORY = "memory"
    FILES = "files"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed origins, "*" allows any
        max_body_bytes: Largest accepted request body
    """

    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: tuple[str, ...] = ("*",)
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", str(DEFAULT_MAX_BODY_BYTES))),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Record storage configuration.

    Attributes:
        backend: Which storage backend to use
        storage_path: Root directory for the file and SQLite backends
        sqlite_wal_mode: SQLite WAL mode enabled
        sqlite_busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackendKind = StorageBackendKind.FILES
    storage_path: str = "./data"
    sqlite_wal_mode: bool = True
    sqlite_busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If STORAGE_BACKEND is not a known backend
        """
        backend_str = os.getenv("STORAGE_BACKEND", "files").lower()
        try:
            backend = StorageBackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: memory, files, sqlite"
            )

        return cls(
            backend=backend,
            storage_path=os.getenv("STORAGE_PATH", "./data"),
            sqlite_wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            sqlite_busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class FeedConfig:
    """Change-feed paging configuration.

    Attributes:
        default_page_size: Page size when the client sends none
        max_page_size: Upper clamp for requested page sizes
    """

    default_page_size: int = 100
    max_page_size: int = 1000

    @classmethod
    def from_env(cls) -> FeedConfig:
        """Load configuration from environment variables."""
        return cls(
            default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "100")),
            max_page_size=int(os.getenv("MAX_PAGE_SIZE", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        http: HTTP server configuration
        storage: Record storage configuration
        feed: Change-feed paging configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            feed=FeedConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 < self.http.port < 65536:
            raise ValueError(f"PORT must be between 1 and 65535, got {self.http.port}")
        if self.http.max_body_bytes < 1:
            raise ValueError("MAX_BODY_BYTES must be at least 1")

        if self.feed.max_page_size < 1:
            raise ValueError("MAX_PAGE_SIZE must be at least 1")
        if not 1 <= self.feed.default_page_size <= self.feed.max_page_size:
            raise ValueError("DEFAULT_PAGE_SIZE must be between 1 and MAX_PAGE_SIZE")

        if self.storage.backend != StorageBackendKind.MEMORY:
            if not self.storage.storage_path:
                raise ValueError(
                    f"STORAGE_PATH is required when STORAGE_BACKEND={self.storage.backend.value}"
                )
            if not os.path.exists(self.storage.storage_path):
                logger.warning(
                    f"Storage directory does not exist: {self.storage.storage_path}. "
                    "It will be created on startup."
                )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "cors_origins": list(self.http.cors_origins),
                "max_body_bytes": self.http.max_body_bytes,
                "storage_backend": self.storage.backend.value,
                "storage_path": self.storage.storage_path
                if self.storage.backend != StorageBackendKind.MEMORY
                else None,
                "default_page_size": self.feed.default_page_size,
                "max_page_size": self.feed.max_page_size,
                "log_level": self.observability.log_level,
            },
        )
