"""
Configuration management for DocBridge.

All configuration is done via environment variables. This module provides
typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST choose an explicit store backend

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StorageConfig:
    """Document store configuration.

    Attributes:
        backend: Which store backend to use
        sqlite_path: Database file for the SQLite backend
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.MEMORY
    sqlite_path: str = "/var/lib/docbridge/docbridge.db"
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("DOCBRIDGE_STORE", "memory").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid DOCBRIDGE_STORE '{backend_str}'. Must be one of: memory, sqlite"
            )
        return cls(
            backend=backend,
            sqlite_path=os.getenv("DOCBRIDGE_SQLITE_PATH", "/var/lib/docbridge/docbridge.db"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class RunnerConfig:
    """Function runner configuration.

    Attributes:
        function_timeout_s: Default timeout applied by execute() (0 disables)
        slow_call_ms: Invocations slower than this are logged as warnings
    """

    function_timeout_s: float = 0.0
    slow_call_ms: int = 1000

    @classmethod
    def from_env(cls) -> RunnerConfig:
        """Load configuration from environment variables."""
        return cls(
            function_timeout_s=float(os.getenv("DOCBRIDGE_FUNCTION_TIMEOUT_S", "0")),
            slow_call_ms=int(os.getenv("DOCBRIDGE_SLOW_CALL_MS", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class DocBridgeConfig:
    """Complete configuration.

    Attributes:
        storage: Document store configuration
        runner: Function runner configuration
        observability: Logging configuration
        schema_path: YAML/JSON schema document to load at startup
        functions_module: Importable module whose registered functions are served
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    schema_path: str | None = None
    functions_module: str | None = None

    @classmethod
    def from_env(cls) -> DocBridgeConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            runner=RunnerConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
            schema_path=os.getenv("DOCBRIDGE_SCHEMA") or None,
            functions_module=os.getenv("DOCBRIDGE_FUNCTIONS") or None,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.backend == StoreBackend.SQLITE:
            if not self.storage.sqlite_path or self.storage.sqlite_path == ":memory:":
                raise ValueError("DOCBRIDGE_SQLITE_PATH must name a file when DOCBRIDGE_STORE=sqlite")
            directory = os.path.dirname(self.storage.sqlite_path)
            if directory and not os.path.exists(directory):
                logger.warning(
                    f"Data directory does not exist: {directory}. It will be created on connect."
                )
        if self.runner.function_timeout_s < 0:
            raise ValueError("DOCBRIDGE_FUNCTION_TIMEOUT_S must not be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "DocBridge configuration loaded",
            extra={
                "store": self.storage.backend.value,
                "sqlite_path": self.storage.sqlite_path
                if self.storage.backend == StoreBackend.SQLITE
                else None,
                "schema_path": self.schema_path,
                "functions_module": self.functions_module,
                "function_timeout_s": self.runner.function_timeout_s,
                "log_level": self.observability.log_level,
            },
        )
