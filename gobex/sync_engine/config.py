"""
Configuration management for the Gobex sync engine.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - A non-zero pause between retries is always enforced
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep retry settings fixed-delay; tests assert on attempt timing
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncConfig:
    """Sync orchestrator configuration.

    Attributes:
        interval_seconds: Period of the automatic sync timer
        retry_count: Attempts per phase (push or pull) before giving up
        retry_delay_seconds: Fixed pause between two attempts of a phase
        debounce_seconds: Quiet period before a mutation-triggered sync runs
    """

    interval_seconds: float = 120.0  # 2 minutes
    retry_count: int = 3
    retry_delay_seconds: float = 5.0
    debounce_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            interval_seconds=float(os.getenv("SYNC_INTERVAL_SECONDS", "120")),
            retry_count=int(os.getenv("SYNC_RETRY_COUNT", "3")),
            retry_delay_seconds=float(os.getenv("SYNC_RETRY_DELAY_SECONDS", "5")),
            debounce_seconds=float(os.getenv("SYNC_DEBOUNCE_SECONDS", "1")),
        )

    def validate(self) -> None:
        """Validate sync settings.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.interval_seconds <= 0:
            raise ValueError("SYNC_INTERVAL_SECONDS must be positive")
        if self.retry_count < 1:
            raise ValueError("SYNC_RETRY_COUNT must be at least 1")
        if self.retry_delay_seconds <= 0:
            raise ValueError("SYNC_RETRY_DELAY_SECONDS must be positive")
        if self.debounce_seconds < 0:
            raise ValueError("SYNC_DEBOUNCE_SECONDS must not be negative")


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for SQLite databases
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "./gobex-data"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("GOBEX_DATA_DIR", "./gobex-data"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class BackendConfig:
    """Remote sync backend configuration.

    Attributes:
        base_url: Base URL of the sync backend HTTP API
        api_token: Bearer token for the backend (secret)
        timeout_seconds: Per-request timeout
    """

    base_url: str = "http://localhost:8090"
    api_token: str | None = None
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> BackendConfig:
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("SYNC_BACKEND_URL", "http://localhost:8090"),
            api_token=os.getenv("SYNC_BACKEND_TOKEN"),
            timeout_seconds=float(os.getenv("SYNC_BACKEND_TIMEOUT_SECONDS", "15")),
        )


@dataclass(frozen=True)
class OwnerConfig:
    """Distinguished owner account.

    The owner logs in without a license check and works in the owner
    partition, which is never synchronized.

    Attributes:
        username: Owner username
        password: Owner password (secret)
    """

    username: str = "owner"
    password: str | None = None

    @classmethod
    def from_env(cls) -> OwnerConfig:
        """Load configuration from environment variables."""
        return cls(
            username=os.getenv("GOBEX_OWNER_USERNAME", "owner"),
            password=os.getenv("GOBEX_OWNER_PASSWORD"),
        )


@dataclass(frozen=True)
class ConnectivityConfig:
    """Network-state probing configuration.

    Attributes:
        enabled: Whether the connectivity monitor runs
        probe_url: URL fetched to decide online/offline
        probe_interval_seconds: Interval between probes
        probe_timeout_seconds: Timeout of a single probe
    """

    enabled: bool = True
    probe_url: str = "http://localhost:8090/health"
    probe_interval_seconds: float = 30.0
    probe_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> ConnectivityConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("CONNECTIVITY_PROBE_ENABLED", "true").lower() == "true",
            probe_url=os.getenv("CONNECTIVITY_PROBE_URL", "http://localhost:8090/health"),
            probe_interval_seconds=float(os.getenv("CONNECTIVITY_PROBE_INTERVAL_SECONDS", "30")),
            probe_timeout_seconds=float(os.getenv("CONNECTIVITY_PROBE_TIMEOUT_SECONDS", "5")),
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
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        sync: Sync orchestrator configuration
        storage: Local storage configuration
        backend: Remote backend configuration
        owner: Owner account configuration
        connectivity: Network probe configuration
        observability: Logging configuration
    """

    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    owner: OwnerConfig = field(default_factory=OwnerConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Returns:
            EngineConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            sync=SyncConfig.from_env(),
            storage=StorageConfig.from_env(),
            backend=BackendConfig.from_env(),
            owner=OwnerConfig.from_env(),
            connectivity=ConnectivityConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        self.sync.validate()

        if not self.backend.base_url:
            raise ValueError("SYNC_BACKEND_URL is required")
        if self.backend.timeout_seconds <= 0:
            raise ValueError("SYNC_BACKEND_TIMEOUT_SECONDS must be positive")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not self.owner.password:
            logger.warning("GOBEX_OWNER_PASSWORD is not set; owner login is disabled")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "sync_interval_seconds": self.sync.interval_seconds,
                "sync_retry_count": self.sync.retry_count,
                "sync_retry_delay_seconds": self.sync.retry_delay_seconds,
                "backend_url": self.backend.base_url,
                "backend_token_set": self.backend.api_token is not None,
                "data_dir": self.storage.data_dir,
                "connectivity_probe": self.connectivity.probe_url
                if self.connectivity.enabled
                else None,
                "log_level": self.observability.log_level,
            },
        )
