"""
Configuration management for TierVault.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never change COLD_PREFIX on a deployment that already archived records
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class ColdBackend(Enum):
    """Supported cold store backends."""

    S3 = "s3"
    LOCAL = "local"


@dataclass(frozen=True)
class HotStoreConfig:
    """Hot (transactional) store configuration.

    Attributes:
        data_dir: Directory holding the SQLite database
        db_name: Database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/tiervault"
    db_name: str = "hot.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> HotStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/tiervault"),
            db_name=os.getenv("HOT_DB_NAME", "hot.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ControlStoreConfig:
    """Control database (cursor positions, task ledger, dead letters).

    Attributes:
        db_path: Path of the control SQLite file; defaults to DATA_DIR/control.db
    """

    db_path: str = "/var/lib/tiervault/control.db"

    @classmethod
    def from_env(cls) -> ControlStoreConfig:
        """Load configuration from environment variables."""
        default = os.path.join(os.getenv("DATA_DIR", "/var/lib/tiervault"), "control.db")
        return cls(db_path=os.getenv("CONTROL_DB_PATH", default))


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for the cold store.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        prefix: Key prefix for archived records
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "tiervault-cold"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    prefix: str = "records"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "tiervault-cold"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            prefix=os.getenv("COLD_PREFIX", "records"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class LocalColdConfig:
    """Filesystem cold store configuration (development and single-node).

    Attributes:
        root_dir: Directory the key hierarchy is created under
        prefix: Key prefix for archived records
    """

    root_dir: str = "/var/lib/tiervault/cold"
    prefix: str = "records"

    @classmethod
    def from_env(cls) -> LocalColdConfig:
        """Load configuration from environment variables."""
        return cls(
            root_dir=os.getenv("COLD_ROOT_DIR", "/var/lib/tiervault/cold"),
            prefix=os.getenv("COLD_PREFIX", "records"),
        )


@dataclass(frozen=True)
class ArchivalConfig:
    """Archival loop configuration.

    Attributes:
        enabled: Whether the archival loop runs
        age_threshold_days: Minimum record age before it moves to cold
        batch_size: Maximum change-feed entries per batch
        max_workers: Concurrent archival workers
        max_inflight_hot_ops: Cap on concurrent hot-store calls (backpressure)
        poll_interval_seconds: Wait between empty change-feed polls
        sweep_interval_seconds: Interval of the age sweep over the hot store
        consumer_name: Name under which the cursor position is persisted
    """

    enabled: bool = True
    age_threshold_days: float = 90.0
    batch_size: int = 100
    max_workers: int = 8
    max_inflight_hot_ops: int = 4
    poll_interval_seconds: float = 5.0
    sweep_interval_seconds: float = 3600.0
    consumer_name: str = "tiervault-archiver"

    @property
    def age_threshold_ms(self) -> int:
        return int(self.age_threshold_days * 24 * 3600 * 1000)

    @classmethod
    def from_env(cls) -> ArchivalConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("ARCHIVAL_ENABLED", "true"),
            age_threshold_days=float(os.getenv("ARCHIVAL_AGE_DAYS", "90")),
            batch_size=int(os.getenv("ARCHIVAL_BATCH_SIZE", "100")),
            max_workers=int(os.getenv("ARCHIVAL_MAX_WORKERS", "8")),
            max_inflight_hot_ops=int(os.getenv("ARCHIVAL_MAX_INFLIGHT_HOT_OPS", "4")),
            poll_interval_seconds=float(os.getenv("ARCHIVAL_POLL_SECONDS", "5")),
            sweep_interval_seconds=float(os.getenv("ARCHIVAL_SWEEP_SECONDS", "3600")),
            consumer_name=os.getenv("ARCHIVAL_CONSUMER_NAME", "tiervault-archiver"),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy configuration.

    Attributes:
        max_attempts: Maximum attempts per archival step
        base_delay_ms: First backoff delay
        max_delay_ms: Backoff ceiling
        max_elapsed_ms: Total time budget per operation
        read_max_attempts: Maximum attempts per read probe
    """

    max_attempts: int = 5
    base_delay_ms: int = 100
    max_delay_ms: int = 10000
    max_elapsed_ms: int = 60000
    read_max_attempts: int = 2

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Load configuration from environment variables."""
        return cls(
            max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "5")),
            base_delay_ms=int(os.getenv("RETRY_BASE_DELAY_MS", "100")),
            max_delay_ms=int(os.getenv("RETRY_MAX_DELAY_MS", "10000")),
            max_elapsed_ms=int(os.getenv("RETRY_MAX_ELAPSED_MS", "60000")),
            read_max_attempts=int(os.getenv("READ_MAX_ATTEMPTS", "2")),
        )


@dataclass(frozen=True)
class ReadConfig:
    """Read router timeout budgets.

    Attributes:
        hot_timeout_ms: Budget for the hot-store probe
        cold_timeout_ms: Budget for the cold-store probe
    """

    hot_timeout_ms: int = 500
    cold_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> ReadConfig:
        """Load configuration from environment variables."""
        return cls(
            hot_timeout_ms=int(os.getenv("READ_HOT_TIMEOUT_MS", "500")),
            cold_timeout_ms=int(os.getenv("READ_COLD_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ReconciliationConfig:
    """Reconciliation sweep configuration.

    Attributes:
        enabled: Whether the sweep runs
        interval_seconds: Interval between sweeps
        staleness_seconds: Age of a non-terminal task before it is re-driven
        batch_size: Maximum tasks re-driven per sweep
    """

    enabled: bool = True
    interval_seconds: float = 300.0
    staleness_seconds: float = 600.0
    batch_size: int = 500

    @classmethod
    def from_env(cls) -> ReconciliationConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("RECONCILE_ENABLED", "true"),
            interval_seconds=float(os.getenv("RECONCILE_INTERVAL_SECONDS", "300")),
            staleness_seconds=float(os.getenv("RECONCILE_STALENESS_SECONDS", "600")),
            batch_size=int(os.getenv("RECONCILE_BATCH_SIZE", "500")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP read API configuration."""

    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
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

    This aggregates all configuration sections and provides validation.
    """

    cold_backend: ColdBackend = ColdBackend.S3
    hot: HotStoreConfig = field(default_factory=HotStoreConfig)
    control: ControlStoreConfig = field(default_factory=ControlStoreConfig)
    s3: S3Config = field(default_factory=S3Config)
    local_cold: LocalColdConfig = field(default_factory=LocalColdConfig)
    archival: ArchivalConfig = field(default_factory=ArchivalConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    read: ReadConfig = field(default_factory=ReadConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def cold_prefix(self) -> str:
        if self.cold_backend == ColdBackend.S3:
            return self.s3.prefix
        return self.local_cold.prefix

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("COLD_BACKEND", "s3").lower()
        try:
            cold_backend = ColdBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid COLD_BACKEND '{backend_str}'. Must be one of: s3, local")

        config = cls(
            cold_backend=cold_backend,
            hot=HotStoreConfig.from_env(),
            control=ControlStoreConfig.from_env(),
            s3=S3Config.from_env(),
            local_cold=LocalColdConfig.from_env(),
            archival=ArchivalConfig.from_env(),
            retry=RetryConfig.from_env(),
            read=ReadConfig.from_env(),
            reconciliation=ReconciliationConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.cold_backend == ColdBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when COLD_BACKEND=s3")

        if self.archival.max_workers < 1:
            raise ValueError("ARCHIVAL_MAX_WORKERS must be at least 1")
        if self.archival.max_inflight_hot_ops < 1:
            raise ValueError("ARCHIVAL_MAX_INFLIGHT_HOT_OPS must be at least 1")
        if self.archival.batch_size < 1:
            raise ValueError("ARCHIVAL_BATCH_SIZE must be at least 1")
        if self.archival.age_threshold_days < 0:
            raise ValueError("ARCHIVAL_AGE_DAYS must not be negative")

        if self.retry.max_attempts < 1 or self.retry.read_max_attempts < 1:
            raise ValueError("RETRY_MAX_ATTEMPTS and READ_MAX_ATTEMPTS must be at least 1")

        if self.read.cold_timeout_ms < self.read.hot_timeout_ms:
            raise ValueError("READ_COLD_TIMEOUT_MS must not be shorter than READ_HOT_TIMEOUT_MS")

        if not os.path.exists(self.hot.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.hot.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "cold_backend": self.cold_backend.value,
                "s3_bucket": self.s3.bucket if self.cold_backend == ColdBackend.S3 else None,
                "cold_root_dir": self.local_cold.root_dir
                if self.cold_backend == ColdBackend.LOCAL
                else None,
                "cold_prefix": self.cold_prefix,
                "data_dir": self.hot.data_dir,
                "control_db": self.control.db_path,
                "archival_enabled": self.archival.enabled,
                "age_threshold_days": self.archival.age_threshold_days,
                "max_workers": self.archival.max_workers,
                "reconciliation_enabled": self.reconciliation.enabled,
                "http_port": self.http.port,
                "log_level": self.observability.log_level,
            },
        )
