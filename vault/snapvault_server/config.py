"""
Configuration management for SnapVault Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for the bucket and backup root
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = ("Cab", "Customer", "Driver", "Ride")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str) -> tuple[str, ...] | None:
    raw = os.getenv(name)
    if not raw:
        return None
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class StorageBackend(Enum):
    """Supported object storage backends."""

    S3 = "s3"
    MEMORY = "memory"


class StoreBackend(Enum):
    """Supported primary data store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for the remote copy of every backup.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        backup_prefix: Key prefix for backups (keys are <prefix>/<id>/<file>)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "snapvault-backups"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    backup_prefix: str = "backups"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "snapvault-backups"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            backup_prefix=os.getenv("S3_BACKUP_PREFIX", "backups"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Backup storage configuration.

    Attributes:
        backend: Object storage backend for the remote copy
        backup_root: Local directory holding one sub-directory per backup
    """

    backend: StorageBackend = StorageBackend.S3
    backup_root: str = "./backups"

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORAGE_BACKEND", "s3").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ConfigurationError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: s3, memory",
                setting="STORAGE_BACKEND",
            )
        return cls(
            backend=backend,
            backup_root=os.getenv("BACKUP_ROOT", "./backups"),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Primary data store configuration.

    Attributes:
        backend: Which document store implementation to use
        data_dir: Directory for the SQLite document database
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL mode enabled
    """

    backend: StoreBackend = StoreBackend.SQLITE
    data_dir: str = "./data"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORE_BACKEND", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ConfigurationError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: sqlite, memory",
                setting="STORE_BACKEND",
            )
        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "./data"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
        )


@dataclass(frozen=True)
class BackupConfig:
    """Backup engine configuration.

    Attributes:
        collections: The fixed set of known collection names
        max_concurrent: Maximum collections processed at the same time
    """

    collections: tuple[str, ...] = DEFAULT_COLLECTIONS
    max_concurrent: int = 4

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(
            collections=_env_list("BACKUP_COLLECTIONS_KNOWN") or DEFAULT_COLLECTIONS,
            max_concurrent=int(os.getenv("BACKUP_MAX_CONCURRENT", "4")),
        )


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention rule for stored backups.

    Attributes:
        days: Backups created more than this many days ago are pruned
        max_count: At most this many backups inside the age window are kept
    """

    days: int = 7
    max_count: int = 10

    def to_dict(self) -> dict[str, int]:
        return {"days": self.days, "max_count": self.max_count}


@dataclass(frozen=True)
class SchedulerConfig:
    """Backup scheduler configuration.

    Attributes:
        enabled: Whether the scheduler fires at all
        schedule: Five-field cron expression
        collections: Collections to back up (None = all known)
        retention: Retention policy applied after every scheduled run
        delete_remote: Whether pruning also deletes the remote copy
        timezone: Timezone the cron expression is evaluated in
    """

    enabled: bool = False
    schedule: str = "0 2 * * *"
    collections: tuple[str, ...] | None = None
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    delete_remote: bool = True
    timezone: str = "UTC"

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("BACKUP_SCHEDULER_ENABLED", "false"),
            schedule=os.getenv("BACKUP_SCHEDULE", "0 2 * * *"),
            collections=_env_list("BACKUP_COLLECTIONS"),
            retention=RetentionPolicy(
                days=int(os.getenv("BACKUP_RETENTION_DAYS", "7")),
                max_count=int(os.getenv("BACKUP_MAX_COUNT", "10")),
            ),
            delete_remote=_env_bool("BACKUP_PRUNE_REMOTE", "true"),
            timezone=os.getenv("BACKUP_SCHEDULE_TIMEZONE", "UTC"),
        )

    def merged(self, **changes: object) -> SchedulerConfig:
        """Return a copy with the given fields replaced.

        A ``retention`` value may be a RetentionPolicy or a dict with
        ``days`` and/or ``max_count``; missing keys keep their current value.
        """
        retention = changes.get("retention")
        if isinstance(retention, dict):
            changes["retention"] = dataclasses.replace(self.retention, **retention)
        if changes.get("collections") is not None:
            changes["collections"] = tuple(changes["collections"])  # type: ignore[arg-type]
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "schedule": self.schedule,
            "collections": list(self.collections) if self.collections is not None else None,
            "retention": self.retention.to_dict(),
            "delete_remote": self.delete_remote,
            "timezone": self.timezone,
        }


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API configuration.

    Attributes:
        enabled: Whether to serve the HTTP API
        host: Bind host
        port: Bind port
    """

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8081

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("HTTP_ENABLED", "true"),
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
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

    Attributes:
        s3: S3 configuration
        storage: Backup storage configuration
        store: Primary data store configuration
        backup: Backup engine configuration
        scheduler: Scheduler configuration
        http: HTTP API configuration
        observability: Logging configuration
    """

    s3: S3Config = field(default_factory=S3Config)
    storage: StorageConfig = field(default_factory=StorageConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ConfigurationError: If required configuration is missing or invalid.
        """
        try:
            config = cls(
                s3=S3Config.from_env(),
                storage=StorageConfig.from_env(),
                store=StoreConfig.from_env(),
                backup=BackupConfig.from_env(),
                scheduler=SchedulerConfig.from_env(),
                http=HttpConfig.from_env(),
                observability=ObservabilityConfig.from_env(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if self.storage.backend == StorageBackend.S3:
            if not self.s3.bucket:
                raise ConfigurationError(
                    "S3_BUCKET is required when STORAGE_BACKEND=s3", setting="S3_BUCKET"
                )
            if bool(self.s3.access_key_id) != bool(self.s3.secret_access_key):
                raise ConfigurationError(
                    "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set together",
                    setting="AWS_SECRET_ACCESS_KEY",
                )

        if not self.backup.collections:
            raise ConfigurationError(
                "At least one collection must be known", setting="BACKUP_COLLECTIONS_KNOWN"
            )
        if self.backup.max_concurrent < 1:
            raise ConfigurationError(
                "BACKUP_MAX_CONCURRENT must be at least 1", setting="BACKUP_MAX_CONCURRENT"
            )

        retention = self.scheduler.retention
        if retention.days < 0 or retention.max_count < 0:
            raise ConfigurationError(
                "Retention days and max count must not be negative",
                setting="BACKUP_RETENTION_DAYS",
            )

        if self.scheduler.enabled:
            from .scheduler import validate_schedule

            validate_schedule(self.scheduler.schedule, self.scheduler.timezone)

        if not os.path.exists(self.storage.backup_root):
            logger.warning(
                f"Backup root does not exist: {self.storage.backup_root}. "
                "It will be created on first backup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": self.storage.backend.value,
                "backup_root": self.storage.backup_root,
                "s3_bucket": self.s3.bucket
                if self.storage.backend == StorageBackend.S3
                else None,
                "s3_endpoint": self.s3.endpoint_url,
                "store_backend": self.store.backend.value,
                "data_dir": self.store.data_dir,
                "collections": list(self.backup.collections),
                "scheduler_enabled": self.scheduler.enabled,
                "schedule": self.scheduler.schedule,
                "http_enabled": self.http.enabled,
                "log_level": self.observability.log_level,
            },
        )
