"""
Application settings loaded from environment variables.

All variables are prefixed with DBOPERATOR_ (e.g. DBOPERATOR_LOG_LEVEL=DEBUG)
and may also be provided through a local .env file.
"""
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controller configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DBOPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "dboperator"
    app_version: str = "0.1.0"
    environment: str = Field(default="development", description="development, testing or production")
    log_level: str = "INFO"

    # Platform (Kubernetes)
    kubeconfig_path: Optional[str] = None
    in_cluster: bool = False
    watch_namespace: Optional[str] = Field(
        default=None, description="Namespace to watch, all namespaces when unset"
    )
    api_group: str = "db.platform.io"
    api_version: str = "v1"
    api_plural: str = "databases"
    finalizer: str = "db.platform.io/finalizer"

    # Reconciliation loop
    workers: int = Field(default=4, ge=1, le=64)
    resync_period_seconds: int = 300
    reconcile_timeout_seconds: float = 120.0
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0
    restore_poll_seconds: int = 30
    rotation_poll_seconds: int = 30

    # Credentials
    password_length: int = 32
    rotation_stuck_threshold_seconds: int = 3600
    default_timezone: str = "UTC"

    # Leader election (disabled when redis_url is unset)
    redis_url: Optional[str] = None
    leader_lease_seconds: int = 30
    instance_id: Optional[str] = None

    # External vault
    consul_default_address: str = "http://consul.consul.svc.cluster.local:8500"
    vault_timeout_seconds: float = 10.0

    # Metrics (no server when unset)
    metrics_port: Optional[int] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate log level."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


settings = Settings()
