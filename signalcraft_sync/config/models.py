"""Configuration models for signalcraft-sync."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, SecretStr, field_validator

from signalcraft_sync.security.validation import validate_url

API_URL_ENV = "SIGNALCRAFT_API_URL"
API_KEY_ENV = "SIGNALCRAFT_API_KEY"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Log output formats."""
    JSON = "json"
    TEXT = "text"


class ApiConfig(BaseModel):
    """SignalCraft API configuration.

    URL and key are optional: a missing value is reported per object as an
    error status and the process keeps running until it is supplied.
    """

    api_url: str | None = Field(
        None,
        description="SignalCraft API base URL"
    )
    api_key: SecretStr | None = Field(
        None,
        description="SignalCraft API key sent as a bearer token"
    )
    timeout_seconds: float = Field(
        20,
        description="Timeout for SignalCraft API calls in seconds",
        gt=0
    )
    rate_limit_per_minute: int | None = Field(
        600,
        description="Client-side cap on API calls per minute (null disables it)",
        ge=1
    )
    user_agent: str | None = Field(
        None,
        description="Custom User-Agent header"
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str | None) -> str | None:
        """Normalize and validate the API URL."""
        if v is None or not v.strip():
            return None
        v = v.strip().rstrip("/")
        if not validate_url(v, allowed_schemes=["http", "https"]):
            raise ValueError(f"Invalid API URL: {v}. Only http(s) URLs are allowed.")
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: SecretStr | None) -> SecretStr | None:
        """Treat a blank key as absent."""
        if v is None or not v.get_secret_value().strip():
            return None
        return SecretStr(v.get_secret_value().strip())

    def missing_fields(self) -> List[str]:
        """Names of the environment variables whose values are still missing."""
        missing = []
        if not self.api_url:
            missing.append(API_URL_ENV)
        if self.api_key is None:
            missing.append(API_KEY_ENV)
        return missing

    def missing_message(self) -> str:
        """Human-readable configuration error for status records."""
        return f"Missing {' or '.join(self.missing_fields())}"

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


class ReconcilerConfig(BaseModel):
    """Reconcile loop behavior."""

    retry_interval_seconds: float = Field(
        60.0,
        description="Fixed delay before retrying a failed reconciliation",
        gt=0
    )
    poll_interval_seconds: float = Field(
        10.0,
        description="How often the controller polls the desired-state store",
        gt=0
    )
    max_concurrent: int = Field(
        10,
        description="Maximum number of objects reconciled in parallel",
        ge=1,
        le=100
    )
    resync_synced: bool = Field(
        False,
        description="Periodically re-send objects whose observed generation is already current"
    )
    resync_interval_seconds: float = Field(
        300.0,
        description="Delay before a synced object is re-sent when resync_synced is set",
        gt=0
    )
    finalizer: str = Field(
        "signalcraft.io/finalizer",
        description="Finalizer marker owned by this controller",
        min_length=1
    )


class LoggingConfig(BaseModel):
    """Structured logging configuration."""

    level: LogLevel = Field(
        LogLevel.INFO,
        description="Logging level"
    )
    format: LogFormat = Field(
        LogFormat.JSON,
        description="Log output format"
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


class AuditConfig(BaseModel):
    """Audit trail configuration."""

    enabled: bool = Field(
        True,
        description="Whether audit events are written"
    )
    audit_dir: Path = Field(
        Path("./logs/audit"),
        description="Directory for JSON-lines audit files"
    )


class StateConfig(BaseModel):
    """Desired-state store configuration."""

    state_file: Path = Field(
        Path("./state/resources.json"),
        description="File holding managed resources, their finalizers and status"
    )
    enable_state_backup: bool = Field(
        True,
        description="Keep a .backup copy of the state file before each write"
    )


class SyncConfig(BaseModel):
    """Main signalcraft-sync configuration."""

    api: ApiConfig = Field(
        default_factory=ApiConfig,
        description="SignalCraft API configuration"
    )
    reconciler: ReconcilerConfig = Field(
        default_factory=ReconcilerConfig,
        description="Reconcile loop configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration"
    )
    audit: AuditConfig = Field(
        default_factory=AuditConfig,
        description="Audit configuration"
    )
    state: StateConfig = Field(
        default_factory=StateConfig,
        description="State store configuration"
    )
