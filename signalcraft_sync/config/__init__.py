"""Configuration package for signalcraft-sync."""

from .models import (
    ApiConfig,
    AuditConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    ReconcilerConfig,
    StateConfig,
    SyncConfig,
)
from .loader import ConfigLoader, config_from_env, find_config_file, load_config_from_dict

__all__ = [
    "ApiConfig",
    "AuditConfig",
    "ConfigLoader",
    "LogFormat",
    "LoggingConfig",
    "LogLevel",
    "ReconcilerConfig",
    "StateConfig",
    "SyncConfig",
    "config_from_env",
    "find_config_file",
    "load_config_from_dict",
]
