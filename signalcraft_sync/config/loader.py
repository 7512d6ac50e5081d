"""Configuration loader with YAML parsing and environment variable substitution."""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from signalcraft_sync.clients.exceptions import ConfigurationError
from signalcraft_sync.config.models import API_KEY_ENV, API_URL_ENV, SyncConfig
from signalcraft_sync.security.validation import (
    sanitize_log_input,
    validate_environment_variable_name,
)


class SecurityError(ConfigurationError):
    """Raised when security validation of the configuration fails."""
    pass


class EnvironmentVariableError(ConfigurationError):
    """Raised when environment variable substitution fails."""
    pass


# Allowlist of environment variables that may be substituted into config files
ALLOWED_ENV_VARS: Set[str] = {
    API_URL_ENV,
    API_KEY_ENV,
    "SIGNALCRAFT_TIMEOUT_SECONDS",
    "SIGNALCRAFT_RATE_LIMIT_PER_MINUTE",
    "SIGNALCRAFT_RETRY_INTERVAL_SECONDS",
    "SIGNALCRAFT_POLL_INTERVAL_SECONDS",
    "SIGNALCRAFT_MAX_CONCURRENT",
    "SIGNALCRAFT_STATE_FILE",
    "SIGNALCRAFT_AUDIT_DIR",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "HOME",
    "TMPDIR",
}

CONFIG_FILENAMES = [
    "signalcraft-sync.yaml",
    "signalcraft-sync.yml",
]


def _validate_env_var_name(var_name: str) -> None:
    """Validate that an environment variable is allowed.

    Raises:
        SecurityError: If the variable name is malformed or not allowlisted
    """
    if not validate_environment_variable_name(var_name):
        raise SecurityError(
            f"Invalid environment variable name format: '{sanitize_log_input(var_name)}'"
        )

    if var_name not in ALLOWED_ENV_VARS:
        raise SecurityError(
            f"Unauthorized environment variable '{sanitize_log_input(var_name)}' is not in allowlist. "
            f"Allowed variables: {sorted(ALLOWED_ENV_VARS)}"
        )


def _sanitize_env_value(value: str) -> str:
    """Reject values that would change the YAML document structure.

    Raises:
        SecurityError: If the value contains a newline or a YAML control sequence
    """
    sanitized = value.strip()
    for char in ['\n', '\r', '${', '#{', '`']:
        if char in sanitized:
            raise SecurityError(
                "Environment variable contains a character that is not allowed in substituted values"
            )
    return sanitized


class ConfigLoader:
    """Configuration loader with environment variable substitution."""

    # ${VAR_NAME} or ${VAR_NAME:default_value}
    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*?)(?::([^}]*))?\}')

    def __init__(self, require_env_vars: bool = False) -> None:
        """Initialize the configuration loader.

        Args:
            require_env_vars: Whether a missing variable without default is an error.
                When False the value becomes empty, which the reconciler later
                reports as a per-object configuration error.
        """
        self.require_env_vars = require_env_vars

    def load_config(self, config_path: Path) -> SyncConfig:
        """Load and validate configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Validated SyncConfig instance

        Raises:
            ConfigurationError: If loading or validation fails
        """
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            raw_content = config_path.read_text(encoding='utf-8')
            substituted_content = self._substitute_env_vars(raw_content)
            config_data = yaml.safe_load(substituted_content) or {}

            if not isinstance(config_data, dict):
                raise ConfigurationError("Configuration file must contain a YAML object")

            return SyncConfig.model_validate(config_data)

        except ConfigurationError:
            raise
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}") from e
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}") from e

    def _substitute_env_vars(self, content: str) -> str:
        """Substitute environment variables in the content.

        Supports ``${VAR_NAME}`` and ``${VAR_NAME:default}``.

        Raises:
            SecurityError: If a referenced variable is not allowlisted
            EnvironmentVariableError: If a required variable is missing
        """
        missing_vars: List[str] = []
        security_errors: List[str] = []

        def replace_env_var(match: re.Match) -> str:
            var_name = match.group(1)
            default_value = match.group(2)

            try:
                _validate_env_var_name(var_name)
            except SecurityError as e:
                security_errors.append(str(e))
                return match.group(0)

            env_value = os.getenv(var_name)
            if env_value is not None:
                return _sanitize_env_value(env_value)
            if default_value is not None:
                return _sanitize_env_value(default_value)
            if self.require_env_vars:
                missing_vars.append(var_name)
                return match.group(0)
            return ""

        result = self.ENV_VAR_PATTERN.sub(replace_env_var, content)

        if security_errors:
            raise SecurityError(f"Security validation failed: {'; '.join(security_errors)}")

        if missing_vars:
            raise EnvironmentVariableError(
                f"Required environment variables are not set: {', '.join(sorted(set(missing_vars)))}"
            )

        return result

    def validate_config_file(self, config_path: Path) -> tuple[bool, Optional[str]]:
        """Validate configuration file without keeping the result.

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            self.load_config(config_path)
            return True, None
        except ConfigurationError as e:
            return False, str(e)


def load_config_from_dict(config_data: Dict[str, Any]) -> SyncConfig:
    """Load configuration from dictionary (for testing).

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return SyncConfig.model_validate(config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def config_from_env(load_env_file: bool = True) -> SyncConfig:
    """Create configuration from environment variables.

    Missing URL or key is not an error here; see :class:`ApiConfig`.

    Args:
        load_env_file: Whether to read a ``.env`` file first

    Raises:
        ConfigurationError: If a present value fails validation
    """
    if load_env_file:
        load_dotenv()

    api: Dict[str, Any] = {
        "api_url": os.getenv(API_URL_ENV),
        "api_key": os.getenv(API_KEY_ENV),
    }
    reconciler: Dict[str, Any] = {}
    env_fields = [
        ("SIGNALCRAFT_TIMEOUT_SECONDS", api, "timeout_seconds"),
        ("SIGNALCRAFT_RATE_LIMIT_PER_MINUTE", api, "rate_limit_per_minute"),
        ("SIGNALCRAFT_RETRY_INTERVAL_SECONDS", reconciler, "retry_interval_seconds"),
        ("SIGNALCRAFT_POLL_INTERVAL_SECONDS", reconciler, "poll_interval_seconds"),
        ("SIGNALCRAFT_MAX_CONCURRENT", reconciler, "max_concurrent"),
    ]
    for var_name, target, field in env_fields:
        value = os.getenv(var_name)
        if value:
            target[field] = value

    config_data: Dict[str, Any] = {
        "api": api,
        "reconciler": reconciler,
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "format": os.getenv("LOG_FORMAT", "json"),
        },
    }
    if os.getenv("SIGNALCRAFT_STATE_FILE"):
        config_data["state"] = {"state_file": os.getenv("SIGNALCRAFT_STATE_FILE")}
    if os.getenv("SIGNALCRAFT_AUDIT_DIR"):
        config_data["audit"] = {"audit_dir": os.getenv("SIGNALCRAFT_AUDIT_DIR")}

    return load_config_from_dict(config_data)


def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find configuration file by searching up the directory tree.

    Args:
        start_path: Directory to start search from (defaults to current directory)

    Returns:
        Path to configuration file if found, None otherwise
    """
    current_path = (start_path or Path.cwd()).resolve()

    while True:
        for filename in CONFIG_FILENAMES:
            config_path = current_path / filename
            if config_path.exists():
                return config_path

        parent = current_path.parent
        if parent == current_path:
            break
        current_path = parent

    return None
