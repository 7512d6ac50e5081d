"""Input validation and sanitization utilities."""

import re
from typing import Any, List, Optional
from urllib.parse import urlparse


def sanitize_log_input(data: Any) -> Any:
    """Sanitize data before logging to prevent log injection attacks.

    Args:
        data: Data to be logged (string, dict, list, or other types)

    Returns:
        Sanitized data safe for logging
    """
    if data is None:
        return None

    if isinstance(data, str):
        # Escape characters that could forge extra log lines
        sanitized = data.replace('\n', '\\n').replace('\r', '\\r')
        sanitized = sanitized.replace('\t', '\\t')

        # Remove ANSI escape sequences that could be used to manipulate terminal output
        ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')
        sanitized = ansi_escape.sub('', sanitized)

        # Truncate extremely long strings to prevent log flooding
        if len(sanitized) > 1000:
            sanitized = sanitized[:997] + "..."

        return sanitized

    elif isinstance(data, dict):
        return {key: sanitize_log_input(value) for key, value in data.items()}

    elif isinstance(data, list):
        return [sanitize_log_input(item) for item in data]

    elif isinstance(data, (bool, int, float)):
        return data

    else:
        # For other types, convert to string and sanitize
        return sanitize_log_input(str(data))


def validate_email(email: str) -> bool:
    """Validate email address format.

    Args:
        email: Email address to validate

    Returns:
        True if email is valid, False otherwise
    """
    if not isinstance(email, str):
        return False

    # Basic email regex - not RFC 5322 compliant but good enough for invitations
    email_pattern = re.compile(
        r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    )

    return bool(email_pattern.match(email)) and len(email) <= 254


def validate_url(url: str, allowed_schemes: Optional[List[str]] = None) -> bool:
    """Validate URL format and scheme.

    Args:
        url: URL to validate
        allowed_schemes: List of allowed URL schemes (default: ["https", "http"])

    Returns:
        True if URL is valid, False otherwise
    """
    if not isinstance(url, str):
        return False

    if allowed_schemes is None:
        allowed_schemes = ["https", "http"]

    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme.lower() not in [s.lower() for s in allowed_schemes]:
        return False

    if not parsed.netloc:
        return False

    if any(char in url for char in ['"', "'", '<', '>', '`', ' ']):
        return False

    return True


def validate_file_path(file_path: str, allow_relative: bool = True) -> bool:
    """Validate file path for security vulnerabilities.

    Args:
        file_path: File path to validate
        allow_relative: Whether to allow relative paths

    Returns:
        True if file path is safe, False otherwise
    """
    if not isinstance(file_path, str) or not file_path.strip():
        return False

    normalized_path = file_path.strip()

    # Directory traversal and unexpanded substitutions
    dangerous_patterns = ['../', '..\\', '/..', '\\..', '${']
    for pattern in dangerous_patterns:
        if pattern in normalized_path:
            return False

    if '\x00' in normalized_path:
        return False

    if not allow_relative and not (normalized_path.startswith('/') or ':\\' in normalized_path):
        return False

    if len(normalized_path) > 4096:
        return False

    dangerous_chars = ['<', '>', '|', '*', '?', '"']
    if any(char in normalized_path for char in dangerous_chars):
        return False

    return True


def validate_environment_variable_name(var_name: str) -> bool:
    """Validate environment variable name format.

    Args:
        var_name: Environment variable name to validate

    Returns:
        True if variable name is valid, False otherwise
    """
    if not isinstance(var_name, str) or not var_name:
        return False

    # Letters, digits, and underscores only, cannot start with digit
    if not re.match(r'^[A-Za-z_][A-Za-z0-9_]*$', var_name):
        return False

    return len(var_name) <= 255


# Kubernetes-style names, also allowing dots and underscores
_IDENTITY_COMPONENT = re.compile(r'^[A-Za-z0-9]([A-Za-z0-9._-]{0,251}[A-Za-z0-9])?$')


def validate_identity_component(value: str) -> bool:
    """Validate a resource kind, scope or name.

    Args:
        value: Identity component to validate

    Returns:
        True if the component is safe to embed in keys and external IDs
    """
    if not isinstance(value, str):
        return False
    return bool(_IDENTITY_COMPONENT.match(value))
