"""Security utilities for input validation and sanitization."""

from .validation import (
    sanitize_log_input,
    validate_email,
    validate_file_path,
    validate_identity_component,
    validate_url,
)

__all__ = [
    "sanitize_log_input",
    "validate_email",
    "validate_file_path",
    "validate_identity_component",
    "validate_url",
]
