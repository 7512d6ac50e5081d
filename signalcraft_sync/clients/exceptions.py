"""Exception classes for the SignalCraft client and the reconcile engine."""

from typing import Optional


class APIError(Exception):
    """Base exception for API-related errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code if available
            response_text: Response body text if available
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_text = response_text

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [self.message]
        if self.status_code:
            parts.append(f"Status: {self.status_code}")
        if self.response_text:
            # Truncate response text for readability
            response_preview = self.response_text[:200]
            if len(self.response_text) > 200:
                response_preview += "..."
            parts.append(f"Response: {response_preview}")
        return " | ".join(parts)


class ClientError(APIError):
    """Raised for 4xx client errors."""
    pass


class AuthenticationError(ClientError):
    """Raised when authentication fails (401)."""
    pass


class AuthorizationError(ClientError):
    """Raised when authorization fails (403)."""
    pass


class ResourceNotFoundError(ClientError):
    """Raised when a requested resource is not found (404)."""
    pass


class ConflictError(ClientError):
    """Raised when there's a conflict with the current state (409)."""
    pass


class ServerError(APIError):
    """Raised for 5xx server errors."""
    pass


class NetworkError(APIError):
    """Raised for network-related errors (connect failures, timeouts, unreadable bodies)."""
    pass


class ConfigurationError(Exception):
    """Raised when client configuration is missing or invalid."""
    pass


class SerializationError(Exception):
    """Raised when a structured sub-payload of a desired spec is malformed.

    Retrying cannot help until the spec itself is corrected.
    """

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        """Initialize serialization error.

        Args:
            message: Error message
            field: Name of the offending spec field, if known
        """
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"Invalid {self.field}: {self.message}"
        return self.message


class UnsupportedOperationError(Exception):
    """Raised when a resource kind does not support the requested operation."""
    pass


class SyncError(Exception):
    """Base exception for sync-related errors."""

    def __init__(
        self,
        message: str,
        source_resource_id: Optional[str] = None,
        destination_resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
    ) -> None:
        """Initialize sync error.

        Args:
            message: Error message
            source_resource_id: Identity key of the local resource
            destination_resource_id: Remote ID learned before the failure, if any
            resource_type: Kind of resource being synced
        """
        super().__init__(message)
        self.message = message
        self.source_resource_id = source_resource_id
        self.destination_resource_id = destination_resource_id
        self.resource_type = resource_type


class MembershipSyncError(SyncError):
    """Error while converging a membership sub-collection."""
    pass


class StateError(Exception):
    """Error with desired-state store operations."""
    pass


class StaleResourceError(StateError):
    """Raised when a conditional write finds a newer resource version."""

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version
