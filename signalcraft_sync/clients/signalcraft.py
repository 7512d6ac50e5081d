"""SignalCraft REST client: turns a request tuple into a classified outcome."""

from typing import Any, Dict, List, Optional, Union

import httpx
import structlog
from asyncio_throttle import Throttler
from pydantic import BaseModel, Field, SecretStr

from signalcraft_sync.clients.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ClientError,
    ConfigurationError,
    ConflictError,
    NetworkError,
    ResourceNotFoundError,
    ServerError,
)
from signalcraft_sync.config.models import ApiConfig
from signalcraft_sync.security.validation import sanitize_log_input, validate_url

logger = structlog.get_logger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


class APIResponse(BaseModel):
    """A successful (2xx) SignalCraft response."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        """Return the body as a mapping, or an empty mapping for other shapes."""
        return self.data if isinstance(self.data, dict) else {}

    def as_list(self) -> List[Any]:
        """Return the body as a list, unwrapping ``{"data": [...]}`` envelopes."""
        if isinstance(self.data, list):
            return self.data
        if isinstance(self.data, dict) and isinstance(self.data.get("data"), list):
            return self.data["data"]
        return []


class SignalCraftClient:
    """Async SignalCraft API client.

    The client performs exactly one HTTP exchange per call: no retries and no
    backoff. Failures are classified into the exception hierarchy in
    :mod:`signalcraft_sync.clients.exceptions` so callers can tell a 404 apart
    from every other rejection.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Union[SecretStr, str],
        timeout_seconds: float = 30,
        rate_limit_per_minute: Optional[int] = 600,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize SignalCraft client.

        Args:
            base_url: SignalCraft API base URL
            api_key: SignalCraft API key
            timeout_seconds: Request timeout in seconds
            rate_limit_per_minute: Client-side request cap, None to disable
            user_agent: Custom user agent string
            transport: Optional httpx transport (tests inject a MockTransport)

        Raises:
            ConfigurationError: If the URL or key is missing or malformed
        """
        if not base_url or not validate_url(base_url, allowed_schemes=["http", "https"]):
            raise ConfigurationError(f"Invalid SignalCraft API URL: {sanitize_log_input(base_url)}")

        secret = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key or "")
        if not secret.get_secret_value().strip():
            raise ConfigurationError("SignalCraft API key cannot be empty")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.rate_limit_per_minute = rate_limit_per_minute
        self._api_key = secret

        headers = {
            "User-Agent": user_agent or self._get_default_user_agent(),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

        self._throttler = (
            Throttler(rate_limit=rate_limit_per_minute, period=60)
            if rate_limit_per_minute
            else None
        )

        # Request tracking for logging and debugging
        self._request_count = 0
        self._error_count = 0

        self._logger = logger.bind(
            client_type=self.__class__.__name__,
            base_url=self.base_url,
        )

    @classmethod
    def from_config(
        cls,
        config: ApiConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SignalCraftClient":
        """Build a client from validated API configuration.

        Raises:
            ConfigurationError: If the configuration lacks a URL or key
        """
        missing = config.missing_fields()
        if missing:
            raise ConfigurationError(config.missing_message())
        return cls(
            base_url=str(config.api_url),
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
            rate_limit_per_minute=config.rate_limit_per_minute,
            user_agent=config.user_agent,
            transport=transport,
        )

    async def __aenter__(self) -> "SignalCraftClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        await self._client.aclose()

    @property
    def request_count(self) -> int:
        return self._request_count

    @property
    def error_count(self) -> int:
        return self._error_count

    def _get_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key.get_secret_value()}"}

    def _get_default_user_agent(self) -> str:
        from signalcraft_sync.version import __version__
        return f"signalcraft-sync/{__version__}"

    async def execute(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        idempotency_key: Optional[str] = None,
    ) -> APIResponse:
        """Issue one request and classify the outcome.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API path relative to the base URL, starting with ``/``
            body: JSON-serializable request body
            idempotency_key: Key sent as ``Idempotency-Key`` on mutating calls

        Returns:
            APIResponse for any 2xx status

        Raises:
            ResourceNotFoundError: On HTTP 404
            ClientError: On any other 4xx
            ServerError: On 5xx
            APIError: On any other non-2xx status
            NetworkError: On transport failures
        """
        if self._throttler is not None:
            async with self._throttler:
                return await self._send(method, path, body, idempotency_key)
        return await self._send(method, path, body, idempotency_key)

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[Any],
        idempotency_key: Optional[str],
    ) -> APIResponse:
        method = method.upper()
        url = f"{self.base_url}/{path.lstrip('/')}"
        request_headers = self._get_auth_headers()
        if idempotency_key:
            request_headers[IDEMPOTENCY_HEADER] = idempotency_key

        self._request_count += 1
        request_id = f"req_{self._request_count}"

        self._logger.debug(
            "Making API request",
            request_id=request_id,
            method=method,
            path=path,
            has_json_data=body is not None,
            idempotency_key=idempotency_key,
        )

        try:
            response = await self._client.request(
                method=method,
                url=url,
                json=body,
                headers=request_headers,
            )
        except httpx.TimeoutException as e:
            self._error_count += 1
            self._logger.warning("API request timed out", request_id=request_id, error=str(e))
            raise NetworkError(f"Request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            self._error_count += 1
            self._logger.warning("Network error during API request", request_id=request_id, error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        self._logger.debug(
            "API request completed",
            request_id=request_id,
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            return APIResponse(
                status_code=response.status_code,
                data=self._decode_body(response),
                headers=dict(response.headers),
            )

        self._error_count += 1
        raise self._classify_failure(method, path, response)

    def _decode_body(self, response: httpx.Response) -> Any:
        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                response_text=response.text,
            ) from e

    def _classify_failure(self, method: str, path: str, response: httpx.Response) -> APIError:
        status = response.status_code
        text = response.text
        if status == 404:
            return ResourceNotFoundError(f"Not found: {method} {path}", status_code=status, response_text=text)
        if status == 401:
            return AuthenticationError("Authentication failed", status_code=status, response_text=text)
        if status == 403:
            return AuthorizationError("Authorization failed", status_code=status, response_text=text)
        if status == 409:
            return ConflictError(f"Conflict: {method} {path}", status_code=status, response_text=text)
        if 400 <= status < 500:
            return ClientError(f"Client error: {status}", status_code=status, response_text=text)
        if 500 <= status < 600:
            return ServerError(f"Server error: {status}", status_code=status, response_text=text)
        return APIError(f"Unexpected status code: {status}", status_code=status, response_text=text)

    # Convenience wrappers

    async def get(self, path: str) -> APIResponse:
        """Read a single object. Reads carry no idempotency key."""
        return await self.execute("GET", path)

    async def list(self, path: str) -> List[Any]:
        """Read a collection and return its items."""
        response = await self.execute("GET", path)
        return response.as_list()

    async def post(self, path: str, body: Optional[Any] = None, idempotency_key: Optional[str] = None) -> APIResponse:
        return await self.execute("POST", path, body, idempotency_key)

    async def put(self, path: str, body: Optional[Any] = None, idempotency_key: Optional[str] = None) -> APIResponse:
        return await self.execute("PUT", path, body, idempotency_key)

    async def patch(self, path: str, body: Optional[Any] = None, idempotency_key: Optional[str] = None) -> APIResponse:
        return await self.execute("PATCH", path, body, idempotency_key)

    async def delete(self, path: str, idempotency_key: Optional[str] = None) -> APIResponse:
        return await self.execute("DELETE", path, None, idempotency_key)

    async def health_check(self) -> bool:
        """Check if the SignalCraft API is reachable with the configured key.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            await self.get("/settings/workspace")
            return True
        except APIError as e:
            self._logger.error("SignalCraft health check failed", error=str(e))
            return False
