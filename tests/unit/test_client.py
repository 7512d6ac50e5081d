"""Unit tests for the SignalCraft REST client."""

import json

import httpx
import pytest

from signalcraft_sync.clients.exceptions import (
    APIError,
    AuthenticationError,
    ClientError,
    ConfigurationError,
    ConflictError,
    NetworkError,
    ResourceNotFoundError,
    ServerError,
)
from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.config.models import ApiConfig


def make_client(handler):
    return SignalCraftClient(
        base_url="https://api.signalcraft.test/",
        api_key="test-api-key",
        rate_limit_per_minute=None,
        transport=httpx.MockTransport(handler),
    )


class TestClientConstruction:
    """Test client construction and configuration."""

    def test_requires_url_and_key(self):
        with pytest.raises(ConfigurationError):
            SignalCraftClient(base_url="", api_key="key")
        with pytest.raises(ConfigurationError):
            SignalCraftClient(base_url="https://api.signalcraft.test", api_key=" ")

    def test_from_incomplete_config(self):
        """Test the message for missing credentials."""
        with pytest.raises(ConfigurationError) as exc_info:
            SignalCraftClient.from_config(ApiConfig(api_url="https://api.signalcraft.test"))
        assert str(exc_info.value) == "Missing SIGNALCRAFT_API_KEY"

    def test_from_config(self):
        client = SignalCraftClient.from_config(
            ApiConfig(api_url="https://api.signalcraft.test/", api_key="k", rate_limit_per_minute=None)
        )
        assert client.base_url == "https://api.signalcraft.test"


@pytest.mark.asyncio
class TestExecute:
    """Test request construction and outcome classification."""

    async def test_headers_and_body(self):
        """Test auth, idempotency and content headers."""
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(201, json={"id": "team-1"})

        client = make_client(handler)
        response = await client.execute("post", "/api/teams", {"name": "sre"}, idempotency_key="key-1")

        request = seen["request"]
        assert request.method == "POST"
        assert str(request.url) == "https://api.signalcraft.test/api/teams"
        assert request.headers["Authorization"] == "Bearer test-api-key"
        assert request.headers["Idempotency-Key"] == "key-1"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["User-Agent"].startswith("signalcraft-sync/")
        assert json.loads(request.content) == {"name": "sre"}
        assert response.status_code == 201
        assert response.as_dict() == {"id": "team-1"}
        assert client.request_count == 1

    async def test_reads_have_no_idempotency_key(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json=[])

        await make_client(handler).get("/api/teams/team-1")
        assert "Idempotency-Key" not in seen["request"].headers

    async def test_empty_body(self):
        client = make_client(lambda request: httpx.Response(204))
        response = await client.delete("/api/teams/team-1", idempotency_key="k")
        assert response.data is None
        assert response.as_dict() == {}

    async def test_list_unwraps_envelope(self):
        client = make_client(lambda request: httpx.Response(200, json={"data": [{"id": "u1"}]}))
        assert await client.list("/workspaces/members") == [{"id": "u1"}]

    @pytest.mark.parametrize(
        "status,error_class",
        [
            (404, ResourceNotFoundError),
            (401, AuthenticationError),
            (409, ConflictError),
            (422, ClientError),
            (500, ServerError),
            (503, ServerError),
        ],
    )
    async def test_failure_classification(self, status, error_class):
        """Test each non-2xx status maps to its error class."""
        client = make_client(lambda request: httpx.Response(status, text="details"))

        with pytest.raises(error_class) as exc_info:
            await client.execute("PUT", "/api/teams/team-1", {"name": "x"})

        assert exc_info.value.status_code == status
        assert exc_info.value.response_text == "details"
        assert str(status) in str(exc_info.value)
        assert client.error_count == 1

    async def test_not_found_is_distinguishable(self):
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(APIError) as exc_info:
            await client.get("/api/teams/missing")
        assert isinstance(exc_info.value, ResourceNotFoundError)

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await make_client(handler).get("/api/teams")

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkError):
            await make_client(handler).get("/api/teams")

    async def test_invalid_json_body(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(NetworkError):
            await client.get("/api/teams")

    async def test_health_check(self):
        assert await make_client(lambda request: httpx.Response(200, json={})).health_check()
        assert not await make_client(lambda request: httpx.Response(401)).health_check()
