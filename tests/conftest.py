"""Shared pytest fixtures: an in-memory SignalCraft API behind httpx.MockTransport."""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest

from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.config.models import ReconcilerConfig
from signalcraft_sync.core.models import ResourceIdentity
from signalcraft_sync.core.reconciler import Reconciler
from signalcraft_sync.core.status import StatusProjector
from signalcraft_sync.core.store import InMemoryResourceStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

COLLECTIONS = {
    "/api/teams": "team",
    "/api/escalation-policies": "esc",
    "/api/routing-rules": "rule",
    "/api/oncall/rotations": "rot",
    "/api/invitations": "inv",
}


class FakeSignalCraftAPI:
    """Minimal stateful SignalCraft API.

    Mutating requests carrying an ``Idempotency-Key`` that was already seen
    get the first response replayed, as the real service does.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {path: {} for path in COLLECTIONS}
        self.team_members: Dict[str, List[str]] = {}
        self.alert_policies: Dict[str, Dict[str, Any]] = {}
        self.workspace_members: Dict[str, Dict[str, Any]] = {}
        self.workspace: Dict[str, Any] = {"id": "ws-1", "name": "Acme"}
        self._replies: Dict[str, Tuple[int, Any]] = {}
        self._failures: List[Tuple[str, re.Pattern, int, str]] = []
        self._next_id = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail_next(self, method: str, path_pattern: str, status: int, body: str = "boom", times: int = 1) -> None:
        """Make the next ``times`` matching requests fail with ``status``."""
        for _ in range(times):
            self._failures.append((method.upper(), re.compile(path_pattern), status, body))

    def calls(self, method: Optional[str] = None, path_prefix: str = "") -> List[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method) and self._path(r).startswith(path_prefix)
        ]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.raw_path.decode().split("?", 1)[0]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)

        for i, (method, pattern, status, body) in enumerate(self._failures):
            if method == request.method and pattern.fullmatch(path):
                del self._failures[i]
                return httpx.Response(status, text=body)

        key = request.headers.get("Idempotency-Key")
        if key and key in self._replies:
            status, payload = self._replies[key]
            return self._respond(status, payload)

        status, payload = self._route(request.method, path, self._body(request))
        if key and 200 <= status < 300:
            self._replies[key] = (status, payload)
        return self._respond(status, payload)

    @staticmethod
    def _body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    @staticmethod
    def _respond(status: int, payload: Any) -> httpx.Response:
        if payload is None:
            return httpx.Response(status)
        return httpx.Response(status, json=payload)

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def _route(self, method: str, path: str, body: Any) -> Tuple[int, Any]:
        if path == "/api/alert-policies/upsert" and method == "POST":
            self.alert_policies[body["external_id"]] = body
            return 200, dict(body, id=body["external_id"])
        match = re.fullmatch(r"/api/alert-policies/external/([^/]+)", path)
        if match and method == "DELETE":
            external_id = unquote(match.group(1))
            if self.alert_policies.pop(external_id, None) is None:
                return 404, {"error": "not found"}
            return 204, None

        if path == "/settings/workspace":
            if method == "PUT":
                self.workspace.update(body)
            return 200, dict(self.workspace)

        if path == "/workspaces/members" and method == "GET":
            return 200, {"data": list(self.workspace_members.values())}
        match = re.fullmatch(r"/workspaces/members/([^/]+)", path)
        if match:
            user_id = unquote(match.group(1))
            member = self.workspace_members.get(user_id)
            if member is None:
                return 404, {"error": "not found"}
            if method == "PATCH":
                member.update(body)
                return 200, dict(member)
            if method == "DELETE":
                del self.workspace_members[user_id]
                return 204, None

        match = re.fullmatch(r"/api/teams/([^/]+)/members(?:/([^/]+))?", path)
        if match:
            team_id = unquote(match.group(1))
            if team_id not in self.collections["/api/teams"]:
                return 404, {"error": "team not found"}
            members = self.team_members.setdefault(team_id, [])
            if method == "POST":
                if body["userId"] in members:
                    return 409, {"error": "already a member"}
                members.append(body["userId"])
                return 201, {"userId": body["userId"]}
            if method == "DELETE" and match.group(2):
                user_id = unquote(match.group(2))
                if user_id not in members:
                    return 404, {"error": "not a member"}
                members.remove(user_id)
                return 204, None

        for prefix, id_prefix in COLLECTIONS.items():
            items = self.collections[prefix]
            if path == prefix:
                if method == "POST":
                    item = dict(body, id=self._new_id(id_prefix))
                    items[item["id"]] = item
                    return 201, self._render(prefix, item)
                if method == "GET":
                    return 200, [self._render(prefix, item) for item in items.values()]
            match = re.fullmatch(re.escape(prefix) + r"/([^/]+)", path)
            if match:
                item_id = unquote(match.group(1))
                if item_id not in items:
                    return 404, {"error": "not found"}
                if method == "GET":
                    return 200, self._render(prefix, items[item_id])
                if method == "PUT":
                    items[item_id].update(body)
                    return 200, self._render(prefix, items[item_id])
                if method == "DELETE":
                    del items[item_id]
                    self.team_members.pop(item_id, None)
                    return 204, None

        return 404, {"error": f"no route for {method} {path}"}

    def _render(self, prefix: str, item: Dict[str, Any]) -> Dict[str, Any]:
        if prefix == "/api/teams":
            members = self.team_members.get(item["id"], [])
            return dict(item, members=[{"id": m} for m in members])
        return dict(item)


@pytest.fixture
def fake_api():
    """Create a fresh fake SignalCraft API."""
    return FakeSignalCraftAPI()


@pytest.fixture
def client(fake_api):
    """Create a SignalCraft client wired to the fake API."""
    return SignalCraftClient(
        base_url="https://api.signalcraft.test",
        api_key="test-api-key",
        rate_limit_per_minute=None,
        transport=fake_api.transport,
    )


@pytest.fixture
def store():
    """Create an empty in-memory resource store."""
    return InMemoryResourceStore()


@pytest.fixture
def reconciler_config():
    """Create reconciler configuration with the standard retry interval."""
    return ReconcilerConfig(retry_interval_seconds=60)


@pytest.fixture
def projector():
    """Create a status projector with a fixed clock."""
    return StatusProjector(clock=lambda: FIXED_NOW)


@pytest.fixture
def reconciler(store, client, reconciler_config, projector):
    """Create a reconciler using the fake API."""
    return Reconciler(store, client, config=reconciler_config, projector=projector)


@pytest.fixture
def alert_identity():
    return ResourceIdentity(kind="AlertPolicy", scope="default", name="cpu-high")


@pytest.fixture
def alert_spec():
    return {
        "severity": "critical",
        "routingKey": "ops",
        "conditions": [],
    }


@pytest.fixture
def team_identity():
    return ResourceIdentity(kind="Team", scope="platform", name="sre")
