"""Tests for the per-kind handlers, driven through the reconciler."""

import json

import pytest

from signalcraft_sync.core.models import LifecyclePhase, ResourceIdentity
from signalcraft_sync.resources import SUPPORTED_KINDS, default_handlers, get_handler
from signalcraft_sync.resources.teams import TeamHandler


def body(request):
    return json.loads(request.content)


class TestRegistry:
    def test_every_kind_has_a_handler(self):
        assert SUPPORTED_KINDS == [
            "AlertPolicy",
            "EscalationPolicy",
            "Invitation",
            "RoutingRule",
            "Schedule",
            "Team",
            "User",
            "Workspace",
        ]
        assert all(kind == handler.kind for kind, handler in default_handlers().items())

    def test_get_handler(self):
        assert isinstance(get_handler("Team"), TeamHandler)
        assert get_handler("Dashboard") is None


@pytest.mark.asyncio
class TestTeams:
    """Test team creation and membership convergence."""

    async def test_create_adds_every_member(self, reconciler, store, fake_api, team_identity):
        store.apply(team_identity, {"description": "On-call", "members": ["u2", "u1"]})

        result = await reconciler.reconcile(team_identity)

        assert result.success
        [create] = fake_api.calls("POST", "/api/teams")[:1]
        assert body(create) == {"name": "sre", "description": "On-call"}
        adds = fake_api.calls("POST", "/api/teams/team-1/members")
        assert [body(r) for r in adds] == [{"userId": "u1"}, {"userId": "u2"}]
        assert len({r.headers["Idempotency-Key"] for r in adds}) == 2

        record = store.get(team_identity)
        assert record.status.remote_id == "team-1"
        assert record.status.remote_snapshot["members"] == [{"id": "u1"}, {"id": "u2"}]

    async def test_update_applies_member_diff(self, reconciler, store, fake_api, team_identity):
        """Test {u1,u2} -> {u2,u3} adds u3 and removes u1 only."""
        store.apply(team_identity, {"members": ["u1", "u2"]})
        await reconciler.reconcile(team_identity)
        fake_api.requests.clear()

        store.apply(team_identity, {"members": ["u2", "u3"]})
        result = await reconciler.reconcile(team_identity)

        assert result.success
        assert [r.method for r in fake_api.calls(path_prefix="/api/teams/team-1/members")] == ["POST", "DELETE"]
        assert body(fake_api.calls("POST", "/api/teams/team-1/members")[0]) == {"userId": "u3"}
        [remove] = fake_api.calls("DELETE", "/api/teams/team-1/members")
        assert remove.url.raw_path.decode() == "/api/teams/team-1/members/u1"
        assert set(fake_api.team_members["team-1"]) == {"u2", "u3"}
        assert store.get(team_identity).status.observed_generation == 2

        # Nothing left to converge
        fake_api.requests.clear()
        await reconciler.reconcile(team_identity, force=True)
        assert fake_api.calls(path_prefix="/api/teams/team-1/members") == []

    async def test_failed_member_add_is_retried(self, reconciler, store, fake_api, team_identity):
        store.apply(team_identity, {"members": ["u1"]})
        await reconciler.reconcile(team_identity)
        store.apply(team_identity, {"members": ["u1", "u2", "u3"]})
        fake_api.fail_next("POST", "/api/teams/team-1/members", 503)

        failed = await reconciler.reconcile(team_identity)

        assert not failed.success
        assert failed.requeue_after == 60
        assert failed.error_type == "MembershipSyncError"
        record = store.get(team_identity)
        assert record.status.observed_generation == 1
        assert record.status.remote_id == "team-1"

        recovered = await reconciler.reconcile(team_identity)

        assert recovered.success
        assert set(fake_api.team_members["team-1"]) == {"u1", "u2", "u3"}

    async def test_partial_create_keeps_remote_id(self, reconciler, store, fake_api, team_identity):
        """Test a create whose member add failed is not created twice."""
        store.apply(team_identity, {"members": ["u1", "u2"]})
        fake_api.fail_next("POST", "/api/teams/team-1/members", 500)

        failed = await reconciler.reconcile(team_identity)

        assert not failed.success
        assert store.get(team_identity).status.remote_id == "team-1"

        recovered = await reconciler.reconcile(team_identity)

        assert recovered.success
        assert recovered.operation == "update"
        assert list(fake_api.collections["/api/teams"]) == ["team-1"]
        assert set(fake_api.team_members["team-1"]) == {"u1", "u2"}

    async def test_unmanaged_membership(self, reconciler, store, fake_api, team_identity):
        store.apply(team_identity, {"description": "a"})
        await reconciler.reconcile(team_identity)
        fake_api.team_members["team-1"] = ["someone"]

        store.apply(team_identity, {"description": "b"})
        await reconciler.reconcile(team_identity)

        assert fake_api.team_members["team-1"] == ["someone"]
        assert fake_api.collections["/api/teams"]["team-1"]["description"] == "b"

    async def test_vanished_team_is_recreated(self, reconciler, store, fake_api, team_identity):
        store.apply(team_identity, {"members": ["u1"]})
        await reconciler.reconcile(team_identity)
        fake_api.collections["/api/teams"].clear()
        fake_api.team_members.clear()

        store.apply(team_identity, {"members": ["u1"], "description": "again"})
        result = await reconciler.reconcile(team_identity)

        assert result.success
        record = store.get(team_identity)
        assert record.status.remote_id != "team-1"
        assert fake_api.team_members[record.status.remote_id] == ["u1"]

    async def test_delete(self, reconciler, store, fake_api, team_identity):
        store.apply(team_identity, {"members": ["u1"]})
        await reconciler.reconcile(team_identity)
        store.request_deletion(team_identity)

        result = await reconciler.reconcile(team_identity)

        assert result.success
        assert fake_api.collections["/api/teams"] == {}
        assert store.get(team_identity) is None


@pytest.mark.asyncio
class TestStructuredKinds:
    """Test kinds carrying opaque condition and rule trees."""

    async def test_routing_rule_preserves_trees(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="RoutingRule", scope="default", name="db-alerts")
        conditions = {"any": [{"field": "service", "eq": "db"}, {"field": "tier", "in": [1, 2]}]}
        store.apply(identity, {
            "priority": 10,
            "conditions": conditions,
            "actions_json": '[{"notify": "team-db", "escalate": null}]',
        })

        result = await reconciler.reconcile(identity)

        assert result.success
        sent = body(fake_api.calls("POST", "/api/routing-rules")[0])
        assert sent == {
            "name": "db-alerts",
            "description": "",
            "conditions": conditions,
            "actions": [{"notify": "team-db", "escalate": None}],
            "priority": 10,
        }
        assert list(sent["conditions"]["any"][0]) == ["field", "eq"]

    async def test_escalation_policy_rules_json(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="EscalationPolicy", scope="default", name="primary")
        store.apply(identity, {"name": "Primary", "rules_json": '[{"delay": 5, "targets": ["team-1"]}]'})

        await reconciler.reconcile(identity)

        sent = body(fake_api.calls("POST", "/api/escalation-policies")[0])
        assert sent == {"name": "Primary", "description": "", "rules": [{"delay": 5, "targets": ["team-1"]}]}

    async def test_spec_validation_error_is_blocking(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="AlertPolicy", scope="default", name="broken")
        store.apply(identity, {"routingKey": "ops", "unexpected": 1})

        result = await reconciler.reconcile(identity)

        assert not result.success
        assert result.requeue_after is None
        assert "severity" in result.message
        assert fake_api.requests == []

    async def test_schedule(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="Schedule", scope="default", name="primary")
        store.apply(identity, {"timezone": "Europe/Berlin"})

        await reconciler.reconcile(identity)

        sent = body(fake_api.calls("POST", "/api/oncall/rotations")[0])
        assert sent == {"name": "primary", "description": "", "timezone": "Europe/Berlin"}


@pytest.mark.asyncio
class TestInvitations:
    """Test invitations, which cannot be updated."""

    async def test_create_and_change_is_blocking(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="Invitation", scope="default", name="alice")
        store.apply(identity, {"email": "alice@example.com", "role": "member"})
        created = await reconciler.reconcile(identity)
        assert created.success

        store.apply(identity, {"email": "alice@example.com", "role": "admin"})
        result = await reconciler.reconcile(identity)

        assert not result.success
        assert result.requeue_after is None
        assert result.message == "Updating invitations is not supported. Recreate the invitation instead."
        assert len(fake_api.calls("POST", "/api/invitations")) == 1

    async def test_resync_reads_without_resending(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="Invitation", scope="default", name="bob")
        store.apply(identity, {"email": "bob@example.com", "role": "member"})
        await reconciler.reconcile(identity)

        result = await reconciler.reconcile(identity, force=True)

        assert result.success
        assert len(fake_api.calls("POST", "/api/invitations")) == 1
        assert len(fake_api.calls("GET", "/api/invitations")) == 1

    async def test_invalid_email(self, reconciler, store):
        identity = ResourceIdentity(kind="Invitation", scope="default", name="carol")
        store.apply(identity, {"email": "not-an-email", "role": "member"})

        result = await reconciler.reconcile(identity)

        assert not result.success
        assert result.error_type == "SerializationError"


@pytest.mark.asyncio
class TestUsersAndWorkspace:
    """Test workspace members and workspace settings."""

    async def test_user_role(self, reconciler, store, fake_api):
        fake_api.workspace_members["u1"] = {"id": "u1", "role": "member"}
        identity = ResourceIdentity(kind="User", scope="default", name="u1")
        store.apply(identity, {"userId": "u1", "role": "admin"})

        result = await reconciler.reconcile(identity)

        assert result.success
        [patch_request] = fake_api.calls("PATCH")
        assert body(patch_request) == {"role": "admin"}
        assert fake_api.workspace_members["u1"]["role"] == "admin"
        assert store.get(identity).status.remote_id == "u1"

    async def test_user_not_in_workspace(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="User", scope="default", name="ghost")
        store.apply(identity, {"user_id": "ghost", "role": "admin"})

        result = await reconciler.reconcile(identity)

        assert not result.success
        assert result.requeue_after == 60
        assert "404" in result.message

    async def test_user_delete(self, reconciler, store, fake_api):
        fake_api.workspace_members["u1"] = {"id": "u1", "role": "member"}
        identity = ResourceIdentity(kind="User", scope="default", name="u1")
        store.apply(identity, {"userId": "u1", "role": "member"})
        await reconciler.reconcile(identity)
        store.request_deletion(identity)

        result = await reconciler.reconcile(identity)

        assert result.success
        assert "u1" not in fake_api.workspace_members

    async def test_workspace_update_and_retained_on_delete(self, reconciler, store, fake_api):
        identity = ResourceIdentity(kind="Workspace", scope="default", name="acme")
        store.apply(identity, {"name": "Acme Corp"})

        result = await reconciler.reconcile(identity)

        assert result.success
        assert fake_api.workspace["name"] == "Acme Corp"
        assert store.get(identity).status.remote_id == "ws-1"

        store.request_deletion(identity)
        deleted = await reconciler.reconcile(identity)

        assert deleted.success
        assert deleted.phase == LifecyclePhase.ABSENT
        assert fake_api.calls("DELETE") == []
        assert store.get(identity) is None
        assert fake_api.workspace["name"] == "Acme Corp"
