"""Tests for idempotency key derivation."""

import uuid

import pytest

from signalcraft_sync.core.idempotency import IdempotencyKeys, idempotency_key


class TestIdempotencyKey:
    """Test idempotency_key."""

    def test_stable_for_same_inputs(self):
        """Test that a retried call reuses its key."""
        first = idempotency_key("Team/platform/sre#uid-1", 3, "create")
        second = idempotency_key("Team/platform/sre#uid-1", 3, "create")
        assert first == second

    def test_is_a_uuid(self):
        """Test the key format."""
        key = idempotency_key("AlertPolicy/default/cpu#uid", 1, "upsert")
        assert str(uuid.UUID(key)) == key

    @pytest.mark.parametrize(
        "identity,generation,operation",
        [
            ("Team/platform/sre#uid-2", 3, "create"),
            ("Team/platform/sre#uid-1", 4, "create"),
            ("Team/platform/sre#uid-1", 3, "update"),
        ],
    )
    def test_differs_when_any_component_differs(self, identity, generation, operation):
        """Test that each component contributes to the key."""
        base = idempotency_key("Team/platform/sre#uid-1", 3, "create")
        assert idempotency_key(identity, generation, operation) != base

    def test_rejects_invalid_components(self):
        """Test argument validation."""
        with pytest.raises(ValueError):
            idempotency_key("", 1, "create")
        with pytest.raises(ValueError):
            idempotency_key("Team/a/b", 1, "")
        with pytest.raises(ValueError):
            idempotency_key("Team/a/b", -1, "create")


class TestIdempotencyKeys:
    """Test the per-generation key factory."""

    def test_operations_have_distinct_keys(self):
        """Test every operation namespace is distinct."""
        keys = IdempotencyKeys("Team/platform/sre#uid-1", 2)
        all_keys = {
            keys.create,
            keys.update,
            keys.upsert,
            keys.delete,
            keys.member_add("u1"),
            keys.member_remove("u1"),
            keys.member_add("u2"),
        }
        assert len(all_keys) == 7

    def test_matches_function(self):
        """Test the factory delegates to idempotency_key."""
        keys = IdempotencyKeys("Team/platform/sre#uid-1", 2)
        assert keys.member_add("u1") == idempotency_key("Team/platform/sre#uid-1", 2, "member-add:u1")
        assert keys.delete == idempotency_key("Team/platform/sre#uid-1", 2, "delete")
