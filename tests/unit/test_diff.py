"""Tests for membership set diffing."""

import itertools
import random

from signalcraft_sync.core.diff import ADD, REMOVE, MembershipDelta, apply_delta, diff_members


class TestDiffMembers:
    """Test diff_members and apply_delta."""

    def test_add_and_remove(self):
        """Test the classic overlap case."""
        delta = diff_members({"u1", "u2"}, {"u2", "u3"})

        assert delta.to_add == frozenset({"u3"})
        assert delta.to_remove == frozenset({"u1"})
        assert not delta.is_empty

    def test_converged_after_apply(self):
        """Test that applying the delta leaves nothing to do."""
        current = {"u1", "u2"}
        desired = {"u2", "u3"}

        result = apply_delta(current, diff_members(current, desired))

        assert result == frozenset(desired)
        assert diff_members(result, desired).is_empty

    def test_identical_sets(self):
        """Test that equal sets produce an empty delta."""
        assert diff_members(["a", "b"], ["b", "a"]).is_empty

    def test_empty_inputs(self):
        """Test diffs against empty sets."""
        assert diff_members([], ["a"]).to_add == frozenset({"a"})
        assert diff_members(["a"], []).to_remove == frozenset({"a"})
        assert diff_members([], []).is_empty

    def test_duplicates_are_ignored(self):
        """Test that duplicate ids collapse."""
        delta = diff_members(["a", "a"], ["b", "b"])
        assert delta.to_add == frozenset({"b"})
        assert delta.to_remove == frozenset({"a"})

    def test_add_and_remove_are_disjoint(self):
        """Test disjointness on random inputs."""
        rng = random.Random(7)
        universe = [f"u{i}" for i in range(12)]
        for _ in range(50):
            current = set(rng.sample(universe, rng.randint(0, 12)))
            desired = set(rng.sample(universe, rng.randint(0, 12)))
            delta = diff_members(current, desired)
            assert not (delta.to_add & delta.to_remove)


class TestApplicationOrder:
    """Test that individual member calls commute."""

    def test_any_order_reaches_desired_set(self):
        """Test every ordering of the member calls."""
        current = {"u1", "u2", "u4"}
        desired = {"u2", "u3", "u5"}
        delta = diff_members(current, desired)

        for ordering in itertools.permutations(delta.operations()):
            members = set(current)
            for action, member in ordering:
                if action == ADD:
                    members.add(member)
                else:
                    members.discard(member)
            assert members == desired

    def test_partial_application_converges_on_next_diff(self):
        """Test that a pass interrupted half-way is finished by the next one."""
        current = {"u1", "u2"}
        desired = {"u3", "u4"}
        first = diff_members(current, desired)

        # Only the first call landed
        action, member = first.operations()[0]
        partial = set(current)
        if action == ADD:
            partial.add(member)
        else:
            partial.discard(member)

        second = diff_members(partial, desired)
        assert apply_delta(partial, second) == frozenset(desired)

    def test_operations_order_is_stable(self):
        """Test adds come first, each sorted."""
        delta = MembershipDelta(to_add=frozenset({"b", "a"}), to_remove=frozenset({"z", "y"}))
        assert delta.operations() == [(ADD, "a"), (ADD, "b"), (REMOVE, "y"), (REMOVE, "z")]
