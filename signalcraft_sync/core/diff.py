"""Set diffing for membership sub-collections."""

from dataclasses import dataclass, field
from typing import FrozenSet, Generic, Hashable, Iterable, List, Tuple, TypeVar

T = TypeVar("T", bound=Hashable)

ADD = "add"
REMOVE = "remove"


@dataclass(frozen=True)
class MembershipDelta(Generic[T]):
    """Minimal changes that turn a current membership into a desired one.

    ``to_add`` and ``to_remove`` are disjoint, so their elements can be
    applied in any order and still reach the same end state.
    """

    to_add: FrozenSet[T] = field(default_factory=frozenset)
    to_remove: FrozenSet[T] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def operations(self) -> List[Tuple[str, T]]:
        """Adds then removes, each sorted, for stable call order and logs."""
        adds = [(ADD, member) for member in sorted(self.to_add, key=str)]
        removes = [(REMOVE, member) for member in sorted(self.to_remove, key=str)]
        return adds + removes


def diff_members(current: Iterable[T], desired: Iterable[T]) -> MembershipDelta[T]:
    """Compute ``desired - current`` and ``current - desired``."""
    current_set = frozenset(current)
    desired_set = frozenset(desired)
    return MembershipDelta(
        to_add=desired_set - current_set,
        to_remove=current_set - desired_set,
    )


def apply_delta(current: Iterable[T], delta: MembershipDelta[T]) -> FrozenSet[T]:
    """Apply a delta locally, as the remote side would after every call succeeds."""
    return (frozenset(current) - delta.to_remove) | delta.to_add
