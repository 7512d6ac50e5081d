"""Deterministic idempotency keys for mutating SignalCraft calls."""

import uuid
from dataclasses import dataclass

# Fixed namespace so keys stay stable across processes and releases
KEY_NAMESPACE = uuid.UUID("6f1c1b52-3f0e-5d8e-9a57-1d2a4c3b8e01")

CREATE = "create"
UPDATE = "update"
UPSERT = "upsert"
DELETE = "delete"


def idempotency_key(identity: str, generation: int, operation: str) -> str:
    """Derive the key for one logical operation.

    The same ``(identity, generation, operation)`` always yields the same key,
    so a retried call is deduplicated by the remote side.

    Raises:
        ValueError: If any component is empty or the generation is negative
    """
    if not identity:
        raise ValueError("identity is required")
    if not operation:
        raise ValueError("operation is required")
    if generation < 0:
        raise ValueError("generation cannot be negative")
    return str(uuid.uuid5(KEY_NAMESPACE, f"{identity}|{generation}|{operation}"))


@dataclass(frozen=True)
class IdempotencyKeys:
    """Key factory bound to one object at one generation."""

    identity: str
    generation: int

    def for_operation(self, operation: str) -> str:
        return idempotency_key(self.identity, self.generation, operation)

    @property
    def create(self) -> str:
        return self.for_operation(CREATE)

    @property
    def update(self) -> str:
        return self.for_operation(UPDATE)

    @property
    def upsert(self) -> str:
        return self.for_operation(UPSERT)

    @property
    def delete(self) -> str:
        return self.for_operation(DELETE)

    def member_add(self, member_id: str) -> str:
        return self.for_operation(f"member-add:{member_id}")

    def member_remove(self, member_id: str) -> str:
        return self.for_operation(f"member-remove:{member_id}")
