"""Managed resource records: identity, desired spec, finalizers and observed status."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from signalcraft_sync.security.validation import validate_identity_component


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    """Externally visible sync state."""
    PENDING = "Pending"
    SYNCED = "Synced"
    ERROR = "Error"


class LifecyclePhase(str, Enum):
    """Where an object is in its create/update/delete lifecycle."""
    ABSENT = "Absent"
    CREATING = "Creating"
    ACTIVE = "Active"
    UPDATING = "Updating"
    DELETING = "Deleting"
    ERROR = "Error"


class ResourceIdentity(BaseModel):
    """Stable local key of a managed object."""

    model_config = ConfigDict(frozen=True)

    kind: str
    scope: str = "default"
    name: str

    @field_validator("kind", "scope", "name")
    @classmethod
    def validate_component(cls, v: str) -> str:
        if not validate_identity_component(v):
            raise ValueError(f"Invalid identity component: {v!r}")
        return v

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.scope}/{self.name}"

    @property
    def external_id(self) -> str:
        """Identifier for kinds whose remote side is keyed by a caller-chosen id."""
        return f"{self.scope}/{self.name}"

    def __str__(self) -> str:
        return self.key


class ObservedStatus(BaseModel):
    """What the engine last confirmed about the remote side."""

    state: SyncState = SyncState.PENDING
    phase: LifecyclePhase = LifecyclePhase.ABSENT
    message: Optional[str] = None
    observed_generation: int = 0       # Last generation confirmed remotely
    last_synced_at: Optional[datetime] = None
    remote_id: Optional[str] = None    # Server-assigned or external id
    remote_snapshot: Optional[Dict[str, Any]] = None


class ManagedResource(BaseModel):
    """One declaratively managed SignalCraft object."""

    identity: ResourceIdentity
    uid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    generation: int = Field(1, ge=1)
    desired_spec: Dict[str, Any] = Field(default_factory=dict)
    deletion_requested: bool = False
    finalizers: List[str] = Field(default_factory=list)
    status: ObservedStatus = Field(default_factory=ObservedStatus)
    resource_version: int = 1          # Bumped on every persisted write
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return self.identity.key

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def idempotency_scope(self) -> str:
        """Identity plus instance uid, so a recreated object gets fresh keys."""
        return f"{self.identity.key}#{self.uid}"

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def is_converged(self) -> bool:
        """Whether the current generation is already confirmed remotely."""
        return (
            self.status.state == SyncState.SYNCED
            and self.status.observed_generation == self.generation
        )

    def fingerprint(self) -> tuple:
        """Desired-state fingerprint: changes when the spec or deletion intent does."""
        return (self.uid, self.generation, self.deletion_requested)
