"""Workspace invitations."""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator

from signalcraft_sync.clients.exceptions import UnsupportedOperationError
from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.core.idempotency import IdempotencyKeys
from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.resources.base import (
    ListReadMixin,
    RemoteSnapshot,
    ResourceHandler,
    ResourceSpec,
)
from signalcraft_sync.security.validation import validate_email


class InvitationSpec(ResourceSpec):
    email: str
    role: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        v = v.strip()
        if not validate_email(v):
            raise ValueError(f"Invalid email address: {v}")
        return v


class InvitationHandler(ListReadMixin, ResourceHandler[InvitationSpec]):
    """Invitations cannot be edited; a changed spec is a blocking error.

    A resync of an unchanged spec only confirms the invitation still exists,
    and sends it again if it has disappeared (for example after expiring).
    """

    spec_model = InvitationSpec
    create_path = "/api/invitations"
    item_path = "/api/invitations/{id}"
    list_path = "/api/invitations"
    supports_update = False
    unsupported_update_message = (
        "Updating invitations is not supported. Recreate the invitation instead."
    )

    @property
    def kind(self) -> str:
        return "Invitation"

    def build_payload(self, resource: ManagedResource, spec: InvitationSpec) -> Dict[str, Any]:
        return {"email": spec.email, "role": spec.role}

    async def update(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        spec: InvitationSpec,
        payload: Dict[str, Any],
        keys: IdempotencyKeys,
        remote_id: str,
    ) -> RemoteSnapshot:
        if resource.status.observed_generation != resource.generation:
            raise UnsupportedOperationError(self.unsupported_update_message)

        current: Optional[Dict[str, Any]] = await self.read(client, remote_id)
        if current is None:
            self._logger.warning("Invitation no longer exists, sending again", identity=resource.key)
            return await self.create(
                client, resource, spec, payload, keys,
                idempotency_key=keys.for_operation(f"recreate:{remote_id}"),
            )
        return RemoteSnapshot(remote_id=remote_id, data=current)
