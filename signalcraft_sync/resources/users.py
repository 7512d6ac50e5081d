"""Workspace members: role assignment for users who already joined."""

from typing import Any, Dict, Optional

from pydantic import Field

from signalcraft_sync.clients.exceptions import SyncError
from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.core.idempotency import IdempotencyKeys
from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.resources.base import (
    ListReadMixin,
    RemoteSnapshot,
    ResourceHandler,
    ResourceSpec,
)


class UserSpec(ResourceSpec):
    user_id: str = Field(..., alias="userId", min_length=1)
    role: str = Field(..., min_length=1)


class UserHandler(ListReadMixin, ResourceHandler[UserSpec]):
    """Users are not created here; the handler sets the role of an existing member."""

    spec_model = UserSpec
    item_path = "/workspaces/members/{id}"
    list_path = "/workspaces/members"

    @property
    def kind(self) -> str:
        return "User"

    def build_payload(self, resource: ManagedResource, spec: UserSpec) -> Dict[str, Any]:
        return {"role": spec.role}

    def remote_id_from(self, data: Dict[str, Any]) -> Optional[str]:
        value = data.get("id", data.get("userId"))
        return str(value) if value is not None else None

    async def upsert(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        keys: IdempotencyKeys,
    ) -> RemoteSnapshot:
        spec = self.parse_spec(resource)
        payload = self.build_payload(resource, spec)
        await client.patch(self.item_url(spec.user_id), payload, idempotency_key=keys.upsert)

        member = await self.read(client, spec.user_id)
        if member is None:
            raise SyncError(
                "User is not a member of this workspace",
                source_resource_id=resource.key,
                resource_type=self.kind,
            )
        return RemoteSnapshot(remote_id=spec.user_id, data=member)

    def delete_target(self, resource: ManagedResource) -> Optional[str]:
        if resource.status.remote_id:
            return resource.status.remote_id
        user_id = resource.desired_spec.get("user_id", resource.desired_spec.get("userId"))
        return str(user_id) if user_id else None
