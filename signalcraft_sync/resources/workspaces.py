"""Workspace settings: a singleton that is updated in place and never deleted."""

from typing import Any, Dict

from pydantic import Field

from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.core.idempotency import IdempotencyKeys
from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.core.status import DeleteResult
from signalcraft_sync.resources.base import RemoteSnapshot, ResourceHandler, ResourceSpec


class WorkspaceSpec(ResourceSpec):
    name: str = Field(..., min_length=1)


class WorkspaceHandler(ResourceHandler[WorkspaceSpec]):
    spec_model = WorkspaceSpec
    settings_path = "/settings/workspace"

    @property
    def kind(self) -> str:
        return "Workspace"

    def build_payload(self, resource: ManagedResource, spec: WorkspaceSpec) -> Dict[str, Any]:
        return {"name": spec.name}

    async def upsert(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        keys: IdempotencyKeys,
    ) -> RemoteSnapshot:
        spec = self.parse_spec(resource)
        await client.put(self.settings_path, self.build_payload(resource, spec), idempotency_key=keys.upsert)
        data = (await client.get(self.settings_path)).as_dict()
        return RemoteSnapshot(remote_id=self.remote_id_from(data) or "workspace", data=data)

    async def delete(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        keys: IdempotencyKeys,
    ) -> DeleteResult:
        self._logger.info("Workspace settings are retained remotely", identity=resource.key)
        return DeleteResult.RETAINED
