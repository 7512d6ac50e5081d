"""Alert policies, keyed remotely by a caller-chosen external id."""

from typing import Any, Dict, List

from pydantic import Field

from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.core.idempotency import IdempotencyKeys
from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.core.payload import validate_structured
from signalcraft_sync.resources.base import RemoteSnapshot, ResourceHandler, ResourceSpec


class AlertPolicySpec(ResourceSpec):
    name: str | None = None
    severity: str = Field(..., min_length=1)
    routing_key: str = Field(..., alias="routingKey", min_length=1)
    conditions: List[Any] = Field(default_factory=list)


class AlertPolicyHandler(ResourceHandler[AlertPolicySpec]):
    """Alert policies are upserted by external id, so there is no create/update split.

    The external id is ``scope/name``; it is known before the first call,
    which also lets a delete run even if no create was ever confirmed.
    """

    spec_model = AlertPolicySpec
    upsert_path = "/api/alert-policies/upsert"
    item_path = "/api/alert-policies/external/{id}"

    @property
    def kind(self) -> str:
        return "AlertPolicy"

    def build_payload(self, resource: ManagedResource, spec: AlertPolicySpec) -> Dict[str, Any]:
        return {
            "name": self.display_name(resource, spec),
            "external_id": resource.identity.external_id,
            "severity": spec.severity,
            "routing_key": spec.routing_key,
            "conditions": validate_structured(spec.conditions, "conditions"),
        }

    async def upsert(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        keys: IdempotencyKeys,
    ) -> RemoteSnapshot:
        spec = self.parse_spec(resource)
        payload = self.build_payload(resource, spec)
        response = await client.post(self.upsert_path, payload, idempotency_key=keys.upsert)

        self._logger.info("Upserted alert policy", identity=resource.key)
        return RemoteSnapshot(
            remote_id=resource.identity.external_id,
            data=response.as_dict() or payload,
        )

    def delete_target(self, resource: ManagedResource) -> str:
        return resource.identity.external_id
