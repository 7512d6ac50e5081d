"""Routing rules: match conditions to notification actions."""

from typing import Any, Dict

from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.core.payload import structured_field
from signalcraft_sync.resources.base import ResourceHandler, ResourceSpec


class RoutingRuleSpec(ResourceSpec):
    name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    priority: int | None = None
    conditions: Any = None
    conditions_json: str | None = None
    actions: Any = None
    actions_json: str | None = None


class RoutingRuleHandler(ResourceHandler[RoutingRuleSpec]):
    spec_model = RoutingRuleSpec
    create_path = "/api/routing-rules"
    item_path = "/api/routing-rules/{id}"

    @property
    def kind(self) -> str:
        return "RoutingRule"

    def build_payload(self, resource: ManagedResource, spec: RoutingRuleSpec) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.display_name(resource, spec),
            "description": spec.description or "",
            "conditions": structured_field(spec.conditions, spec.conditions_json, "conditions"),
            "actions": structured_field(spec.actions, spec.actions_json, "actions"),
        }
        # Unset fields are left to server defaults
        if spec.enabled is not None:
            payload["enabled"] = spec.enabled
        if spec.priority is not None:
            payload["priority"] = spec.priority
        return payload
