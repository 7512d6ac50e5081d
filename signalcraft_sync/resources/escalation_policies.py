"""Escalation policies."""

from typing import Any, Dict

from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.core.payload import structured_field
from signalcraft_sync.resources.base import ResourceHandler, ResourceSpec


class EscalationPolicySpec(ResourceSpec):
    name: str | None = None
    description: str | None = None
    rules: Any = None
    rules_json: str | None = None


class EscalationPolicyHandler(ResourceHandler[EscalationPolicySpec]):
    spec_model = EscalationPolicySpec
    create_path = "/api/escalation-policies"
    item_path = "/api/escalation-policies/{id}"

    @property
    def kind(self) -> str:
        return "EscalationPolicy"

    def build_payload(self, resource: ManagedResource, spec: EscalationPolicySpec) -> Dict[str, Any]:
        return {
            "name": self.display_name(resource, spec),
            "description": spec.description or "",
            "rules": structured_field(spec.rules, spec.rules_json, "rules"),
        }
