"""On-call schedules (rotations)."""

from typing import Any, Dict

from pydantic import Field

from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.resources.base import ResourceHandler, ResourceSpec


class ScheduleSpec(ResourceSpec):
    name: str | None = None
    description: str | None = None
    timezone: str = Field("UTC", min_length=1)


class ScheduleHandler(ResourceHandler[ScheduleSpec]):
    spec_model = ScheduleSpec
    create_path = "/api/oncall/rotations"
    item_path = "/api/oncall/rotations/{id}"

    @property
    def kind(self) -> str:
        return "Schedule"

    def build_payload(self, resource: ManagedResource, spec: ScheduleSpec) -> Dict[str, Any]:
        return {
            "name": self.display_name(resource, spec),
            "description": spec.description or "",
            "timezone": spec.timezone,
        }
