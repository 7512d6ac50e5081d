"""Teams and their membership."""

from typing import Any, Dict, List

from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.resources.base import MembershipCollection, ResourceHandler, ResourceSpec


class TeamSpec(ResourceSpec):
    name: str | None = None
    description: str | None = None
    members: List[str] | None = None   # None leaves membership unmanaged


class TeamHandler(ResourceHandler[TeamSpec]):
    """Teams are created with the full member list, then converged by diff on update."""

    spec_model = TeamSpec
    create_path = "/api/teams"
    item_path = "/api/teams/{id}"
    membership = MembershipCollection(
        add_path="/api/teams/{id}/members",
        remove_path="/api/teams/{id}/members/{member}",
    )

    @property
    def kind(self) -> str:
        return "Team"

    def build_payload(self, resource: ManagedResource, spec: TeamSpec) -> Dict[str, Any]:
        return {
            "name": self.display_name(resource, spec),
            "description": spec.description or "",
        }
