"""Per-kind handlers and the kind registry."""

from typing import Dict, Optional

from signalcraft_sync.resources.alert_policies import AlertPolicyHandler
from signalcraft_sync.resources.base import ResourceHandler
from signalcraft_sync.resources.escalation_policies import EscalationPolicyHandler
from signalcraft_sync.resources.invitations import InvitationHandler
from signalcraft_sync.resources.routing_rules import RoutingRuleHandler
from signalcraft_sync.resources.schedules import ScheduleHandler
from signalcraft_sync.resources.teams import TeamHandler
from signalcraft_sync.resources.users import UserHandler
from signalcraft_sync.resources.workspaces import WorkspaceHandler

HANDLER_CLASSES = [
    AlertPolicyHandler,
    EscalationPolicyHandler,
    RoutingRuleHandler,
    ScheduleHandler,
    TeamHandler,
    InvitationHandler,
    UserHandler,
    WorkspaceHandler,
]


def default_handlers() -> Dict[str, ResourceHandler]:
    """One handler instance per supported kind, keyed by kind."""
    handlers = [cls() for cls in HANDLER_CLASSES]
    return {handler.kind: handler for handler in handlers}


def get_handler(kind: str, handlers: Optional[Dict[str, ResourceHandler]] = None) -> Optional[ResourceHandler]:
    return (handlers if handlers is not None else default_handlers()).get(kind)


SUPPORTED_KINDS = sorted(default_handlers())
