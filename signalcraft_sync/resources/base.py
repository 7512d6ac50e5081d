"""Generic CRUD lifecycle shared by every SignalCraft resource kind."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Iterable, Optional, Set, Type, TypeVar
from urllib.parse import quote

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from signalcraft_sync.clients.exceptions import (
    APIError,
    ConflictError,
    MembershipSyncError,
    ResourceNotFoundError,
    SerializationError,
    SyncError,
    UnsupportedOperationError,
)
from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.core.diff import ADD, MembershipDelta, diff_members
from signalcraft_sync.core.idempotency import IdempotencyKeys
from signalcraft_sync.core.models import ManagedResource
from signalcraft_sync.core.status import DeleteResult
from signalcraft_sync.security.validation import sanitize_log_input

logger = structlog.get_logger(__name__)

SpecType = TypeVar("SpecType", bound="ResourceSpec")


class ResourceSpec(BaseModel):
    """Base for per-kind desired spec models."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class RemoteSnapshot(BaseModel):
    """Remote representation returned by a successful create or update."""

    remote_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class MembershipCollection(BaseModel):
    """A sub-collection converged member by member (e.g. team members)."""

    spec_field: str = "members"            # Desired member ids on the spec model
    remote_field: str = "members"          # List of members on the remote object
    remote_member_key: str = "id"
    add_path: str                          # Template with {id}
    remove_path: str                       # Template with {id} and {member}
    body_key: str = "userId"

    def current_members(self, remote: Dict[str, Any]) -> Set[str]:
        members = remote.get(self.remote_field) or []
        current = set()
        for member in members:
            if isinstance(member, dict):
                value = member.get(self.remote_member_key)
            else:
                value = member
            if value is not None:
                current.add(str(value))
        return current


class ResourceHandler(ABC, Generic[SpecType]):
    """Create, update, read and delete one kind of SignalCraft object.

    Subclasses provide the spec model, path templates and the payload
    encoding. The default flow is:

    - no remote id yet: ``POST create_path``
    - remote id known: ``PUT item_path``; a 404 means the object vanished
      remotely and it is created again
    - delete: ``DELETE item_path``; 404 counts as already absent
    """

    spec_model: Type[SpecType]
    create_path: Optional[str] = None
    item_path: Optional[str] = None        # Template with {id}
    update_method: str = "PUT"
    supports_update: bool = True
    unsupported_update_message = "Updating this resource is not supported"
    membership: Optional[MembershipCollection] = None

    def __init__(self) -> None:
        self._logger = logger.bind(
            handler_type=self.__class__.__name__,
            kind=self.kind,
        )

    @property
    @abstractmethod
    def kind(self) -> str:
        """Resource kind handled (e.g. 'AlertPolicy', 'Team')."""
        pass

    @abstractmethod
    def build_payload(self, resource: ManagedResource, spec: SpecType) -> Dict[str, Any]:
        """Encode the desired spec as the remote request body."""
        pass

    def parse_spec(self, resource: ManagedResource) -> SpecType:
        """Validate the opaque desired spec against the kind's model.

        Raises:
            SerializationError: If the spec does not match the model
        """
        try:
            return self.spec_model.model_validate(resource.desired_spec)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'spec'}: {err['msg']}"
                for err in e.errors()
            )
            raise SerializationError(details, field="spec") from e

    def display_name(self, resource: ManagedResource, spec: SpecType) -> str:
        return getattr(spec, "name", None) or resource.identity.name

    def remote_id_from(self, data: Dict[str, Any]) -> Optional[str]:
        value = data.get("id")
        return str(value) if value is not None else None

    def item_url(self, remote_id: str) -> str:
        if self.item_path is None:
            raise UnsupportedOperationError(f"{self.kind} has no item path")
        return self.item_path.format(id=quote(remote_id, safe=""))

    # Lifecycle

    async def upsert(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        keys: IdempotencyKeys,
    ) -> RemoteSnapshot:
        """Bring the remote object in line with the desired spec.

        Raises:
            SerializationError: If the spec cannot be encoded
            UnsupportedOperationError: If an update is needed but not supported
            SyncError: If a follow-up step failed after the object was created
            APIError: On any other remote failure
        """
        spec = self.parse_spec(resource)
        payload = self.build_payload(resource, spec)
        remote_id = resource.status.remote_id
        if remote_id is None:
            return await self.create(client, resource, spec, payload, keys)
        return await self.update(client, resource, spec, payload, keys, remote_id)

    async def create(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        spec: SpecType,
        payload: Dict[str, Any],
        keys: IdempotencyKeys,
        idempotency_key: Optional[str] = None,
    ) -> RemoteSnapshot:
        if self.create_path is None:
            raise UnsupportedOperationError(f"Creating {self.kind} is not supported")

        response = await client.post(
            self.create_path, payload, idempotency_key=idempotency_key or keys.create
        )
        data = response.as_dict()
        remote_id = self.remote_id_from(data)
        if remote_id is None:
            raise SyncError(
                "Create response did not include an id",
                source_resource_id=resource.key,
                resource_type=self.kind,
            )

        self._logger.info("Created remote object", identity=resource.key, remote_id=remote_id)

        desired = self.desired_members(spec)
        if self.membership is not None and desired:
            await self._apply_members(
                client, resource, remote_id, diff_members(set(), desired), keys
            )
            try:
                data = await self.read(client, remote_id) or data
            except APIError as e:
                raise SyncError(
                    f"Created but failed to read back: {e}",
                    source_resource_id=resource.key,
                    destination_resource_id=remote_id,
                    resource_type=self.kind,
                ) from e

        return RemoteSnapshot(remote_id=remote_id, data=data)

    async def update(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        spec: SpecType,
        payload: Dict[str, Any],
        keys: IdempotencyKeys,
        remote_id: str,
    ) -> RemoteSnapshot:
        if not self.supports_update:
            raise UnsupportedOperationError(self.unsupported_update_message)

        try:
            response = await client.execute(
                self.update_method, self.item_url(remote_id), payload, keys.update
            )
        except ResourceNotFoundError:
            self._logger.warning(
                "Remote object no longer exists, recreating",
                identity=resource.key,
                remote_id=remote_id,
            )
            return await self.create(
                client, resource, spec, payload, keys,
                idempotency_key=keys.for_operation(f"recreate:{remote_id}"),
            )

        data = response.as_dict()
        desired = self.desired_members(spec)
        if self.membership is not None and desired is not None:
            await self.converge_members(client, resource, remote_id, desired, keys)
            data = await self.read(client, remote_id) or data

        return RemoteSnapshot(remote_id=self.remote_id_from(data) or remote_id, data=data)

    async def read(self, client: SignalCraftClient, remote_id: str) -> Optional[Dict[str, Any]]:
        """Read the remote object, or None if it no longer exists."""
        try:
            response = await client.get(self.item_url(remote_id))
        except ResourceNotFoundError:
            return None
        return response.as_dict()

    def delete_target(self, resource: ManagedResource) -> Optional[str]:
        """Remote id to delete, or None if the object was never created."""
        return resource.status.remote_id

    async def delete(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        keys: IdempotencyKeys,
    ) -> DeleteResult:
        """Delete the remote object. 404 counts as already absent.

        Raises:
            APIError: On any remote failure other than 404
        """
        remote_id = self.delete_target(resource)
        if remote_id is None:
            self._logger.debug("Nothing to delete remotely", identity=resource.key)
            return DeleteResult.ALREADY_ABSENT

        try:
            await client.delete(self.item_url(remote_id), idempotency_key=keys.delete)
        except ResourceNotFoundError:
            self._logger.info("Remote object already absent", identity=resource.key, remote_id=remote_id)
            return DeleteResult.ALREADY_ABSENT

        self._logger.info("Deleted remote object", identity=resource.key, remote_id=remote_id)
        return DeleteResult.DELETED

    # Membership

    def desired_members(self, spec: SpecType) -> Optional[Set[str]]:
        """Desired member set, or None when the spec leaves membership unmanaged."""
        if self.membership is None:
            return None
        members: Optional[Iterable[Any]] = getattr(spec, self.membership.spec_field, None)
        if members is None:
            return None
        return {str(member) for member in members}

    async def converge_members(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        remote_id: str,
        desired: Set[str],
        keys: IdempotencyKeys,
    ) -> MembershipDelta:
        """Re-read the current members and apply the difference.

        Raises:
            MembershipSyncError: If reading or changing a member fails
        """
        try:
            remote = await self.read(client, remote_id)
        except APIError as e:
            raise MembershipSyncError(
                f"Failed to read current members: {e}",
                source_resource_id=resource.key,
                destination_resource_id=remote_id,
                resource_type=self.kind,
            ) from e
        if remote is None:
            raise MembershipSyncError(
                "Remote object disappeared while converging members",
                source_resource_id=resource.key,
                destination_resource_id=remote_id,
                resource_type=self.kind,
            )

        delta = diff_members(self.membership.current_members(remote), desired)
        if delta.is_empty:
            self._logger.debug("Members already converged", identity=resource.key)
            return delta

        await self._apply_members(client, resource, remote_id, delta, keys)
        return delta

    async def _apply_members(
        self,
        client: SignalCraftClient,
        resource: ManagedResource,
        remote_id: str,
        delta: MembershipDelta,
        keys: IdempotencyKeys,
    ) -> None:
        membership = self.membership
        for action, member in delta.operations():
            try:
                if action == ADD:
                    await self._add_member(client, membership, remote_id, member, keys)
                else:
                    await self._remove_member(client, membership, remote_id, member, keys)
            except APIError as e:
                raise MembershipSyncError(
                    f"Failed to {action} member {sanitize_log_input(member)}: {e}",
                    source_resource_id=resource.key,
                    destination_resource_id=remote_id,
                    resource_type=self.kind,
                ) from e

        self._logger.info(
            "Applied membership changes",
            identity=resource.key,
            remote_id=remote_id,
            added=len(delta.to_add),
            removed=len(delta.to_remove),
        )

    async def _add_member(
        self,
        client: SignalCraftClient,
        membership: MembershipCollection,
        remote_id: str,
        member: str,
        keys: IdempotencyKeys,
    ) -> None:
        path = membership.add_path.format(id=quote(remote_id, safe=""))
        try:
            await client.post(path, {membership.body_key: member}, idempotency_key=keys.member_add(member))
        except ConflictError:
            # Already a member
            self._logger.debug("Member already present", remote_id=remote_id, member=member)

    async def _remove_member(
        self,
        client: SignalCraftClient,
        membership: MembershipCollection,
        remote_id: str,
        member: str,
        keys: IdempotencyKeys,
    ) -> None:
        path = membership.remove_path.format(
            id=quote(remote_id, safe=""),
            member=quote(member, safe=""),
        )
        try:
            await client.delete(path, idempotency_key=keys.member_remove(member))
        except ResourceNotFoundError:
            self._logger.debug("Member already removed", remote_id=remote_id, member=member)


class ListReadMixin:
    """Read support for kinds the API only exposes as a collection."""

    list_path: str

    async def read(self, client: SignalCraftClient, remote_id: str) -> Optional[Dict[str, Any]]:
        for item in await client.list(self.list_path):
            if isinstance(item, dict) and self.remote_id_from(item) == remote_id:
                return item
        return None
