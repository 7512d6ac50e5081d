"""Lifecycle state machine: drives one managed object toward its desired state."""

from typing import Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel

from signalcraft_sync.clients.exceptions import (
    APIError,
    ConfigurationError,
    SerializationError,
    StaleResourceError,
    SyncError,
    UnsupportedOperationError,
)
from signalcraft_sync.clients.signalcraft import SignalCraftClient
from signalcraft_sync.config.models import ApiConfig, ReconcilerConfig
from signalcraft_sync.core.idempotency import IdempotencyKeys
from signalcraft_sync.core.models import (
    LifecyclePhase,
    ManagedResource,
    ObservedStatus,
    ResourceIdentity,
    SyncState,
)
from signalcraft_sync.core.status import StatusProjector, SyncOutcome
from signalcraft_sync.core.store import ResourceStore
from signalcraft_sync.resources import default_handlers
from signalcraft_sync.resources.base import ResourceHandler

logger = structlog.get_logger(__name__)

REMOTE_ERRORS = (APIError, SyncError, SerializationError, UnsupportedOperationError)


class ReconcileResult(BaseModel):
    """What one reconcile pass did and when it wants to run again."""

    identity: str
    operation: str = "noop"            # create, update, delete, noop, configure, finalize
    phase: LifecyclePhase
    state: Optional[SyncState] = None
    generation: Optional[int] = None
    observed_generation: Optional[int] = None
    success: bool = True
    message: Optional[str] = None
    error_type: Optional[str] = None
    requeue_after: Optional[float] = None  # Seconds; None means wait for the next change
    superseded: bool = False

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class Reconciler:
    """Reconciles one object per call.

    Remote failures never escape :meth:`reconcile`; they are projected into
    the status record. Store failures (other than a lost compare-and-swap,
    which is handled here) propagate to the caller.
    """

    def __init__(
        self,
        store: ResourceStore,
        client: Optional[SignalCraftClient],
        config: Optional[ReconcilerConfig] = None,
        handlers: Optional[Dict[str, ResourceHandler]] = None,
        projector: Optional[StatusProjector] = None,
        configuration_error: Optional[str] = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Desired-state store
            client: SignalCraft client, or None when configuration is incomplete
            config: Reconcile behavior (retry interval, finalizer name)
            handlers: Handlers keyed by kind (defaults to every supported kind)
            projector: Status projector (tests inject one with a fixed clock)
            configuration_error: Message reported while ``client`` is None
        """
        self.store = store
        self.client = client
        self.config = config or ReconcilerConfig()
        self.handlers = handlers if handlers is not None else default_handlers()
        self.projector = projector or StatusProjector()
        self.configuration_error = configuration_error or ApiConfig().missing_message()
        self._logger = logger.bind(finalizer=self.config.finalizer)

    @classmethod
    def from_config(
        cls,
        store: ResourceStore,
        api_config: ApiConfig,
        config: Optional[ReconcilerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> "Reconciler":
        """Build a reconciler, validating the API configuration once.

        Incomplete configuration does not raise: every pass then reports it
        on the object's status and retries on the regular interval.
        """
        try:
            client = SignalCraftClient.from_config(api_config, transport=transport)
            error = None
        except ConfigurationError as e:
            logger.warning("SignalCraft API is not configured", error=str(e))
            client = None
            error = str(e)
        return cls(store, client, config=config, configuration_error=error, **kwargs)

    @property
    def finalizer(self) -> str:
        return self.config.finalizer

    @property
    def retry_interval(self) -> float:
        return self.config.retry_interval_seconds

    async def reconcile(self, identity: ResourceIdentity, force: bool = False) -> ReconcileResult:
        """Run one reconcile pass for ``identity``.

        Args:
            identity: Object to reconcile
            force: Re-send an object even if its generation is already synced

        Returns:
            ReconcileResult describing the pass

        Raises:
            StateError: If the store fails for a reason other than a lost
                conditional write
        """
        resource = self.store.get(identity)
        if resource is None:
            return ReconcileResult(identity=identity.key, phase=LifecyclePhase.ABSENT, message="Not found")

        log = self._logger.bind(identity=identity.key, generation=resource.generation)
        handler = self.handlers.get(resource.kind)

        if resource.deletion_requested:
            if not resource.has_finalizer(self.finalizer):
                log.debug("Deletion requested and no finalizer held")
                return self._result(resource, operation="finalize", phase=LifecyclePhase.ABSENT)
            if handler is None:
                return self._fail_without_call(
                    resource, LifecyclePhase.DELETING,
                    UnsupportedOperationError(f"Unsupported resource kind: {resource.kind}"),
                )
            if self.client is None:
                return self._fail_without_call(
                    resource, LifecyclePhase.DELETING, ConfigurationError(self.configuration_error)
                )
            return await self._delete(resource, handler, log)

        if handler is None:
            return self._fail_without_call(
                resource, LifecyclePhase.ERROR,
                UnsupportedOperationError(f"Unsupported resource kind: {resource.kind}"),
            )

        if not resource.has_finalizer(self.finalizer):
            try:
                resource = self._write(resource, finalizers=resource.finalizers + [self.finalizer])
            except StaleResourceError:
                log.debug("Finalizer write lost a race, requeueing")
                return self._superseded(resource)
            log.debug("Attached finalizer")

        if self.client is None:
            return self._fail_without_call(
                resource, LifecyclePhase.ERROR, ConfigurationError(self.configuration_error)
            )

        if resource.is_converged() and not (force or self.config.resync_synced):
            return self._result(resource, operation="noop", phase=LifecyclePhase.ACTIVE)

        return await self._upsert(resource, handler, log)

    async def _upsert(
        self,
        resource: ManagedResource,
        handler: ResourceHandler,
        log: structlog.stdlib.BoundLogger,
    ) -> ReconcileResult:
        phase = LifecyclePhase.CREATING if resource.status.remote_id is None else LifecyclePhase.UPDATING
        operation = "create" if phase == LifecyclePhase.CREATING else "update"

        try:
            resource = self._write(resource, status=self.projector.begin(resource.status, phase))
        except StaleResourceError:
            return self._superseded(resource)

        keys = IdempotencyKeys(resource.idempotency_scope, resource.generation)
        log.info("Syncing to SignalCraft", operation=operation)
        try:
            snapshot = await handler.upsert(self.client, resource, keys)
            outcome = SyncOutcome.succeeded(phase, snapshot.remote_id, snapshot.data)
        except REMOTE_ERRORS as e:
            log.warning("Sync failed", operation=operation, error=str(e), error_type=type(e).__name__)
            outcome = SyncOutcome.failed(phase, e, remote_id=resource.status.remote_id)

        return self._commit(resource, outcome, operation)

    async def _delete(
        self,
        resource: ManagedResource,
        handler: ResourceHandler,
        log: structlog.stdlib.BoundLogger,
    ) -> ReconcileResult:
        try:
            resource = self._write(
                resource, status=self.projector.begin(resource.status, LifecyclePhase.DELETING)
            )
        except StaleResourceError:
            return self._superseded(resource)

        keys = IdempotencyKeys(resource.idempotency_scope, resource.generation)
        log.info("Deleting from SignalCraft")
        try:
            delete_result = await handler.delete(self.client, resource, keys)
            outcome = SyncOutcome.succeeded(LifecyclePhase.DELETING, delete_result=delete_result)
        except REMOTE_ERRORS as e:
            log.warning("Delete failed", error=str(e), error_type=type(e).__name__)
            outcome = SyncOutcome.failed(LifecyclePhase.DELETING, e, remote_id=resource.status.remote_id)

        return self._commit(resource, outcome, "delete")

    def _fail_without_call(
        self,
        resource: ManagedResource,
        phase: LifecyclePhase,
        error: Exception,
    ) -> ReconcileResult:
        operation = "configure" if isinstance(error, ConfigurationError) else "noop"
        self._logger.warning(
            "Cannot sync resource",
            identity=resource.key,
            error=str(error),
            error_type=type(error).__name__,
        )
        outcome = SyncOutcome.failed(phase, error)
        return self._commit(resource, outcome, operation)

    def _commit(self, resource: ManagedResource, outcome: SyncOutcome, operation: str) -> ReconcileResult:
        """Persist the projected status, re-applying once after a lost race."""
        status = self.projector.project(outcome, resource.status, resource.generation)
        finalizers = self._finalizers_after(resource, outcome)

        try:
            updated = self._write(resource, status=status, finalizers=finalizers)
        except StaleResourceError:
            fresh = self.store.get(resource.identity)
            if fresh is None:
                return self._result(resource, operation=operation, phase=LifecyclePhase.ABSENT)
            if (
                fresh.uid != resource.uid
                or fresh.generation != resource.generation
                or fresh.deletion_requested != resource.deletion_requested
            ):
                self._logger.info(
                    "Desired state changed during pass, discarding result",
                    identity=resource.key,
                    generation=resource.generation,
                    current_generation=fresh.generation,
                )
                return self._superseded(self._remember_remote_id(resource, fresh, outcome))

            status = self.projector.project(outcome, fresh.status, fresh.generation)
            finalizers = self._finalizers_after(fresh, outcome)
            updated = self._write(fresh, status=status, finalizers=finalizers)

        requeue_after = None
        if not outcome.success and outcome.retryable:
            requeue_after = self.retry_interval
        elif outcome.success and self.config.resync_synced and outcome.phase != LifecyclePhase.DELETING:
            requeue_after = self.config.resync_interval_seconds

        record = updated or resource
        return ReconcileResult(
            identity=resource.key,
            operation=operation,
            phase=status.phase,
            state=status.state,
            generation=record.generation,
            observed_generation=status.observed_generation,
            success=outcome.success,
            message=status.message,
            error_type=outcome.error_type,
            requeue_after=requeue_after,
        )

    def _remember_remote_id(
        self,
        resource: ManagedResource,
        fresh: ManagedResource,
        outcome: SyncOutcome,
    ) -> ManagedResource:
        """Keep a remote id created by a superseded pass so the next pass updates it.

        Only the id is recorded; state and observed generation stay as they are.
        """
        if (
            fresh.uid != resource.uid
            or outcome.phase == LifecyclePhase.DELETING
            or not outcome.remote_id
            or fresh.status.remote_id == outcome.remote_id
        ):
            return fresh
        status = fresh.status.model_copy(update={"remote_id": outcome.remote_id})
        return self._write(fresh, status=status) or fresh

    def _finalizers_after(self, resource: ManagedResource, outcome: SyncOutcome) -> Optional[List[str]]:
        if outcome.success and outcome.phase == LifecyclePhase.DELETING:
            return [f for f in resource.finalizers if f != self.finalizer]
        return None

    def _write(
        self,
        resource: ManagedResource,
        status: Optional[ObservedStatus] = None,
        finalizers: Optional[List[str]] = None,
    ) -> Optional[ManagedResource]:
        return self.store.update_metadata(
            resource.identity,
            expected_version=resource.resource_version,
            finalizers=finalizers,
            status=status,
        )

    def _superseded(self, resource: ManagedResource) -> ReconcileResult:
        return ReconcileResult(
            identity=resource.key,
            phase=resource.status.phase,
            state=resource.status.state,
            generation=resource.generation,
            observed_generation=resource.status.observed_generation,
            message="Superseded by a newer desired state",
            requeue_after=0,
            superseded=True,
        )

    def _result(self, resource: ManagedResource, operation: str, phase: LifecyclePhase) -> ReconcileResult:
        return ReconcileResult(
            identity=resource.key,
            operation=operation,
            phase=phase,
            state=resource.status.state,
            generation=resource.generation,
            observed_generation=resource.status.observed_generation,
            message=resource.status.message,
        )
