"""Work scheduling: which objects to reconcile, when, and how many at once."""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from signalcraft_sync.audit.logger import AuditLogger
from signalcraft_sync.clients.exceptions import StateError
from signalcraft_sync.core.models import LifecyclePhase, ManagedResource, ResourceIdentity
from signalcraft_sync.core.reconciler import ReconcileResult, Reconciler
from signalcraft_sync.core.store import ResourceStore

logger = structlog.get_logger(__name__)


class ReconcileController:
    """Runs reconcile passes with per-object serialization and bounded parallelism.

    An object is due when its desired state (generation, deletion intent)
    changed since its last pass, or when a requeue deadline set by that pass
    has passed. Passes that ask for no requeue leave the object idle until
    the next change.
    """

    def __init__(
        self,
        store: ResourceStore,
        reconciler: Reconciler,
        max_concurrent: int = 10,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Desired-state store to poll
            reconciler: Reconciler that runs single passes
            max_concurrent: Maximum number of objects reconciled in parallel
            audit_logger: Optional audit logger for reconcile outcomes
            clock: Monotonic clock in seconds (tests inject a fake one)
        """
        self.store = store
        self.reconciler = reconciler
        self.max_concurrent = max_concurrent
        self.audit_logger = audit_logger
        self._clock = clock

        self._locks: Dict[str, asyncio.Lock] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._fingerprints: Dict[str, Tuple] = {}
        self._deadlines: Dict[str, float] = {}

        self._logger = logger.bind(controller_type=self.__class__.__name__)

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    def next_deadline(self, identity: ResourceIdentity) -> Optional[float]:
        """Clock time at which ``identity`` is scheduled to run again, if any."""
        return self._deadlines.get(identity.key)

    def is_due(self, resource: ManagedResource) -> bool:
        key = resource.key
        if self._fingerprints.get(key) != resource.fingerprint():
            return True
        deadline = self._deadlines.get(key)
        return deadline is not None and self._clock() >= deadline

    def in_flight(self, identity: ResourceIdentity) -> bool:
        lock = self._locks.get(identity.key)
        return lock is not None and lock.locked()

    async def reconcile_one(self, identity: ResourceIdentity, force: bool = False) -> ReconcileResult:
        """Reconcile one object, waiting for any pass already running on it."""
        async with self._lock_for(identity.key):
            before = self.store.get(identity)
            try:
                result = await self.reconciler.reconcile(identity, force=force)
            except StateError as e:
                self._logger.error("Store failure during reconcile", identity=identity.key, error=str(e))
                result = ReconcileResult(
                    identity=identity.key,
                    operation="noop",
                    phase=LifecyclePhase.ERROR,
                    success=False,
                    message=str(e),
                    error_type=type(e).__name__,
                    requeue_after=self.reconciler.retry_interval,
                )

            self._schedule(identity, before, result)

            if self.audit_logger is not None:
                record = self.store.get(identity) or before
                remote_id = record.status.remote_id if record else None
                self.audit_logger.log_reconcile_result(result, remote_id=remote_id)
            return result

    def _schedule(
        self,
        identity: ResourceIdentity,
        before: Optional[ManagedResource],
        result: ReconcileResult,
    ) -> None:
        key = identity.key
        if before is None or (result.phase == LifecyclePhase.ABSENT and self.store.get(identity) is None):
            self._forget(key)
            return

        if not result.superseded:
            self._fingerprints[key] = before.fingerprint()
        else:
            self._fingerprints.pop(key, None)

        if result.requeue_after is None:
            self._deadlines.pop(key, None)
        else:
            self._deadlines[key] = self._clock() + result.requeue_after
            self._logger.debug("Requeued", identity=key, requeue_after=result.requeue_after)

    def _forget(self, key: str) -> None:
        self._fingerprints.pop(key, None)
        self._deadlines.pop(key, None)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    async def reconcile_all(self, only_due: bool = False, force: bool = False) -> List[ReconcileResult]:
        """Reconcile every object in the store (or only those that are due).

        Objects already being reconciled are skipped when ``only_due`` is set.
        """
        resources = self.store.list()
        known = {resource.key for resource in resources}
        for key in list(self._fingerprints):
            if key not in known:
                self._forget(key)

        if only_due:
            resources = [
                r for r in resources
                if self.is_due(r) and not self.in_flight(r.identity)
            ]
        if not resources:
            return []

        semaphore = self._get_semaphore()

        async def run_one(resource: ManagedResource) -> ReconcileResult:
            async with semaphore:
                return await self.reconcile_one(resource.identity, force=force)

        results = await asyncio.gather(*[run_one(r) for r in resources])

        self._logger.info(
            "Reconcile cycle completed",
            reconciled=len(results),
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
            requeued=sum(1 for r in results if r.requeue),
        )
        return list(results)

    async def run(
        self,
        poll_interval: float,
        stop_event: Optional[asyncio.Event] = None,
        max_cycles: Optional[int] = None,
    ) -> int:
        """Poll the store and reconcile due objects until stopped.

        Args:
            poll_interval: Seconds between polls
            stop_event: Event that ends the loop when set
            max_cycles: Stop after this many cycles (None runs until stopped)

        Returns:
            Number of cycles run
        """
        stop_event = stop_event or asyncio.Event()
        cycles = 0
        self._logger.info("Controller started", poll_interval=poll_interval)

        while not stop_event.is_set():
            await self.reconcile_all(only_due=True)
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass

        self._logger.info("Controller stopped", cycles=cycles)
        return cycles
