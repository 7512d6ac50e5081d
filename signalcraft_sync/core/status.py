"""Observed-state projection: turns a sync outcome into a status record."""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

from signalcraft_sync.clients.exceptions import (
    APIError,
    ConfigurationError,
    SerializationError,
    SyncError,
    UnsupportedOperationError,
)
from signalcraft_sync.core.models import LifecyclePhase, ObservedStatus, SyncState, utcnow
from signalcraft_sync.core.payload import validate_structured
from signalcraft_sync.security.validation import sanitize_log_input

logger = structlog.get_logger(__name__)

SYNCED_MESSAGE = "Synced to SignalCraft"
DELETED_MESSAGE = "Deleted from SignalCraft"
ALREADY_ABSENT_MESSAGE = "Already absent from SignalCraft"
RETAINED_MESSAGE = "Released from management; remote object retained"

BLOCKING_ERRORS = (SerializationError, UnsupportedOperationError)


class DeleteResult(str, Enum):
    """How a remote delete concluded."""
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    RETAINED = "retained"              # Kind has no remote delete


class SyncOutcome(BaseModel):
    """Result of one remote operation, success or failure."""

    phase: LifecyclePhase              # In-flight phase that produced the outcome
    success: bool
    remote_id: Optional[str] = None
    remote_snapshot: Optional[Dict[str, Any]] = None
    delete_result: Optional[DeleteResult] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    retryable: bool = True

    @classmethod
    def succeeded(
        cls,
        phase: LifecyclePhase,
        remote_id: Optional[str] = None,
        remote_snapshot: Optional[Dict[str, Any]] = None,
        delete_result: Optional[DeleteResult] = None,
    ) -> "SyncOutcome":
        return cls(
            phase=phase,
            success=True,
            remote_id=remote_id,
            remote_snapshot=remote_snapshot,
            delete_result=delete_result,
        )

    @classmethod
    def failed(
        cls,
        phase: LifecyclePhase,
        error: Exception,
        remote_id: Optional[str] = None,
    ) -> "SyncOutcome":
        """Build a failure outcome from an exception.

        A :class:`SyncError` may carry a remote id learned before the failure
        (for example, a team created before one of its member adds failed);
        that id wins over ``remote_id``.
        """
        status_code = error.status_code if isinstance(error, APIError) else None
        if isinstance(error, SyncError) and error.destination_resource_id:
            remote_id = error.destination_resource_id
            cause = error.__cause__
            if status_code is None and isinstance(cause, APIError):
                status_code = cause.status_code
        return cls(
            phase=phase,
            success=False,
            remote_id=remote_id,
            error_type=type(error).__name__,
            error_message=sanitize_log_input(str(error)),
            status_code=status_code,
            retryable=not isinstance(error, BLOCKING_ERRORS),
        )

    @property
    def is_configuration_error(self) -> bool:
        return self.error_type == ConfigurationError.__name__


class StatusProjector:
    """Maps outcomes onto the externally visible status record.

    The projector is pure apart from the clock: it never decreases
    ``observed_generation`` and only advances it on success.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def begin(self, previous: ObservedStatus, phase: LifecyclePhase) -> ObservedStatus:
        """Mark an in-flight phase before the remote call is made."""
        return previous.model_copy(update={"phase": phase})

    def project(
        self,
        outcome: SyncOutcome,
        previous: ObservedStatus,
        generation: int,
    ) -> ObservedStatus:
        """Project an outcome onto the previous status.

        Args:
            outcome: What the remote side answered
            previous: Status persisted before this pass
            generation: Generation the pass worked on

        Returns:
            New status; ``previous`` is not modified
        """
        now = self._clock()
        if outcome.success:
            return self._project_success(outcome, previous, generation, now)

        message = outcome.error_message or "Sync failed"
        if outcome.status_code and str(outcome.status_code) not in message:
            message = f"{message} (status {outcome.status_code})"

        return ObservedStatus(
            state=SyncState.ERROR,
            phase=LifecyclePhase.ERROR,
            message=message,
            observed_generation=previous.observed_generation,
            last_synced_at=now,
            remote_id=outcome.remote_id or previous.remote_id,
            remote_snapshot=previous.remote_snapshot,
        )

    def _project_success(
        self,
        outcome: SyncOutcome,
        previous: ObservedStatus,
        generation: int,
        now: datetime,
    ) -> ObservedStatus:
        observed_generation = max(previous.observed_generation, generation)

        if outcome.phase == LifecyclePhase.DELETING:
            messages = {
                DeleteResult.DELETED: DELETED_MESSAGE,
                DeleteResult.ALREADY_ABSENT: ALREADY_ABSENT_MESSAGE,
                DeleteResult.RETAINED: RETAINED_MESSAGE,
            }
            return ObservedStatus(
                state=SyncState.SYNCED,
                phase=LifecyclePhase.ABSENT,
                message=messages.get(outcome.delete_result, DELETED_MESSAGE),
                observed_generation=observed_generation,
                last_synced_at=now,
            )

        snapshot = previous.remote_snapshot
        if outcome.remote_snapshot is not None:
            try:
                snapshot = validate_structured(outcome.remote_snapshot, "remote_snapshot")
            except SerializationError as e:
                logger.warning("Discarding remote snapshot that is not plain JSON", error=str(e))

        return ObservedStatus(
            state=SyncState.SYNCED,
            phase=LifecyclePhase.ACTIVE,
            message=SYNCED_MESSAGE,
            observed_generation=observed_generation,
            last_synced_at=now,
            remote_id=outcome.remote_id or previous.remote_id,
            remote_snapshot=snapshot,
        )
