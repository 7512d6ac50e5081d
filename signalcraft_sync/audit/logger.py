"""Audit trail of reconcile outcomes, written as JSON lines."""

import json
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

import structlog
from pydantic import BaseModel, Field, ValidationError

from signalcraft_sync.core.reconciler import ReconcileResult


class AuditEvent(BaseModel):
    """Individual audit event."""

    event_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: str  # execution_start, execution_complete, reconcile_result
    execution_id: str

    # Resource information
    kind: Optional[str] = None
    identity: str  # kind/scope/name, or "system"
    remote_id: Optional[str] = None
    generation: Optional[int] = None
    observed_generation: Optional[int] = None

    # Outcome
    operation: str  # create, update, delete, noop, configure, finalize
    phase: Optional[str] = None
    state: Optional[str] = None
    success: bool
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    superseded: bool = False

    user_agent: str = "signalcraft-sync"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_log_record(self) -> Dict[str, Any]:
        """Convert to structured log record format."""
        record = self.model_dump(mode="json")
        record["timestamp"] = self.timestamp.isoformat()
        return record


class AuditSummary(BaseModel):
    """Summary of audit events for one controller execution."""

    execution_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None

    total_events: int = 0
    success_events: int = 0
    error_events: int = 0

    operations: Dict[str, int] = Field(default_factory=dict)
    kinds: Dict[str, int] = Field(default_factory=dict)
    error_types: Dict[str, int] = Field(default_factory=dict)

    def add_event(self, event: AuditEvent) -> None:
        """Add an event to the summary statistics."""
        self.total_events += 1

        if event.success:
            self.success_events += 1
        else:
            self.error_events += 1
            error_type = self._categorize_error(event.error_type, event.error_message)
            self.error_types[error_type] = self.error_types.get(error_type, 0) + 1

        self.operations[event.operation] = self.operations.get(event.operation, 0) + 1
        if event.kind:
            self.kinds[event.kind] = self.kinds.get(event.kind, 0) + 1

    def _categorize_error(self, error_type: Optional[str], error_message: Optional[str]) -> str:
        """Categorize an error by exception type, falling back to the message."""
        by_type = {
            "ConfigurationError": "configuration_error",
            "NetworkError": "network_error",
            "AuthenticationError": "authentication_error",
            "AuthorizationError": "permission_error",
            "ResourceNotFoundError": "not_found_error",
            "ConflictError": "conflict_error",
            "ServerError": "server_error",
            "SerializationError": "serialization_error",
            "UnsupportedOperationError": "unsupported_operation",
            "MembershipSyncError": "membership_error",
        }
        if error_type in by_type:
            return by_type[error_type]

        error_lower = (error_message or "").lower()
        if "rate limit" in error_lower or "429" in error_lower:
            return "rate_limit_error"
        elif "validation" in error_lower or "400" in error_lower:
            return "validation_error"
        else:
            return "other_error"

    def get_success_rate(self) -> float:
        """Get success rate as percentage."""
        if self.total_events == 0:
            return 0.0
        return (self.success_events / self.total_events) * 100.0


class AuditLogger:
    """Audit logger for reconcile passes."""

    def __init__(
        self,
        audit_dir: Path = Path("./logs/audit"),
        retention_days: int = 90,
    ) -> None:
        """Initialize audit logger.

        Args:
            audit_dir: Directory to store audit logs
            retention_days: Number of days to retain audit logs
        """
        self.audit_dir = Path(audit_dir)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self.retention_days = retention_days

        self.current_file: Optional[Path] = None
        self.file_handle: Optional[TextIO] = None
        self.current_summary: Optional[AuditSummary] = None

        self._logger = structlog.get_logger(__name__)

    def start_execution_audit(self, execution_id: Optional[str] = None) -> AuditSummary:
        """Start audit logging for a controller execution.

        Args:
            execution_id: Unique execution identifier (generated if omitted)

        Returns:
            AuditSummary for tracking events
        """
        execution_id = execution_id or f"exec_{int(time.time())}"
        self.current_summary = AuditSummary(
            execution_id=execution_id,
            started_at=datetime.now(timezone.utc),
        )
        self._rotate_audit_file(execution_id)

        self.log_event(AuditEvent(
            event_id=f"{execution_id}_start",
            event_type="execution_start",
            execution_id=execution_id,
            identity="system",
            operation="start",
            success=True,
        ))

        self._logger.info(
            "Started audit logging for execution",
            execution_id=execution_id,
            audit_file=str(self.current_file),
        )
        return self.current_summary

    def complete_execution_audit(
        self,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> Optional[AuditSummary]:
        """Complete audit logging and write the summary file.

        Returns:
            Final AuditSummary if an execution was being audited
        """
        summary = self.current_summary
        if summary is None:
            return None

        summary.completed_at = datetime.now(timezone.utc)
        self.log_event(AuditEvent(
            event_id=f"{summary.execution_id}_complete",
            event_type="execution_complete",
            execution_id=summary.execution_id,
            identity="system",
            operation="complete" if success else "failed",
            success=success,
            error_message=error_message,
            metadata={
                "total_events": summary.total_events,
                "success_rate": summary.get_success_rate(),
                "duration_seconds": (summary.completed_at - summary.started_at).total_seconds(),
            },
        ))

        self._write_execution_summary()
        self._close_current_file()

        self._logger.info(
            "Completed audit logging for execution",
            execution_id=summary.execution_id,
            total_events=summary.total_events,
            success_rate=summary.get_success_rate(),
        )

        self.current_summary = None
        return summary

    def log_event(self, event: AuditEvent) -> None:
        """Record an event in the summary, the audit file and the structured log."""
        if self.current_summary and event.event_type == "reconcile_result":
            self.current_summary.add_event(event)

        self._write_event_to_file(event)
        self._logger.info("Audit event", **event.to_log_record())

    def log_reconcile_result(self, result: ReconcileResult, remote_id: Optional[str] = None) -> None:
        """Log the outcome of one reconcile pass."""
        execution_id = self.current_summary.execution_id if self.current_summary else "adhoc"
        kind = result.identity.split("/", 1)[0]
        self.log_event(AuditEvent(
            event_id=f"{execution_id}_{uuid.uuid4().hex[:12]}",
            event_type="reconcile_result",
            execution_id=execution_id,
            kind=kind,
            identity=result.identity,
            remote_id=remote_id,
            generation=result.generation,
            observed_generation=result.observed_generation,
            operation=result.operation,
            phase=result.phase.value,
            state=result.state.value if result.state else None,
            success=result.success,
            error_type=result.error_type,
            error_message=None if result.success else result.message,
            superseded=result.superseded,
            metadata={"requeue_after": result.requeue_after},
        ))

    def _rotate_audit_file(self, execution_id: str) -> None:
        self._close_current_file()

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self.current_file = self.audit_dir / f"audit_{timestamp}_{execution_id}.jsonl"
        self.file_handle = open(self.current_file, "w", encoding="utf-8")

        self._logger.debug("Rotated to new audit file", file=str(self.current_file))

    def _write_event_to_file(self, event: AuditEvent) -> None:
        if not self.file_handle:
            return
        try:
            self.file_handle.write(json.dumps(event.to_log_record(), default=str) + "\n")
            self.file_handle.flush()
        except OSError as e:
            self._logger.error("Failed to write audit event to file", event_id=event.event_id, error=str(e))

    def _write_execution_summary(self) -> None:
        if not self.current_summary:
            return
        summary_file = self.audit_dir / f"summary_{self.current_summary.execution_id}.json"
        try:
            with open(summary_file, "w", encoding="utf-8") as f:
                json.dump(self.current_summary.model_dump(mode="json"), f, indent=2, default=str)
            self._logger.debug("Wrote execution summary", file=str(summary_file))
        except OSError as e:
            self._logger.error("Failed to write execution summary", error=str(e))

    def _close_current_file(self) -> None:
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None

    def cleanup_old_files(self) -> int:
        """Remove audit and summary files older than the retention period.

        Returns:
            Number of audit files removed
        """
        cutoff_time = time.time() - (self.retention_days * 24 * 60 * 60)
        cleaned_count = 0

        for audit_file in self.audit_dir.glob("audit_*.jsonl"):
            if audit_file.stat().st_mtime < cutoff_time:
                audit_file.unlink()
                cleaned_count += 1

        for summary_file in self.audit_dir.glob("summary_*.json"):
            if summary_file.stat().st_mtime < cutoff_time:
                summary_file.unlink()

        if cleaned_count > 0:
            self._logger.info("Cleaned up old audit files", count=cleaned_count)
        return cleaned_count

    def get_execution_summaries(self, limit: int = 10) -> List[AuditSummary]:
        """Get recent execution summaries, newest first."""
        summaries = []
        summary_files = sorted(
            self.audit_dir.glob("summary_*.json"),
            key=lambda f: f.stat().st_mtime,
            reverse=True,
        )

        for summary_file in summary_files[:limit]:
            try:
                with open(summary_file, "r", encoding="utf-8") as f:
                    summaries.append(AuditSummary.model_validate(json.load(f)))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                self._logger.warning("Failed to load summary file", file=str(summary_file), error=str(e))

        return summaries
