"""Desired-state store: where managed resources, finalizers and status live.

The store plays the role of the declarative source. The source side records
specs (:meth:`ResourceStore.apply`) and deletion intent
(:meth:`ResourceStore.request_deletion`); the engine side only writes
finalizers and status through the conditional :meth:`ResourceStore.update_metadata`.
"""

import json
import os
import shutil
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from signalcraft_sync.clients.exceptions import StaleResourceError, StateError
from signalcraft_sync.core.models import (
    ManagedResource,
    ObservedStatus,
    ResourceIdentity,
    utcnow,
)

logger = structlog.get_logger(__name__)


class ResourceStore(ABC):
    """Abstract desired-state store.

    Every method returns detached copies; mutating a returned record has no
    effect until it is written back.
    """

    @abstractmethod
    def get(self, identity: ResourceIdentity) -> Optional[ManagedResource]:
        """Return the record for ``identity``, or None if there is none."""

    @abstractmethod
    def list(self) -> List[ManagedResource]:
        """Return every record, ordered by identity key."""

    @abstractmethod
    def apply(self, identity: ResourceIdentity, spec: Dict[str, Any]) -> ManagedResource:
        """Record a desired spec, creating the object or bumping its generation.

        Raises:
            StateError: If the object is being deleted
        """

    @abstractmethod
    def request_deletion(self, identity: ResourceIdentity) -> Optional[ManagedResource]:
        """Mark the object for deletion.

        Returns:
            The updated record, or None if it had no finalizers and was purged
        """

    @abstractmethod
    def update_metadata(
        self,
        identity: ResourceIdentity,
        expected_version: int,
        finalizers: Optional[List[str]] = None,
        status: Optional[ObservedStatus] = None,
    ) -> Optional[ManagedResource]:
        """Conditionally replace finalizers and/or status.

        Returns:
            The updated record, or None if removing the last finalizer of a
            deletion-requested object purged it

        Raises:
            StaleResourceError: If the stored version differs from ``expected_version``
            StateError: If the object does not exist
        """


class InMemoryResourceStore(ResourceStore):
    """Dictionary-backed store.

    Mutations work on a copy of the records that replaces the current ones
    only after :meth:`_persist` succeeded, so a failed write leaves the
    store unchanged. Subclasses persist the copy and may reload records
    written by other processes in :meth:`_refresh`.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ManagedResource] = {}
        self._logger = logger.bind(store=self.__class__.__name__)

    def _persist(self, records: Dict[str, ManagedResource]) -> None:
        """Hook called with the new records before they replace the current ones."""

    def _refresh(self) -> None:
        """Hook called before every read or mutation."""

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Exclusive section around a read-check-write."""
        yield

    def _working_copy(self) -> Dict[str, ManagedResource]:
        return {key: record.model_copy(deep=True) for key, record in self._records.items()}

    def _commit(self, records: Dict[str, ManagedResource]) -> None:
        self._persist(records)
        self._records = records

    def get(self, identity: ResourceIdentity) -> Optional[ManagedResource]:
        self._refresh()
        record = self._records.get(identity.key)
        return record.model_copy(deep=True) if record is not None else None

    def list(self) -> List[ManagedResource]:
        self._refresh()
        return [self._records[key].model_copy(deep=True) for key in sorted(self._records)]

    def apply(self, identity: ResourceIdentity, spec: Dict[str, Any]) -> ManagedResource:
        spec = json.loads(json.dumps(spec))
        with self._locked():
            self._refresh()
            records = self._working_copy()
            record = records.get(identity.key)

            if record is None:
                record = ManagedResource(identity=identity, desired_spec=spec)
                records[identity.key] = record
                self._commit(records)
                self._logger.info("Recorded new resource", identity=identity.key)
            elif record.deletion_requested:
                raise StateError(f"Resource {identity.key} is being deleted")
            elif record.desired_spec != spec:
                record.desired_spec = spec
                record.generation += 1
                record.resource_version += 1
                record.updated_at = utcnow()
                self._commit(records)
                self._logger.info(
                    "Updated resource spec",
                    identity=identity.key,
                    generation=record.generation,
                )

            return record.model_copy(deep=True)

    def request_deletion(self, identity: ResourceIdentity) -> Optional[ManagedResource]:
        with self._locked():
            self._refresh()
            records = self._working_copy()
            record = records.get(identity.key)
            if record is None:
                return None

            if not record.finalizers:
                del records[identity.key]
                self._commit(records)
                self._logger.info("Purged resource without finalizers", identity=identity.key)
                return None

            if not record.deletion_requested:
                record.deletion_requested = True
                record.resource_version += 1
                record.updated_at = utcnow()
                self._commit(records)
                self._logger.info("Deletion requested", identity=identity.key)
            return record.model_copy(deep=True)

    def update_metadata(
        self,
        identity: ResourceIdentity,
        expected_version: int,
        finalizers: Optional[List[str]] = None,
        status: Optional[ObservedStatus] = None,
    ) -> Optional[ManagedResource]:
        with self._locked():
            self._refresh()
            records = self._working_copy()
            record = records.get(identity.key)
            if record is None:
                raise StateError(f"Resource {identity.key} not found")
            if record.resource_version != expected_version:
                raise StaleResourceError(
                    f"Resource {identity.key} was modified concurrently",
                    expected_version=expected_version,
                    actual_version=record.resource_version,
                )

            if finalizers is not None:
                record.finalizers = list(finalizers)
            if status is not None:
                record.status = status.model_copy(deep=True)
            record.resource_version += 1
            record.updated_at = utcnow()

            if record.deletion_requested and not record.finalizers:
                del records[identity.key]
                self._commit(records)
                self._logger.info("Purged resource after last finalizer removed", identity=identity.key)
                return None

            self._commit(records)
            return record.model_copy(deep=True)


class FileResourceStore(InMemoryResourceStore):
    """Store persisted as a single JSON document shared between processes.

    Several processes may open the same file (for example ``run`` and
    ``apply``). Every operation reloads the document if it changed on disk,
    and mutations hold ``<file>.lock`` from the reload to the write, so the
    compare-and-swap in :meth:`update_metadata` checks the version on disk.

    Writes go to a temporary file that atomically replaces the document.
    With backups enabled the previous document is first copied to
    ``<file>.backup``, which is loaded if the document itself is missing.
    """

    LOCK_TIMEOUT_SECONDS = 10.0
    STALE_LOCK_SECONDS = 60.0
    LOCK_POLL_SECONDS = 0.02

    def __init__(self, state_file: Path, enable_backup: bool = True) -> None:
        """Initialize the file store and load existing records.

        Raises:
            StateError: If the existing document cannot be read
        """
        super().__init__()
        self.state_file = Path(state_file)
        self.enable_backup = enable_backup
        self.backup_file = self.state_file.with_suffix(self.state_file.suffix + ".backup")
        self.lock_file = self.state_file.with_suffix(self.state_file.suffix + ".lock")
        self._signature: Optional[Tuple[int, int, int]] = None
        self._logger = self._logger.bind(state_file=str(self.state_file))
        self._refresh()

    def _file_signature(self) -> Optional[Tuple[int, int, int]]:
        try:
            stat = self.state_file.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StateError(f"Failed to stat state file {self.state_file}: {e}") from e
        return (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    def _refresh(self) -> None:
        signature = self._file_signature()
        if signature is not None and signature == self._signature:
            return

        if signature is not None:
            self._records = self._read_document(self.state_file)
        elif self.backup_file.exists():
            self._logger.warning("State file missing, loading backup", backup_file=str(self.backup_file))
            self._records = self._read_document(self.backup_file)
        else:
            self._records = {}
        self._signature = signature
        self._logger.debug("Loaded resource state", resources=len(self._records))

    def _read_document(self, path: Path) -> Dict[str, ManagedResource]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            records = {}
            for item in data.get("resources", []):
                record = ManagedResource.model_validate(item)
                records[record.key] = record
            return records
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StateError(f"Failed to load state file {path}: {e}") from e

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateError(f"Failed to create state directory for {self.state_file}: {e}") from e

        deadline = time.monotonic() + self.LOCK_TIMEOUT_SECONDS
        while True:
            try:
                fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if self._lock_is_stale():
                    self._logger.warning("Removing stale state lock", lock_file=str(self.lock_file))
                    self._remove_lock()
                    continue
                if time.monotonic() >= deadline:
                    raise StateError(f"Timed out waiting for state lock {self.lock_file}")
                time.sleep(self.LOCK_POLL_SECONDS)
            except OSError as e:
                raise StateError(f"Failed to acquire state lock {self.lock_file}: {e}") from e

        try:
            os.write(fd, str(os.getpid()).encode("utf-8"))
        finally:
            os.close(fd)

        # Mutations always re-read the document while holding the lock
        self._signature = None
        try:
            yield
        finally:
            self._remove_lock()

    def _lock_is_stale(self) -> bool:
        try:
            age = time.time() - self.lock_file.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > self.STALE_LOCK_SECONDS

    def _remove_lock(self) -> None:
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass

    def _persist(self, records: Dict[str, ManagedResource]) -> None:
        document = {
            "version": 1,
            "resources": [records[key].model_dump(mode="json") for key in sorted(records)],
        }
        tmp_file = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        try:
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, default=str)
            if self.enable_backup and self.state_file.exists():
                shutil.copy2(self.state_file, self.backup_file)
            os.replace(tmp_file, self.state_file)
        except OSError as e:
            raise StateError(f"Failed to write state file {self.state_file}: {e}") from e
        self._signature = self._file_signature()
