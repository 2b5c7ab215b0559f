"""
Workflow Storage - Persistence layer for workflow records.

Provides:
- WorkflowStore: Abstract base class defining the storage interface
- InMemoryWorkflowStore: In-memory implementation for development/testing
- FileWorkflowStore: File-based implementation with JSON persistence

Both implementations enforce at most one active (non-terminal) workflow
per assessment response at insert time.
"""

import hashlib
import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ocean_validation.errors import IntegrityError, NotFoundError
from ocean_validation.models import WorkflowRecord, WorkflowStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract Base Class
# =============================================================================


class WorkflowStore(ABC):
    """
    Abstract interface for workflow record storage.

    All storage implementations must implement these methods to ensure
    consistent behavior across different backends (memory, file, database).
    """

    @abstractmethod
    def insert(self, record: WorkflowRecord) -> None:
        """
        Insert a new record, atomically claiming its response.

        Raises:
            IntegrityError: if the response already has an active workflow
        """

    @abstractmethod
    def save(self, record: WorkflowRecord) -> None:
        """Save or update a workflow record."""

    @abstractmethod
    def load(self, workflow_id: str) -> WorkflowRecord:
        """
        Load a workflow record by ID.

        Raises:
            NotFoundError: if the workflow is unknown
        """

    @abstractmethod
    def find_active(self, response_id: str) -> Optional[WorkflowRecord]:
        """Active workflow for a response, or None."""

    @abstractmethod
    def list_workflows(
        self,
        status: Optional[WorkflowStatus] = None,
        limit: int = 100,
    ) -> List[WorkflowRecord]:
        """List workflows, newest first, with optional status filtering."""

    @abstractmethod
    def delete(self, workflow_id: str) -> bool:
        """
        Delete a workflow record.

        Returns:
            True if deleted, False if not found
        """

    def create_if_absent(self, record: WorkflowRecord) -> WorkflowRecord:
        """
        Insert ``record`` unless its response already has an active workflow.

        Returns:
            ``record`` if it was inserted, otherwise the existing active record
        """
        try:
            self.insert(record)
            return record
        except IntegrityError as e:
            logger.info(
                f"Response {record.response_id} already has active workflow "
                f"{e.existing_workflow_id}; reusing it"
            )
            return self.load(e.existing_workflow_id)

    def delete_for_response(self, response_id: str) -> int:
        """Delete every workflow for a response (used when the response is deleted)."""
        deleted = 0
        for record in self.list_workflows(limit=10**9):
            if record.response_id == response_id and self.delete(record.workflow_id):
                deleted += 1
        if deleted:
            logger.info(f"Deleted {deleted} workflows for response {response_id}")
        return deleted


# =============================================================================
# In-Memory Implementation
# =============================================================================


class InMemoryWorkflowStore(WorkflowStore):
    """
    In-memory storage implementation for development and testing.

    Records are stored serialized, so callers never share mutable state
    with the store. Data is lost when the process stops.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._active: Dict[str, str] = {}
        self._lock = threading.Lock()
        logger.debug("InMemoryWorkflowStore initialized")

    def insert(self, record: WorkflowRecord) -> None:
        with self._lock:
            existing_id = self._active.get(record.response_id)
            if existing_id is not None and existing_id != record.workflow_id:
                raise IntegrityError(record.response_id, existing_id)

            self._records[record.workflow_id] = record.to_dict()
            if not record.is_terminal:
                self._active[record.response_id] = record.workflow_id
        logger.debug(f"Inserted workflow {record.workflow_id} for response {record.response_id}")

    def save(self, record: WorkflowRecord) -> None:
        with self._lock:
            self._records[record.workflow_id] = record.to_dict()
            if record.is_terminal and self._active.get(record.response_id) == record.workflow_id:
                del self._active[record.response_id]

    def load(self, workflow_id: str) -> WorkflowRecord:
        with self._lock:
            data = self._records.get(workflow_id)
        if data is None:
            raise NotFoundError(workflow_id)
        return WorkflowRecord.from_dict(data)

    def find_active(self, response_id: str) -> Optional[WorkflowRecord]:
        with self._lock:
            workflow_id = self._active.get(response_id)
        return self.load(workflow_id) if workflow_id else None

    def list_workflows(
        self,
        status: Optional[WorkflowStatus] = None,
        limit: int = 100,
    ) -> List[WorkflowRecord]:
        with self._lock:
            items = list(self._records.values())

        if status is not None:
            items = [d for d in items if d.get("status") == status.value]
        items.sort(key=lambda d: d.get("created_at", ""), reverse=True)

        return [WorkflowRecord.from_dict(d) for d in items[:limit]]

    def delete(self, workflow_id: str) -> bool:
        with self._lock:
            data = self._records.pop(workflow_id, None)
            if data is None:
                return False
            if self._active.get(data["response_id"]) == workflow_id:
                del self._active[data["response_id"]]
        logger.debug(f"Deleted workflow {workflow_id} from memory")
        return True

    def clear(self) -> None:
        """Clear all data (useful for testing)."""
        with self._lock:
            self._records.clear()
            self._active.clear()


# =============================================================================
# File-Based Implementation
# =============================================================================


class FileWorkflowStore(WorkflowStore):
    """
    File-based storage implementation with JSON persistence.

    Stores each workflow as a separate JSON file. The active workflow of a
    response is claimed with a marker file naming it, hard-linked into place
    so it appears complete or not at all and never replaces another claim.
    Two stores or processes sharing the directory cannot both start one.
    """

    def __init__(self, storage_dir: Union[str, Path] = ".ocean_validation/workflows") -> None:
        self.storage_dir = Path(storage_dir)
        self.records_dir = self.storage_dir / "records"
        self.active_dir = self.storage_dir / "active"

        self.records_dir.mkdir(parents=True, exist_ok=True)
        self.active_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        logger.debug(f"FileWorkflowStore initialized at {self.storage_dir}")

    def _record_path(self, workflow_id: str) -> Path:
        return self.records_dir / f"{workflow_id}.json"

    def _marker_path(self, response_id: str) -> Path:
        digest = hashlib.sha256(response_id.encode("utf-8")).hexdigest()[:32]
        return self.active_dir / f"{digest}.active"

    def _write_record(self, record: WorkflowRecord) -> None:
        path = self._record_path(record.workflow_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(record.to_dict(), f, indent=2)
        os.replace(tmp_path, path)

    def _read_marker(self, response_id: str) -> Optional[str]:
        try:
            return self._marker_path(response_id).read_text().strip() or None
        except FileNotFoundError:
            return None

    def _link_marker(self, marker: Path, workflow_id: str) -> bool:
        """Publish a complete marker in one step; False if one already exists."""
        tmp_path = marker.with_name(f"{marker.name}.{workflow_id}.tmp")
        tmp_path.write_text(workflow_id)
        try:
            os.link(tmp_path, marker)
        except FileExistsError:
            return False
        finally:
            tmp_path.unlink(missing_ok=True)
        return True

    def _remove_marker(self, response_id: str, workflow_id: str) -> None:
        """
        Remove the response's marker only if it still names ``workflow_id``.

        The marker is moved aside before it is checked, so a claim made by
        another store in the meantime is put back instead of deleted.
        """
        marker = self._marker_path(response_id)
        aside = marker.with_name(f"{marker.name}.{uuid.uuid4().hex}.old")
        try:
            os.rename(marker, aside)
        except FileNotFoundError:
            return

        if aside.read_text().strip() == workflow_id:
            aside.unlink(missing_ok=True)
            return

        try:
            os.link(aside, marker)
        except FileExistsError:
            logger.error(
                f"Lost active marker of response {response_id} while releasing "
                f"workflow {workflow_id}"
            )
        finally:
            aside.unlink(missing_ok=True)

    def _release_marker(self, response_id: str, workflow_id: str) -> None:
        if self._read_marker(response_id) == workflow_id:
            self._remove_marker(response_id, workflow_id)

    def _claim_marker(self, response_id: str, workflow_id: str) -> None:
        marker = self._marker_path(response_id)
        for _ in range(3):
            if self._link_marker(marker, workflow_id):
                return

            existing_id = self._read_marker(response_id)
            if existing_id == workflow_id:
                return
            if existing_id is None:
                # Released between the link attempt and the read
                continue
            if self._is_active(existing_id):
                raise IntegrityError(response_id, existing_id)

            # Records are written before their marker, so a marker whose
            # record is missing or terminal is left over from a finished
            # or deleted workflow
            logger.warning(f"Removing stale active marker for response {response_id}")
            self._remove_marker(response_id, existing_id)

        existing_id = self._read_marker(response_id) or ""
        raise IntegrityError(response_id, existing_id)

    def _is_active(self, workflow_id: str) -> bool:
        try:
            return not self.load(workflow_id).is_terminal
        except NotFoundError:
            return False

    def insert(self, record: WorkflowRecord) -> None:
        with self._lock:
            # Record first: a marker always points at a readable record
            self._write_record(record)
            if not record.is_terminal:
                try:
                    self._claim_marker(record.response_id, record.workflow_id)
                except IntegrityError:
                    self._record_path(record.workflow_id).unlink(missing_ok=True)
                    raise
        logger.debug(f"Inserted workflow {record.workflow_id} for response {record.response_id}")

    def save(self, record: WorkflowRecord) -> None:
        with self._lock:
            self._write_record(record)
            if record.is_terminal:
                self._release_marker(record.response_id, record.workflow_id)

    def load(self, workflow_id: str) -> WorkflowRecord:
        path = self._record_path(workflow_id)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise NotFoundError(workflow_id) from None
        return WorkflowRecord.from_dict(data)

    def find_active(self, response_id: str) -> Optional[WorkflowRecord]:
        workflow_id = self._read_marker(response_id)
        if workflow_id is None:
            return None
        try:
            record = self.load(workflow_id)
        except NotFoundError:
            return None
        return None if record.is_terminal else record

    def list_workflows(
        self,
        status: Optional[WorkflowStatus] = None,
        limit: int = 100,
    ) -> List[WorkflowRecord]:
        records: List[WorkflowRecord] = []
        for path in self.records_dir.glob("*.json"):
            try:
                with open(path, "r") as f:
                    records.append(WorkflowRecord.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable workflow file {path.name}: {e}")

        if status is not None:
            records = [r for r in records if r.status == status]
        records.sort(key=lambda r: r.created_at, reverse=True)

        return records[:limit]

    def delete(self, workflow_id: str) -> bool:
        with self._lock:
            try:
                record = self.load(workflow_id)
            except NotFoundError:
                return False
            self._record_path(workflow_id).unlink(missing_ok=True)
            self._release_marker(record.response_id, workflow_id)
        logger.debug(f"Deleted workflow file {workflow_id}")
        return True


def create_store(backend: str, directory: Optional[Union[str, Path]] = None) -> WorkflowStore:
    """Build a store from the ``storage`` config section values."""
    if backend == "memory":
        return InMemoryWorkflowStore()
    if backend == "file":
        return FileWorkflowStore(directory or ".ocean_validation/workflows")
    raise ValueError(f"Unknown storage backend: {backend}")
