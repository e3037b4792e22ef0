"""Persistence boundary used by the task runner and orchestrator.

TaskStore is the interface; SqliteTaskStore backs it with the SQLite layer
in ``apply_worker.core.db`` and a local directory for files (resumes,
uploaded artifacts). Tests may substitute any object with the same methods.
"""

import logging
import sqlite3
from pathlib import Path, PurePosixPath
from typing import Any, Protocol, runtime_checkable

from apply_worker.core import db
from apply_worker.core.errors import StorageError
from apply_worker.core.schemas import (
    EventLevel,
    JobStatus,
    JobTarget,
    Profile,
    Resume,
    RunEvent,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class TaskStore(Protocol):
    def fetch_one_queued(self) -> Task | None: ...
    def compare_and_set_running(
        self, task_id: int, expected_status: TaskStatus = TaskStatus.QUEUED,
    ) -> Task | None: ...
    def get_job_target(self, job_target_id: int) -> JobTarget | None: ...
    def get_resume(self, resume_id: int) -> Resume | None: ...
    def get_profile(self, user_id: str) -> Profile | None: ...
    def update_task_status(self, task_id: int, status: TaskStatus, **fields: Any) -> None: ...
    def update_job_target_status(self, job_target_id: int, status: JobStatus) -> None: ...
    def append_event(
        self, task_id: int, level: EventLevel, message: str, data: dict[str, Any] | None = None,
    ) -> None: ...
    def download_file(self, storage_path: str) -> bytes: ...
    def upload_file(self, storage_path: str, data: bytes, content_type: str) -> str: ...
    def insert_artifact_records(self, records: list[dict[str, Any]]) -> None: ...


class SqliteTaskStore:
    """TaskStore over one SQLite connection and a local storage directory."""

    def __init__(self, conn: sqlite3.Connection, storage_dir: str | Path) -> None:
        self._conn = conn
        self._storage_dir = Path(storage_dir)

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def fetch_one_queued(self) -> Task | None:
        return db.fetch_one_queued(self._conn)

    def compare_and_set_running(
        self,
        task_id: int,
        expected_status: TaskStatus = TaskStatus.QUEUED,
    ) -> Task | None:
        return db.compare_and_set_running(self._conn, task_id, expected_status)

    def get_job_target(self, job_target_id: int) -> JobTarget | None:
        return db.get_job_target(self._conn, job_target_id)

    def get_resume(self, resume_id: int) -> Resume | None:
        return db.get_resume(self._conn, resume_id)

    def get_profile(self, user_id: str) -> Profile | None:
        return db.get_profile(self._conn, user_id)

    def update_task_status(self, task_id: int, status: TaskStatus, **fields: Any) -> None:
        db.update_run(self._conn, task_id, status, **fields)

    def update_job_target_status(self, job_target_id: int, status: JobStatus) -> None:
        db.update_job_target_status(self._conn, job_target_id, status)

    def append_event(
        self,
        task_id: int,
        level: EventLevel,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        db.append_event(
            self._conn, RunEvent(run_id=task_id, level=level, message=message, data=data),
        )

    def insert_artifact_records(self, records: list[dict[str, Any]]) -> None:
        if records:
            db.insert_artifacts(self._conn, records)

    # --- Files ---

    def _resolve(self, storage_path: str) -> Path:
        relative = PurePosixPath(storage_path)
        if relative.is_absolute() or ".." in relative.parts:
            msg = f"Invalid storage path: {storage_path}"
            raise StorageError(msg)
        return self._storage_dir.joinpath(*relative.parts)

    def download_file(self, storage_path: str) -> bytes:
        source = self._resolve(storage_path)
        if not source.is_file():
            msg = f"Stored file not found: {storage_path}"
            raise StorageError(msg)
        return source.read_bytes()

    def upload_file(self, storage_path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``storage_path``, overwriting. Returns the storage path."""
        target = self._resolve(storage_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            msg = f"Failed to store {storage_path}: {e}"
            raise StorageError(msg) from e
        logger.debug("Stored %s (%s, %d bytes)", storage_path, content_type, len(data))
        return storage_path
