"""Materialization job lifecycle persistence.

Jobs are keyed by ``job_id`` and persisted as one JSON list under the
data root. The idempotency key of a conversion is the source table
name with its version and snapshot.

The live list keeps active jobs and, per table, the most recent job of
each terminal status. Older terminal jobs are appended to a JSON Lines
archive next to the live file and no longer served by the store.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from catalog.catalog_io import job_from_payload, job_to_payload
from core.constants import JOBS_ARCHIVE_FILE_NAME
from core.errors import CatalogNotFoundError, MaterializationError
from core.json_io import (
    append_json_lines,
    expect_object_list,
    read_json_file,
    write_json_file,
)
from core.types import JobStatus, MaterializationJob

ALLOWED_JOB_TRANSITIONS: dict[JobStatus, tuple[JobStatus, ...]] = {
    "pending": ("running", "superseded", "failed"),
    "running": ("succeeded", "failed", "superseded"),
    "succeeded": (),
    "failed": (),
    "superseded": (),
}
TERMINAL_JOB_STATUSES: frozenset[JobStatus] = frozenset({"succeeded", "failed", "superseded"})
_SETTLED_STATUSES: tuple[JobStatus, ...] = ("succeeded", "failed")


def validate_job_transition(current: JobStatus, next_status: JobStatus) -> None:
    """Validate one job status change against the lifecycle edges."""
    allowed_statuses = ALLOWED_JOB_TRANSITIONS[current]
    if next_status not in allowed_statuses:
        raise MaterializationError(
            f"Invalid materialization job transition {current!r} -> {next_status!r}. "
            f"Allowed: {', '.join(allowed_statuses) or 'none'}."
        )


class JobStore:
    """Thread-safe store of materialization jobs."""

    def __init__(self, jobs_path: Path | None = None, archive_path: Path | None = None) -> None:
        """Create a job store.

        Args:
            jobs_path: Live job list; jobs stay in memory when omitted.
            archive_path: Archive of retired terminal jobs. Defaults to
                ``jobs_archive.jsonl`` beside ``jobs_path``.
        """
        self._jobs_path = jobs_path
        self._archive_path = archive_path
        if archive_path is None and jobs_path is not None:
            self._archive_path = jobs_path.with_name(JOBS_ARCHIVE_FILE_NAME)
        self._lock = threading.Lock()
        self._jobs: dict[str, MaterializationJob] = {}
        self._latest_terminal: dict[tuple[str, JobStatus], str] = {}
        if jobs_path is not None:
            retired: list[MaterializationJob] = []
            for job in _load_jobs(jobs_path):
                self._jobs[job.job_id] = job
                retired.extend(self._retire_previous(job))
            if retired:
                self._archive(retired)
                self._persist()

    def create(
        self,
        table_name: str,
        source_version: int,
        source_snapshot: str,
        target_path: str,
    ) -> MaterializationJob:
        """Create and persist a pending job."""
        now = datetime.now(timezone.utc)
        job = MaterializationJob(
            job_id=_build_job_id(now),
            table_name=table_name,
            source_version=source_version,
            source_snapshot=source_snapshot,
            target_path=target_path,
            status="pending",
            attempt=0,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._jobs[job.job_id] = job
            self._persist()
        return job

    def transition(
        self,
        job_id: str,
        next_status: JobStatus,
        error_message: str | None = None,
        target_table: str | None = None,
    ) -> MaterializationJob:
        """Persist one status change.

        Reaching a terminal status retires the table's previous job with
        the same status into the archive.

        Args:
            job_id: Job identifier.
            next_status: Target status.
            error_message: Failure or supersession detail.
            target_table: Registered columnar table on success.

        Returns:
            Updated job record.

        Raises:
            CatalogNotFoundError: If the job is unknown.
            MaterializationError: If the transition is not allowed.
        """
        with self._lock:
            job = self._require(job_id)
            validate_job_transition(job.status, next_status)
            updated = replace(
                job,
                status=next_status,
                updated_at=datetime.now(timezone.utc),
                error_message=error_message,
                target_table=target_table if target_table is not None else job.target_table,
            )
            self._jobs[job_id] = updated
            retired = self._retire_previous(updated)
            self._archive(retired)
            self._persist()
        return updated

    def record_attempt(self, job_id: str, attempt: int) -> MaterializationJob:
        """Persist the number of attempts started for a running job."""
        with self._lock:
            job = self._require(job_id)
            updated = replace(job, attempt=attempt, updated_at=datetime.now(timezone.utc))
            self._jobs[job_id] = updated
            self._persist()
        return updated

    def get(self, job_id: str) -> MaterializationJob:
        with self._lock:
            return self._require(job_id)

    def find_succeeded(
        self,
        table_name: str,
        source_version: int,
        source_snapshot: str,
    ) -> MaterializationJob | None:
        """Return the table's latest succeeded job if it matches the idempotency key."""
        with self._lock:
            return self._latest_matching(table_name, "succeeded", source_version, source_snapshot)

    def find_settled(
        self,
        table_name: str,
        source_version: int,
        source_snapshot: str,
    ) -> MaterializationJob | None:
        """Return the latest succeeded or failed job for an idempotency key, if any."""
        with self._lock:
            for status in _SETTLED_STATUSES:
                job = self._latest_matching(table_name, status, source_version, source_snapshot)
                if job is not None:
                    return job
        return None

    def list_jobs(self, table_name: str | None = None) -> list[MaterializationJob]:
        """Return live jobs ordered by creation time, optionally for one table."""
        with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if table_name is None or job.table_name == table_name
            ]
        return sorted(jobs, key=lambda job: (job.created_at, job.job_id))

    def _latest_matching(
        self,
        table_name: str,
        status: JobStatus,
        source_version: int,
        source_snapshot: str,
    ) -> MaterializationJob | None:
        job_id = self._latest_terminal.get((table_name, status))
        if job_id is None:
            return None
        job = self._jobs[job_id]
        if job.source_version == source_version and job.source_snapshot == source_snapshot:
            return job
        return None

    def _retire_previous(self, job: MaterializationJob) -> list[MaterializationJob]:
        """Index a terminal job and drop the job it replaces from the live map."""
        if job.status not in TERMINAL_JOB_STATUSES:
            return []
        index_key = (job.table_name, job.status)
        previous_id = self._latest_terminal.get(index_key)
        self._latest_terminal[index_key] = job.job_id
        if previous_id is None or previous_id == job.job_id:
            return []
        return [self._jobs.pop(previous_id)]

    def _require(self, job_id: str) -> MaterializationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise CatalogNotFoundError(f"Materialization job '{job_id}' does not exist.")
        return job

    def _archive(self, jobs: list[MaterializationJob]) -> None:
        if self._archive_path is None:
            return
        append_json_lines(self._archive_path, [job_to_payload(job) for job in jobs])

    def _persist(self) -> None:
        if self._jobs_path is None:
            return
        jobs = sorted(self._jobs.values(), key=lambda job: (job.created_at, job.job_id))
        write_json_file(self._jobs_path, [job_to_payload(job) for job in jobs])


def _load_jobs(jobs_path: Path) -> list[MaterializationJob]:
    payload = read_json_file(jobs_path, default_value=[])
    rows = expect_object_list(payload, jobs_path)
    jobs = [job_from_payload(row, jobs_path) for row in rows]
    return sorted(jobs, key=lambda job: (job.created_at, job.job_id))


def _build_job_id(created_at: datetime) -> str:
    timestamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
    return f"job-{timestamp}-{uuid4().hex[:8]}"
