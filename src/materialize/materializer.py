"""Row-to-columnar materialization with write-new-then-swap output.

Each job stages a parquet file under ``_staging/<folder>/<job_id>/`` in
the clean zone, confirms it by listing, copies it into the table folder
and only then removes older part files. Jobs whose source moved on are
abandoned as superseded.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import pyarrow as pa

from catalog.schema_inference import read_row_file_records
from catalog.schema_registry import SchemaRegistry
from catalog.table_naming import (
    compute_snapshot_id,
    folder_base_name,
    is_ignored_key,
    is_table_object,
    normalize_prefix,
    source_prefix_for,
    table_name_for,
)
from core.config import LakeConfig
from core.constants import PARQUET_PART_PREFIX, STAGING_DIR_NAME
from core.errors import (
    JobSupersededError,
    LakeError,
    MalformedSourceError,
    MaterializationError,
    TransientStorageError,
)
from core.keyed_lock import KeyedLocks
from core.logging_config import get_logger
from core.retry import RetryPolicy, call_with_retry
from core.types import MaterializationJob, ObjectInfo, Table, ZoneName
from materialize.columnar_writer import (
    build_arrow_table,
    columns_from_arrow_schema,
    encode_parquet,
)
from materialize.job_store import JobStore
from storage.object_store import ObjectStore, ZoneStores
from views.dependency_graph import ViewDependencyGraph

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class StagedOutput:
    """Parquet output confirmed in the staging area.

    Attributes:
        staging_key: Clean-zone key of the staged object.
        schema: Arrow schema of the written table.
        row_count: Number of rows written.
    """

    staging_key: str
    schema: pa.Schema
    row_count: int


class Materializer:
    """Convert row-format tables into registered columnar tables."""

    def __init__(
        self,
        registry: SchemaRegistry,
        stores: ZoneStores,
        job_store: JobStore,
        config: LakeConfig,
        graph: ViewDependencyGraph | None = None,
    ) -> None:
        """Create a materializer.

        Args:
            registry: Registry holding source tables and receiving columnar ones.
            stores: Landing and clean object stores.
            job_store: Job lifecycle store.
            config: Worker, retry, and timeout settings.
            graph: Optional view graph notified of columnar version bumps.
        """
        self._registry = registry
        self._stores = stores
        self._job_store = job_store
        self._graph = graph
        self._table_locks: KeyedLocks[str] = KeyedLocks()
        self._clean_root = normalize_prefix(config.clean_prefix)
        self._stage_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            backoff_seconds=config.retry_backoff_seconds,
            timeout_seconds=config.materialize_timeout_seconds,
        )
        self._swap_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            backoff_seconds=config.retry_backoff_seconds,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=config.materialize_workers,
            thread_name_prefix="materialize",
        )

    @property
    def job_store(self) -> JobStore:
        return self._job_store

    def materialize(self, table_name: str) -> MaterializationJob:
        """Convert the current version of a row table to parquet.

        Args:
            table_name: Registered row-format table name.

        Returns:
            Terminal job record. A succeeded job for the same source version
            and snapshot is returned unchanged without new work.

        Raises:
            CatalogNotFoundError: If the table is not registered.
            MaterializationError: If the table is not a healthy row table.
        """
        with self._table_locks.lock_for(table_name):
            source = self._registry.require(table_name)
            _ensure_materializable(source)
            existing = self._job_store.find_succeeded(
                table_name, source.version, source.snapshot_id
            )
            if existing is not None:
                _LOGGER.info(
                    "materialization_skipped",
                    table_name=table_name,
                    job_id=existing.job_id,
                    source_version=source.version,
                )
                return existing
            base_name = folder_base_name(table_name)
            job = self._job_store.create(
                table_name=table_name,
                source_version=source.version,
                source_snapshot=source.snapshot_id,
                target_path=source_prefix_for("clean", self._clean_root + base_name),
            )
            return self._run_job(job, source, base_name)

    def submit(self, table_name: str) -> Future[MaterializationJob]:
        """Queue a materialization on the bounded worker pool."""
        return self._executor.submit(self.materialize, table_name)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run_job(
        self,
        job: MaterializationJob,
        source: Table,
        base_name: str,
    ) -> MaterializationJob:
        job = self._job_store.transition(job.job_id, "running")
        job = self._job_store.record_attempt(job.job_id, 1)
        _LOGGER.info(
            "materialization_started",
            table_name=job.table_name,
            job_id=job.job_id,
            source_version=job.source_version,
            source_snapshot=job.source_snapshot,
        )
        try:
            staged = call_with_retry(
                lambda: self._stage(job, source, base_name),
                self._stage_policy,
                f"materialize {job.table_name}",
                before_retry=lambda attempt: self._before_retry(job, attempt),
            )
            self._ensure_current(job)
            target_table = self._swap(job, base_name, staged)
        except JobSupersededError as error:
            self._discard_staging(job, base_name)
            _LOGGER.info(
                "materialization_superseded",
                table_name=job.table_name,
                job_id=job.job_id,
                reason=str(error),
            )
            return self._job_store.transition(job.job_id, "superseded", error_message=str(error))
        except LakeError as error:
            self._discard_staging(job, base_name)
            _LOGGER.error(
                "materialization_failed",
                table_name=job.table_name,
                job_id=job.job_id,
                error=str(error),
            )
            return self._job_store.transition(job.job_id, "failed", error_message=str(error))
        except Exception as error:
            self._discard_staging(job, base_name)
            _LOGGER.exception(
                "materialization_crashed",
                table_name=job.table_name,
                job_id=job.job_id,
                error_type=type(error).__name__,
            )
            return self._job_store.transition(
                job.job_id,
                "failed",
                error_message=f"Unexpected {type(error).__name__}: {error}",
            )
        _LOGGER.info(
            "materialization_succeeded",
            table_name=job.table_name,
            job_id=job.job_id,
            target_table=target_table,
            row_count=staged.row_count,
        )
        return self._job_store.transition(job.job_id, "succeeded", target_table=target_table)

    def _stage(self, job: MaterializationJob, source: Table, base_name: str) -> StagedOutput:
        """Read every source object and write a confirmed staging parquet file."""
        landing = self._stores.landing
        objects = _table_objects(landing, "landing", _zone_relative(source.source_prefix))
        if compute_snapshot_id(objects) != job.source_snapshot:
            raise JobSupersededError(
                f"Objects under '{source.source_prefix}' changed after job {job.job_id} "
                "started. The next crawl will schedule a new job."
            )
        records: list[dict[str, Any]] = []
        expected_names = [column.name for column in source.columns]
        for obj in objects:
            names, file_records = read_row_file_records(obj.key, landing.get(obj.key))
            _ensure_known_columns(obj.key, names, expected_names)
            records.extend(file_records)
        arrow_table = build_arrow_table(source.columns, records, source.source_prefix)
        staging_key = _staging_prefix(base_name, job.job_id) + "part-00000.parquet"
        clean = self._stores.clean
        clean.put(staging_key, encode_parquet(arrow_table))
        staged_keys = {obj.key for obj in clean.list(_staging_prefix(base_name, job.job_id))}
        if staging_key not in staged_keys:
            raise TransientStorageError(
                f"Staged object '{staging_key}' is not listed yet and will be rewritten."
            )
        return StagedOutput(
            staging_key=staging_key,
            schema=arrow_table.schema,
            row_count=arrow_table.num_rows,
        )

    def _swap(self, job: MaterializationJob, base_name: str, staged: StagedOutput) -> str:
        """Publish staged output into the table folder and register it."""
        clean = self._stores.clean
        folder = self._clean_root + base_name
        final_key = _part_key(folder, job)
        call_with_retry(
            lambda: clean.put(final_key, clean.get(staged.staging_key)),
            self._swap_policy,
            f"publish {final_key}",
        )
        for obj in _table_objects(clean, "clean", folder):
            if obj.key != final_key:
                call_with_retry(
                    lambda key=obj.key: clean.delete(key),
                    self._swap_policy,
                    f"delete clean/{obj.key}",
                )
        self._discard_staging(job, base_name)
        published = _table_objects(clean, "clean", folder)
        target_table = table_name_for("clean", base_name)
        update = self._registry.apply_observation(
            name=target_table,
            columns=columns_from_arrow_schema(staged.schema),
            storage_format="columnar",
            source_prefix=source_prefix_for("clean", folder),
            snapshot_id=compute_snapshot_id(published),
            observed_at=datetime.now(timezone.utc),
            source_version=job.source_version,
        )
        if update.outcome == "updated" and self._graph is not None:
            self._graph.mark_stale(target_table)
        return target_table

    def _before_retry(self, job: MaterializationJob, attempt: int) -> None:
        self._ensure_current(job)
        self._job_store.record_attempt(job.job_id, attempt)

    def _ensure_current(self, job: MaterializationJob) -> None:
        """Raise when the source table moved past the job's version or snapshot."""
        current = self._registry.get(job.table_name)
        if current is None:
            raise JobSupersededError(f"Table '{job.table_name}' is no longer registered.")
        if current.version != job.source_version or current.snapshot_id != job.source_snapshot:
            raise JobSupersededError(
                f"Table '{job.table_name}' moved to version {current.version} "
                f"snapshot {current.snapshot_id}; job {job.job_id} targeted version "
                f"{job.source_version} snapshot {job.source_snapshot}."
            )

    def _discard_staging(self, job: MaterializationJob, base_name: str) -> None:
        clean = self._stores.clean
        try:
            for obj in clean.list(_staging_prefix(base_name, job.job_id)):
                clean.delete(obj.key)
        except LakeError as error:
            _LOGGER.warning(
                "staging_cleanup_failed",
                table_name=job.table_name,
                job_id=job.job_id,
                error=str(error),
            )


def _ensure_materializable(source: Table) -> None:
    if source.storage_format != "row":
        raise MaterializationError(
            f"Table '{source.name}' is already columnar. Materialize its raw_ source table."
        )
    if source.schema_state == "conflict":
        raise MaterializationError(
            f"Table '{source.name}' has an unresolved schema conflict: "
            f"{source.conflict_message}. Fix the source files and re-crawl."
        )


def _ensure_known_columns(key: str, names: list[str], expected_names: list[str]) -> None:
    unknown = [name for name in names if name not in expected_names]
    if unknown:
        raise MalformedSourceError(
            f"Object '{key}' has columns {unknown} missing from the cataloged schema. "
            "Re-crawl the table before materializing it."
        )


def _table_objects(store: ObjectStore, zone: ZoneName, folder: str) -> list[ObjectInfo]:
    listing = store.list(f"{folder.strip('/')}/")
    objects = [
        obj
        for obj in listing
        if not is_ignored_key(obj.key) and is_table_object(zone, obj.key)
    ]
    return sorted(objects, key=lambda obj: obj.key)


def _zone_relative(source_prefix: str) -> str:
    """Strip the zone segment from a zone-qualified source prefix."""
    return source_prefix.split("/", 1)[1]


def _part_key(folder: str, job: MaterializationJob) -> str:
    return (
        f"{folder}/{PARQUET_PART_PREFIX}v{job.source_version}-{job.source_snapshot}.parquet"
    )


def _staging_prefix(base_name: str, job_id: str) -> str:
    return f"{STAGING_DIR_NAME}/{base_name}/{job_id}/"
