"""Zone crawler that infers and refreshes table schemas.

Objects are grouped by their per-table folder, a bounded sample of
each folder is parsed, and the merged schema is applied to the
registry. Failures stay isolated to the table that produced them.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from catalog.schema_inference import (
    SchemaAccumulator,
    infer_parquet_schema,
    infer_row_file_schema,
)
from catalog.schema_registry import SchemaRegistry
from catalog.table_naming import (
    compute_snapshot_id,
    group_objects_by_folder,
    is_ignored_key,
    is_table_object,
    normalize_prefix,
    source_prefix_for,
    table_folder_of,
    table_name_for,
)
from core.config import LakeConfig
from core.errors import (
    DuplicateNameError,
    LakeStorageError,
    MalformedSourceError,
    MisplacedObjectError,
    SchemaConflictError,
)
from core.keyed_lock import KeyedLocks
from core.logging_config import get_logger
from core.retry import RetryPolicy, call_with_retry
from core.types import Column, CrawlEvent, CrawlResult, ObjectInfo, ZoneName
from storage.object_store import ZoneStores
from views.dependency_graph import ViewDependencyGraph

_LOGGER = get_logger(__name__)

FolderOutcome = Literal["added", "updated", "refreshed", "unchanged", "error"]


@dataclass(frozen=True)
class _FolderCrawl:
    """Outcome of crawling one table folder."""

    table_name: str
    outcome: FolderOutcome
    error: str | None = None


class Crawler:
    """Discover tables in a zone and keep the schema registry current."""

    def __init__(
        self,
        registry: SchemaRegistry,
        graph: ViewDependencyGraph,
        stores: ZoneStores,
        config: LakeConfig,
    ) -> None:
        """Create a crawler.

        Args:
            registry: Registry receiving inferred schemas.
            graph: View graph notified of schema version bumps.
            stores: Landing and clean object stores.
            config: Sampling, retry, and worker settings.
        """
        self._registry = registry
        self._graph = graph
        self._stores = stores
        self._config = config
        self._folder_locks: KeyedLocks[tuple[ZoneName, str]] = KeyedLocks()
        self._sample_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            backoff_seconds=config.retry_backoff_seconds,
            timeout_seconds=config.sample_timeout_seconds,
        )

    def crawl(self, zone: ZoneName, path_prefix: str | None = None) -> CrawlResult:
        """Fully crawl every table folder under a zone prefix.

        Args:
            zone: Zone to crawl.
            path_prefix: Key prefix whose immediate sub-folders are table
                folders. Defaults to the configured prefix of the zone.

        Returns:
            Aggregated crawl result. Objects outside table folders and
            per-table failures are reported in ``errors``.
        """
        if path_prefix is None:
            path_prefix = self._config.crawl_prefix(zone)
        path_prefix = normalize_prefix(path_prefix)
        store = self._stores.for_zone(zone)
        listing = call_with_retry(
            lambda: store.list(path_prefix),
            self._sample_policy,
            f"list {zone}/{path_prefix}",
        )
        groups, errors = group_objects_by_folder(zone, listing, path_prefix)
        with ThreadPoolExecutor(max_workers=self._config.crawl_workers) as executor:
            futures = [
                executor.submit(self._crawl_folder, zone, folder, groups[folder])
                for folder in sorted(groups)
            ]
            outcomes = [future.result() for future in futures]
        result = _build_result(outcomes, errors)
        _LOGGER.info(
            "crawl_completed",
            zone=zone,
            path_prefix=path_prefix,
            tables_added=list(result.tables_added),
            tables_updated=list(result.tables_updated),
            tables_refreshed=list(result.tables_refreshed),
            error_count=len(result.errors),
        )
        return result

    def crawl_event(self, event: CrawlEvent) -> CrawlResult:
        """Incrementally crawl only the table folder holding an event's object.

        The table folder is resolved relative to the configured crawl
        prefix of the event's zone.

        Args:
            event: Object-created notification.

        Returns:
            Crawl result for that single folder.
        """
        if is_ignored_key(event.key):
            return CrawlResult()
        try:
            folder = table_folder_of(event.key, self._config.crawl_prefix(event.zone))
        except MisplacedObjectError as error:
            _LOGGER.warning("crawl_event_misplaced", zone=event.zone, key=event.key)
            return CrawlResult(errors={event.key: str(error)})
        return self.crawl_folder(event.zone, folder)

    def crawl_folder(self, zone: ZoneName, folder: str) -> CrawlResult:
        """Crawl one table folder, listing its current objects."""
        store = self._stores.for_zone(zone)
        listing = call_with_retry(
            lambda: store.list(f"{folder}/"),
            self._sample_policy,
            f"list {zone}/{folder}/",
        )
        objects = [
            obj
            for obj in listing
            if not is_ignored_key(obj.key) and is_table_object(zone, obj.key)
        ]
        outcome = self._crawl_folder(zone, folder, objects)
        return _build_result([outcome], {})

    def _crawl_folder(
        self,
        zone: ZoneName,
        folder: str,
        objects: list[ObjectInfo],
    ) -> _FolderCrawl:
        table_name = table_name_for(zone, folder.rsplit("/", 1)[-1])
        with self._folder_locks.lock_for((zone, folder)):
            return self._crawl_folder_locked(zone, folder, table_name, objects)

    def _crawl_folder_locked(
        self,
        zone: ZoneName,
        folder: str,
        table_name: str,
        objects: list[ObjectInfo],
    ) -> _FolderCrawl:
        source_prefix = source_prefix_for(zone, folder)
        existing = self._registry.get(table_name)
        if not objects:
            message = f"Folder '{source_prefix}' holds no readable {zone} objects."
            return _FolderCrawl(table_name=table_name, outcome="error", error=message)
        snapshot_id = compute_snapshot_id(objects)
        if (
            existing is not None
            and existing.snapshot_id == snapshot_id
            and existing.schema_state == "ok"
        ):
            return _FolderCrawl(table_name=table_name, outcome="unchanged")
        observed_at = datetime.now(timezone.utc)
        try:
            columns = self._sample_schema(zone, table_name, objects)
        except SchemaConflictError as error:
            try:
                self._registry.mark_conflict(table_name, str(error), observed_at, source_prefix)
            except DuplicateNameError as duplicate:
                return _FolderCrawl(table_name=table_name, outcome="error", error=str(duplicate))
            return _FolderCrawl(table_name=table_name, outcome="error", error=str(error))
        except (MalformedSourceError, LakeStorageError) as error:
            _LOGGER.warning("table_crawl_failed", table_name=table_name, error=str(error))
            return _FolderCrawl(table_name=table_name, outcome="error", error=str(error))
        try:
            update = self._registry.apply_observation(
                name=table_name,
                columns=columns,
                storage_format="row" if zone == "landing" else "columnar",
                source_prefix=source_prefix,
                snapshot_id=snapshot_id,
                observed_at=observed_at,
            )
        except DuplicateNameError as error:
            _LOGGER.warning("table_crawl_failed", table_name=table_name, error=str(error))
            return _FolderCrawl(table_name=table_name, outcome="error", error=str(error))
        if update.outcome == "updated":
            self._graph.mark_stale(table_name)
        return _FolderCrawl(table_name=table_name, outcome=update.outcome)

    def _sample_schema(
        self,
        zone: ZoneName,
        table_name: str,
        objects: list[ObjectInfo],
    ) -> tuple[Column, ...]:
        """Merge schemas from a bounded, deterministic sample of objects."""
        store = self._stores.for_zone(zone)
        accumulator = SchemaAccumulator(table_name, self._config.stable_sample_count)
        for obj in sorted(objects, key=lambda item: item.key)[: self._config.max_sample_files]:
            payload = call_with_retry(
                lambda key=obj.key: store.get(key),
                self._sample_policy,
                f"sample {zone}/{obj.key}",
            )
            if zone == "landing":
                sample = infer_row_file_schema(obj.key, payload, self._config.max_sample_rows)
            else:
                sample = infer_parquet_schema(obj.key, payload)
            accumulator.add(sample)
            if accumulator.is_stable:
                break
        columns = accumulator.columns
        if columns is None:
            raise MalformedSourceError(f"Table '{table_name}' has no sampled objects.")
        return columns


def _build_result(outcomes: list[_FolderCrawl], errors: dict[str, str]) -> CrawlResult:
    """Fold per-folder outcomes into one crawl result."""
    grouped: dict[FolderOutcome, list[str]] = {
        "added": [],
        "updated": [],
        "refreshed": [],
        "unchanged": [],
    }
    all_errors = dict(errors)
    for outcome in outcomes:
        if outcome.outcome == "error":
            all_errors[outcome.table_name] = outcome.error or "unknown crawl failure"
            continue
        grouped[outcome.outcome].append(outcome.table_name)
    return CrawlResult(
        tables_added=tuple(grouped["added"]),
        tables_updated=tuple(grouped["updated"]),
        tables_refreshed=tuple(grouped["refreshed"]),
        tables_unchanged=tuple(grouped["unchanged"]),
        errors=all_errors,
    )
