"""Shared typed models.

This module defines immutable data models used by storage, catalog,
view, and materialization layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Mapping

ZoneName = Literal["landing", "clean"]
StorageFormat = Literal["row", "columnar"]
ColumnType = Literal["int", "float", "string", "bool", "timestamp", "unknown"]
SchemaState = Literal["ok", "conflict"]
ViewState = Literal["fresh", "stale", "building", "failed"]
JobStatus = Literal["pending", "running", "succeeded", "failed", "superseded"]
ArtifactKind = Literal["table", "view"]

ZONE_NAMES: tuple[ZoneName, ...] = ("landing", "clean")
COLUMN_TYPES: tuple[ColumnType, ...] = (
    "int",
    "float",
    "string",
    "bool",
    "timestamp",
    "unknown",
)


@dataclass(frozen=True)
class ObjectInfo:
    """One object returned by a storage listing.

    Attributes:
        key: Object key relative to the zone root.
        size: Object size in bytes.
    """

    key: str
    size: int


@dataclass(frozen=True)
class Column:
    """One inferred table column."""

    name: str
    column_type: ColumnType


@dataclass(frozen=True)
class Table:
    """Cataloged table record owned by the schema registry.

    Attributes:
        name: Unique table name carrying the zone prefix.
        columns: Ordered inferred columns.
        storage_format: Row or columnar storage, fixed at creation.
        source_prefix: Zone-qualified folder holding the table objects.
        last_crawled_at: UTC time of the last crawl that touched the table.
        version: Schema version, incremented on every schema change.
        snapshot_id: Digest of the folder's object keys and sizes.
        source_version: Row-table version a columnar table was built from.
        schema_state: ``conflict`` while samples disagree irreconcilably.
        conflict_message: Last schema conflict detail, if any.
    """

    name: str
    columns: tuple[Column, ...]
    storage_format: StorageFormat
    source_prefix: str
    last_crawled_at: datetime
    version: int
    snapshot_id: str
    source_version: int | None = None
    schema_state: SchemaState = "ok"
    conflict_message: str | None = None


@dataclass(frozen=True)
class View:
    """Derived view record owned by the view dependency graph.

    Attributes:
        name: Unique view name.
        definition: SQL definition text.
        depends_on: Ordered upstream table or view names.
        state: Lifecycle state.
        registered_order: Registration sequence used for deterministic ordering.
        version: Number of successful builds.
        built_from: Upstream name to upstream version at the last successful build.
        built_definition: Definition text of the last successful build.
        last_error: Last build failure message, if any.
    """

    name: str
    definition: str
    depends_on: tuple[str, ...]
    state: ViewState
    registered_order: int
    version: int = 0
    built_from: Mapping[str, int] = field(default_factory=dict)
    built_definition: str | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class NamedQuery:
    """Persisted reusable query text."""

    name: str
    text: str
    description: str
    revision: int
    published_at: datetime


@dataclass(frozen=True)
class CrawlEvent:
    """Object-created notification for one zone object.

    Attributes:
        zone: Zone the object landed in.
        key: Object key relative to the zone root.
        size: Object size in bytes.
        observed_at: UTC time the notification was produced.
    """

    zone: ZoneName
    key: str
    size: int
    observed_at: datetime


@dataclass(frozen=True)
class CrawlResult:
    """Outcome of one crawl pass.

    Attributes:
        tables_added: Tables registered for the first time.
        tables_updated: Tables whose schema version changed.
        tables_refreshed: Tables whose objects changed with an unchanged schema.
        tables_unchanged: Tables whose schema and objects were unchanged.
        errors: Table name or object key mapped to an isolated error message.
    """

    tables_added: tuple[str, ...] = ()
    tables_updated: tuple[str, ...] = ()
    tables_refreshed: tuple[str, ...] = ()
    tables_unchanged: tuple[str, ...] = ()
    errors: Mapping[str, str] = field(default_factory=dict)

    @property
    def changed_tables(self) -> tuple[str, ...]:
        """Tables whose schema or data changed during the crawl."""
        return self.tables_added + self.tables_updated + self.tables_refreshed


@dataclass(frozen=True)
class MaterializationJob:
    """Row-to-columnar conversion job.

    Attributes:
        job_id: Unique job identifier.
        table_name: Source row-format table name.
        source_version: Source table schema version being converted.
        source_snapshot: Source table snapshot id being converted.
        target_path: Zone-qualified columnar output folder.
        status: Job lifecycle status.
        attempt: Number of attempts started.
        created_at: UTC creation timestamp.
        updated_at: UTC timestamp of the last status change.
        target_table: Registered columnar table name after success.
        error_message: Failure or supersession detail.
    """

    job_id: str
    table_name: str
    source_version: int
    source_snapshot: str
    target_path: str
    status: JobStatus
    attempt: int
    created_at: datetime
    updated_at: datetime
    target_table: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class PublishedArtifact:
    """Stable table or view contract consumed by the query engine.

    Attributes:
        name: Artifact name.
        kind: ``table`` or ``view``.
        schema_or_definition: Column listing for tables, SQL for views.
        storage_format: Table storage format, ``None`` for views.
        version: Table schema version or view build version.
        fresh: Whether the artifact reflects its current upstream state.
    """

    name: str
    kind: ArtifactKind
    schema_or_definition: str
    storage_format: StorageFormat | None
    version: int
    fresh: bool
