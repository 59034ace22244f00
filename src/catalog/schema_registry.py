"""Schema registry for cataloged tables.

The registry is the single owner of Table records. Records are frozen
and replaced whole, so readers never take a lock and always observe
either the previous or the next version of a table.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Literal

from catalog.catalog_io import table_from_payload, table_to_payload
from core.errors import CatalogNotFoundError, DuplicateNameError, SchemaConflictError
from core.json_io import expect_object_list, read_json_file, write_json_file
from core.logging_config import get_logger
from core.types import Column, StorageFormat, Table

_LOGGER = get_logger(__name__)

RegistryOutcome = Literal["added", "updated", "refreshed", "unchanged"]


@dataclass(frozen=True)
class RegistryUpdate:
    """Result of applying one observed table state to the registry.

    Attributes:
        outcome: ``added`` for new tables, ``updated`` for schema version
            bumps, ``refreshed`` for object changes under the same schema,
            ``unchanged`` otherwise.
        table: Table record now held by the registry.
        previous: Record replaced by this update, if any.
    """

    outcome: RegistryOutcome
    table: Table
    previous: Table | None


class SchemaRegistry:
    """Injectable table-name to schema store with copy-on-write records."""

    def __init__(self, catalog_path: Path | None = None) -> None:
        """Create a registry, loading persisted tables when a path is given.

        Args:
            catalog_path: Optional JSON catalog file for persistence.
        """
        self._catalog_path = catalog_path
        self._write_lock = threading.Lock()
        self._tables: dict[str, Table] = {}
        if catalog_path is not None:
            self._tables = _load_tables(catalog_path)

    def get(self, name: str) -> Table | None:
        """Return the current record for a table, or None."""
        return self._tables.get(name)

    def require(self, name: str) -> Table:
        """Return the current record for a table.

        Raises:
            CatalogNotFoundError: If the table is not registered.
        """
        table = self._tables.get(name)
        if table is None:
            raise CatalogNotFoundError(
                f"Table '{name}' is not registered. Crawl its zone before referencing it."
            )
        return table

    def contains(self, name: str) -> bool:
        return name in self._tables

    def list_tables(self) -> list[Table]:
        """Return all tables sorted by name."""
        return sorted(self._tables.values(), key=lambda table: table.name)

    def apply_observation(
        self,
        name: str,
        columns: tuple[Column, ...],
        storage_format: StorageFormat,
        source_prefix: str,
        snapshot_id: str,
        observed_at: datetime,
        source_version: int | None = None,
    ) -> RegistryUpdate:
        """Apply an inferred table state, bumping the version on schema change.

        Args:
            name: Table name.
            columns: Inferred ordered columns.
            storage_format: Storage format of the observed objects.
            source_prefix: Zone-qualified table folder.
            snapshot_id: Digest of the observed objects.
            observed_at: UTC observation time.
            source_version: Row-table version for columnar tables. When given
                for a new table, it seeds the version.

        Returns:
            Outcome of the update.

        Raises:
            SchemaConflictError: If the storage format differs from the
                registered table.
            DuplicateNameError: If the table is registered for another
                source folder.
        """
        with self._write_lock:
            previous = self._tables.get(name)
            if previous is None:
                table = Table(
                    name=name,
                    columns=columns,
                    storage_format=storage_format,
                    source_prefix=source_prefix,
                    last_crawled_at=observed_at,
                    version=source_version if source_version is not None else 1,
                    snapshot_id=snapshot_id,
                    source_version=source_version,
                )
                self._swap(table)
                _log_update("added", table)
                return RegistryUpdate(outcome="added", table=table, previous=None)
            _ensure_same_source(previous, source_prefix)
            _ensure_same_format(previous, storage_format)
            outcome, table = _next_table_state(
                previous, columns, snapshot_id, observed_at, source_version
            )
            self._swap(table)
            if outcome != "unchanged":
                _log_update(outcome, table)
            return RegistryUpdate(outcome=outcome, table=table, previous=previous)

    def mark_conflict(
        self,
        name: str,
        message: str,
        observed_at: datetime,
        source_prefix: str | None = None,
    ) -> Table | None:
        """Hold a table at its last good schema and flag the conflict.

        Args:
            name: Table name.
            message: Conflict detail.
            observed_at: UTC observation time.
            source_prefix: Folder that produced the conflict, checked
                against the registered folder when given.

        Returns:
            Updated record, or None when the table was never registered.

        Raises:
            DuplicateNameError: If the table is registered for another
                source folder.
        """
        with self._write_lock:
            previous = self._tables.get(name)
            if previous is None:
                return None
            if source_prefix is not None:
                _ensure_same_source(previous, source_prefix)
            table = replace(
                previous,
                schema_state="conflict",
                conflict_message=message,
                last_crawled_at=observed_at,
            )
            self._swap(table)
        _LOGGER.warning(
            "table_schema_conflict",
            table_name=name,
            version=table.version,
            message=message,
        )
        return table

    def _swap(self, table: Table) -> None:
        self._tables[table.name] = table
        if self._catalog_path is not None:
            payload = [table_to_payload(item) for item in self.list_tables()]
            write_json_file(self._catalog_path, payload)


def _next_table_state(
    previous: Table,
    columns: tuple[Column, ...],
    snapshot_id: str,
    observed_at: datetime,
    source_version: int | None,
) -> tuple[RegistryOutcome, Table]:
    """Compute the replacement record for an existing table."""
    lineage_version = source_version if source_version is not None else previous.source_version
    if columns != previous.columns:
        next_version = previous.version + 1
        if source_version is not None:
            next_version = max(next_version, source_version)
        table = replace(
            previous,
            columns=columns,
            version=next_version,
            snapshot_id=snapshot_id,
            source_version=lineage_version,
            last_crawled_at=observed_at,
            schema_state="ok",
            conflict_message=None,
        )
        return "updated", table
    if source_version is not None and source_version > previous.version:
        table = replace(
            previous,
            version=source_version,
            snapshot_id=snapshot_id,
            source_version=source_version,
            last_crawled_at=observed_at,
            schema_state="ok",
            conflict_message=None,
        )
        return "updated", table
    if snapshot_id != previous.snapshot_id or source_version != previous.source_version:
        table = replace(
            previous,
            snapshot_id=snapshot_id,
            source_version=lineage_version,
            last_crawled_at=observed_at,
            schema_state="ok",
            conflict_message=None,
        )
        return "refreshed", table
    table = replace(
        previous,
        last_crawled_at=observed_at,
        schema_state="ok",
        conflict_message=None,
    )
    return "unchanged", table


def _ensure_same_source(previous: Table, source_prefix: str) -> None:
    if previous.source_prefix != source_prefix:
        raise DuplicateNameError(
            f"Folder '{source_prefix}' maps to table '{previous.name}', which is already "
            f"registered for '{previous.source_prefix}'. Rename one of the folders."
        )


def _ensure_same_format(previous: Table, storage_format: StorageFormat) -> None:
    if previous.storage_format != storage_format:
        raise SchemaConflictError(
            f"Table '{previous.name}' is stored as {previous.storage_format}; "
            f"refusing to change it to {storage_format}. "
            "Columnar copies are registered under the parquet_ prefix instead."
        )


def _load_tables(catalog_path: Path) -> dict[str, Table]:
    payload = read_json_file(catalog_path, default_value=[])
    rows = expect_object_list(payload, catalog_path)
    tables = [table_from_payload(row, catalog_path) for row in rows]
    return {table.name: table for table in tables}


def _log_update(outcome: RegistryOutcome, table: Table) -> None:
    _LOGGER.info(
        "table_registered" if outcome == "added" else f"table_{outcome}",
        table_name=table.name,
        version=table.version,
        storage_format=table.storage_format,
        snapshot_id=table.snapshot_id,
        column_count=len(table.columns),
    )
