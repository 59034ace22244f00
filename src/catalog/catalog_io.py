"""Catalog persistence helpers.

This module isolates JSON serialization of tables, views, named
queries, and materialization jobs. It keeps the registries focused
on business flow.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, cast

from core.errors import LakeStorageError
from core.types import (
    COLUMN_TYPES,
    Column,
    ColumnType,
    MaterializationJob,
    NamedQuery,
    Table,
    View,
)


def table_to_payload(table: Table) -> dict[str, object]:
    """Serialize a table record to a JSON-safe dictionary.

    Args:
        table: Table record.

    Returns:
        Dictionary payload.
    """
    return {
        "name": table.name,
        "columns": [[column.name, column.column_type] for column in table.columns],
        "storage_format": table.storage_format,
        "source_prefix": table.source_prefix,
        "last_crawled_at": table.last_crawled_at.isoformat(),
        "version": table.version,
        "snapshot_id": table.snapshot_id,
        "source_version": table.source_version,
        "schema_state": table.schema_state,
        "conflict_message": table.conflict_message,
    }


def table_from_payload(payload: dict[str, Any], payload_path: Path) -> Table:
    """Deserialize a table record.

    Args:
        payload: Table dictionary.
        payload_path: Catalog file for error context.

    Returns:
        Typed table record.

    Raises:
        LakeStorageError: If required fields are missing or invalid.
    """
    try:
        storage_format = str(payload["storage_format"])
        if storage_format not in ("row", "columnar"):
            raise LakeStorageError(
                f"Invalid catalog at {payload_path}: unknown storage format '{storage_format}'."
            )
        return Table(
            name=str(payload["name"]),
            columns=tuple(_column_from_payload(item, payload_path) for item in payload["columns"]),
            storage_format=cast(Any, storage_format),
            source_prefix=str(payload["source_prefix"]),
            last_crawled_at=datetime.fromisoformat(str(payload["last_crawled_at"])),
            version=int(payload["version"]),
            snapshot_id=str(payload["snapshot_id"]),
            source_version=_optional_int(payload.get("source_version")),
            schema_state="conflict" if payload.get("schema_state") == "conflict" else "ok",
            conflict_message=_optional_string(payload.get("conflict_message")),
        )
    except KeyError as error:
        raise LakeStorageError(
            f"Invalid catalog at {payload_path}: missing required field {error.args[0]!r}."
        ) from error


def view_to_payload(view: View) -> dict[str, object]:
    """Serialize a view record to a JSON-safe dictionary."""
    return {
        "name": view.name,
        "definition": view.definition,
        "depends_on": list(view.depends_on),
        "state": view.state,
        "registered_order": view.registered_order,
        "version": view.version,
        "built_from": dict(view.built_from),
        "built_definition": view.built_definition,
        "last_error": view.last_error,
    }


def view_from_payload(payload: dict[str, Any], payload_path: Path) -> View:
    """Deserialize a view record.

    Raises:
        LakeStorageError: If required fields are missing or invalid.
    """
    try:
        state = str(payload["state"])
        if state not in ("fresh", "stale", "building", "failed"):
            raise LakeStorageError(f"Invalid views file at {payload_path}: bad state '{state}'.")
        return View(
            name=str(payload["name"]),
            definition=str(payload["definition"]),
            depends_on=tuple(str(item) for item in payload["depends_on"]),
            state=cast(Any, state),
            registered_order=int(payload["registered_order"]),
            version=int(payload.get("version", 0)),
            built_from={str(k): int(v) for k, v in dict(payload.get("built_from", {})).items()},
            built_definition=_optional_string(payload.get("built_definition")),
            last_error=_optional_string(payload.get("last_error")),
        )
    except KeyError as error:
        raise LakeStorageError(
            f"Invalid views file at {payload_path}: missing required field {error.args[0]!r}."
        ) from error


def named_query_to_payload(query: NamedQuery) -> dict[str, object]:
    """Serialize a named query to a JSON-safe dictionary."""
    return {
        "name": query.name,
        "text": query.text,
        "description": query.description,
        "revision": query.revision,
        "published_at": query.published_at.isoformat(),
    }


def named_query_from_payload(payload: dict[str, Any], payload_path: Path) -> NamedQuery:
    """Deserialize a named query.

    Raises:
        LakeStorageError: If required fields are missing.
    """
    try:
        return NamedQuery(
            name=str(payload["name"]),
            text=str(payload["text"]),
            description=str(payload.get("description", "")),
            revision=int(payload["revision"]),
            published_at=datetime.fromisoformat(str(payload["published_at"])),
        )
    except KeyError as error:
        raise LakeStorageError(
            f"Invalid named query file at {payload_path}: "
            f"missing required field {error.args[0]!r}."
        ) from error


def job_to_payload(job: MaterializationJob) -> dict[str, object]:
    """Serialize a materialization job to a JSON-safe dictionary."""
    return {
        "job_id": job.job_id,
        "table_name": job.table_name,
        "source_version": job.source_version,
        "source_snapshot": job.source_snapshot,
        "target_path": job.target_path,
        "status": job.status,
        "attempt": job.attempt,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
        "target_table": job.target_table,
        "error_message": job.error_message,
    }


def job_from_payload(payload: dict[str, Any], payload_path: Path) -> MaterializationJob:
    """Deserialize a materialization job.

    Raises:
        LakeStorageError: If required fields are missing or invalid.
    """
    try:
        status = str(payload["status"])
        if status not in ("pending", "running", "succeeded", "failed", "superseded"):
            raise LakeStorageError(f"Invalid jobs file at {payload_path}: bad status '{status}'.")
        return MaterializationJob(
            job_id=str(payload["job_id"]),
            table_name=str(payload["table_name"]),
            source_version=int(payload["source_version"]),
            source_snapshot=str(payload["source_snapshot"]),
            target_path=str(payload["target_path"]),
            status=cast(Any, status),
            attempt=int(payload["attempt"]),
            created_at=datetime.fromisoformat(str(payload["created_at"])),
            updated_at=datetime.fromisoformat(str(payload["updated_at"])),
            target_table=_optional_string(payload.get("target_table")),
            error_message=_optional_string(payload.get("error_message")),
        )
    except KeyError as error:
        raise LakeStorageError(
            f"Invalid jobs file at {payload_path}: missing required field {error.args[0]!r}."
        ) from error


def _column_from_payload(item: object, payload_path: Path) -> Column:
    if not isinstance(item, list) or len(item) != 2 or item[1] not in COLUMN_TYPES:
        raise LakeStorageError(
            f"Invalid catalog at {payload_path}: columns must be [name, type] pairs."
        )
    return Column(name=str(item[0]), column_type=cast(ColumnType, item[1]))


def _optional_int(raw_value: object) -> int | None:
    if raw_value is None:
        return None
    return int(cast(Any, raw_value))


def _optional_string(raw_value: object) -> str | None:
    if raw_value is None:
        return None
    return str(raw_value)
