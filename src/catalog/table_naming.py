"""Table naming and object grouping conventions.

Row tables are named ``raw_<folder>`` and columnar tables
``parquet_<folder>`` in one flat namespace, so the prefixes keep the
two zones from colliding.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable

from core.constants import (
    CLEAN_TABLE_PREFIX,
    COLUMNAR_FILE_EXTENSIONS,
    IGNORED_NAME_PREFIXES,
    LANDING_TABLE_PREFIX,
    ROW_FILE_EXTENSIONS,
)
from core.errors import MisplacedObjectError
from core.types import ObjectInfo, ZoneName

_FOLDER_NAME_PATTERN = re.compile(r"[^a-z0-9_]+")


def table_name_for(zone: ZoneName, folder_name: str) -> str:
    """Return the catalog table name for a zone folder."""
    prefix = LANDING_TABLE_PREFIX if zone == "landing" else CLEAN_TABLE_PREFIX
    return prefix + normalize_folder_name(folder_name)


def folder_base_name(table_name: str) -> str:
    """Strip the zone prefix from a table name."""
    for prefix in (LANDING_TABLE_PREFIX, CLEAN_TABLE_PREFIX):
        if table_name.startswith(prefix):
            return table_name[len(prefix) :]
    return table_name


def normalize_folder_name(folder_name: str) -> str:
    """Normalize a folder name into a table name base."""
    return _FOLDER_NAME_PATTERN.sub("_", folder_name.strip().lower()).strip("_")


def source_prefix_for(zone: ZoneName, folder_path: str) -> str:
    """Return the zone-qualified source prefix of a table folder."""
    return f"{zone}/{folder_path.strip('/')}/"


def is_ignored_key(key: str) -> bool:
    """Return whether any path segment marks the key as hidden or staging."""
    return any(segment.startswith(IGNORED_NAME_PREFIXES) for segment in key.split("/") if segment)


def is_table_object(zone: ZoneName, key: str) -> bool:
    """Return whether the key has a data extension for the zone."""
    extensions = ROW_FILE_EXTENSIONS if zone == "landing" else COLUMNAR_FILE_EXTENSIONS
    return key.lower().endswith(extensions)


def table_folder_of(key: str, path_prefix: str = "") -> str:
    """Return the per-table folder path holding an object.

    Args:
        key: Object key relative to the zone root.
        path_prefix: Crawl prefix the folder is relative to.

    Returns:
        Folder path, including the crawl prefix.

    Raises:
        MisplacedObjectError: If the object is outside the prefix or not
            inside a sub-folder.
    """
    normalized_prefix = normalize_prefix(path_prefix)
    if not key.startswith(normalized_prefix):
        raise MisplacedObjectError(
            f"Object '{key}' is outside the crawl prefix '{normalized_prefix}'. "
            "Move it under the prefix or change the configured crawl prefix."
        )
    relative_key = key[len(normalized_prefix) :]
    folder, separator, _ = relative_key.partition("/")
    if not separator or not folder:
        raise MisplacedObjectError(
            f"Object '{key}' is not inside a per-table folder. "
            "Move it to '<table>/<file>' so it can be cataloged."
        )
    return normalized_prefix + folder


def group_objects_by_folder(
    zone: ZoneName,
    objects: Iterable[ObjectInfo],
    path_prefix: str = "",
) -> tuple[dict[str, list[ObjectInfo]], dict[str, str]]:
    """Group listed objects by their per-table folder.

    Args:
        zone: Zone the objects were listed from.
        objects: Listed objects.
        path_prefix: Crawl prefix the folders are relative to.

    Returns:
        Pair of folder path to data objects, and object key to error
        message for objects outside any table folder.
    """
    groups: dict[str, list[ObjectInfo]] = {}
    errors: dict[str, str] = {}
    for obj in objects:
        if is_ignored_key(obj.key):
            continue
        try:
            folder = table_folder_of(obj.key, path_prefix)
        except MisplacedObjectError as error:
            errors[obj.key] = str(error)
            continue
        if is_table_object(zone, obj.key):
            groups.setdefault(folder, []).append(obj)
    return groups, errors


def compute_snapshot_id(objects: Iterable[ObjectInfo]) -> str:
    """Digest the sorted keys and sizes of a table's objects."""
    rows = sorted(f"{obj.key}:{obj.size}" for obj in objects)
    return hashlib.sha256("\n".join(rows).encode("utf-8")).hexdigest()[:16]


def normalize_prefix(path_prefix: str) -> str:
    """Return a crawl prefix as a folder path with one trailing slash, or empty."""
    stripped = path_prefix.strip("/")
    return f"{stripped}/" if stripped else ""
