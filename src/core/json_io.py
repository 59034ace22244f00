"""JSON I/O helpers for catalog metadata files."""

from __future__ import annotations

import json
import os
from pathlib import Path

from core.errors import LakeStorageError


def read_json_file(payload_path: Path, default_value: object | None = None) -> object:
    """Read JSON payload from disk with optional default when missing."""
    if default_value is not None and not payload_path.exists():
        return default_value
    try:
        return json.loads(payload_path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise LakeStorageError(
            f"Missing required catalog metadata at {payload_path}. "
            "Run a crawl or apply a lake spec to create it."
        ) from error
    except json.JSONDecodeError as error:
        raise LakeStorageError(f"Failed to parse JSON at {payload_path}: {error.msg}.") from error
    except OSError as error:
        raise LakeStorageError(f"Failed to read metadata file {payload_path}: {error}.") from error


def write_json_file(payload_path: Path, payload: object) -> None:
    """Atomically replace one JSON payload on disk with traceable errors."""
    temp_path = payload_path.with_name(f".{payload_path.name}.tmp")
    try:
        payload_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        os.replace(temp_path, payload_path)
    except OSError as error:
        raise LakeStorageError(f"Failed to write metadata file {payload_path}: {error}.") from error


def expect_object_list(payload: object, payload_path: Path) -> list[dict[str, object]]:
    """Validate that a metadata payload is a list of JSON objects."""
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise LakeStorageError(
            f"Invalid metadata at {payload_path}: expected a list of objects. "
            "Remove the file to rebuild it."
        )
    return payload


def append_json_lines(payload_path: Path, payloads: list[object]) -> None:
    """Append JSON payloads to a JSON Lines file, one object per line."""
    if not payloads:
        return
    lines = "".join(json.dumps(payload, sort_keys=True) + "\n" for payload in payloads)
    try:
        payload_path.parent.mkdir(parents=True, exist_ok=True)
        with payload_path.open("a", encoding="utf-8") as handle:
            handle.write(lines)
    except OSError as error:
        raise LakeStorageError(f"Failed to append to {payload_path}: {error}.") from error
