"""Object store protocol and local filesystem implementation.

Keys are POSIX-style paths relative to a zone root. Listings are
sorted by key and strongly consistent after a write.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from core.config import LakeConfig
from core.errors import LakeStorageError, TransientStorageError
from core.s3_uri import is_s3_uri, parse_s3_uri
from core.types import ObjectInfo, ZoneName


class ObjectStore(Protocol):
    """Durable object storage collaborator for one zone."""

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        """List objects whose key starts with prefix, sorted by key."""
        ...

    def get(self, key: str) -> bytes:
        """Return the object payload for key."""
        ...

    def put(self, key: str, data: bytes) -> None:
        """Write the object payload for key."""
        ...

    def delete(self, key: str) -> None:
        """Remove the object at key if present."""
        ...


class LocalObjectStore:
    """Filesystem-backed object store rooted at one directory."""

    def __init__(self, root: Path) -> None:
        self._root = root.expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        """List objects under prefix, walking only its deepest directory."""
        objects: list[ObjectInfo] = []
        directory = prefix.rpartition("/")[0]
        start = self._object_path(directory) if directory else self._root
        try:
            if not start.is_dir():
                return objects
            for file_path in sorted(start.rglob("*")):
                if not file_path.is_file():
                    continue
                key = file_path.relative_to(self._root).as_posix()
                if key.startswith(prefix) and not _is_temp_name(file_path.name):
                    objects.append(ObjectInfo(key=key, size=file_path.stat().st_size))
        except OSError as error:
            raise TransientStorageError(
                f"Failed to list objects under {self._root}/{prefix}: {error}."
            ) from error
        return objects

    def get(self, key: str) -> bytes:
        object_path = self._object_path(key)
        try:
            return object_path.read_bytes()
        except FileNotFoundError as error:
            raise LakeStorageError(
                f"Object '{key}' does not exist under {self._root}. "
                "Re-run the crawl to refresh the object listing."
            ) from error
        except OSError as error:
            raise TransientStorageError(f"Failed to read object {object_path}: {error}.") from error

    def put(self, key: str, data: bytes) -> None:
        object_path = self._object_path(key)
        temp_path = object_path.with_name(f".{object_path.name}.tmp")
        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(data)
            os.replace(temp_path, object_path)
        except OSError as error:
            raise TransientStorageError(
                f"Failed to write object {object_path}: {error}. "
                "Check write permissions and available disk space."
            ) from error

    def delete(self, key: str) -> None:
        object_path = self._object_path(key)
        try:
            object_path.unlink(missing_ok=True)
        except OSError as error:
            raise TransientStorageError(
                f"Failed to delete object {object_path}: {error}."
            ) from error

    def _object_path(self, key: str) -> Path:
        object_path = (self._root / key).resolve()
        if self._root not in object_path.parents:
            raise LakeStorageError(
                f"Object key '{key}' escapes the zone root {self._root}. Use a relative key."
            )
        return object_path


@dataclass(frozen=True)
class ZoneStores:
    """Object stores for the landing and clean zones."""

    landing: ObjectStore
    clean: ObjectStore

    def for_zone(self, zone: ZoneName) -> ObjectStore:
        """Return the store backing one zone."""
        return self.landing if zone == "landing" else self.clean


def build_object_store(location: str, config: LakeConfig) -> ObjectStore:
    """Build an object store from a zone location.

    Args:
        location: Local directory or ``s3://bucket/prefix`` URI.
        config: Runtime configuration with optional S3 session settings.

    Returns:
        Object store for the location.
    """
    if is_s3_uri(location):
        from storage.s3_store import S3ObjectStore

        return S3ObjectStore(parse_s3_uri(location), config)
    return LocalObjectStore(Path(location))


def build_zone_stores(config: LakeConfig) -> ZoneStores:
    """Build landing and clean stores from configuration."""
    return ZoneStores(
        landing=build_object_store(config.landing_uri, config),
        clean=build_object_store(config.clean_uri, config),
    )


def _is_temp_name(file_name: str) -> bool:
    return file_name.startswith(".") and file_name.endswith(".tmp")
