"""Lakeshore exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class LakeError(Exception):
    """Base exception for all Lakeshore failures."""


class LakeConfigError(LakeError):
    """Raised for invalid runtime configuration."""


class LakeDependencyError(LakeError):
    """Raised when an optional runtime dependency is missing."""


class LakeSpecError(LakeError):
    """Raised for invalid or unsupported lake-spec files."""


class LakeStorageError(LakeError):
    """Raised for object storage failures that retrying will not fix."""


class TransientStorageError(LakeStorageError):
    """Raised for storage failures that may succeed on retry."""


class MalformedSourceError(LakeError):
    """Raised when a landing or clean object cannot be parsed."""


class MisplacedObjectError(LakeError):
    """Raised when an object is not stored under a per-table folder."""


class SchemaConflictError(LakeError):
    """Raised when sampled files disagree on a table schema."""


class CyclicDependencyError(LakeError):
    """Raised when a view definition would introduce a dependency cycle."""


class UnresolvedReferenceError(LakeError):
    """Raised when a view or query references an unknown table or view."""


class CatalogNotFoundError(LakeError):
    """Raised when a table, view, or named query does not exist."""


class ViewStateError(LakeError):
    """Raised for invalid view lifecycle transitions."""


class StaleArtifactError(LakeError):
    """Raised when a non-fresh view is requested without allow_stale."""


class JobSupersededError(LakeError):
    """Raised when a newer source version replaces in-flight work."""


class DuplicateNameError(LakeError):
    """Raised when a catalog name is already taken by another table or view."""


class InvalidSqlError(LakeError):
    """Raised when a view or query definition cannot be parsed."""


class MaterializationError(LakeError):
    """Raised when a table cannot be materialized as requested."""
