"""S3 URI parsing helpers.

This module centralizes S3 URI parsing for storage zones and queues.
It keeps URI validation behavior consistent across the codebase.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import LakeConfigError


@dataclass(frozen=True)
class S3Location:
    """Parsed S3 location model."""

    bucket: str
    prefix: str


def is_s3_uri(uri: str) -> bool:
    """Return whether a location string points at S3."""
    return uri.startswith("s3://")


def parse_s3_uri(uri: str) -> S3Location:
    """Parse and validate an S3 zone URI.

    Args:
        uri: URI in format ``s3://bucket`` or ``s3://bucket/prefix``.

    Returns:
        Parsed bucket and normalized prefix pair. A non-empty prefix
        always ends with ``/``.

    Raises:
        LakeConfigError: If the URI has no bucket.
    """
    if not is_s3_uri(uri):
        raise LakeConfigError(f"Invalid S3 URI '{uri}': expected the s3:// scheme.")
    stripped_uri = uri.removeprefix("s3://")
    bucket, _, prefix = stripped_uri.partition("/")
    if not bucket:
        raise LakeConfigError(
            f"Invalid S3 URI '{uri}': expected s3://bucket[/prefix]. Provide a bucket name."
        )
    prefix = prefix.strip("/")
    return S3Location(bucket=bucket, prefix=f"{prefix}/" if prefix else "")
