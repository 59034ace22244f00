"""Runtime configuration model for Lakeshore.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path

from core.constants import (
    CLEAN_DIR_NAME,
    DEFAULT_CRAWL_WORKERS,
    DEFAULT_DATA_ROOT,
    DEFAULT_MATERIALIZE_TIMEOUT_SECONDS,
    DEFAULT_MATERIALIZE_WORKERS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_SAMPLE_FILES,
    DEFAULT_MAX_SAMPLE_ROWS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SAMPLE_TIMEOUT_SECONDS,
    DEFAULT_STABLE_SAMPLE_COUNT,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
    LANDING_DIR_NAME,
)
from core.errors import LakeConfigError
from core.types import ZoneName


@dataclass(frozen=True)
class LakeConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for catalog metadata files.
        landing_uri: Landing zone location, local path or ``s3://`` URI.
        clean_uri: Clean zone location, local path or ``s3://`` URI.
        s3_region: Optional default AWS region for S3 and SQS clients.
        s3_profile: Optional AWS profile for boto3 session initialization.
        event_queue_url: Optional SQS queue URL carrying object notifications.
        crawl_workers: Worker threads consuming crawl events.
        materialize_workers: Worker threads running materialization jobs.
        max_sample_files: Upper bound of files sampled per table.
        stable_sample_count: Consecutive unchanged samples that end sampling.
        max_sample_rows: Upper bound of rows read per sampled file.
        max_attempts: Attempts per storage operation before giving up.
        retry_backoff_seconds: Base delay for exponential retry backoff.
        sample_timeout_seconds: Timeout for one crawl sample read.
        materialize_timeout_seconds: Timeout for one materialization attempt.
        visibility_timeout_seconds: Delay before unacknowledged events redeliver.
        landing_prefix: Key prefix whose sub-folders are landing tables.
        clean_prefix: Key prefix whose sub-folders are clean tables.
    """

    data_root: Path
    landing_uri: str
    clean_uri: str
    s3_region: str | None = None
    s3_profile: str | None = None
    event_queue_url: str | None = None
    crawl_workers: int = DEFAULT_CRAWL_WORKERS
    materialize_workers: int = DEFAULT_MATERIALIZE_WORKERS
    max_sample_files: int = DEFAULT_MAX_SAMPLE_FILES
    stable_sample_count: int = DEFAULT_STABLE_SAMPLE_COUNT
    max_sample_rows: int = DEFAULT_MAX_SAMPLE_ROWS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    sample_timeout_seconds: float = DEFAULT_SAMPLE_TIMEOUT_SECONDS
    materialize_timeout_seconds: float = DEFAULT_MATERIALIZE_TIMEOUT_SECONDS
    visibility_timeout_seconds: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS
    landing_prefix: str = ""
    clean_prefix: str = ""

    @classmethod
    def from_env(cls) -> "LakeConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            LakeConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("LAKE_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        data_root = Path(data_root_value).expanduser().resolve()
        return cls(
            data_root=data_root,
            landing_uri=os.getenv("LAKE_LANDING_URI", str(data_root / LANDING_DIR_NAME)),
            clean_uri=os.getenv("LAKE_CLEAN_URI", str(data_root / CLEAN_DIR_NAME)),
            s3_region=os.getenv("LAKE_S3_REGION"),
            s3_profile=os.getenv("LAKE_S3_PROFILE"),
            event_queue_url=os.getenv("LAKE_EVENT_QUEUE_URL"),
            crawl_workers=_parse_positive_int("LAKE_CRAWL_WORKERS", DEFAULT_CRAWL_WORKERS),
            materialize_workers=_parse_positive_int(
                "LAKE_MATERIALIZE_WORKERS", DEFAULT_MATERIALIZE_WORKERS
            ),
            max_sample_files=_parse_positive_int(
                "LAKE_MAX_SAMPLE_FILES", DEFAULT_MAX_SAMPLE_FILES
            ),
            stable_sample_count=_parse_positive_int(
                "LAKE_STABLE_SAMPLE_COUNT", DEFAULT_STABLE_SAMPLE_COUNT
            ),
            max_sample_rows=_parse_positive_int("LAKE_MAX_SAMPLE_ROWS", DEFAULT_MAX_SAMPLE_ROWS),
            max_attempts=_parse_positive_int("LAKE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            retry_backoff_seconds=_parse_non_negative_float(
                "LAKE_RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS
            ),
            sample_timeout_seconds=_parse_non_negative_float(
                "LAKE_SAMPLE_TIMEOUT_SECONDS", DEFAULT_SAMPLE_TIMEOUT_SECONDS
            ),
            materialize_timeout_seconds=_parse_non_negative_float(
                "LAKE_MATERIALIZE_TIMEOUT_SECONDS", DEFAULT_MATERIALIZE_TIMEOUT_SECONDS
            ),
            visibility_timeout_seconds=_parse_non_negative_float(
                "LAKE_VISIBILITY_TIMEOUT_SECONDS", DEFAULT_VISIBILITY_TIMEOUT_SECONDS
            ),
            landing_prefix=os.getenv("LAKE_LANDING_PREFIX", ""),
            clean_prefix=os.getenv("LAKE_CLEAN_PREFIX", ""),
        )

    def crawl_prefix(self, zone: ZoneName) -> str:
        """Return the configured key prefix whose sub-folders are tables of a zone."""
        return self.landing_prefix if zone == "landing" else self.clean_prefix

    @classmethod
    def for_data_root(cls, data_root: Path) -> "LakeConfig":
        """Build config with both zones placed under one local data root.

        Args:
            data_root: Local root for metadata and zone directories.

        Returns:
            Config using environment tuning and local zone directories.
        """
        resolved_root = data_root.expanduser().resolve()
        return replace(
            cls.from_env(),
            data_root=resolved_root,
            landing_uri=str(resolved_root / LANDING_DIR_NAME),
            clean_uri=str(resolved_root / CLEAN_DIR_NAME),
        )


def _parse_positive_int(variable_name: str, default_value: int) -> int:
    """Parse a positive integer environment value.

    Args:
        variable_name: Environment variable to read.
        default_value: Value used when the variable is unset.

    Returns:
        Parsed integer value.

    Raises:
        LakeConfigError: If value is not a positive integer.
    """
    raw_value = os.getenv(variable_name)
    if raw_value is None:
        return default_value
    try:
        parsed_value = int(raw_value)
    except ValueError as error:
        raise LakeConfigError(
            f"Invalid {variable_name} value: expected integer, got '{raw_value}'. "
            f"Set {variable_name} to a positive whole number."
        ) from error
    if parsed_value < 1:
        raise LakeConfigError(
            f"Invalid {variable_name} value: expected at least 1, got {parsed_value}."
        )
    return parsed_value


def _parse_non_negative_float(variable_name: str, default_value: float) -> float:
    """Parse a non-negative float environment value.

    Args:
        variable_name: Environment variable to read.
        default_value: Value used when the variable is unset.

    Returns:
        Parsed float value.

    Raises:
        LakeConfigError: If value is not a non-negative number.
    """
    raw_value = os.getenv(variable_name)
    if raw_value is None:
        return default_value
    try:
        parsed_value = float(raw_value)
    except ValueError as error:
        raise LakeConfigError(
            f"Invalid {variable_name} value: expected number, got '{raw_value}'. "
            f"Set {variable_name} to a numeric value in seconds."
        ) from error
    if parsed_value < 0:
        raise LakeConfigError(
            f"Invalid {variable_name} value: expected a non-negative number, got {parsed_value}."
        )
    return parsed_value
