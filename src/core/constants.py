"""Core constants used across Lakeshore modules.

This module centralizes naming conventions and tuning defaults.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".lakeshore")
LANDING_DIR_NAME = "landing"
CLEAN_DIR_NAME = "clean"
CATALOG_FILE_NAME = "catalog.json"
VIEWS_FILE_NAME = "views.json"
NAMED_QUERIES_FILE_NAME = "named_queries.json"
JOBS_FILE_NAME = "jobs.json"
JOBS_ARCHIVE_FILE_NAME = "jobs_archive.jsonl"
LANDING_TABLE_PREFIX = "raw_"
CLEAN_TABLE_PREFIX = "parquet_"
STAGING_DIR_NAME = "_staging"
IGNORED_NAME_PREFIXES = ("_", ".")
ROW_FILE_EXTENSIONS = (".csv", ".jsonl", ".json")
COLUMNAR_FILE_EXTENSIONS = (".parquet",)
PARQUET_PART_PREFIX = "part-"
SQL_DIALECT = "presto"
DEFAULT_CRAWL_WORKERS = 4
DEFAULT_MATERIALIZE_WORKERS = 2
DEFAULT_MAX_SAMPLE_FILES = 10
DEFAULT_STABLE_SAMPLE_COUNT = 3
DEFAULT_MAX_SAMPLE_ROWS = 1000
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_SAMPLE_TIMEOUT_SECONDS = 30.0
DEFAULT_MATERIALIZE_TIMEOUT_SECONDS = 300.0
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 30.0
