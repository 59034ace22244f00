"""Schema inference for row and columnar objects.

Inferred types form a closed set with explicit widening rules:
equal types stay, ``unknown`` yields to the other side, and ``int``
widens to ``float``. Inside one file an irreconcilable column becomes
``string``; across files it is a schema conflict.
"""

from __future__ import annotations

import csv
import io
import json
import re
from datetime import datetime
from typing import Any, Iterable

import pyarrow as pa
import pyarrow.parquet as pq

from core.errors import MalformedSourceError, SchemaConflictError
from core.types import Column, ColumnType

_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")
_BOOL_VALUES = frozenset({"true", "false"})
_TIMESTAMP_FORMATS = ("%m/%d/%Y %H:%M:%S", "%m/%d/%Y %H:%M", "%m/%d/%Y")
_COLUMN_NAME_PATTERN = re.compile(r"[^a-z0-9_]+")


def widen_types(left: ColumnType, right: ColumnType) -> ColumnType | None:
    """Return the narrowest type covering both inputs.

    Args:
        left: First inferred type.
        right: Second inferred type.

    Returns:
        Widened type, or ``None`` when the pair is irreconcilable.
    """
    if left == right:
        return left
    if left == "unknown":
        return right
    if right == "unknown":
        return left
    if {left, right} == {"int", "float"}:
        return "float"
    return None


def merge_value_type(left: ColumnType, right: ColumnType) -> ColumnType:
    """Widen two value types from the same file, falling back to string."""
    return widen_types(left, right) or "string"


def infer_text_type(raw_value: str) -> ColumnType:
    """Infer the type of one delimited text value."""
    value = raw_value.strip()
    if not value:
        return "unknown"
    if value.lower() in _BOOL_VALUES:
        return "bool"
    if _INT_PATTERN.match(value):
        return "int"
    if _FLOAT_PATTERN.match(value):
        return "float"
    if parse_timestamp(value) is not None:
        return "timestamp"
    return "string"


def infer_json_type(value: Any) -> ColumnType:
    """Infer the type of one decoded JSON value."""
    if value is None:
        return "unknown"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "timestamp" if parse_timestamp(value.strip()) is not None else "string"
    return "string"


def parse_timestamp(value: str) -> datetime | None:
    """Parse ISO-8601 or US-style timestamps, returning None otherwise."""
    if not value or not value[0].isdigit():
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for timestamp_format in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, timestamp_format)
        except ValueError:
            continue
    return None


def normalize_column_name(raw_name: str) -> str:
    """Normalize a header or JSON key into a catalog column name."""
    return _COLUMN_NAME_PATTERN.sub("_", raw_name.strip().lower()).strip("_")


def infer_row_file_schema(key: str, payload: bytes, max_rows: int) -> tuple[Column, ...]:
    """Infer columns from a CSV or JSON-lines object.

    Args:
        key: Object key, used for format detection and error context.
        payload: Raw object bytes.
        max_rows: Maximum data rows to inspect.

    Returns:
        Ordered inferred columns.

    Raises:
        MalformedSourceError: If the object cannot be parsed.
    """
    text = _decode_text(key, payload)
    if key.lower().endswith(".csv"):
        return _infer_csv_schema(key, text, max_rows)
    return _infer_jsonl_schema(key, text, max_rows)


def read_row_file_records(key: str, payload: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    """Read every record of a CSV or JSON-lines object.

    Args:
        key: Object key, used for format detection and error context.
        payload: Raw object bytes.

    Returns:
        Pair of normalized column names and records keyed by those names.
        CSV values stay text; JSON values keep their decoded types.

    Raises:
        MalformedSourceError: If the object cannot be parsed.
    """
    text = _decode_text(key, payload)
    if key.lower().endswith(".csv"):
        header, rows = _read_csv_rows(key, text, max_rows=None)
        return header, [dict(zip(header, row)) for row in rows]
    names: list[str] = []
    records: list[dict[str, Any]] = []
    for _, payload_row in _iter_json_rows(key, text, max_rows=None):
        record = {normalize_column_name(name): value for name, value in payload_row.items()}
        for name in record:
            if name not in names:
                names.append(name)
        records.append(record)
    return names, records


def infer_parquet_schema(key: str, payload: bytes) -> tuple[Column, ...]:
    """Read columns from a parquet object footer.

    Args:
        key: Object key for error context.
        payload: Raw parquet bytes.

    Returns:
        Ordered columns mapped onto catalog types.

    Raises:
        MalformedSourceError: If the footer cannot be read.
    """
    try:
        arrow_schema = pq.read_schema(pa.BufferReader(payload))
    except (pa.ArrowException, OSError) as error:
        raise MalformedSourceError(
            f"Failed to read parquet schema from '{key}': {error}. "
            "Replace the object with a valid parquet file."
        ) from error
    return tuple(
        Column(name=field.name, column_type=arrow_to_column_type(field.type))
        for field in arrow_schema
    )


def arrow_to_column_type(arrow_type: pa.DataType) -> ColumnType:
    """Map an Arrow data type onto the closed catalog type set."""
    if pa.types.is_boolean(arrow_type):
        return "bool"
    if pa.types.is_integer(arrow_type):
        return "int"
    if pa.types.is_floating(arrow_type) or pa.types.is_decimal(arrow_type):
        return "float"
    if pa.types.is_timestamp(arrow_type) or pa.types.is_date(arrow_type):
        return "timestamp"
    if pa.types.is_null(arrow_type):
        return "unknown"
    return "string"


def merge_sample_schemas(
    table_name: str,
    current: tuple[Column, ...],
    sample: tuple[Column, ...],
) -> tuple[Column, ...]:
    """Merge one file sample into the schema accumulated so far.

    Args:
        table_name: Table name for error context.
        current: Columns merged from earlier samples.
        sample: Columns inferred from the next file.

    Returns:
        Merged columns.

    Raises:
        SchemaConflictError: If column names differ or types are irreconcilable.
    """
    current_names = [column.name for column in current]
    sample_names = [column.name for column in sample]
    if current_names != sample_names:
        raise SchemaConflictError(
            f"Table '{table_name}' samples disagree on columns: "
            f"{current_names} versus {sample_names}. "
            "Keep one column layout per table folder."
        )
    merged: list[Column] = []
    for current_column, sample_column in zip(current, sample):
        widened = widen_types(current_column.column_type, sample_column.column_type)
        if widened is None:
            raise SchemaConflictError(
                f"Table '{table_name}' column '{current_column.name}' is "
                f"{current_column.column_type} in one sample and "
                f"{sample_column.column_type} in another."
            )
        merged.append(Column(name=current_column.name, column_type=widened))
    return tuple(merged)


class SchemaAccumulator:
    """Merge file samples and report when the schema has stabilized."""

    def __init__(self, table_name: str, stable_sample_count: int) -> None:
        self._table_name = table_name
        self._stable_sample_count = stable_sample_count
        self._columns: tuple[Column, ...] | None = None
        self._unchanged_streak = 0

    @property
    def columns(self) -> tuple[Column, ...] | None:
        return self._columns

    @property
    def is_stable(self) -> bool:
        return self._unchanged_streak >= self._stable_sample_count

    def add(self, sample: tuple[Column, ...]) -> None:
        """Merge one sample and update the unchanged-sample streak."""
        if self._columns is None:
            self._columns = sample
            self._unchanged_streak = 1
            return
        merged = merge_sample_schemas(self._table_name, self._columns, sample)
        if merged == self._columns:
            self._unchanged_streak += 1
        else:
            self._unchanged_streak = 1
        self._columns = merged


def _infer_csv_schema(key: str, text: str, max_rows: int) -> tuple[Column, ...]:
    header, rows = _read_csv_rows(key, text, max_rows=max_rows)
    column_types: list[ColumnType] = ["unknown"] * len(header)
    for row in rows:
        for index, raw_value in enumerate(row):
            column_types[index] = merge_value_type(column_types[index], infer_text_type(raw_value))
    return tuple(
        Column(name=name, column_type=column_type)
        for name, column_type in zip(header, column_types)
    )


def _read_csv_rows(
    key: str,
    text: str,
    max_rows: int | None,
) -> tuple[list[str], list[list[str]]]:
    reader = csv.reader(io.StringIO(text))
    try:
        raw_header = next(reader)
    except StopIteration as error:
        raise MalformedSourceError(
            f"CSV object '{key}' is empty. Add a header row naming each column."
        ) from error
    except csv.Error as error:
        raise MalformedSourceError(f"Failed to parse CSV header in '{key}': {error}.") from error
    header = _validate_header(key, raw_header)
    rows: list[list[str]] = []
    try:
        for row in reader:
            if not row:
                continue
            if len(row) != len(header):
                raise MalformedSourceError(
                    f"CSV object '{key}' line {reader.line_num} has {len(row)} fields, "
                    f"expected {len(header)}. Fix the delimiter or quoting."
                )
            rows.append(row)
            if max_rows is not None and len(rows) >= max_rows:
                break
    except csv.Error as error:
        raise MalformedSourceError(
            f"Failed to parse CSV object '{key}' at line {reader.line_num}: {error}."
        ) from error
    return header, rows


def _validate_header(key: str, raw_header: list[str]) -> list[str]:
    header = [normalize_column_name(name) for name in raw_header]
    if not header or any(not name for name in header):
        raise MalformedSourceError(
            f"CSV object '{key}' has an empty column name in its header. "
            "Name every column in the first row."
        )
    if len(set(header)) != len(header):
        raise MalformedSourceError(
            f"CSV object '{key}' has duplicate column names: {header}."
        )
    return header


def _infer_jsonl_schema(key: str, text: str, max_rows: int) -> tuple[Column, ...]:
    column_types: dict[str, ColumnType] = {}
    for _, payload_row in _iter_json_rows(key, text, max_rows=max_rows):
        for raw_name, value in payload_row.items():
            name = normalize_column_name(raw_name)
            if not name:
                raise MalformedSourceError(f"JSON object '{key}' has an empty field name.")
            current_type = column_types.get(name, "unknown")
            column_types[name] = merge_value_type(current_type, infer_json_type(value))
    if not column_types:
        raise MalformedSourceError(
            f"JSON object '{key}' has no records. Write one JSON object per line."
        )
    return tuple(Column(name=name, column_type=kind) for name, kind in column_types.items())


def _iter_json_rows(
    key: str,
    text: str,
    max_rows: int | None,
) -> Iterable[tuple[int, dict[str, Any]]]:
    row_count = 0
    for line_number, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as error:
            raise MalformedSourceError(
                f"Failed to parse JSON record at {key}:{line_number}: {error.msg}. "
                "Fix the JSON syntax and re-upload the object."
            ) from error
        if not isinstance(payload, dict):
            raise MalformedSourceError(
                f"Invalid JSON record at {key}:{line_number}: expected an object per line."
            )
        yield line_number, payload
        row_count += 1
        if max_rows is not None and row_count >= max_rows:
            return


def _decode_text(key: str, payload: bytes) -> str:
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError as error:
        raise MalformedSourceError(
            f"Object '{key}' is not UTF-8 text: {error.reason}. Re-encode the file as UTF-8."
        ) from error
