"""Arrow conversion and parquet encoding for row-format records.

Values are coerced to the Arrow type of their catalog column. Tables
are written as one parquet object per materialization.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import pyarrow as pa
import pyarrow.parquet as pq

from catalog.schema_inference import arrow_to_column_type, parse_timestamp
from core.errors import MalformedSourceError
from core.types import Column, ColumnType

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_ARROW_TYPES: dict[ColumnType, pa.DataType] = {
    "int": pa.int64(),
    "float": pa.float64(),
    "string": pa.string(),
    "bool": pa.bool_(),
    "timestamp": pa.timestamp("us"),
    "unknown": pa.string(),
}


def arrow_schema_for(columns: tuple[Column, ...]) -> pa.Schema:
    """Return the Arrow schema used to store catalog columns."""
    return pa.schema(
        [pa.field(column.name, _ARROW_TYPES[column.column_type]) for column in columns]
    )


def columns_from_arrow_schema(schema: pa.Schema) -> tuple[Column, ...]:
    """Map a written Arrow schema back onto catalog columns."""
    return tuple(
        Column(name=field.name, column_type=arrow_to_column_type(field.type)) for field in schema
    )


def build_arrow_table(
    columns: tuple[Column, ...],
    records: Iterable[Mapping[str, Any]],
    source_label: str,
) -> pa.Table:
    """Build an Arrow table from records keyed by column name.

    Args:
        columns: Catalog columns defining the output schema.
        records: Row records; missing keys become nulls.
        source_label: Source description for error context.

    Returns:
        Arrow table matching ``arrow_schema_for(columns)``.

    Raises:
        MalformedSourceError: If a value cannot be coerced to its column type.
    """
    values: dict[str, list[Any]] = {column.name: [] for column in columns}
    for row_number, record in enumerate(records, 1):
        for column in columns:
            raw_value = record.get(column.name)
            try:
                values[column.name].append(coerce_value(raw_value, column.column_type))
            except (TypeError, ValueError) as error:
                raise MalformedSourceError(
                    f"Row {row_number} of {source_label}: value {raw_value!r} in column "
                    f"'{column.name}' is not a valid {column.column_type}. "
                    "Re-crawl the table so its schema reflects every file."
                ) from error
    schema = arrow_schema_for(columns)
    try:
        arrays = [pa.array(values[field.name], type=field.type) for field in schema]
    except (pa.ArrowException, OverflowError, TypeError, ValueError) as error:
        raise MalformedSourceError(
            f"Failed to convert {source_label} to Arrow: {error}."
        ) from error
    return pa.Table.from_arrays(arrays, schema=schema)


def coerce_value(raw_value: Any, column_type: ColumnType) -> Any:
    """Coerce one decoded value to the Python type of a catalog column.

    Raises:
        ValueError: If the value does not fit the column type.
    """
    if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
        return None
    if column_type == "int":
        if isinstance(raw_value, bool):
            raise ValueError("boolean is not an integer")
        value = int(raw_value)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"{value} is outside the 64-bit integer range")
        return value
    if column_type == "float":
        return float(raw_value)
    if column_type == "bool":
        return _coerce_bool(raw_value)
    if column_type == "timestamp":
        return _coerce_timestamp(raw_value)
    if isinstance(raw_value, (dict, list)):
        return json.dumps(raw_value, sort_keys=True)
    return str(raw_value)


def encode_parquet(table: pa.Table) -> bytes:
    """Encode an Arrow table as parquet bytes."""
    sink = pa.BufferOutputStream()
    pq.write_table(table, sink, compression="snappy")
    return sink.getvalue().to_pybytes()


def _coerce_bool(raw_value: Any) -> bool:
    if isinstance(raw_value, bool):
        return raw_value
    normalized = str(raw_value).strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ValueError(f"expected true or false, got {raw_value!r}")


def _coerce_timestamp(raw_value: Any) -> datetime:
    if isinstance(raw_value, datetime):
        parsed: datetime | None = raw_value
    else:
        parsed = parse_timestamp(str(raw_value).strip())
    if parsed is None:
        raise ValueError(f"unrecognized timestamp {raw_value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
