"""Unit tests for the schema registry."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from catalog.schema_registry import SchemaRegistry
from core.errors import CatalogNotFoundError, DuplicateNameError, SchemaConflictError
from core.types import Column

_ORDER_COLUMNS = (Column("order_id", "int"), Column("customer_id", "int"))


def _observe(registry: SchemaRegistry, columns=_ORDER_COLUMNS, snapshot_id: str = "s1"):
    return registry.apply_observation(
        name="raw_orders",
        columns=columns,
        storage_format="row",
        source_prefix="landing/orders/",
        snapshot_id=snapshot_id,
        observed_at=datetime.now(timezone.utc),
    )


def test_new_table_starts_at_version_one() -> None:
    """First observation should register version 1."""
    update = _observe(SchemaRegistry())

    assert (update.outcome, update.table.version) == ("added", 1)


def test_same_observation_is_unchanged() -> None:
    """Re-observing the same schema and snapshot should not bump the version."""
    registry = SchemaRegistry()
    _observe(registry)

    update = _observe(registry)

    assert (update.outcome, update.table.version) == ("unchanged", 1)


def test_new_snapshot_with_same_schema_is_refreshed() -> None:
    """New objects under an unchanged schema should keep the version."""
    registry = SchemaRegistry()
    _observe(registry)

    update = _observe(registry, snapshot_id="s2")

    assert (update.outcome, update.table.version) == ("refreshed", 1)


def test_schema_change_bumps_version() -> None:
    """A changed column list should increment the version."""
    registry = SchemaRegistry()
    _observe(registry)

    update = _observe(registry, columns=_ORDER_COLUMNS + (Column("notes", "string"),))

    assert (update.outcome, update.table.version) == ("updated", 2)


def test_storage_format_is_immutable() -> None:
    """Observing a different storage format should be rejected."""
    registry = SchemaRegistry()
    _observe(registry)

    with pytest.raises(SchemaConflictError):
        registry.apply_observation(
            name="raw_orders",
            columns=_ORDER_COLUMNS,
            storage_format="columnar",
            source_prefix="landing/orders/",
            snapshot_id="s1",
            observed_at=datetime.now(timezone.utc),
        )


def test_columnar_table_is_seeded_with_source_version() -> None:
    """Columnar tables should carry the version of their row source."""
    registry = SchemaRegistry()

    update = registry.apply_observation(
        name="parquet_orders",
        columns=_ORDER_COLUMNS,
        storage_format="columnar",
        source_prefix="clean/orders/",
        snapshot_id="p1",
        observed_at=datetime.now(timezone.utc),
        source_version=3,
    )

    assert (update.table.version, update.table.source_version) == (3, 3)


def test_mark_conflict_keeps_last_good_schema() -> None:
    """Conflicts should flag the table without touching its columns."""
    registry = SchemaRegistry()
    _observe(registry)

    table = registry.mark_conflict("raw_orders", "bool vs int", datetime.now(timezone.utc))

    assert table is not None and (table.schema_state, table.columns) == ("conflict", _ORDER_COLUMNS)


def test_require_raises_for_unknown_table() -> None:
    """Unknown tables should raise a catalog error."""
    with pytest.raises(CatalogNotFoundError):
        SchemaRegistry().require("raw_missing")


def test_registry_reloads_persisted_catalog(tmp_path) -> None:
    """A new registry should load tables persisted by an earlier one."""
    catalog_path = tmp_path / "catalog.json"
    _observe(SchemaRegistry(catalog_path))

    reloaded = SchemaRegistry(catalog_path)

    assert reloaded.require("raw_orders").columns == _ORDER_COLUMNS


def test_same_name_from_another_folder_is_rejected() -> None:
    """A second folder normalizing to a registered name should not replace it."""
    registry = SchemaRegistry()
    _observe(registry)

    with pytest.raises(DuplicateNameError):
        registry.apply_observation(
            name="raw_orders",
            columns=(Column("code", "string"),),
            storage_format="row",
            source_prefix="landing/Orders/",
            snapshot_id="s9",
            observed_at=datetime.now(timezone.utc),
        )

    assert registry.require("raw_orders").columns == _ORDER_COLUMNS


def test_mark_conflict_from_another_folder_is_rejected() -> None:
    """Conflicts found in a colliding folder should not flag the registered table."""
    registry = SchemaRegistry()
    _observe(registry)

    with pytest.raises(DuplicateNameError):
        registry.mark_conflict(
            "raw_orders", "int vs bool", datetime.now(timezone.utc), "landing/Orders/"
        )

    assert registry.require("raw_orders").schema_state == "ok"
