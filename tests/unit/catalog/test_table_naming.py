"""Unit tests for table naming and object grouping."""

from __future__ import annotations

import pytest

from catalog.table_naming import (
    compute_snapshot_id,
    group_objects_by_folder,
    table_folder_of,
    table_name_for,
)
from core.errors import MisplacedObjectError
from core.types import ObjectInfo


def test_table_name_for_uses_zone_prefix() -> None:
    """Landing and clean folders should map to raw_ and parquet_ names."""
    names = (table_name_for("landing", "Order Details"), table_name_for("clean", "customer"))

    assert names == ("raw_order_details", "parquet_customer")


def test_table_folder_of_rejects_root_objects() -> None:
    """Objects outside any folder should be reported as misplaced."""
    with pytest.raises(MisplacedObjectError):
        table_folder_of("stray.csv")


def test_table_folder_of_respects_crawl_prefix() -> None:
    """Folders should be resolved below the crawl prefix."""
    assert table_folder_of("exports/orders/part-1.csv", "exports") == "exports/orders"


def test_group_objects_skips_hidden_and_staging_keys() -> None:
    """Hidden files and staging output should not form tables."""
    objects = [
        ObjectInfo("orders/part-1.csv", 10),
        ObjectInfo("orders/.part-2.csv.tmp", 10),
        ObjectInfo("_staging/orders/job/part-00000.parquet", 10),
    ]

    groups, errors = group_objects_by_folder("landing", objects)

    assert (list(groups), errors) == (["orders"], {})


def test_group_objects_reports_misplaced_objects() -> None:
    """Root-level objects should be reported per key."""
    groups, errors = group_objects_by_folder("landing", [ObjectInfo("stray.csv", 1)])

    assert list(errors) == ["stray.csv"] and groups == {}


def test_snapshot_id_ignores_listing_order() -> None:
    """Snapshots should only depend on the set of keys and sizes."""
    first = [ObjectInfo("orders/a.csv", 1), ObjectInfo("orders/b.csv", 2)]

    assert compute_snapshot_id(first) == compute_snapshot_id(reversed(first))
