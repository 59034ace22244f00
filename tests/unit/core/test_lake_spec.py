"""Unit tests for lake-spec parsing and application."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from catalog.schema_registry import SchemaRegistry
from core.errors import LakeSpecError
from core.lake_spec import apply_lake_spec, load_lake_spec
from core.types import Column
from tests.fixture_paths import fixture_path
from views.dependency_graph import ViewDependencyGraph
from views.named_query_store import NamedQueryStore


def _registry_with_source_tables() -> SchemaRegistry:
    registry = SchemaRegistry()
    for name in ("raw_orders", "raw_employee", "raw_customer", "raw_order_details"):
        registry.apply_observation(
            name=name,
            columns=(Column("id", "int"),),
            storage_format="row",
            source_prefix=f"landing/{name.removeprefix('raw_')}/",
            snapshot_id="snap",
            observed_at=datetime.now(timezone.utc),
        )
    return registry


def _write_spec(tmp_path: Path, content: str) -> str:
    spec_path = tmp_path / "lake.yaml"
    spec_path.write_text(content, encoding="utf-8")
    return str(spec_path)


def test_load_lake_spec_parses_views_and_queries() -> None:
    """The fixture spec should declare two views and one named query."""
    spec = load_lake_spec(str(fixture_path("lake_spec.yaml")))

    assert [view.name for view in spec.views] == [
        "raw_orders_master_view",
        "raw_orders_master_detail_view",
    ] and spec.named_queries[0].name == "order-total-by-salesperson"


def test_load_lake_spec_rejects_unknown_version(tmp_path) -> None:
    """Only version 1 lake specs are supported."""
    spec_file = _write_spec(tmp_path, "version: 2\nviews: []\n")

    with pytest.raises(LakeSpecError):
        load_lake_spec(spec_file)


def test_load_lake_spec_rejects_unknown_fields(tmp_path) -> None:
    """Unknown root fields should fail fast."""
    spec_file = _write_spec(
        tmp_path,
        "version: 1\nsteps: []\nnamed_queries:\n  - name: q\n    query: SELECT 1\n",
    )

    with pytest.raises(LakeSpecError):
        load_lake_spec(spec_file)


def test_load_lake_spec_rejects_mismatched_view_name(tmp_path) -> None:
    """A CREATE VIEW target must match the declared view name."""
    spec_file = _write_spec(
        tmp_path,
        "version: 1\nviews:\n  - name: a_view\n    sql: CREATE VIEW b_view AS SELECT * FROM t\n",
    )

    with pytest.raises(LakeSpecError):
        load_lake_spec(spec_file)


def test_load_lake_spec_rejects_duplicate_names(tmp_path) -> None:
    """View names must be unique within one spec."""
    spec_file = _write_spec(
        tmp_path,
        "version: 1\nviews:\n"
        "  - name: v\n    sql: SELECT * FROM t\n"
        "  - name: v\n    sql: SELECT * FROM u\n",
    )

    with pytest.raises(LakeSpecError):
        load_lake_spec(spec_file)


def test_apply_lake_spec_registers_views_and_queries() -> None:
    """Applying the fixture spec should register every declared name."""
    registry = _registry_with_source_tables()
    graph = ViewDependencyGraph(registry)
    queries = NamedQueryStore(graph)
    spec = load_lake_spec(str(fixture_path("lake_spec.yaml")))

    result = apply_lake_spec(spec, graph, queries)

    assert [outcome for _, outcome in result.views + result.named_queries] == [
        "registered",
        "registered",
        "published",
    ]


def test_apply_lake_spec_is_idempotent() -> None:
    """Re-applying an unchanged spec should change nothing."""
    registry = _registry_with_source_tables()
    graph = ViewDependencyGraph(registry)
    queries = NamedQueryStore(graph)
    spec = load_lake_spec(str(fixture_path("lake_spec.yaml")))
    apply_lake_spec(spec, graph, queries)

    result = apply_lake_spec(spec, graph, queries)

    assert {outcome for _, outcome in result.views + result.named_queries} == {"unchanged"}


def test_apply_lake_spec_replaces_changed_view(tmp_path) -> None:
    """A changed definition should replace the registered view."""
    registry = _registry_with_source_tables()
    graph = ViewDependencyGraph(registry)
    queries = NamedQueryStore(graph)
    spec_template = "version: 1\nviews:\n  - name: v\n    sql: SELECT * FROM {table}\n"
    original = load_lake_spec(_write_spec(tmp_path, spec_template.format(table="raw_orders")))
    apply_lake_spec(original, graph, queries)
    changed = load_lake_spec(_write_spec(tmp_path, spec_template.format(table="raw_customer")))

    result = apply_lake_spec(changed, graph, queries)

    assert result.views == (("v", "replaced"),)
