"""Unit tests for the view dependency graph."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from catalog.schema_registry import SchemaRegistry
from core.errors import (
    CatalogNotFoundError,
    CyclicDependencyError,
    DuplicateNameError,
    StaleArtifactError,
    UnresolvedReferenceError,
    ViewStateError,
)
from core.types import Column, View
from views.dependency_graph import ViewDependencyGraph

_MASTER_VIEW_SQL = (
    "SELECT ord.*, emp.last_name employee_last_name, cust.company customer_company "
    "FROM raw_orders ord "
    "JOIN raw_employee emp ON ord.employee_id = emp.employee_id "
    "JOIN raw_customer cust ON ord.customer_id = cust.customer_id"
)


def _observe(registry: SchemaRegistry, name: str, columns: tuple[Column, ...]) -> None:
    registry.apply_observation(
        name=name,
        columns=columns,
        storage_format="row",
        source_prefix=f"landing/{name.removeprefix('raw_')}/",
        snapshot_id="s1",
        observed_at=datetime.now(timezone.utc),
    )


def _registry() -> SchemaRegistry:
    registry = SchemaRegistry()
    for name in ("raw_orders", "raw_employee", "raw_customer", "raw_order_details"):
        _observe(registry, name, (Column("id", "int"),))
    return registry


def _layered_graph() -> ViewDependencyGraph:
    graph = ViewDependencyGraph(_registry())
    graph.register("raw_orders_master_view", _MASTER_VIEW_SQL)
    graph.register(
        "raw_orders_master_detail_view",
        "SELECT * FROM raw_orders_master_view omv "
        "JOIN raw_order_details d ON omv.order_id = d.order_id",
    )
    graph.register("customer_view", "SELECT * FROM raw_customer")
    graph.rebuild_stale()
    return graph


def test_register_parses_dependencies_from_sql() -> None:
    """Upstream names should be extracted from the definition."""
    graph = ViewDependencyGraph(_registry())

    view = graph.register("raw_orders_master_view", _MASTER_VIEW_SQL)

    assert view.depends_on == ("raw_orders", "raw_employee", "raw_customer")


def test_new_view_starts_stale() -> None:
    """A view has no build until the first rebuild."""
    graph = ViewDependencyGraph(_registry())

    view = graph.register("customer_view", "SELECT * FROM raw_customer")

    assert view.state == "stale"


def test_register_rejects_unknown_reference() -> None:
    """Views over unknown tables should be rejected."""
    graph = ViewDependencyGraph(_registry())

    with pytest.raises(UnresolvedReferenceError):
        graph.register("broken_view", "SELECT * FROM raw_nonexistent")


def test_register_rejects_duplicate_name() -> None:
    """A view cannot reuse a table name."""
    graph = ViewDependencyGraph(_registry())

    with pytest.raises(DuplicateNameError):
        graph.register("raw_orders", "SELECT * FROM raw_customer")


def test_register_rejects_self_reference() -> None:
    """A view cannot read itself."""
    graph = ViewDependencyGraph(_registry())

    with pytest.raises(CyclicDependencyError):
        graph.register("loop_view", "SELECT * FROM loop_view", depends_on=["loop_view"])


def test_replace_rejects_cycle_and_leaves_graph_unchanged() -> None:
    """Closing a cycle should fail without mutating the graph."""
    graph = _layered_graph()
    before = graph.list_views()

    with pytest.raises(CyclicDependencyError):
        graph.replace(
            "raw_orders_master_view",
            "SELECT * FROM raw_orders_master_detail_view",
        )

    assert graph.list_views() == before


def test_mark_stale_reaches_every_transitive_dependent() -> None:
    """Staleness should follow the dependency closure and nothing else."""
    graph = _layered_graph()

    newly_stale = graph.mark_stale("raw_orders")

    assert set(newly_stale) == {"raw_orders_master_view", "raw_orders_master_detail_view"} and (
        graph.get_view("customer_view").state == "fresh"
    )


def test_mark_stale_unknown_name_raises() -> None:
    """Marking an unknown name should fail."""
    graph = _layered_graph()

    with pytest.raises(CatalogNotFoundError):
        graph.mark_stale("raw_missing")


def test_topological_order_places_upstream_views_first() -> None:
    """Every view should come after the views it reads."""
    graph = _layered_graph()

    order = graph.topological_build_order()

    assert order.index("raw_orders_master_view") < order.index("raw_orders_master_detail_view")


def test_rebuild_records_upstream_versions() -> None:
    """A rebuilt view should record the table versions it reflects."""
    registry = _registry()
    graph = ViewDependencyGraph(registry)
    graph.register("raw_orders_master_view", _MASTER_VIEW_SQL)
    graph.rebuild_stale()
    _observe(registry, "raw_orders", (Column("id", "int"), Column("notes", "string")))
    graph.mark_stale("raw_orders")
    stale_state = graph.get_view("raw_orders_master_view").state

    graph.rebuild_stale()

    view = graph.get_view("raw_orders_master_view")
    assert (stale_state, view.state, view.built_from["raw_orders"]) == ("stale", "fresh", 2)


def test_failed_build_skips_dependents() -> None:
    """Dependents of a failed view should be skipped for the cycle."""
    graph = _layered_graph()
    graph.mark_stale("raw_orders")

    def executor(view: View) -> None:
        if view.name == "raw_orders_master_view":
            raise RuntimeError("engine unavailable")

    report = graph.rebuild_stale(executor)

    assert (list(report.failed), report.skipped) == (
        ["raw_orders_master_view"],
        ("raw_orders_master_detail_view",),
    )


def test_view_marked_stale_while_building_stays_stale() -> None:
    """A build superseded by an upstream change should not publish fresh."""
    graph = _layered_graph()
    graph.mark_stale("raw_customer")
    graph.begin_build("customer_view")
    graph.mark_stale("raw_customer")

    view = graph.complete_build("customer_view")

    assert view.state == "stale"


def test_invalid_transition_raises() -> None:
    """Fresh views cannot start building without going stale first."""
    graph = _layered_graph()

    with pytest.raises(ViewStateError):
        graph.begin_build("customer_view")


def test_published_artifact_rejects_stale_view() -> None:
    """Stale views should not be served unless explicitly allowed."""
    graph = _layered_graph()
    graph.mark_stale("raw_customer")

    with pytest.raises(StaleArtifactError):
        graph.published_artifact("customer_view")


def test_published_artifact_serves_last_build_when_allowed() -> None:
    """Allowing stale reads should return the last successful build."""
    graph = _layered_graph()
    graph.mark_stale("raw_customer")

    artifact = graph.published_artifact("customer_view", allow_stale=True)

    assert (artifact.version, artifact.fresh) == (1, False)


def test_published_artifact_for_table_lists_columns() -> None:
    """Tables should publish their column listing."""
    graph = _layered_graph()

    artifact = graph.published_artifact("raw_orders")

    assert (artifact.kind, artifact.schema_or_definition) == ("table", "id int")


def test_graph_reloads_persisted_views(tmp_path) -> None:
    """Views should survive a restart through the views file."""
    registry = _registry()
    views_path = tmp_path / "views.json"
    graph = ViewDependencyGraph(registry, views_path)
    graph.register("customer_view", "SELECT * FROM raw_customer")

    reloaded = ViewDependencyGraph(registry, views_path)

    assert reloaded.dependents_of("raw_customer") == ("customer_view",)
