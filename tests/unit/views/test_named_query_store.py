"""Unit tests for the named query store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from catalog.schema_registry import SchemaRegistry
from core.errors import CatalogNotFoundError, InvalidSqlError, UnresolvedReferenceError
from core.types import Column
from views.dependency_graph import ViewDependencyGraph
from views.named_query_store import NamedQueryStore

_TOTALS_QUERY = (
    "SELECT employee_id, SUM(shipping_fee) AS total_fee FROM raw_orders GROUP BY employee_id"
)


def _graph() -> ViewDependencyGraph:
    registry = SchemaRegistry()
    registry.apply_observation(
        name="raw_orders",
        columns=(Column("employee_id", "int"), Column("shipping_fee", "int")),
        storage_format="row",
        source_prefix="landing/orders/",
        snapshot_id="s1",
        observed_at=datetime.now(timezone.utc),
    )
    return ViewDependencyGraph(registry)


def test_publish_stores_query_text() -> None:
    """A valid query should be retrievable by name."""
    store = NamedQueryStore(_graph())

    store.publish("order-total-by-salesperson", _TOTALS_QUERY, "Fees per employee")

    assert store.get("order-total-by-salesperson").text == _TOTALS_QUERY


def test_publish_unknown_reference_leaves_store_unchanged() -> None:
    """Queries over unknown tables should be rejected without side effects."""
    store = NamedQueryStore(_graph())

    with pytest.raises(UnresolvedReferenceError):
        store.publish("missing", "SELECT * FROM raw_nonexistent")

    assert store.list() == []


def test_publish_invalid_sql_raises() -> None:
    """Unparseable text should fail with a typed error."""
    store = NamedQueryStore(_graph())

    with pytest.raises(InvalidSqlError):
        store.publish("broken", "SELECT * FROM (SELECT 1")


def test_republish_increments_revision() -> None:
    """Replacing a query should bump its revision."""
    store = NamedQueryStore(_graph())
    store.publish("totals", _TOTALS_QUERY)

    query = store.publish("totals", "SELECT COUNT(*) FROM raw_orders")

    assert (query.revision, query.text) == (2, "SELECT COUNT(*) FROM raw_orders")


def test_failed_republish_keeps_previous_text() -> None:
    """A rejected replacement should not overwrite the published text."""
    store = NamedQueryStore(_graph())
    store.publish("totals", _TOTALS_QUERY)

    with pytest.raises(UnresolvedReferenceError):
        store.publish("totals", "SELECT * FROM raw_nonexistent")

    assert store.get("totals").revision == 1


def test_get_unknown_query_raises() -> None:
    """Reading an unpublished name should fail."""
    store = NamedQueryStore(_graph())

    with pytest.raises(CatalogNotFoundError):
        store.get("missing")


def test_queries_survive_reload(tmp_path) -> None:
    """Published queries should be read back from the queries file."""
    graph = _graph()
    queries_path = tmp_path / "named_queries.json"
    NamedQueryStore(graph, queries_path).publish("totals", _TOTALS_QUERY, "Fees")

    reloaded = NamedQueryStore(graph, queries_path).get("totals")

    assert (reloaded.description, reloaded.revision) == ("Fees", 1)
