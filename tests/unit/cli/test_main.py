"""Unit tests for CLI command handling."""

from __future__ import annotations

import pytest

from cli.main import main
from tests.fixture_paths import fixture_path, stage_landing_tables

_ALL_TABLES = ("orders", "employee", "customer", "order_details")


def _run(tmp_path, *args: str) -> int:
    return main(["--data-root", str(tmp_path), *args])


def test_cli_crawl_reports_added_tables(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Crawl should print the tables it registered."""
    stage_landing_tables(tmp_path / "landing", "orders", "customer")

    exit_code = _run(tmp_path, "crawl", "landing")
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and output[0] == "tables_added=raw_customer,raw_orders"


def test_cli_tables_lists_schema(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    """Tables should print one tab-separated line per table."""
    stage_landing_tables(tmp_path / "landing", "customer")
    _run(tmp_path, "crawl", "landing")
    capsys.readouterr()

    _run(tmp_path, "tables")
    (line,) = capsys.readouterr().out.splitlines()

    assert line.split("\t")[:5] == ["raw_customer", "row", "v1", "ok", "landing/customer/"]


def test_cli_register_view_prints_dependencies(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Register-view should print the parsed upstream names."""
    stage_landing_tables(tmp_path / "landing", "customer")
    _run(tmp_path, "crawl", "landing")
    capsys.readouterr()

    exit_code = _run(
        tmp_path, "register-view", "customer_view", "--sql", "SELECT * FROM raw_customer"
    )
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and output == [
        "view=customer_view",
        "state=stale",
        "depends_on=raw_customer",
    ]


def test_cli_unknown_reference_returns_error(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Domain errors should be printed with a non-zero exit code."""
    exit_code = _run(
        tmp_path, "register-view", "broken_view", "--sql", "SELECT * FROM raw_nonexistent"
    )
    output = capsys.readouterr().out.strip()

    assert exit_code == 1 and output.startswith("error=")


def test_cli_apply_registers_spec_objects(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Apply should register the lake spec views and publish its queries."""
    stage_landing_tables(tmp_path / "landing", *_ALL_TABLES)
    _run(tmp_path, "crawl", "landing")
    capsys.readouterr()

    exit_code = _run(tmp_path, "apply", str(fixture_path("lake_spec.yaml")))
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and output == [
        "view\traw_orders_master_view\tregistered",
        "view\traw_orders_master_detail_view\tregistered",
        "query\torder-total-by-salesperson\tpublished",
    ]


def test_cli_rebuild_views_builds_in_order(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Rebuild-views should build the lake spec views upstream first."""
    stage_landing_tables(tmp_path / "landing", *_ALL_TABLES)
    _run(tmp_path, "crawl", "landing")
    _run(tmp_path, "apply", str(fixture_path("lake_spec.yaml")))
    capsys.readouterr()

    _run(tmp_path, "rebuild-views")
    output = capsys.readouterr().out.splitlines()

    assert output[0] == "built=raw_orders_master_view,raw_orders_master_detail_view"


def test_cli_publish_query_prints_revision(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Re-publishing a query should print the next revision."""
    stage_landing_tables(tmp_path / "landing", "orders")
    _run(tmp_path, "crawl", "landing")
    _run(tmp_path, "publish-query", "order-count", "--query", "SELECT COUNT(*) FROM raw_orders")
    capsys.readouterr()

    _run(tmp_path, "publish-query", "order-count", "--query", "SELECT 1 FROM raw_orders")
    output = capsys.readouterr().out.splitlines()

    assert output == ["query=order-count", "revision=2"]


def test_cli_materialize_prints_job(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    """Materialize should print the succeeded job and its target table."""
    stage_landing_tables(tmp_path / "landing", "customer")
    _run(tmp_path, "crawl", "landing")
    capsys.readouterr()

    exit_code = _run(tmp_path, "materialize", "raw_customer")
    fields = capsys.readouterr().out.strip().split("\t")

    assert exit_code == 0 and (fields[0], fields[1], fields[3]) == (
        "raw_customer",
        "succeeded",
        "parquet_customer",
    )


def test_cli_process_events_bootstrap_materializes_tables(
    tmp_path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """A bootstrap run should crawl and convert every row table."""
    stage_landing_tables(tmp_path / "landing", "customer")

    exit_code = _run(tmp_path, "process-events", "--bootstrap")
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and "job\traw_customer\tsucceeded\tparquet_customer" in output
