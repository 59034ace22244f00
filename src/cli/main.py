"""Lakeshore CLI entry points.
This module exposes crawl, view, materialization, and named query commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Callable, Sequence

from core.config import LakeConfig
from core.errors import LakeError
from core.types import ZONE_NAMES, CrawlResult
from pipeline.lake_client import LakeClient

CommandHandler = Callable[[LakeClient, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="lakeshore", description="Lakeshore data lake CLI")
    parser.add_argument("--data-root", help="Override LAKE_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_crawl_command(subparsers)
    subparsers.add_parser("tables", help="List cataloged tables")
    _add_register_view_command(subparsers)
    subparsers.add_parser("views", help="List views and their states")
    _add_mark_stale_command(subparsers)
    subparsers.add_parser("build-order", help="Print views in dependency order")
    subparsers.add_parser("rebuild-views", help="Rebuild stale and failed views")
    _add_materialize_command(subparsers)
    _add_publish_query_command(subparsers)
    subparsers.add_parser("queries", help="List named queries")
    _add_apply_command(subparsers)
    _add_process_events_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Lakeshore CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = _COMMAND_HANDLERS.get(args.command)
    if handler is None:
        parser.error(f"Unsupported command: {args.command}")
        return 2
    client = _build_client(args.data_root)
    try:
        return handler(client, args)
    except LakeError as error:
        print(f"error={error}")
        return 1
    finally:
        client.close()


def _build_client(data_root: str | None) -> LakeClient:
    """Build SDK client with optional data-root override.

    Args:
        data_root: Optional override path.

    Returns:
        Configured SDK client.
    """
    if data_root:
        return LakeClient(LakeConfig.for_data_root(Path(data_root)))
    return LakeClient(LakeConfig.from_env())


def _run_crawl_command(client: LakeClient, args: argparse.Namespace) -> int:
    """Handle crawl command.

    Returns:
        Zero when every table crawled cleanly, otherwise one.
    """
    result = client.crawl(args.zone, args.prefix)
    _print_crawl_result(result)
    return 0 if not result.errors else 1


def _run_tables_command(client: LakeClient, args: argparse.Namespace) -> int:
    for table in client.list_tables():
        columns = ",".join(f"{column.name}:{column.column_type}" for column in table.columns)
        print(
            f"{table.name}\t"
            f"{table.storage_format}\t"
            f"v{table.version}\t"
            f"{table.schema_state}\t"
            f"{table.source_prefix}\t"
            f"{columns}"
        )
    return 0


def _run_register_view_command(client: LakeClient, args: argparse.Namespace) -> int:
    """Handle register-view command.

    The definition is read from ``--sql-file`` when given, else ``--sql``.
    """
    definition = Path(args.sql_file).read_text(encoding="utf-8") if args.sql_file else args.sql
    depends_on = tuple(args.depends_on) if args.depends_on else None
    if args.replace:
        view = client.replace_view(args.name, definition, depends_on)
    else:
        view = client.register_view(args.name, definition, depends_on)
    print(f"view={view.name}")
    print(f"state={view.state}")
    print(f"depends_on={','.join(view.depends_on)}")
    return 0


def _run_views_command(client: LakeClient, args: argparse.Namespace) -> int:
    for view in client.list_views():
        print(f"{view.name}\t{view.state}\tv{view.version}\t{','.join(view.depends_on) or '-'}")
    return 0


def _run_mark_stale_command(client: LakeClient, args: argparse.Namespace) -> int:
    for name in client.mark_stale(args.name):
        print(name)
    return 0


def _run_build_order_command(client: LakeClient, args: argparse.Namespace) -> int:
    for name in client.build_order():
        print(name)
    return 0


def _run_rebuild_views_command(client: LakeClient, args: argparse.Namespace) -> int:
    report = client.rebuild_views()
    print(f"built={','.join(report.built) or '-'}")
    print(f"skipped={','.join(report.skipped) or '-'}")
    for name, message in sorted(report.failed.items()):
        print(f"failed={name}\t{message}")
    return 0 if not report.failed else 1


def _run_materialize_command(client: LakeClient, args: argparse.Namespace) -> int:
    """Handle materialize command.

    Returns:
        Zero when every job succeeded, otherwise one.
    """
    exit_code = 0
    for table_name in args.tables:
        job = client.materialize(table_name)
        print(
            f"{job.table_name}\t"
            f"{job.status}\t"
            f"{job.job_id}\t"
            f"{job.target_table or '-'}\t"
            f"{job.error_message or '-'}"
        )
        if job.status != "succeeded":
            exit_code = 1
    return exit_code


def _run_publish_query_command(client: LakeClient, args: argparse.Namespace) -> int:
    text = Path(args.query_file).read_text(encoding="utf-8") if args.query_file else args.query
    query = client.publish_query(args.name, text, args.description or "")
    print(f"query={query.name}")
    print(f"revision={query.revision}")
    return 0


def _run_queries_command(client: LakeClient, args: argparse.Namespace) -> int:
    for query in client.list_queries():
        print(f"{query.name}\tr{query.revision}\t{query.description or '-'}")
    return 0


def _run_apply_command(client: LakeClient, args: argparse.Namespace) -> int:
    result = client.apply_spec(args.spec_file)
    for name, outcome in result.views:
        print(f"view\t{name}\t{outcome}")
    for name, outcome in result.named_queries:
        print(f"query\t{name}\t{outcome}")
    return 0


def _run_process_events_command(client: LakeClient, args: argparse.Namespace) -> int:
    """Handle process-events command.

    Optionally bootstraps with a full crawl, drains the event source,
    then runs one materialization cycle unless disabled.
    """
    if args.bootstrap:
        bootstrap = client.bootstrap()
        print(f"bootstrap_enqueued={','.join(bootstrap.enqueued_tables) or '-'}")
    report = client.process_events(args.max_events)
    print(f"events_received={report.received}")
    print(f"events_acknowledged={report.acknowledged}")
    print(f"events_failed={report.failed}")
    print(f"tables_changed={','.join(report.changed_tables) or '-'}")
    if args.no_materialize:
        return 0 if report.failed == 0 else 1
    cycle = client.run_materialization_cycle()
    for job in cycle.jobs:
        print(f"job\t{job.table_name}\t{job.status}\t{job.target_table or '-'}")
    for name, message in sorted(cycle.errors.items()):
        print(f"error\t{name}\t{message}")
    return 0 if report.failed == 0 and not cycle.errors else 1


def _print_crawl_result(result: CrawlResult) -> None:
    print(f"tables_added={','.join(result.tables_added) or '-'}")
    print(f"tables_updated={','.join(result.tables_updated) or '-'}")
    print(f"tables_refreshed={','.join(result.tables_refreshed) or '-'}")
    print(f"tables_unchanged={','.join(result.tables_unchanged) or '-'}")
    for name, message in sorted(result.errors.items()):
        print(f"error\t{name}\t{message}")


def _add_crawl_command(subparsers: Any) -> None:
    """Register crawl subcommand."""
    parser = subparsers.add_parser("crawl", help="Crawl a zone and refresh table schemas")
    parser.add_argument("zone", choices=ZONE_NAMES, help="Zone to crawl")
    parser.add_argument(
        "--prefix",
        help="Key prefix whose sub-folders are tables (default: LAKE_<ZONE>_PREFIX)",
    )


def _add_register_view_command(subparsers: Any) -> None:
    """Register register-view subcommand."""
    parser = subparsers.add_parser("register-view", help="Register or replace a view")
    parser.add_argument("name", help="View name")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--sql", help="Inline SQL definition")
    source.add_argument("--sql-file", help="File holding the SQL definition")
    parser.add_argument(
        "--depends-on",
        nargs="+",
        help="Explicit upstream names, parsed from the SQL when omitted",
    )
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Redefine an existing view and mark its dependents stale",
    )


def _add_mark_stale_command(subparsers: Any) -> None:
    """Register mark-stale subcommand."""
    parser = subparsers.add_parser("mark-stale", help="Mark dependents of a table or view stale")
    parser.add_argument("name", help="Changed table or view name")


def _add_materialize_command(subparsers: Any) -> None:
    """Register materialize subcommand."""
    parser = subparsers.add_parser("materialize", help="Convert row tables to parquet")
    parser.add_argument("tables", nargs="+", help="Row-format table names")


def _add_publish_query_command(subparsers: Any) -> None:
    """Register publish-query subcommand."""
    parser = subparsers.add_parser("publish-query", help="Publish or replace a named query")
    parser.add_argument("name", help="Query name")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--query", help="Inline query text")
    source.add_argument("--query-file", help="File holding the query text")
    parser.add_argument("--description", help="Optional description")


def _add_apply_command(subparsers: Any) -> None:
    """Register apply subcommand."""
    parser = subparsers.add_parser("apply", help="Apply a YAML lake spec")
    parser.add_argument("spec_file", help="Path to YAML lake spec file")


def _add_process_events_command(subparsers: Any) -> None:
    """Register process-events subcommand."""
    parser = subparsers.add_parser(
        "process-events",
        help="Crawl queued object events and materialize changed tables",
    )
    parser.add_argument("--max-events", type=int, help="Upper bound of messages to receive")
    parser.add_argument(
        "--bootstrap",
        action="store_true",
        help="Fully crawl both zones and enqueue every row table first",
    )
    parser.add_argument(
        "--no-materialize",
        action="store_true",
        help="Skip the materialization cycle",
    )


_COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "crawl": _run_crawl_command,
    "tables": _run_tables_command,
    "register-view": _run_register_view_command,
    "views": _run_views_command,
    "mark-stale": _run_mark_stale_command,
    "build-order": _run_build_order_command,
    "rebuild-views": _run_rebuild_views_command,
    "materialize": _run_materialize_command,
    "publish-query": _run_publish_query_command,
    "queries": _run_queries_command,
    "apply": _run_apply_command,
    "process-events": _run_process_events_command,
}
