"""Python SDK for lake catalog operations.

This module wires the registry, view graph, named query store,
crawler, and materializer for one data root and exposes them through
one client object.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Sequence

from catalog.crawler import Crawler
from catalog.schema_registry import SchemaRegistry
from core.config import LakeConfig
from core.constants import (
    CATALOG_FILE_NAME,
    JOBS_FILE_NAME,
    NAMED_QUERIES_FILE_NAME,
    VIEWS_FILE_NAME,
)
from core.lake_spec import LakeSpecApplyResult, apply_lake_spec, load_lake_spec
from core.types import (
    CrawlEvent,
    CrawlResult,
    MaterializationJob,
    NamedQuery,
    PublishedArtifact,
    Table,
    View,
    ZoneName,
)
from events.event_queue import EventSource, InMemoryEventSource
from materialize.job_store import JobStore
from materialize.materializer import Materializer
from pipeline.lake_pipeline import (
    BootstrapReport,
    EventProcessingReport,
    LakePipeline,
    MaterializationCycleReport,
)
from storage.object_store import ZoneStores, build_zone_stores
from views.dependency_graph import ViewDependencyGraph, ViewExecutor, ViewRebuildReport
from views.named_query_store import NamedQueryStore


class LakeClient:
    """Primary SDK entry point for lake workflows."""

    def __init__(
        self,
        config: LakeConfig | None = None,
        stores: ZoneStores | None = None,
        event_source: EventSource | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
            stores: Optional zone stores; built from the config when omitted.
            event_source: Optional event source; SQS when a queue URL is
                configured, otherwise an in-memory source.
        """
        self._config = config or LakeConfig.from_env()
        data_root = self._config.data_root
        self._stores = stores or build_zone_stores(self._config)
        self._registry = SchemaRegistry(data_root / CATALOG_FILE_NAME)
        self._graph = ViewDependencyGraph(self._registry, data_root / VIEWS_FILE_NAME)
        self._queries = NamedQueryStore(self._graph, data_root / NAMED_QUERIES_FILE_NAME)
        self._jobs = JobStore(data_root / JOBS_FILE_NAME)
        self._crawler = Crawler(self._registry, self._graph, self._stores, self._config)
        self._materializer = Materializer(
            self._registry, self._stores, self._jobs, self._config, self._graph
        )
        self._event_source = event_source or _default_event_source(self._config)
        self._pipeline = LakePipeline(
            registry=self._registry,
            crawler=self._crawler,
            materializer=self._materializer,
            event_source=self._event_source,
            config=self._config,
        )

    @property
    def config(self) -> LakeConfig:
        return self._config

    @property
    def event_source(self) -> EventSource:
        return self._event_source

    @property
    def pipeline(self) -> LakePipeline:
        return self._pipeline

    def with_data_root(self, data_root: str) -> "LakeClient":
        """Clone the client with a different local data root.

        Zone locations are kept unless they default to the previous root.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        if _zones_under_root(self._config):
            return LakeClient(LakeConfig.for_data_root(resolved_root))
        return LakeClient(replace(self._config, data_root=resolved_root))

    def crawl(self, zone: ZoneName, path_prefix: str | None = None) -> CrawlResult:
        """Fully crawl one zone.

        Args:
            zone: ``landing`` or ``clean``.
            path_prefix: Key prefix whose sub-folders are tables. Defaults to
                the configured prefix of the zone.

        Returns:
            Aggregated crawl result.
        """
        return self._crawler.crawl(zone, path_prefix)

    def crawl_event(self, event: CrawlEvent) -> CrawlResult:
        return self._crawler.crawl_event(event)

    def list_tables(self) -> list[Table]:
        return self._registry.list_tables()

    def get_table(self, name: str) -> Table:
        """Return a registered table.

        Raises:
            CatalogNotFoundError: If the table is not registered.
        """
        return self._registry.require(name)

    def register_view(
        self,
        name: str,
        definition: str,
        depends_on: Sequence[str] | None = None,
    ) -> View:
        """Register a view over tables or other views."""
        return self._graph.register(name, definition, depends_on)

    def replace_view(
        self,
        name: str,
        definition: str,
        depends_on: Sequence[str] | None = None,
    ) -> View:
        return self._graph.replace(name, definition, depends_on)

    def list_views(self) -> list[View]:
        return self._graph.list_views()

    def mark_stale(self, name: str) -> tuple[str, ...]:
        return self._graph.mark_stale(name)

    def build_order(self) -> tuple[str, ...]:
        return self._graph.topological_build_order()

    def rebuild_views(self, executor: ViewExecutor | None = None) -> ViewRebuildReport:
        """Rebuild stale and failed views in dependency order.

        Args:
            executor: Optional query-engine callback creating one view.

        Returns:
            Rebuild report.
        """
        return self._graph.rebuild_stale(executor)

    def published_artifact(self, name: str, allow_stale: bool = False) -> PublishedArtifact:
        return self._graph.published_artifact(name, allow_stale=allow_stale)

    def materialize(self, table_name: str) -> MaterializationJob:
        """Convert one row table to a columnar table in the clean zone.

        Args:
            table_name: Row-format table name.

        Returns:
            Terminal materialization job.
        """
        return self._materializer.materialize(table_name)

    def list_jobs(self, table_name: str | None = None) -> list[MaterializationJob]:
        return self._jobs.list_jobs(table_name)

    def publish_query(self, name: str, text: str, description: str = "") -> NamedQuery:
        """Publish or replace a named query after validating its references."""
        return self._queries.publish(name, text, description)

    def get_query(self, name: str) -> NamedQuery:
        return self._queries.get(name)

    def list_queries(self) -> list[NamedQuery]:
        return self._queries.list()

    def apply_spec(self, spec_file: str) -> LakeSpecApplyResult:
        """Apply a YAML lake spec of views and named queries.

        Args:
            spec_file: Path to the YAML lake spec.

        Returns:
            Per-name apply outcomes.
        """
        return apply_lake_spec(load_lake_spec(spec_file), self._graph, self._queries)

    def process_events(self, max_events: int | None = None) -> EventProcessingReport:
        return self._pipeline.process_events(max_events)

    def run_materialization_cycle(self) -> MaterializationCycleReport:
        return self._pipeline.run_materialization_cycle()

    def bootstrap(self) -> BootstrapReport:
        return self._pipeline.bootstrap()

    def close(self) -> None:
        """Wait for queued materialization jobs and release worker threads."""
        self._materializer.shutdown()


def _default_event_source(config: LakeConfig) -> EventSource:
    if config.event_queue_url:
        from events.sqs_queue import SqsEventSource

        return SqsEventSource(config)
    return InMemoryEventSource(config.visibility_timeout_seconds)


def _zones_under_root(config: LakeConfig) -> bool:
    root = str(config.data_root)
    return config.landing_uri.startswith(root) and config.clean_uri.startswith(root)
