"""Event-driven crawl and materialization cycles.

Crawl events are processed by a bounded worker pool and acknowledged
only after the incremental crawl returned. Row tables whose data or
schema changed are pushed onto the stale-table queue. The
materialization cycle drains that queue together with every row table
the registry shows as not yet converted at its current snapshot.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Mapping

from catalog.crawler import Crawler
from catalog.schema_registry import SchemaRegistry
from core.config import LakeConfig
from core.errors import LakeError
from core.logging_config import get_logger
from core.types import CrawlResult, MaterializationJob
from events.event_queue import EventBatch, EventSource, InMemoryQueue, QueueMessage
from materialize.job_store import TERMINAL_JOB_STATUSES
from materialize.materializer import Materializer

_LOGGER = get_logger(__name__)

_RECEIVE_BATCH_SIZE = 10


@dataclass(frozen=True)
class EventProcessingReport:
    """Outcome of one event-processing run.

    Attributes:
        received: Messages received.
        acknowledged: Messages processed and acknowledged.
        failed: Messages left unacknowledged for redelivery.
        changed_tables: Tables added, updated, or refreshed, in first-seen order.
        errors: Isolated per-table or per-message errors.
    """

    received: int = 0
    acknowledged: int = 0
    failed: int = 0
    changed_tables: tuple[str, ...] = ()
    errors: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MaterializationCycleReport:
    """Outcome of one materialization cycle."""

    jobs: tuple[MaterializationJob, ...]
    errors: Mapping[str, str]
    clean_crawl: CrawlResult


@dataclass(frozen=True)
class BootstrapReport:
    """Outcome of a full crawl of both zones."""

    landing: CrawlResult
    clean: CrawlResult
    enqueued_tables: tuple[str, ...]


@dataclass(frozen=True)
class _MessageOutcome:
    acknowledged: bool
    results: tuple[CrawlResult, ...] = ()
    error: str | None = None


class LakePipeline:
    """Connect the event source, crawler, and materializer."""

    def __init__(
        self,
        registry: SchemaRegistry,
        crawler: Crawler,
        materializer: Materializer,
        event_source: EventSource,
        config: LakeConfig,
        stale_tables: InMemoryQueue[str] | None = None,
    ) -> None:
        """Create a pipeline.

        Args:
            registry: Registry used to classify changed tables.
            crawler: Crawler running incremental and full crawls.
            materializer: Materializer owning the conversion pool.
            event_source: Source of object-created notifications.
            config: Worker and visibility settings.
            stale_tables: Optional stale-table queue; created when omitted.
        """
        self._registry = registry
        self._crawler = crawler
        self._materializer = materializer
        self._event_source = event_source
        self._config = config
        self._stale_tables = stale_tables or InMemoryQueue[str](
            config.visibility_timeout_seconds
        )

    @property
    def stale_tables(self) -> InMemoryQueue[str]:
        return self._stale_tables

    def process_events(self, max_events: int | None = None) -> EventProcessingReport:
        """Receive and crawl events until the source is drained.

        Args:
            max_events: Optional upper bound of messages to receive.

        Returns:
            Aggregated processing report.
        """
        received = 0
        outcomes: list[_MessageOutcome] = []
        with ThreadPoolExecutor(max_workers=self._config.crawl_workers) as executor:
            while max_events is None or received < max_events:
                batch_size = _RECEIVE_BATCH_SIZE
                if max_events is not None:
                    batch_size = min(batch_size, max_events - received)
                messages = self._event_source.receive(batch_size)
                if not messages:
                    break
                received += len(messages)
                outcomes.extend(executor.map(self._handle_message, messages))
        report = _build_event_report(received, outcomes)
        _LOGGER.info(
            "events_processed",
            received=report.received,
            acknowledged=report.acknowledged,
            failed=report.failed,
            changed_tables=list(report.changed_tables),
        )
        return report

    def run_materialization_cycle(self) -> MaterializationCycleReport:
        """Materialize stale row tables, then crawl the clean zone.

        Work comes from the stale-table queue and from the registry: every
        healthy row table whose current version and snapshot has no
        succeeded or failed job is pending, so changes crawled by an
        earlier process are still converted. Each queue message is
        acknowledged once its table produced a terminal job or was
        rejected; the next crawl that changes a rejected table makes it
        pending again.
        """
        messages: list[QueueMessage[str]] = []
        futures: dict[str, Future[MaterializationJob]] = {}
        remaining = len(self._stale_tables)
        while remaining > 0:
            batch = self._stale_tables.receive(min(_RECEIVE_BATCH_SIZE, remaining))
            if not batch:
                break
            remaining -= len(batch)
            for message in batch:
                messages.append(message)
                if message.body not in futures:
                    futures[message.body] = self._materializer.submit(message.body)
        for table_name in self.pending_tables():
            if table_name not in futures:
                futures[table_name] = self._materializer.submit(table_name)
        jobs: dict[str, MaterializationJob] = {}
        errors: dict[str, str] = {}
        for table_name, future in futures.items():
            try:
                job = future.result()
            except LakeError as error:
                _LOGGER.warning("materialization_rejected", table_name=table_name, error=str(error))
                errors[table_name] = str(error)
                continue
            except Exception as error:
                _LOGGER.exception("materialization_crashed", table_name=table_name)
                errors[table_name] = f"Unexpected {type(error).__name__}: {error}"
                continue
            jobs[table_name] = job
            if job.status == "failed":
                errors[table_name] = job.error_message or "materialization failed"
        for message in messages:
            job = jobs.get(message.body)
            if job is None or job.status in TERMINAL_JOB_STATUSES:
                self._stale_tables.ack(message.receipt)
        clean_crawl = self._crawler.crawl("clean")
        return MaterializationCycleReport(
            jobs=tuple(jobs.values()),
            errors=errors,
            clean_crawl=clean_crawl,
        )

    def pending_tables(self) -> tuple[str, ...]:
        """Return healthy row tables with no succeeded or failed job at their current snapshot."""
        job_store = self._materializer.job_store
        return tuple(
            table.name
            for table in self._registry.list_tables()
            if table.storage_format == "row"
            and table.schema_state == "ok"
            and job_store.find_settled(table.name, table.version, table.snapshot_id) is None
        )

    def bootstrap(self) -> BootstrapReport:
        """Fully crawl both zones and enqueue every healthy row table."""
        landing = self._crawler.crawl("landing")
        clean = self._crawler.crawl("clean")
        enqueued = [
            table.name
            for table in self._registry.list_tables()
            if table.storage_format == "row" and table.schema_state == "ok"
        ]
        for table_name in enqueued:
            self._stale_tables.send(table_name)
        _LOGGER.info("lake_bootstrapped", enqueued_tables=enqueued)
        return BootstrapReport(landing=landing, clean=clean, enqueued_tables=tuple(enqueued))

    def _handle_message(self, message: QueueMessage[EventBatch]) -> _MessageOutcome:
        try:
            results = tuple(self._crawler.crawl_event(event) for event in message.body)
        except LakeError as error:
            _LOGGER.warning(
                "event_processing_failed",
                receipt=message.receipt,
                delivery_count=message.delivery_count,
                error=str(error),
            )
            return _MessageOutcome(acknowledged=False, error=str(error))
        for result in results:
            self._enqueue_changed_row_tables(result)
        self._event_source.ack(message.receipt)
        return _MessageOutcome(acknowledged=True, results=results)

    def _enqueue_changed_row_tables(self, result: CrawlResult) -> None:
        for table_name in result.changed_tables:
            table = self._registry.get(table_name)
            if table is not None and table.storage_format == "row":
                self._stale_tables.send(table_name)


def _build_event_report(received: int, outcomes: list[_MessageOutcome]) -> EventProcessingReport:
    changed: dict[str, None] = {}
    errors: dict[str, str] = {}
    acknowledged = 0
    failed = 0
    for index, outcome in enumerate(outcomes):
        if not outcome.acknowledged:
            failed += 1
            errors[f"message-{index}"] = outcome.error or "event processing failed"
            continue
        acknowledged += 1
        for result in outcome.results:
            for table_name in result.changed_tables:
                changed.setdefault(table_name, None)
            errors.update(result.errors)
    return EventProcessingReport(
        received=received,
        acknowledged=acknowledged,
        failed=failed,
        changed_tables=tuple(changed),
        errors=errors,
    )
