"""Unit tests for row-to-columnar materialization."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from catalog.crawler import Crawler
from catalog.schema_registry import SchemaRegistry
from core.config import LakeConfig
from core.errors import MaterializationError, TransientStorageError
from core.types import Column, ObjectInfo
from materialize.job_store import JobStore
from materialize.materializer import Materializer
from storage.object_store import ObjectStore, ZoneStores, build_zone_stores
from tests.fixture_paths import stage_landing_tables
from views.dependency_graph import ViewDependencyGraph

_EXTRA_CUSTOMER_CSV = (
    "Customer ID,Company,Last Name,First Name,Job Title,Business Phone,Fax Number,City\n"
    "29,Company CC,Lee,Soo Jung,Purchasing Manager,(123)555-0100,(123)555-0101,Denver\n"
)


class _FailingPutStore:
    """Clean store whose writes always fail transiently."""

    def __init__(self, delegate: ObjectStore) -> None:
        self._delegate = delegate

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        return self._delegate.list(prefix)

    def get(self, key: str) -> bytes:
        return self._delegate.get(key)

    def put(self, key: str, data: bytes) -> None:
        raise TransientStorageError(f"simulated write failure for {key}")

    def delete(self, key: str) -> None:
        self._delegate.delete(key)


class _Lake:
    """Crawled local lake with one customer table."""

    def __init__(self, tmp_path) -> None:
        self.config = replace(
            LakeConfig.for_data_root(tmp_path),
            retry_backoff_seconds=0.0,
            materialize_timeout_seconds=0.0,
        )
        self.stores = build_zone_stores(self.config)
        self.registry = SchemaRegistry()
        self.graph = ViewDependencyGraph(self.registry)
        self.jobs = JobStore()
        self.crawler = Crawler(self.registry, self.graph, self.stores, self.config)
        self.landing_root = tmp_path / "landing"
        stage_landing_tables(self.landing_root, "customer")
        self.crawler.crawl("landing")

    def materializer(self, stores: ZoneStores | None = None) -> Materializer:
        return Materializer(
            self.registry, stores or self.stores, self.jobs, self.config, self.graph
        )

    def add_customer_file(self) -> None:
        (self.landing_root / "customer" / "part-2.csv").write_text(
            _EXTRA_CUSTOMER_CSV, encoding="utf-8"
        )

    def clean_part_keys(self) -> list[str]:
        return [
            obj.key
            for obj in self.stores.clean.list("customer/")
            if obj.key.endswith(".parquet")
        ]


def test_materialize_registers_columnar_table(tmp_path) -> None:
    """Materializing raw_customer should register parquet_customer."""
    lake = _Lake(tmp_path)

    job = lake.materializer().materialize("raw_customer")

    table = lake.registry.require("parquet_customer")
    assert (job.status, table.storage_format, table.source_prefix) == (
        "succeeded",
        "columnar",
        "clean/customer/",
    )


def test_materialized_table_keeps_source_schema_and_version(tmp_path) -> None:
    """The columnar table should mirror the row table columns and version."""
    lake = _Lake(tmp_path)

    lake.materializer().materialize("raw_customer")

    source = lake.registry.require("raw_customer")
    target = lake.registry.require("parquet_customer")
    assert (target.columns, target.version, target.source_version) == (
        source.columns,
        source.version,
        source.version,
    )


def test_materialized_parquet_holds_every_row(tmp_path) -> None:
    """The published part file should contain all source rows."""
    lake = _Lake(tmp_path)
    lake.materializer().materialize("raw_customer")

    (part_key,) = lake.clean_part_keys()

    table = pq.read_table(pa.BufferReader(lake.stores.clean.get(part_key)))
    assert table.column("customer_id").to_pylist() == [4, 8, 12, 27]


def test_materialize_twice_is_idempotent(tmp_path) -> None:
    """Repeating a conversion for the same source should do no new work."""
    lake = _Lake(tmp_path)
    materializer = lake.materializer()
    first = materializer.materialize("raw_customer")

    second = materializer.materialize("raw_customer")

    assert (second.job_id, len(lake.jobs.list_jobs("raw_customer"))) == (first.job_id, 1)


def test_materialize_leaves_no_staging_objects(tmp_path) -> None:
    """Staged output should be removed after the swap."""
    lake = _Lake(tmp_path)

    lake.materializer().materialize("raw_customer")

    assert lake.stores.clean.list("_staging/") == []


def test_refreshed_source_replaces_part_file(tmp_path) -> None:
    """A new source snapshot should publish one replacement part file."""
    lake = _Lake(tmp_path)
    materializer = lake.materializer()
    materializer.materialize("raw_customer")
    first_parts = lake.clean_part_keys()
    lake.add_customer_file()
    lake.crawler.crawl("landing")

    materializer.materialize("raw_customer")

    second_parts = lake.clean_part_keys()
    assert len(second_parts) == 1 and second_parts != first_parts


def test_changed_source_without_crawl_supersedes_job(tmp_path) -> None:
    """Objects added after the crawl should abandon the in-flight job."""
    lake = _Lake(tmp_path)
    lake.add_customer_file()

    job = lake.materializer().materialize("raw_customer")

    assert (job.status, lake.registry.get("parquet_customer")) == ("superseded", None)


def test_failed_swap_keeps_previous_columnar_data(tmp_path) -> None:
    """A failing clean store should fail the job and keep the old output."""
    lake = _Lake(tmp_path)
    lake.materializer().materialize("raw_customer")
    previous = lake.registry.require("parquet_customer")
    previous_parts = lake.clean_part_keys()
    lake.add_customer_file()
    lake.crawler.crawl("landing")
    failing = ZoneStores(landing=lake.stores.landing, clean=_FailingPutStore(lake.stores.clean))

    job = lake.materializer(failing).materialize("raw_customer")

    assert (job.status, lake.registry.require("parquet_customer"), lake.clean_part_keys()) == (
        "failed",
        previous,
        previous_parts,
    )


def test_failed_job_records_every_attempt(tmp_path) -> None:
    """Retries should be reflected in the job attempt count."""
    lake = _Lake(tmp_path)
    failing = ZoneStores(landing=lake.stores.landing, clean=_FailingPutStore(lake.stores.clean))

    job = lake.materializer(failing).materialize("raw_customer")

    assert job.attempt == lake.config.max_attempts


def test_materialize_conflicted_table_raises(tmp_path) -> None:
    """Tables held at a conflict should not be converted."""
    lake = _Lake(tmp_path)
    lake.registry.mark_conflict("raw_customer", "int vs bool", datetime.now(timezone.utc))

    with pytest.raises(MaterializationError):
        lake.materializer().materialize("raw_customer")


def test_materialize_columnar_table_raises(tmp_path) -> None:
    """Columnar tables are already materialized."""
    lake = _Lake(tmp_path)
    materializer = lake.materializer()
    materializer.materialize("raw_customer")

    with pytest.raises(MaterializationError):
        materializer.materialize("parquet_customer")


def test_submit_runs_on_worker_pool(tmp_path) -> None:
    """Submitted jobs should complete through the returned future."""
    lake = _Lake(tmp_path)
    materializer = lake.materializer()

    job = materializer.submit("raw_customer").result(timeout=30)
    materializer.shutdown()

    assert job.target_table == "parquet_customer"


class _GatedReadStore:
    """Landing store whose reads wait until the gate opens."""

    def __init__(self, delegate: ObjectStore, gate: threading.Event) -> None:
        self._delegate = delegate
        self._gate = gate
        self.read_started = threading.Event()

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        return self._delegate.list(prefix)

    def get(self, key: str) -> bytes:
        self.read_started.set()
        self._gate.wait(timeout=5.0)
        return self._delegate.get(key)

    def put(self, key: str, data: bytes) -> None:
        self._delegate.put(key, data)

    def delete(self, key: str) -> None:
        self._delegate.delete(key)


class _BrokenReadStore:
    """Landing store whose reads fail with a non-storage error."""

    def __init__(self, delegate: ObjectStore) -> None:
        self._delegate = delegate

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        return self._delegate.list(prefix)

    def get(self, key: str) -> bytes:
        raise RuntimeError(f"decoder crashed on {key}")

    def put(self, key: str, data: bytes) -> None:
        self._delegate.put(key, data)

    def delete(self, key: str) -> None:
        self._delegate.delete(key)


def test_oversized_int_fails_job_instead_of_leaving_it_running(tmp_path) -> None:
    """A value beyond int64 should end in a failed job with no staged output."""
    lake = _Lake(tmp_path)
    big_folder = lake.landing_root / "big"
    big_folder.mkdir()
    (big_folder / "part-1.csv").write_text(
        "id,name\n1,a\n99999999999999999999999,b\n", encoding="utf-8"
    )
    lake.crawler.crawl("landing")

    job = lake.materializer().materialize("raw_big")

    assert (
        job.status,
        [item.status for item in lake.jobs.list_jobs("raw_big")],
        lake.stores.clean.list("_staging/"),
    ) == ("failed", ["failed"], [])


def test_unexpected_error_fails_job(tmp_path) -> None:
    """Errors outside the storage hierarchy should still end the job as failed."""
    lake = _Lake(tmp_path)
    broken = ZoneStores(landing=_BrokenReadStore(lake.stores.landing), clean=lake.stores.clean)

    job = lake.materializer(broken).materialize("raw_customer")

    assert (job.status, "RuntimeError" in (job.error_message or "")) == ("failed", True)


def test_concurrent_version_bump_supersedes_running_job(tmp_path) -> None:
    """A crawl bumping the source version mid-run should abandon the job."""
    lake = _Lake(tmp_path)
    gate = threading.Event()
    landing = _GatedReadStore(lake.stores.landing, gate)
    materializer = lake.materializer(ZoneStores(landing=landing, clean=lake.stores.clean))
    source = lake.registry.require("raw_customer")

    future = materializer.submit("raw_customer")
    landing.read_started.wait(timeout=5.0)
    lake.registry.apply_observation(
        name=source.name,
        columns=source.columns + (Column("notes", "string"),),
        storage_format="row",
        source_prefix=source.source_prefix,
        snapshot_id=source.snapshot_id,
        observed_at=datetime.now(timezone.utc),
    )
    gate.set()
    job = future.result(timeout=30)
    materializer.shutdown()

    assert (job.status, lake.registry.get("parquet_customer"), lake.clean_part_keys()) == (
        "superseded",
        None,
        [],
    )


def test_materialize_writes_under_configured_clean_prefix(tmp_path) -> None:
    """Columnar output should land below the configured clean prefix."""
    lake = _Lake(tmp_path)
    config = replace(lake.config, clean_prefix="exports")
    materializer = Materializer(lake.registry, lake.stores, lake.jobs, config, lake.graph)

    materializer.materialize("raw_customer")

    assert lake.registry.require("parquet_customer").source_prefix == "clean/exports/customer/"
