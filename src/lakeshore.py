"""Public SDK surface for Lakeshore.

This module provides a stable import path for SDK users.
It re-exports the primary client, the core components, and typed models.
"""

from __future__ import annotations

from catalog.crawler import Crawler
from catalog.schema_registry import RegistryUpdate, SchemaRegistry
from core.config import LakeConfig
from core.lake_spec import LakeSpec, apply_lake_spec, load_lake_spec
from core.types import (
    Column,
    CrawlEvent,
    CrawlResult,
    MaterializationJob,
    NamedQuery,
    ObjectInfo,
    PublishedArtifact,
    Table,
    View,
)
from events.event_queue import InMemoryEventSource, InMemoryQueue, QueueMessage
from materialize.job_store import JobStore
from materialize.materializer import Materializer
from pipeline.lake_client import LakeClient
from pipeline.lake_pipeline import LakePipeline
from storage.object_store import LocalObjectStore, ObjectStore, ZoneStores
from views.dependency_graph import ViewDependencyGraph, ViewRebuildReport
from views.named_query_store import NamedQueryStore

__all__ = [
    "Column",
    "CrawlEvent",
    "CrawlResult",
    "Crawler",
    "InMemoryEventSource",
    "InMemoryQueue",
    "JobStore",
    "LakeClient",
    "LakeConfig",
    "LakePipeline",
    "LakeSpec",
    "LocalObjectStore",
    "MaterializationJob",
    "Materializer",
    "NamedQuery",
    "NamedQueryStore",
    "ObjectInfo",
    "ObjectStore",
    "PublishedArtifact",
    "QueueMessage",
    "RegistryUpdate",
    "SchemaRegistry",
    "Table",
    "View",
    "ViewDependencyGraph",
    "ViewRebuildReport",
    "ZoneStores",
    "apply_lake_spec",
    "load_lake_spec",
]
