"""Persisted registry of reusable query texts.

Queries are validated against the catalog when published and stored
as text only. Re-publishing a name replaces its text atomically and
increments its revision.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

from catalog.catalog_io import named_query_from_payload, named_query_to_payload
from core.errors import CatalogNotFoundError, UnresolvedReferenceError
from core.json_io import expect_object_list, read_json_file, write_json_file
from core.logging_config import get_logger
from core.types import NamedQuery
from views.dependency_graph import ViewDependencyGraph
from views.sql_references import referenced_relations

_LOGGER = get_logger(__name__)


class NamedQueryStore:
    """Name to query text store validated against tables and views."""

    def __init__(self, graph: ViewDependencyGraph, queries_path: Path | None = None) -> None:
        self._graph = graph
        self._queries_path = queries_path
        self._lock = threading.Lock()
        self._queries: dict[str, NamedQuery] = {}
        if queries_path is not None:
            self._queries = _load_queries(queries_path)

    def publish(self, name: str, text: str, description: str = "") -> NamedQuery:
        """Create or replace a named query.

        Args:
            name: Query name.
            text: SQL text executed by the external query engine.
            description: Optional human-readable description.

        Returns:
            Published query record.

        Raises:
            InvalidSqlError: If the text cannot be parsed.
            UnresolvedReferenceError: If the text reads an unknown table or view.
        """
        references = referenced_relations(text)
        unresolved = [reference for reference in references if not self._graph.contains(reference)]
        if unresolved:
            raise UnresolvedReferenceError(
                f"Query '{name}' references unknown tables or views: {', '.join(unresolved)}. "
                "Crawl the source data or register the views before publishing."
            )
        with self._lock:
            previous = self._queries.get(name)
            query = NamedQuery(
                name=name,
                text=text,
                description=description,
                revision=1 if previous is None else previous.revision + 1,
                published_at=datetime.now(timezone.utc),
            )
            updated = dict(self._queries)
            updated[name] = query
            if self._queries_path is not None:
                write_json_file(
                    self._queries_path,
                    [named_query_to_payload(updated[key]) for key in sorted(updated)],
                )
            self._queries = updated
        _LOGGER.info(
            "named_query_published",
            query_name=name,
            revision=query.revision,
            references=list(references),
        )
        return query

    def get(self, name: str) -> NamedQuery:
        """Return a published query.

        Raises:
            CatalogNotFoundError: If no query has that name.
        """
        query = self._queries.get(name)
        if query is None:
            raise CatalogNotFoundError(
                f"Named query '{name}' is not published. Publish it before reading it."
            )
        return query

    def list(self) -> list[NamedQuery]:
        """Return published queries sorted by name."""
        return [self._queries[name] for name in sorted(self._queries)]


def _load_queries(queries_path: Path) -> dict[str, NamedQuery]:
    payload = read_json_file(queries_path, default_value=[])
    rows = expect_object_list(payload, queries_path)
    queries = [named_query_from_payload(row, queries_path) for row in rows]
    return {query.name: query for query in queries}
