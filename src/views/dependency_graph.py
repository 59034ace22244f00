"""View dependency graph with staleness tracking.

Views form a DAG over registry tables and other views. Base-table
schema changes mark every transitive dependent stale eagerly, while
rebuilds happen lazily in topological order when a caller pulls them.
All graph mutations run under one graph-wide lock.
"""

from __future__ import annotations

import heapq
import threading
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Sequence

from catalog.catalog_io import view_from_payload, view_to_payload
from catalog.schema_registry import SchemaRegistry
from core.errors import (
    CatalogNotFoundError,
    CyclicDependencyError,
    DuplicateNameError,
    StaleArtifactError,
    UnresolvedReferenceError,
    ViewStateError,
)
from core.json_io import expect_object_list, read_json_file, write_json_file
from core.logging_config import get_logger
from core.types import PublishedArtifact, Table, View, ViewState
from views.sql_references import referenced_relations

_LOGGER = get_logger(__name__)

ViewExecutor = Callable[[View], None]

ALLOWED_VIEW_TRANSITIONS: dict[ViewState, tuple[ViewState, ...]] = {
    "fresh": ("stale",),
    "stale": ("building",),
    "building": ("fresh", "failed", "stale"),
    "failed": ("building", "stale"),
}


@dataclass(frozen=True)
class ViewRebuildReport:
    """Outcome of one pull-based rebuild cycle.

    Attributes:
        built: Views rebuilt to fresh, in build order.
        failed: View name mapped to the build failure message.
        skipped: Views left stale because an upstream view did not build.
    """

    built: tuple[str, ...]
    failed: dict[str, str]
    skipped: tuple[str, ...]


def validate_view_transition(current: ViewState, next_state: ViewState) -> None:
    """Validate one lifecycle transition against allowed state machine edges."""
    allowed_states = ALLOWED_VIEW_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise ViewStateError(
            f"Invalid view state transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


class ViewDependencyGraph:
    """Registry of views and their upstream tables or views."""

    def __init__(self, registry: SchemaRegistry, views_path: Path | None = None) -> None:
        """Create a graph bound to a schema registry.

        Args:
            registry: Registry used to resolve table references.
            views_path: Optional JSON file for persistence.
        """
        self._registry = registry
        self._views_path = views_path
        self._lock = threading.RLock()
        self._views: dict[str, View] = {}
        if views_path is not None:
            self._views = _load_views(views_path)
        self._dependents = _build_dependents_index(self._views.values())

    def register(
        self,
        name: str,
        definition: str,
        depends_on: Sequence[str] | None = None,
    ) -> View:
        """Register a new view.

        Args:
            name: Unique view name.
            definition: SQL definition text.
            depends_on: Optional explicit upstream names; parsed from the
                definition when omitted.

        Returns:
            Registered view in ``stale`` state, awaiting its first build.

        Raises:
            DuplicateNameError: If a table or view already uses the name.
            CyclicDependencyError: If the view would depend on itself.
            UnresolvedReferenceError: If an upstream name is unknown.
        """
        with self._lock:
            if name in self._views or self._registry.contains(name):
                raise DuplicateNameError(
                    f"Name '{name}' is already registered. Use replace to redefine a view."
                )
            dependencies = _dependencies_for(definition, depends_on)
            self._ensure_acyclic(name, dependencies)
            self._ensure_resolvable(name, dependencies)
            view = View(
                name=name,
                definition=definition,
                depends_on=dependencies,
                state="stale",
                registered_order=self._next_registered_order(),
            )
            self._views[name] = view
            self._index_dependencies(view)
            self._persist()
        _LOGGER.info("view_registered", view_name=name, depends_on=list(dependencies))
        return view

    def replace(
        self,
        name: str,
        definition: str,
        depends_on: Sequence[str] | None = None,
    ) -> View:
        """Redefine an existing view and mark it and its dependents stale.

        Raises:
            CatalogNotFoundError: If the view does not exist.
            CyclicDependencyError: If the new definition closes a cycle.
            UnresolvedReferenceError: If an upstream name is unknown.
        """
        with self._lock:
            current = self.get_view(name)
            dependencies = _dependencies_for(definition, depends_on)
            self._ensure_acyclic(name, dependencies)
            self._ensure_resolvable(name, dependencies)
            view = replace(
                current,
                definition=definition,
                depends_on=dependencies,
                state="stale",
            )
            self._views[name] = view
            self._dependents = _build_dependents_index(self._views.values())
            self._mark_dependents_stale(name)
            self._persist()
        _LOGGER.info("view_replaced", view_name=name, depends_on=list(dependencies))
        return view

    def mark_stale(self, name: str) -> tuple[str, ...]:
        """Mark every transitive dependent of a table or view stale.

        Args:
            name: Changed table or view.

        Returns:
            Views newly marked stale, in breadth-first order.

        Raises:
            CatalogNotFoundError: If the name is neither a table nor a view.
        """
        with self._lock:
            if name not in self._views and not self._registry.contains(name):
                raise CatalogNotFoundError(
                    f"Cannot mark '{name}' stale: no table or view has that name."
                )
            newly_stale = self._mark_dependents_stale(name)
            if newly_stale:
                self._persist()
        if newly_stale:
            _LOGGER.info("views_marked_stale", source=name, views=list(newly_stale))
        return newly_stale

    def topological_build_order(self) -> tuple[str, ...]:
        """Return view names with every view after its upstream views.

        Ties between ready views are broken by registration order.
        """
        with self._lock:
            in_degree = {
                view.name: sum(1 for dep in view.depends_on if dep in self._views)
                for view in self._views.values()
            }
            ready = [
                (self._views[name].registered_order, name)
                for name, degree in in_degree.items()
                if degree == 0
            ]
            heapq.heapify(ready)
            ordered: list[str] = []
            while ready:
                _, name = heapq.heappop(ready)
                ordered.append(name)
                for dependent in self._dependents.get(name, ()):
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        heapq.heappush(ready, (self._views[dependent].registered_order, dependent))
            return tuple(ordered)

    def resolve(self, name: str) -> View | Table:
        """Return the view or table registered under a name.

        Raises:
            CatalogNotFoundError: If neither exists.
        """
        view = self._views.get(name)
        if view is not None:
            return view
        table = self._registry.get(name)
        if table is not None:
            return table
        raise CatalogNotFoundError(f"No table or view named '{name}' is registered.")

    def contains(self, name: str) -> bool:
        """Return whether a view or table uses the name."""
        return name in self._views or self._registry.contains(name)

    def get_view(self, name: str) -> View:
        """Return a view by name.

        Raises:
            CatalogNotFoundError: If the view does not exist.
        """
        view = self._views.get(name)
        if view is None:
            raise CatalogNotFoundError(
                f"View '{name}' is not registered. Register it before building or querying."
            )
        return view

    def list_views(self) -> list[View]:
        """Return views in registration order."""
        return sorted(self._views.values(), key=lambda view: view.registered_order)

    def dependents_of(self, name: str) -> tuple[str, ...]:
        """Return every transitive dependent view of a table or view."""
        with self._lock:
            return tuple(self._walk_dependents(name))

    def begin_build(self, name: str) -> View:
        """Move a stale or failed view to ``building``."""
        return self._transition(name, "building")

    def complete_build(self, name: str) -> View:
        """Record a successful build and the upstream versions it reflects.

        A view marked stale while building stays stale so the superseded
        build is not published as fresh.
        """
        with self._lock:
            current = self.get_view(name)
            if current.state == "stale":
                _LOGGER.info("view_build_superseded", view_name=name)
                return current
            validate_view_transition(current.state, "fresh")
            view = replace(
                current,
                state="fresh",
                version=current.version + 1,
                built_from=self._upstream_versions(current),
                built_definition=current.definition,
                last_error=None,
            )
            self._views[name] = view
            self._persist()
        _LOGGER.info(
            "view_built",
            view_name=name,
            version=view.version,
            built_from=dict(view.built_from),
        )
        return view

    def fail_build(self, name: str, message: str) -> View:
        """Record a failed build; the last good definition stays queryable."""
        with self._lock:
            current = self.get_view(name)
            if current.state == "stale":
                return current
            validate_view_transition(current.state, "failed")
            view = replace(current, state="failed", last_error=message)
            self._views[name] = view
            self._persist()
        _LOGGER.error("view_build_failed", view_name=name, error=message)
        return view

    def rebuild_stale(self, executor: ViewExecutor | None = None) -> ViewRebuildReport:
        """Rebuild stale and failed views in topological order.

        Args:
            executor: Query-engine callback that (re)creates one view. It
                raises to signal failure. Defaults to a no-op for engines
                that resolve views lazily.

        Returns:
            Rebuild report. Views downstream of a failed or skipped view are
            skipped for this cycle.
        """
        run_view = executor or _noop_executor
        built: list[str] = []
        failed: dict[str, str] = {}
        skipped: list[str] = []
        for name in self.topological_build_order():
            view = self.get_view(name)
            if view.state not in ("stale", "failed"):
                continue
            if any(dep in failed or dep in skipped for dep in view.depends_on):
                skipped.append(name)
                continue
            building_view = self.begin_build(name)
            try:
                run_view(building_view)
            except Exception as error:
                self.fail_build(name, str(error))
                failed[name] = str(error)
                continue
            if self.complete_build(name).state == "fresh":
                built.append(name)
            else:
                skipped.append(name)
        return ViewRebuildReport(built=tuple(built), failed=failed, skipped=tuple(skipped))

    def published_artifact(self, name: str, allow_stale: bool = False) -> PublishedArtifact:
        """Return the stable contract the query engine reads for a name.

        Args:
            name: Table or view name.
            allow_stale: Serve the last successful build of a non-fresh view.

        Returns:
            Published artifact.

        Raises:
            CatalogNotFoundError: If the name is unknown.
            StaleArtifactError: If the view is not fresh and allow_stale is
                unset, or it has never built successfully.
        """
        resolved = self.resolve(name)
        if isinstance(resolved, Table):
            return PublishedArtifact(
                name=resolved.name,
                kind="table",
                schema_or_definition=", ".join(
                    f"{column.name} {column.column_type}" for column in resolved.columns
                ),
                storage_format=resolved.storage_format,
                version=resolved.version,
                fresh=resolved.schema_state == "ok",
            )
        fresh = resolved.state == "fresh"
        if not fresh and not allow_stale:
            raise StaleArtifactError(
                f"View '{name}' is {resolved.state}. Rebuild it or pass allow_stale."
            )
        if resolved.built_definition is None:
            raise StaleArtifactError(
                f"View '{name}' has never built successfully. Rebuild it before querying."
            )
        return PublishedArtifact(
            name=resolved.name,
            kind="view",
            schema_or_definition=resolved.built_definition,
            storage_format=None,
            version=resolved.version,
            fresh=fresh,
        )

    def _transition(self, name: str, next_state: ViewState) -> View:
        with self._lock:
            current = self.get_view(name)
            validate_view_transition(current.state, next_state)
            view = replace(current, state=next_state)
            self._views[name] = view
            self._persist()
            return view

    def _mark_dependents_stale(self, name: str) -> tuple[str, ...]:
        newly_stale: list[str] = []
        for dependent in self._walk_dependents(name):
            view = self._views[dependent]
            if view.state == "stale":
                continue
            self._views[dependent] = replace(view, state="stale")
            newly_stale.append(dependent)
        return tuple(newly_stale)

    def _walk_dependents(self, name: str) -> list[str]:
        visited: set[str] = set()
        ordered: list[str] = []
        queue = deque(self._dependents.get(name, ()))
        while queue:
            dependent = queue.popleft()
            if dependent in visited:
                continue
            visited.add(dependent)
            ordered.append(dependent)
            queue.extend(self._dependents.get(dependent, ()))
        return ordered

    def _ensure_acyclic(self, name: str, dependencies: tuple[str, ...]) -> None:
        downstream = set(self._walk_dependents(name))
        for dependency in dependencies:
            if dependency == name:
                raise CyclicDependencyError(f"View '{name}' cannot depend on itself.")
            if dependency in downstream:
                raise CyclicDependencyError(
                    f"View '{name}' cannot depend on '{dependency}': "
                    f"'{dependency}' already depends on '{name}'."
                )

    def _ensure_resolvable(self, name: str, dependencies: tuple[str, ...]) -> None:
        missing = [
            dep
            for dep in dependencies
            if dep not in self._views and not self._registry.contains(dep)
        ]
        if missing:
            raise UnresolvedReferenceError(
                f"View '{name}' references unknown tables or views: {', '.join(missing)}. "
                "Crawl the source zone or register upstream views first."
            )

    def _upstream_versions(self, view: View) -> dict[str, int]:
        versions: dict[str, int] = {}
        for dependency in view.depends_on:
            upstream_view = self._views.get(dependency)
            if upstream_view is not None:
                versions[dependency] = upstream_view.version
                continue
            table = self._registry.get(dependency)
            if table is not None:
                versions[dependency] = table.version
        return versions

    def _index_dependencies(self, view: View) -> None:
        for dependency in view.depends_on:
            self._dependents.setdefault(dependency, []).append(view.name)

    def _next_registered_order(self) -> int:
        return max((view.registered_order for view in self._views.values()), default=0) + 1

    def _persist(self) -> None:
        if self._views_path is None:
            return
        payload = [view_to_payload(view) for view in self.list_views()]
        write_json_file(self._views_path, payload)


def _dependencies_for(definition: str, depends_on: Sequence[str] | None) -> tuple[str, ...]:
    if depends_on is not None:
        return tuple(dict.fromkeys(depends_on))
    return referenced_relations(definition)


def _build_dependents_index(views: Iterable[View]) -> dict[str, list[str]]:
    dependents: dict[str, list[str]] = {}
    ordered_views = sorted(views, key=lambda view: view.registered_order)
    for view in ordered_views:
        for dependency in view.depends_on:
            dependents.setdefault(dependency, []).append(view.name)
    return dependents


def _load_views(views_path: Path) -> dict[str, View]:
    payload = read_json_file(views_path, default_value=[])
    rows = expect_object_list(payload, views_path)
    views = [view_from_payload(row, views_path) for row in rows]
    return {view.name: view for view in views}


def _noop_executor(view: View) -> None:
    """Accept a view for query engines that resolve definitions lazily."""
