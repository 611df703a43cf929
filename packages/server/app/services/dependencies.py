"""
Dependency engine: business logic for the task dependency graph.

Handles:
- Validated edge creation (self-loop, duplicate, cross-project, cycle, fan-in
  and depth rules) with write-then-verify against concurrent inserts
- Edge removal and read queries
- Blocked-status derivation and the one-hop resolution cascade
- Project flow projection and integrity reports

Edge (task_id, depends_on_task_id) means task_id cannot be considered
unblocked until depends_on_task_id is completed. Blocked state is advisory:
nothing here changes a task's status.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import structlog

from app.core.config import Settings
from app.core.errors import ConsistencyError, DependencyNotFoundError, DependencyValidationError
from app.models.activity import DependencyActivity
from app.models.dependency import TaskDependency
from app.services import graph
from app.services.activity import list_activity
from app.services.edges import DependencyEdgeStore, edges_in_project
from app.services.flow import ProjectFlowCache, load_project_graph, project_flow, split_edges
from app.services.records import TaskRecordAccessor
from taskflow_shared.schemas.common import DependencyErrorCode
from taskflow_shared.schemas.dependencies import (
    BlockStatus,
    IntegrityIssue,
    IntegrityReport,
    IntegritySuggestion,
    ProjectFlow,
    TaskRef,
)

log = structlog.get_logger()


class DependencyEngine:
    def __init__(
        self,
        store: DependencyEdgeStore,
        tasks: TaskRecordAccessor,
        settings: Settings,
        flow_cache: Optional[ProjectFlowCache] = None,
    ):
        self.store = store
        self.tasks = tasks
        self.settings = settings
        self.flow_cache = flow_cache or ProjectFlowCache(settings.flow_cache_ttl_seconds)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def create_task_dependency(
        self,
        task_id: uuid.UUID,
        depends_on_task_id: uuid.UUID,
        created_by: Optional[uuid.UUID] = None,
    ) -> TaskDependency:
        if task_id == depends_on_task_id:
            raise DependencyValidationError(
                DependencyErrorCode.SELF_DEPENDENCY, "A task cannot depend on itself"
            )

        attempts = max(1, self.settings.create_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await self._create_once(task_id, depends_on_task_id, created_by)
            except ConsistencyError as exc:
                log.warning(
                    "dependency.race_rollback",
                    task_id=str(task_id),
                    depends_on_task_id=str(depends_on_task_id),
                    attempt=attempt,
                    reason=exc.message,
                )

        raise DependencyValidationError(
            DependencyErrorCode.CYCLE_DETECTED,
            "Adding this dependency would create a circular dependency",
        )

    async def _create_once(
        self,
        task_id: uuid.UUID,
        depends_on_task_id: uuid.UUID,
        created_by: Optional[uuid.UUID],
    ) -> TaskDependency:
        dependent, prerequisite = await self._load_endpoints(task_id, depends_on_task_id)
        edges = await self._graph_edges(dependent, prerequisite)
        self._check_rules(dependent, prerequisite, edges)

        if dependent.is_completed:
            log.warning("dependency.added_to_completed_task", task_id=str(task_id))

        edge = await self.store.insert(
            task_id, depends_on_task_id, dependent.project_id, created_by=created_by
        )
        self._invalidate(dependent.project_id, prerequisite.project_id)

        # Re-read the graph: a concurrent insert may have closed a cycle with ours.
        # Until the verdict is in, any exit (cancellation included) undoes the insert.
        try:
            fresh = await self._graph_edges(dependent, prerequisite)
            if graph.would_create_cycle(fresh, task_id, depends_on_task_id):
                raise ConsistencyError("Concurrent dependency insert closed a cycle")
        except BaseException:
            await self._undo_insert(edge.id, dependent.project_id, prerequisite.project_id)
            raise

        log.info(
            "dependency.created",
            dependency_id=str(edge.id),
            task_id=str(task_id),
            depends_on_task_id=str(depends_on_task_id),
            project_id=str(dependent.project_id),
        )
        return edge

    async def _undo_insert(self, edge_id: uuid.UUID, *project_ids: uuid.UUID) -> None:
        """Discard an unverified edge, finishing the discard even if the caller is cancelled."""
        discard = asyncio.ensure_future(self.store.discard(edge_id))
        try:
            await asyncio.shield(discard)
        except asyncio.CancelledError:
            await asyncio.wait([discard])
            raise
        finally:
            self._invalidate(*project_ids)

    async def _load_endpoints(
        self, task_id: uuid.UUID, depends_on_task_id: uuid.UUID
    ) -> tuple[TaskRef, TaskRef]:
        found = {t.id: t for t in await self.tasks.list_tasks_by_ids([task_id, depends_on_task_id])}
        for tid in (task_id, depends_on_task_id):
            if tid not in found:
                raise DependencyNotFoundError(f"Task {tid} not found")
        return found[task_id], found[depends_on_task_id]

    async def _graph_edges(self, dependent: TaskRef, prerequisite: TaskRef) -> list[TaskDependency]:
        """Edges a cycle through the candidate could use, read in one transaction."""
        project_ids = {dependent.project_id, prerequisite.project_id}
        async with self.store.session() as session:
            edges: list[TaskDependency] = []
            for pid in project_ids:
                edges.extend(await edges_in_project(session, pid))
        return edges

    def _check_rules(
        self, dependent: TaskRef, prerequisite: TaskRef, edges: list[TaskDependency]
    ) -> None:
        if dependent.project_id != prerequisite.project_id and not self.settings.allow_cross_project:
            raise DependencyValidationError(
                DependencyErrorCode.CROSS_PROJECT,
                "Dependencies between different projects are not allowed",
            )

        existing = [e for e in edges if e.task_id == dependent.id]
        if any(e.depends_on_task_id == prerequisite.id for e in existing):
            raise DependencyValidationError(
                DependencyErrorCode.DUPLICATE_EDGE, "Dependency already exists"
            )

        path = graph.would_create_cycle(edges, dependent.id, prerequisite.id)
        if path:
            log.info(
                "dependency.cycle_rejected",
                task_id=str(dependent.id),
                depends_on_task_id=str(prerequisite.id),
                path=[str(p) for p in path],
            )
            raise DependencyValidationError(
                DependencyErrorCode.CYCLE_DETECTED,
                "Adding this dependency would create a circular dependency",
                path=path,
            )

        limit = self.settings.max_dependencies_per_task
        if len(existing) >= limit:
            raise DependencyValidationError(
                DependencyErrorCode.TOO_MANY_DEPENDENCIES,
                f"A task can have at most {limit} dependencies",
            )

        max_depth = self.settings.max_dependency_depth
        depth = graph.dependency_depth(graph.build_adjacency(edges), prerequisite.id)
        if depth + 1 > max_depth:
            raise DependencyValidationError(
                DependencyErrorCode.MAX_DEPTH_EXCEEDED,
                f"Maximum dependency depth of {max_depth} levels exceeded",
            )

    async def remove_task_dependency(
        self, dependency_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None
    ) -> None:
        edge = await self.store.delete(dependency_id, actor_id=actor_id)
        self._invalidate(edge.project_id)
        log.info(
            "dependency.removed",
            dependency_id=str(dependency_id),
            task_id=str(edge.task_id),
            depends_on_task_id=str(edge.depends_on_task_id),
        )

    def _invalidate(self, *project_ids: uuid.UUID) -> None:
        for pid in set(project_ids):
            self.flow_cache.invalidate(pid)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def get_task_dependencies(self, task_id: uuid.UUID) -> list[TaskDependency]:
        edges = await self.store.list_dependencies(task_id)
        return await self._without_dangling(edges, lambda e: e.depends_on_task_id)

    async def get_task_dependents(self, task_id: uuid.UUID) -> list[TaskDependency]:
        edges = await self.store.list_dependents(task_id)
        return await self._without_dangling(edges, lambda e: e.task_id)

    async def _without_dangling(self, edges, endpoint) -> list[TaskDependency]:
        if not edges:
            return []
        present = {t.id for t in await self.tasks.list_tasks_by_ids([endpoint(e) for e in edges])}
        return [e for e in edges if endpoint(e) in present]

    async def get_dependency_activity(self, task_id: uuid.UUID) -> list[DependencyActivity]:
        async with self.store.session() as session:
            return await list_activity(session, task_id)

    async def find_dependency_path(
        self, from_task_id: uuid.UUID, to_task_id: uuid.UUID
    ) -> list[uuid.UUID]:
        """Chain of prerequisites leading from from_task_id to to_task_id, or []."""
        if from_task_id == to_task_id:
            return [from_task_id]
        tasks = await self.tasks.list_tasks_by_ids([from_task_id, to_task_id])
        if not tasks:
            return []
        async with self.store.session() as session:
            edges: list[TaskDependency] = []
            for pid in {t.project_id for t in tasks}:
                edges.extend(await edges_in_project(session, pid))
        return graph.find_path(graph.build_adjacency(edges), from_task_id, to_task_id)

    async def validate_circular_dependency(
        self, task_id: uuid.UUID, depends_on_task_id: uuid.UUID
    ) -> bool:
        """True if adding task_id -> depends_on_task_id would close a cycle."""
        return bool(await self.find_dependency_path(depends_on_task_id, task_id))

    # -----------------------------------------------------------------------
    # Block status and resolution
    # -----------------------------------------------------------------------

    async def check_task_blocked(self, task_id: uuid.UUID) -> BlockStatus:
        edges = await self.store.list_dependencies(task_id)
        if not edges:
            return BlockStatus(is_blocked=False, blocking_tasks=[], total_dependencies=0)

        prereq_ids = [e.depends_on_task_id for e in edges]
        by_id = {t.id: t for t in await self.tasks.list_tasks_by_ids(prereq_ids)}
        # dangling prerequisites (deleted out-of-band) neither count nor block
        prerequisites = [by_id[pid] for pid in prereq_ids if pid in by_id]
        blocking = [t for t in prerequisites if not t.is_completed]
        return BlockStatus(
            is_blocked=bool(blocking),
            blocking_tasks=blocking,
            total_dependencies=len(prerequisites),
        )

    async def resolve_dependencies(self, completed_task_id: uuid.UUID) -> list[TaskRef]:
        """
        Direct dependents of completed_task_id that are no longer blocked.

        Only direct dependents can change state: blocked status depends on
        direct prerequisites alone, and unblocking does not change a task's
        own status. Safe to call repeatedly for the same task.
        """
        # The completion changes status and blocked flags shown in cached flows.
        completed = await self.tasks.get_task(completed_task_id)
        if completed is not None:
            self._invalidate(completed.project_id)

        edges = await self.store.list_dependents(completed_task_id)
        dependent_ids = list(dict.fromkeys(e.task_id for e in edges))
        if not dependent_ids:
            return []

        dependents = {t.id: t for t in await self.tasks.list_tasks_by_ids(dependent_ids)}
        self._invalidate(*(t.project_id for t in dependents.values()))
        unblocked: list[TaskRef] = []
        for tid in dependent_ids:
            if tid not in dependents:
                continue
            status = await self.check_task_blocked(tid)
            if not status.is_blocked:
                unblocked.append(dependents[tid])

        log.info(
            "dependency.resolved",
            completed_task_id=str(completed_task_id),
            dependents=len(dependent_ids),
            unblocked=[str(t.id) for t in unblocked],
        )
        return unblocked

    # -----------------------------------------------------------------------
    # Projections
    # -----------------------------------------------------------------------

    async def get_project_dependency_flow(self, project_id: uuid.UUID) -> ProjectFlow:
        cached = self.flow_cache.get(project_id)
        if cached is not None:
            return cached

        async with self.store.session() as session:
            tasks, edges = await load_project_graph(session, project_id)
        flow = project_flow(project_id, tasks, edges)
        self.flow_cache.put(project_id, flow)
        return flow

    async def validate_project_integrity(self, project_id: uuid.UUID) -> IntegrityReport:
        async with self.store.session() as session:
            tasks, edges = await load_project_graph(session, project_id)
            seen = {e.id for e in edges}
            edges += [e for e in await edges_in_project(session, project_id) if e.id not in seen]

        inside, dangling = split_edges(tasks, edges)
        task_ids = {t.id for t in tasks}
        issues: list[IntegrityIssue] = []

        for edge in dangling:
            missing = [
                tid for tid in (edge.task_id, edge.depends_on_task_id) if tid not in task_ids
            ]
            issues.append(
                IntegrityIssue(
                    type="orphan_dependency",
                    message=f"Dependency references missing task(s): {', '.join(str(m) for m in missing)}",
                    dependency_id=edge.id,
                )
            )

        cycles = graph.find_all_cycles(inside)
        if cycles:
            issues.append(
                IntegrityIssue(
                    type="circular_dependencies",
                    message=f"Found {len(cycles)} circular dependency chain(s)",
                    cycles=cycles,
                )
            )

        connected = {e.task_id for e in inside} | {e.depends_on_task_id for e in inside}
        isolated = [t.id for t in tasks if t.id not in connected]
        suggestions: list[IntegritySuggestion] = []
        if isolated:
            suggestions.append(
                IntegritySuggestion(
                    type="isolated_tasks",
                    message=f"{len(isolated)} task(s) have no dependencies and can run in parallel",
                    tasks=isolated,
                )
            )

        return IntegrityReport(
            project_id=project_id,
            is_valid=not issues,
            total_tasks=len(tasks),
            total_dependencies=len(edges),
            issues=issues,
            suggestions=suggestions,
        )
