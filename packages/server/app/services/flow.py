"""
Flow projection: a project's dependency graph as nodes and edges for the UI.

The projection is read in one transaction so it never shows an edge whose
endpoint was deleted between two queries. Results can be kept in a
ProjectFlowCache, which the engine invalidates on every edge mutation.
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.dependency import TaskDependency
from app.services.edges import edges_touching
from app.services.records import tasks_by_project
from taskflow_shared.schemas.dependencies import (
    FlowEdge,
    FlowNode,
    FlowNodeData,
    ProjectFlow,
    TaskRef,
)

log = structlog.get_logger()


class ProjectFlowCache:
    """Read-through cache keyed by project id. ttl_seconds <= 0 disables it."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[uuid.UUID, tuple[float, ProjectFlow]] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, project_id: uuid.UUID) -> Optional[ProjectFlow]:
        if not self.enabled:
            return None
        entry = self._entries.get(project_id)
        if entry is None:
            return None
        stored_at, flow = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[project_id]
            return None
        return flow

    def put(self, project_id: uuid.UUID, flow: ProjectFlow) -> None:
        if self.enabled:
            self._entries[project_id] = (self._clock(), flow)

    def invalidate(self, project_id: uuid.UUID) -> None:
        if self._entries.pop(project_id, None) is not None:
            log.debug("flow_cache.invalidated", project_id=str(project_id))

    def __contains__(self, project_id: uuid.UUID) -> bool:
        return self.get(project_id) is not None


def split_edges(
    tasks: list[TaskRef], edges: list[TaskDependency]
) -> tuple[list[TaskDependency], list[TaskDependency]]:
    """(edges with both endpoints in tasks, edges with a dangling endpoint)"""
    ids = {t.id for t in tasks}
    inside: list[TaskDependency] = []
    dangling: list[TaskDependency] = []
    for edge in edges:
        if edge.task_id in ids and edge.depends_on_task_id in ids:
            inside.append(edge)
        else:
            dangling.append(edge)
    return inside, dangling


def project_flow(project_id: uuid.UUID, tasks: list[TaskRef], edges: list[TaskDependency]) -> ProjectFlow:
    inside, _ = split_edges(tasks, edges)
    by_id = {t.id: t for t in tasks}

    blocked: set[uuid.UUID] = set()
    for edge in inside:
        if not by_id[edge.depends_on_task_id].is_completed:
            blocked.add(edge.task_id)

    nodes = [
        FlowNode(
            id=t.id,
            data=FlowNodeData(id=t.id, name=t.name, status=t.status, is_blocked=t.id in blocked),
        )
        for t in tasks
    ]
    flow_edges = [
        FlowEdge(id=e.id, source=e.depends_on_task_id, target=e.task_id)
        for e in inside
    ]
    return ProjectFlow(project_id=project_id, nodes=nodes, edges=flow_edges)


async def load_project_graph(
    session: AsyncSession, project_id: uuid.UUID
) -> tuple[list[TaskRef], list[TaskDependency]]:
    tasks = await tasks_by_project(session, project_id)
    edges = await edges_touching(session, [t.id for t in tasks])
    return tasks, edges
