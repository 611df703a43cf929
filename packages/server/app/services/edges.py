"""
Dependency Edge Store: durable task_dependencies rows.

Writes enforce no self-loops and no duplicate pairs both here and through
table constraints. Every write is its own committed unit of work together
with its activity record; validation beyond that lives in the engine.
"""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from app.core.database import session_scope
from app.core.errors import DependencyNotFoundError, DependencyValidationError
from app.models.activity import DependencyActivity
from app.models.dependency import TaskDependency
from app.services.activity import record_activity
from taskflow_shared.schemas.common import ActivityAction, DependencyErrorCode

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Session-level queries
# ---------------------------------------------------------------------------


async def edges_for_task(session: AsyncSession, task_id: uuid.UUID) -> list[TaskDependency]:
    """Edges where task_id is the dependent (its prerequisites)."""
    result = await session.execute(
        select(TaskDependency)
        .where(TaskDependency.task_id == task_id)
        .order_by(TaskDependency.created_at.desc())
    )
    return list(result.scalars().all())


async def edges_on_task(session: AsyncSession, task_id: uuid.UUID) -> list[TaskDependency]:
    """Edges where task_id is the prerequisite (its dependents)."""
    result = await session.execute(
        select(TaskDependency)
        .where(TaskDependency.depends_on_task_id == task_id)
        .order_by(TaskDependency.created_at.desc())
    )
    return list(result.scalars().all())


async def edges_in_project(session: AsyncSession, project_id: uuid.UUID) -> list[TaskDependency]:
    result = await session.execute(
        select(TaskDependency).where(TaskDependency.project_id == project_id)
    )
    return list(result.scalars().all())


async def edges_touching(
    session: AsyncSession, task_ids: Sequence[uuid.UUID]
) -> list[TaskDependency]:
    """Edges with at least one endpoint in task_ids."""
    ids = list(task_ids)
    if not ids:
        return []
    result = await session.execute(
        select(TaskDependency).where(
            or_(
                TaskDependency.task_id.in_(ids),
                TaskDependency.depends_on_task_id.in_(ids),
            )
        )
    )
    return list(result.scalars().all())


async def find_edge(
    session: AsyncSession, task_id: uuid.UUID, depends_on_task_id: uuid.UUID
) -> Optional[TaskDependency]:
    result = await session.execute(
        select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.depends_on_task_id == depends_on_task_id,
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class DependencyEdgeStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def session(self):
        """Read transaction over the edge table (and anything else in the same database)."""
        return session_scope(self._session_factory)

    async def insert(
        self,
        task_id: uuid.UUID,
        depends_on_task_id: uuid.UUID,
        project_id: uuid.UUID,
        created_by: Optional[uuid.UUID] = None,
    ) -> TaskDependency:
        if task_id == depends_on_task_id:
            raise DependencyValidationError(
                DependencyErrorCode.SELF_DEPENDENCY, "A task cannot depend on itself"
            )

        try:
            async with session_scope(self._session_factory) as session:
                if await find_edge(session, task_id, depends_on_task_id):
                    raise DependencyValidationError(
                        DependencyErrorCode.DUPLICATE_EDGE, "Dependency already exists"
                    )
                edge = TaskDependency(
                    task_id=task_id,
                    depends_on_task_id=depends_on_task_id,
                    project_id=project_id,
                    created_by=created_by,
                )
                session.add(edge)
                await session.flush()
                await record_activity(
                    session,
                    project_id=project_id,
                    task_id=task_id,
                    action=ActivityAction.DEPENDENCY_ADDED,
                    payload={
                        "dependency_id": str(edge.id),
                        "depends_on_task_id": str(depends_on_task_id),
                    },
                    actor_id=created_by,
                )
        except IntegrityError as exc:
            # a concurrent insert of the same pair won the unique constraint
            log.info("dependency.duplicate_race", task_id=str(task_id), error=str(exc.orig))
            raise DependencyValidationError(
                DependencyErrorCode.DUPLICATE_EDGE, "Dependency already exists"
            ) from exc
        return edge

    async def delete(
        self, edge_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None
    ) -> TaskDependency:
        async with session_scope(self._session_factory) as session:
            edge = await session.get(TaskDependency, edge_id)
            if not edge:
                raise DependencyNotFoundError("Dependency not found")
            await session.delete(edge)
            await record_activity(
                session,
                project_id=edge.project_id,
                task_id=edge.task_id,
                action=ActivityAction.DEPENDENCY_REMOVED,
                payload={
                    "dependency_id": str(edge.id),
                    "depends_on_task_id": str(edge.depends_on_task_id),
                },
                actor_id=actor_id,
            )
        return edge

    async def discard(self, edge_id: uuid.UUID) -> bool:
        """Delete without an activity record; used to undo an insert that lost a race."""
        async with session_scope(self._session_factory) as session:
            edge = await session.get(TaskDependency, edge_id)
            if not edge:
                return False
            await session.delete(edge)
            activity = await session.execute(
                select(DependencyActivity).where(
                    DependencyActivity.task_id == edge.task_id,
                    DependencyActivity.action == ActivityAction.DEPENDENCY_ADDED.value,
                )
            )
            for entry in activity.scalars().all():
                if entry.payload.get("dependency_id") == str(edge_id):
                    await session.delete(entry)
        return True

    async def get(self, edge_id: uuid.UUID) -> Optional[TaskDependency]:
        async with session_scope(self._session_factory) as session:
            return await session.get(TaskDependency, edge_id)

    async def list_dependencies(self, task_id: uuid.UUID) -> list[TaskDependency]:
        async with session_scope(self._session_factory) as session:
            return await edges_for_task(session, task_id)

    async def list_dependents(self, task_id: uuid.UUID) -> list[TaskDependency]:
        async with session_scope(self._session_factory) as session:
            return await edges_on_task(session, task_id)

    async def list_project_edges(self, project_id: uuid.UUID) -> list[TaskDependency]:
        async with session_scope(self._session_factory) as session:
            return await edges_in_project(session, project_id)
