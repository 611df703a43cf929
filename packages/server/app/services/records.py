"""
Task Record Accessor: read-only view of the external task store.

Rows are parsed into TaskRef before any engine logic sees them. Rows that do
not parse (unknown status, missing project) are skipped with a warning so a
single bad record cannot break a whole query.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from app.core.database import session_scope
from app.models.task import Task
from taskflow_shared.schemas.common import TaskStatus
from taskflow_shared.schemas.dependencies import TaskRef

log = structlog.get_logger()


def parse_task(row: object) -> Optional[TaskRef]:
    try:
        return TaskRef.model_validate(row)
    except ValidationError as exc:
        log.warning("task_record.invalid", task_id=str(getattr(row, "id", None)), errors=exc.errors())
        return None


def parse_tasks(rows: Iterable[object]) -> list[TaskRef]:
    return [ref for ref in (parse_task(r) for r in rows) if ref is not None]


class TaskRecordAccessor(ABC):
    @abstractmethod
    async def get_task(self, task_id: uuid.UUID) -> Optional[TaskRef]:
        raise NotImplementedError

    @abstractmethod
    async def list_tasks_by_ids(self, task_ids: Sequence[uuid.UUID]) -> list[TaskRef]:
        raise NotImplementedError

    @abstractmethod
    async def list_tasks_by_project(self, project_id: uuid.UUID) -> list[TaskRef]:
        raise NotImplementedError

    async def get_task_status(self, task_id: uuid.UUID) -> Optional[TaskStatus]:
        task = await self.get_task(task_id)
        return task.status if task else None


class SqlTaskRecordAccessor(TaskRecordAccessor):
    """Reads the `tasks` table. Each call is its own short read transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_task(self, task_id: uuid.UUID) -> Optional[TaskRef]:
        async with session_scope(self._session_factory) as session:
            row = await session.get(Task, task_id)
            return parse_task(row) if row else None

    async def list_tasks_by_ids(self, task_ids: Sequence[uuid.UUID]) -> list[TaskRef]:
        if not task_ids:
            return []
        async with session_scope(self._session_factory) as session:
            return await tasks_by_ids(session, task_ids)

    async def list_tasks_by_project(self, project_id: uuid.UUID) -> list[TaskRef]:
        async with session_scope(self._session_factory) as session:
            return await tasks_by_project(session, project_id)


# Session-level helpers, shared with readers that need several queries in one transaction.


async def tasks_by_ids(session: AsyncSession, task_ids: Sequence[uuid.UUID]) -> list[TaskRef]:
    result = await session.execute(select(Task).where(Task.id.in_(list(task_ids))))
    return parse_tasks(result.scalars().all())


async def tasks_by_project(session: AsyncSession, project_id: uuid.UUID) -> list[TaskRef]:
    result = await session.execute(
        select(Task).where(Task.project_id == project_id).order_by(Task.created_at)
    )
    return parse_tasks(result.scalars().all())
