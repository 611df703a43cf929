"""
Dependency activity recording.

Called inside the unit of work that changes an edge, so the activity row and
the edge write commit or roll back together.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.activity import DependencyActivity
from taskflow_shared.schemas.common import ActivityAction

log = structlog.get_logger()


async def record_activity(
    session: AsyncSession,
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    action: ActivityAction,
    payload: dict[str, Any],
    actor_id: Optional[uuid.UUID] = None,
) -> DependencyActivity:
    entry = DependencyActivity(
        project_id=project_id,
        task_id=task_id,
        action=action.value,
        actor_id=actor_id,
        payload=payload,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    await session.flush()

    log.debug(
        "dependency.activity_recorded",
        action=action.value,
        project_id=str(project_id),
        task_id=str(task_id),
        actor_id=str(actor_id) if actor_id else None,
        payload=payload,
    )
    return entry


async def list_activity(
    session: AsyncSession, task_id: uuid.UUID
) -> list[DependencyActivity]:
    result = await session.execute(
        select(DependencyActivity)
        .where(DependencyActivity.task_id == task_id)
        .order_by(DependencyActivity.timestamp)
    )
    return list(result.scalars().all())
