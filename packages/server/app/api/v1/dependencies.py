"""
Task dependency endpoints: edges, blocked status, resolution.

- A task is blocked while any direct prerequisite is not completed.
- Circular, duplicate and self dependencies are rejected on add.
- Resolution is advisory: it reports newly unblocked tasks, never changes status.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.core.engine import get_actor_id, get_dependency_engine
from app.services.dependencies import DependencyEngine
from taskflow_shared.schemas.dependencies import (
    ActivityRead,
    BlockStatus,
    CircularCheck,
    DependencyCreate,
    DependencyRead,
    TaskRef,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/dependencies", response_model=DependencyRead, status_code=201)
async def add_dependency_endpoint(
    task_id: uuid.UUID,
    body: DependencyCreate,
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Add a dependency (task cannot be unblocked until depends_on_task_id completes)."""
    edge = await engine.create_task_dependency(task_id, body.depends_on_task_id, created_by=actor_id)
    return DependencyRead.model_validate(edge)


@router.get("/tasks/{task_id}/dependencies", response_model=List[DependencyRead])
async def list_dependencies_endpoint(
    task_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Direct prerequisites of a task."""
    edges = await engine.get_task_dependencies(task_id)
    return [DependencyRead.model_validate(e) for e in edges]


@router.get("/tasks/{task_id}/dependents", response_model=List[DependencyRead])
async def list_dependents_endpoint(
    task_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Tasks that list this task as a prerequisite."""
    edges = await engine.get_task_dependents(task_id)
    return [DependencyRead.model_validate(e) for e in edges]


@router.get("/tasks/{task_id}/dependencies/validate", response_model=CircularCheck)
async def validate_dependency_endpoint(
    task_id: uuid.UUID,
    depends_on_task_id: uuid.UUID = Query(...),
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Dry-run cycle check for a candidate dependency."""
    path = await engine.find_dependency_path(depends_on_task_id, task_id)
    return CircularCheck(would_cycle=bool(path), path=path)


@router.delete("/dependencies/{dependency_id}")
async def remove_dependency_endpoint(
    dependency_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Remove a dependency. A second call for the same id returns 404."""
    await engine.remove_task_dependency(dependency_id, actor_id=actor_id)
    return {"ok": True}


@router.get("/tasks/{task_id}/dependency-activity", response_model=List[ActivityRead])
async def dependency_activity_endpoint(
    task_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    entries = await engine.get_dependency_activity(task_id)
    return [ActivityRead.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Block status
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/blocked", response_model=BlockStatus)
async def blocked_status_endpoint(
    task_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    return await engine.check_task_blocked(task_id)


@router.post("/tasks/{task_id}/resolve", response_model=List[TaskRef])
async def resolve_dependencies_endpoint(
    task_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Call after task_id was recorded as completed; returns newly unblocked dependents."""
    return await engine.resolve_dependencies(task_id)
