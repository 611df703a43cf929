"""
Project-level dependency endpoints: flow projection and integrity audit.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from app.core.engine import get_dependency_engine
from app.services.dependencies import DependencyEngine
from taskflow_shared.schemas.dependencies import IntegrityReport, ProjectFlow

router = APIRouter()


@router.get("/{project_id}/dependency-flow", response_model=ProjectFlow)
async def dependency_flow_endpoint(
    project_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Nodes (tasks with status) and edges (prerequisite -> dependent) for rendering."""
    return await engine.get_project_dependency_flow(project_id)


@router.get("/{project_id}/dependency-integrity", response_model=IntegrityReport)
async def dependency_integrity_endpoint(
    project_id: uuid.UUID,
    engine: DependencyEngine = Depends(get_dependency_engine),
):
    """Orphaned edges, cycles and isolated tasks in the project's graph."""
    return await engine.validate_project_integrity(project_id)
