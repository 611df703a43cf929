"""Dependency-graph Pydantic schemas for shared use across server and frontend codegen."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .common import ActivityAction, TaskStatus


# ---------------------------------------------------------------------------
# Task references (read from the external task store)
# ---------------------------------------------------------------------------

class TaskRef(BaseModel):
    """Validated shape of a task record as the engine sees it."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    name: str
    status: TaskStatus

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------

class DependencyCreate(BaseModel):
    """Request body for POST /tasks/{taskId}/dependencies."""
    depends_on_task_id: UUID


class DependencyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    task_id: UUID
    depends_on_task_id: UUID
    project_id: UUID
    created_at: datetime
    created_by: Optional[UUID] = None


class CircularCheck(BaseModel):
    would_cycle: bool
    path: List[UUID] = Field(default_factory=list)


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    task_id: UUID
    action: ActivityAction
    actor_id: Optional[UUID] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

class BlockStatus(BaseModel):
    is_blocked: bool
    blocking_tasks: List[TaskRef] = Field(default_factory=list)
    total_dependencies: int = 0


class FlowNodeData(BaseModel):
    id: UUID
    name: str
    status: TaskStatus
    is_blocked: bool = False


class FlowNode(BaseModel):
    id: UUID
    type: Literal["task"] = "task"
    data: FlowNodeData


class FlowEdge(BaseModel):
    """source is the prerequisite, target the dependent task."""
    id: UUID
    source: UUID
    target: UUID
    type: Literal["dependency"] = "dependency"


class ProjectFlow(BaseModel):
    project_id: UUID
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Integrity report
# ---------------------------------------------------------------------------

class IntegrityIssue(BaseModel):
    type: Literal["orphan_dependency", "circular_dependencies"]
    message: str
    dependency_id: Optional[UUID] = None
    cycles: List[List[UUID]] = Field(default_factory=list)


class IntegritySuggestion(BaseModel):
    type: Literal["isolated_tasks"]
    message: str
    tasks: List[UUID] = Field(default_factory=list)


class IntegrityReport(BaseModel):
    project_id: UUID
    is_valid: bool
    total_tasks: int
    total_dependencies: int
    issues: List[IntegrityIssue] = Field(default_factory=list)
    suggestions: List[IntegritySuggestion] = Field(default_factory=list)
