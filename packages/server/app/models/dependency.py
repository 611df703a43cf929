"""Task dependency edge: task_id cannot be unblocked until depends_on_task_id completes."""

from typing import Optional
import uuid

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class TaskDependency(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "task_dependencies"
    __table_args__ = (
        CheckConstraint("task_id != depends_on_task_id", name="no_self_dependency"),
        UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency_pair"),
    )

    task_id: uuid.UUID = Field(foreign_key="tasks.id", ondelete="CASCADE", nullable=False, index=True)
    depends_on_task_id: uuid.UUID = Field(
        foreign_key="tasks.id", ondelete="CASCADE", nullable=False, index=True
    )
    project_id: uuid.UUID = Field(foreign_key="projects.id", nullable=False, index=True)
    created_by: Optional[uuid.UUID] = None
