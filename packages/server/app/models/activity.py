"""Dependency activity log (append-only)."""

from datetime import datetime, timezone
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class DependencyActivity(SQLModel, table=True):
    __tablename__ = "dependency_activity"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    project_id: uuid.UUID = Field(foreign_key="projects.id", nullable=False, index=True)
    task_id: uuid.UUID = Field(nullable=False, index=True)
    action: str = Field(nullable=False)  # dependency_added | dependency_removed
    actor_id: Optional[uuid.UUID] = None
    payload: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
