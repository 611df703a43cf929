"""
Shared fixtures: a throwaway SQLite database per test and an engine wired to it.
"""

import os

os.environ.setdefault("TF_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.config import Settings
from app.core.database import init_db, make_session_factory, session_scope
from app.core.engine import build_engine
from app.models.project import Project
from app.models.task import Task


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskflow.db'}",
        log_format="text",
        flow_cache_ttl_seconds=300,
    )


@pytest.fixture
async def db_engine(settings):
    engine = create_async_engine(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def dep_engine(session_factory, settings):
    return build_engine(session_factory, settings)


@pytest.fixture
async def project(session_factory):
    async with session_scope(session_factory) as session:
        p = Project(name="Launch")
        session.add(p)
    return p


@pytest.fixture
def make_task(session_factory, project):
    """Factory: await make_task("T1", status="completed", project_id=...)."""

    async def _make(
        name: str,
        status: str = "not_started",
        project_id: uuid.UUID | None = None,
        task_id: uuid.UUID | None = None,
    ) -> Task:
        async with session_scope(session_factory) as session:
            task = Task(name=name, status=status, project_id=project_id or project.id)
            if task_id is not None:
                task.id = task_id
            session.add(task)
        return task

    return _make


@pytest.fixture
def set_status(session_factory):
    """Simulate the external task store recording a status change."""

    async def _set(task_id: uuid.UUID, status: str) -> None:
        async with session_scope(session_factory) as session:
            task = await session.get(Task, task_id)
            task.status = status
            session.add(task)

    return _set


@pytest.fixture
def delete_task(session_factory):
    """Delete a task row out-of-band, leaving its edges dangling (SQLite does not cascade)."""

    async def _delete(task_id: uuid.UUID) -> None:
        async with session_scope(session_factory) as session:
            task = await session.get(Task, task_id)
            await session.delete(task)

    return _delete
