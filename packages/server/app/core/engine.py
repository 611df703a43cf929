"""
Dependency engine wiring and FastAPI dependencies.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.services.dependencies import DependencyEngine
from app.services.edges import DependencyEdgeStore
from app.services.flow import ProjectFlowCache
from app.services.records import SqlTaskRecordAccessor


def build_engine(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> DependencyEngine:
    return DependencyEngine(
        store=DependencyEdgeStore(session_factory),
        tasks=SqlTaskRecordAccessor(session_factory),
        settings=settings,
        flow_cache=ProjectFlowCache(settings.flow_cache_ttl_seconds),
    )


def get_dependency_engine(request: Request) -> DependencyEngine:
    """The app-scoped engine created in create_app()."""
    return request.app.state.dependency_engine


def get_actor_id(x_actor_id: Optional[str] = Header(default=None)) -> Optional[uuid.UUID]:
    """Caller identity forwarded by the authenticating gateway, if any."""
    if not x_actor_id:
        return None
    try:
        return uuid.UUID(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=422, detail="X-Actor-Id must be a UUID")
