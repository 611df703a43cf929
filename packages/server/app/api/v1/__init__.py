"""
API v1 Router
"""

from fastapi import APIRouter
from . import dependencies, projects

router = APIRouter()

router.include_router(dependencies.router, tags=["Dependencies"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks/{taskId}/dependencies",
            "/tasks/{taskId}/dependents",
            "/tasks/{taskId}/blocked",
            "/tasks/{taskId}/resolve",
            "/dependencies/{dependencyId}",
            "/projects/{projectId}/dependency-flow",
            "/projects/{projectId}/dependency-integrity",
        ],
    }
