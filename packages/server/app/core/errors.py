"""
Typed dependency-engine errors and their HTTP rendering.

- DependencyValidationError: the request was semantically invalid, never retried.
- DependencyNotFoundError: edge or referenced task absent.
- ConsistencyError: a concurrent write raced our create; retried internally.
"""

from __future__ import annotations

from typing import Optional, Sequence
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskflow_shared.schemas.common import DependencyErrorCode, ErrorDetail


class DependencyError(Exception):
    """Base class for every failure reported by the dependency engine."""

    status_code: int = 400

    def __init__(self, code: DependencyErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def detail(self) -> ErrorDetail:
        return ErrorDetail(code=self.code.value, message=self.message, status=self.status_code)


_RULE_VIOLATIONS = {
    DependencyErrorCode.CROSS_PROJECT,
    DependencyErrorCode.TOO_MANY_DEPENDENCIES,
    DependencyErrorCode.MAX_DEPTH_EXCEEDED,
}


class DependencyValidationError(DependencyError):
    def __init__(
        self,
        code: DependencyErrorCode,
        message: str,
        path: Optional[Sequence[uuid.UUID]] = None,
    ):
        super().__init__(code, message)
        self.status_code = 422 if code in _RULE_VIOLATIONS else 409
        self.path = list(path or [])


class DependencyNotFoundError(DependencyError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__(DependencyErrorCode.NOT_FOUND, message)


class ConsistencyError(DependencyError):
    status_code = 409

    def __init__(self, message: str):
        super().__init__(DependencyErrorCode.CONSISTENCY_CONFLICT, message)


async def dependency_error_handler(request: Request, exc: DependencyError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail().model_dump()},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DependencyError, dependency_error_handler)
