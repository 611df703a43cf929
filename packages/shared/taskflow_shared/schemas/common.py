from enum import Enum
from pydantic import BaseModel

class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"

class DependencyErrorCode(str, Enum):
    SELF_DEPENDENCY = "SELF_DEPENDENCY"
    DUPLICATE_EDGE = "DUPLICATE_EDGE"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    CROSS_PROJECT = "CROSS_PROJECT"
    TOO_MANY_DEPENDENCIES = "TOO_MANY_DEPENDENCIES"
    MAX_DEPTH_EXCEEDED = "MAX_DEPTH_EXCEEDED"
    NOT_FOUND = "NOT_FOUND"
    CONSISTENCY_CONFLICT = "CONSISTENCY_CONFLICT"

class ActivityAction(str, Enum):
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"

class ErrorDetail(BaseModel):
    code: str
    message: str
    status: int
