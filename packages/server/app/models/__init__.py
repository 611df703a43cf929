# SQLModel definitions, imported so metadata is populated for create_all.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .project import Project  # noqa: F401
from .task import Task  # noqa: F401
from .dependency import TaskDependency  # noqa: F401
from .activity import DependencyActivity  # noqa: F401
