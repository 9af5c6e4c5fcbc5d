"""Database module for the task store."""

from cadence.db.engine import (
    create_engine,
    create_engine_from_settings,
    create_session_factory,
    get_session,
)
from cadence.db.models import (
    Base,
    ExecutionStatus,
    ScheduledTaskModel,
    TaskExecutionModel,
    TaskStatus,
    TaskType,
)

__all__ = [
    "create_engine",
    "create_engine_from_settings",
    "create_session_factory",
    "get_session",
    "Base",
    "ExecutionStatus",
    "ScheduledTaskModel",
    "TaskExecutionModel",
    "TaskStatus",
    "TaskType",
]
