"""Repository classes for database operations."""

from cadence.db.repositories.scheduled import ScheduledTaskRepository
from cadence.db.repositories.executions import TaskExecutionRepository

__all__ = [
    "ScheduledTaskRepository",
    "TaskExecutionRepository",
]
