"""Scheduled task and execution records passed between engine components."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cadence.db.models import (
    ExecutionStatus,
    ScheduledTaskModel,
    TaskExecutionModel,
    TaskStatus,
    TaskType,
)
from cadence.models.actions import TaskAction, parse_action


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a failed task is retried and the base backoff delay."""

    max_retries: int
    backoff_ms: int

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_ms <= 0:
            raise ValueError("backoff_ms must be > 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetryPolicy | None":
        if not data:
            return None
        return cls(
            max_retries=int(data.get("maxRetries", data.get("max_retries", 0))),
            backoff_ms=int(data.get("backoffMs", data.get("backoff_ms", 1000))),
        )

    def to_dict(self) -> dict[str, int]:
        return {"max_retries": self.max_retries, "backoff_ms": self.backoff_ms}


@dataclass
class ScheduledTask:
    """A task definition as read from the store."""

    id: str
    name: str
    type: TaskType
    action: TaskAction
    user_id: str | None = None
    description: str | None = None
    schedule: dict[str, Any] | None = None
    trigger: dict[str, Any] | None = None
    conditions: list[dict[str, Any]] | None = None
    retry_policy: RetryPolicy | None = None
    notification: dict[str, Any] | None = None
    status: TaskStatus = TaskStatus.ACTIVE
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    completed_at: datetime | None = None
    run_count: int = 0
    claimed_by: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None

    @property
    def is_one_time(self) -> bool:
        return self.type == TaskType.ONE_TIME

    @property
    def is_recurring(self) -> bool:
        return self.type == TaskType.RECURRING

    @classmethod
    def from_model(cls, model: ScheduledTaskModel) -> "ScheduledTask":
        """Create a ScheduledTask from a database model."""
        return cls(
            id=model.task_id,
            user_id=model.user_id,
            name=model.name,
            description=model.description,
            type=TaskType(model.type),
            schedule=model.schedule,
            trigger=model.trigger_config,
            action=parse_action(model.action),
            conditions=model.conditions,
            retry_policy=RetryPolicy.from_dict(model.retry_policy),
            notification=model.notification_config,
            status=TaskStatus(model.status),
            last_run_at=model.last_run_at,
            next_run_at=model.next_run_at,
            completed_at=model.completed_at,
            run_count=model.run_count or 0,
            claimed_by=model.claimed_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass
class TaskExecution:
    """One attempt at running a task."""

    id: str
    task_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    result: Any = None
    error: str | None = None
    logs: list[str] = field(default_factory=list)

    @classmethod
    def from_model(cls, model: TaskExecutionModel) -> "TaskExecution":
        return cls(
            id=model.execution_id,
            task_id=model.task_id,
            status=ExecutionStatus(model.status),
            started_at=model.started_at,
            completed_at=model.completed_at,
            duration_ms=model.duration_ms,
            result=model.result,
            error=model.error,
            logs=list(model.logs or []),
        )
