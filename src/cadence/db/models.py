"""SQLAlchemy ORM models for the task store."""

import enum
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TaskType(str, enum.Enum):
    """Scheduled task type enum."""

    ONE_TIME = "one-time"
    RECURRING = "recurring"
    TRIGGER = "trigger"


class TaskStatus(str, enum.Enum):
    """Scheduled task status enum."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStatus(str, enum.Enum):
    """Task execution status enum."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ScheduledTaskModel(Base):
    """Scheduled task definition and its execution bookkeeping."""

    __tablename__ = "scheduled_tasks"

    task_id: Mapped[str] = mapped_column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[TaskType] = mapped_column(
        Enum(
            TaskType,
            name="task_type",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    schedule: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    trigger_config: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    action: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    conditions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)
    retry_policy: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    notification_config: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True
    )

    status: Mapped[TaskStatus] = mapped_column(
        Enum(
            TaskStatus,
            name="task_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=TaskStatus.ACTIVE,
    )

    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Exclusive claim written in the same transaction as the due-task selection
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    executions: Mapped[list["TaskExecutionModel"]] = relationship(
        "TaskExecutionModel",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_tasks_user_status", "user_id", "status"),
        Index(
            "idx_tasks_next_run",
            "next_run_at",
            postgresql_where=text("status = 'active' AND next_run_at IS NOT NULL"),
        ),
    )


class TaskExecutionModel(Base):
    """Append-only record of a single task attempt."""

    __tablename__ = "task_executions"

    execution_id: Mapped[str] = mapped_column(
        "id",
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    task_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("scheduled_tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(
            ExecutionStatus,
            name="execution_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ExecutionStatus.RUNNING,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result: Mapped[Any | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    logs: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    triggered_by: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    task: Mapped["ScheduledTaskModel"] = relationship(
        "ScheduledTaskModel", back_populates="executions"
    )

    __table_args__ = (
        Index("idx_executions_task_started", "task_id", "started_at"),
    )
