"""TaskStore: the engine's typed view of the durable task store.

Every operation runs in its own session and commits on success. Driver and
SQLAlchemy failures surface as ``StoreError`` so callers can treat them as
transient without knowing which database is behind the store.
"""

import logging
import os
import socket
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cadence.db.engine import get_session
from cadence.db.models import ExecutionStatus, TaskStatus, TaskType
from cadence.db.repositories import ScheduledTaskRepository, TaskExecutionRepository
from cadence.errors import StoreError, TaskNotFoundError
from cadence.models.actions import TaskAction, dump_action
from cadence.models.scheduled_task import RetryPolicy, ScheduledTask, TaskExecution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCounts:
    active: int = 0
    paused: int = 0
    completed: int = 0
    failed: int = 0
    due_soon: int = 0


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, fallback=str)


class TaskStore:
    """Task Store Adapter over the scheduled task and execution repositories."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        worker_id: str | None = None,
        claim_ttl: timedelta = timedelta(minutes=15),
    ) -> None:
        self._session_factory = session_factory
        self.worker_id = worker_id or default_worker_id()
        self._claim_ttl = claim_ttl

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with get_session(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(str(e)) from e

    # -- Dispatch ----------------------------------------------------------------

    async def select_due_tasks(
        self, limit: int, now: datetime | None = None
    ) -> list[ScheduledTask]:
        """Claim up to ``limit`` due tasks for this worker, oldest due first."""
        async with self._session() as session:
            repo = ScheduledTaskRepository(session)
            models = await repo.claim_due_tasks(
                limit=limit,
                worker_id=self.worker_id,
                claim_ttl=self._claim_ttl,
                now=now,
            )
            tasks = []
            for model in models:
                try:
                    tasks.append(ScheduledTask.from_model(model))
                except ValidationError as e:
                    logger.error(
                        f"Task {model.task_id} has an invalid definition, marking failed: {e}"
                    )
                    await repo.mark_failed(model.task_id)
            return tasks

    async def mark_failed(self, task_id: str, run_count: int | None = None) -> None:
        async with self._session() as session:
            await ScheduledTaskRepository(session).mark_failed(task_id, run_count)

    async def reschedule_at(
        self, task_id: str, instant: datetime, run_count: int | None = None
    ) -> None:
        async with self._session() as session:
            await ScheduledTaskRepository(session).reschedule(task_id, instant, run_count)

    async def set_next_run(self, task_id: str, instant: datetime | None) -> None:
        async with self._session() as session:
            await ScheduledTaskRepository(session).update(task_id, next_run_at=instant)

    # -- Execution records -------------------------------------------------------

    async def begin_execution(
        self,
        task_id: str,
        logs: list[str],
        started_at: datetime,
        triggered_by: dict[str, Any] | None = None,
    ) -> str:
        """Insert a running execution record and return its ID."""
        async with self._session() as session:
            model = await TaskExecutionRepository(session).create(
                task_id=task_id,
                logs=logs,
                started_at=started_at,
                triggered_by=triggered_by,
            )
            return model.execution_id

    async def record_success(
        self,
        task_id: str,
        execution_id: str,
        result: Any,
        logs: list[str],
        duration_ms: int,
        next_run_at: datetime | None,
    ) -> None:
        """Complete the execution and advance the task in one transaction."""
        async with self._session() as session:
            await TaskExecutionRepository(session).complete(
                execution_id,
                status=ExecutionStatus.COMPLETED,
                logs=logs,
                result=_jsonable(result),
                duration_ms=duration_ms,
            )
            await ScheduledTaskRepository(session).mark_executed(task_id, next_run_at)

    async def record_failure(
        self,
        task_id: str,
        execution_id: str,
        error: str,
        logs: list[str],
        duration_ms: int,
    ) -> None:
        """Fail the execution and count the attempt in one transaction."""
        async with self._session() as session:
            await TaskExecutionRepository(session).complete(
                execution_id,
                status=ExecutionStatus.FAILED,
                logs=logs,
                error=error,
                duration_ms=duration_ms,
            )
            await ScheduledTaskRepository(session).record_attempt(task_id)

    async def list_executions(self, task_id: str, limit: int = 50) -> list[TaskExecution]:
        async with self._session() as session:
            models = await TaskExecutionRepository(session).list_for_task(task_id, limit)
            return [TaskExecution.from_model(m) for m in models]

    # -- Task management ---------------------------------------------------------

    async def create_task(
        self,
        name: str,
        type: TaskType,
        action: TaskAction,
        user_id: str | None = None,
        description: str | None = None,
        schedule: dict[str, Any] | None = None,
        trigger: dict[str, Any] | None = None,
        conditions: list[dict[str, Any]] | None = None,
        retry_policy: RetryPolicy | None = None,
        notification: dict[str, Any] | None = None,
        next_run_at: datetime | None = None,
    ) -> ScheduledTask:
        async with self._session() as session:
            model = await ScheduledTaskRepository(session).create(
                name=name,
                type=type,
                action=dump_action(action),
                user_id=user_id,
                description=description,
                schedule=_jsonable(schedule),
                trigger_config=trigger,
                conditions=conditions,
                retry_policy=retry_policy.to_dict() if retry_policy else None,
                notification_config=notification,
                next_run_at=next_run_at,
            )
            return ScheduledTask.from_model(model)

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        async with self._session() as session:
            model = await ScheduledTaskRepository(session).get(task_id)
            return ScheduledTask.from_model(model) if model else None

    async def update_task(self, task_id: str, **values: Any) -> ScheduledTask:
        """Write raw column values and return the updated task.

        Raises:
            TaskNotFoundError: if no task has this ID
        """
        async with self._session() as session:
            model = await ScheduledTaskRepository(session).update(task_id, **values)
            if model is None:
                raise TaskNotFoundError(task_id)
            return ScheduledTask.from_model(model)

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        async with self._session() as session:
            updated = await ScheduledTaskRepository(session).set_status(task_id, status)
        if not updated:
            raise TaskNotFoundError(task_id)

    async def delete_task(self, task_id: str) -> None:
        async with self._session() as session:
            deleted = await ScheduledTaskRepository(session).delete(task_id)
        if not deleted:
            raise TaskNotFoundError(task_id)

    async def list_tasks(
        self,
        user_id: str,
        type: TaskType | None = None,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[ScheduledTask]:
        async with self._session() as session:
            models = await ScheduledTaskRepository(session).list_for_user(
                user_id, type=type, status=status, limit=limit
            )
            return [ScheduledTask.from_model(m) for m in models]

    async def list_upcoming(self, user_id: str, limit: int = 10) -> list[ScheduledTask]:
        async with self._session() as session:
            models = await ScheduledTaskRepository(session).list_upcoming(user_id, limit)
            return [ScheduledTask.from_model(m) for m in models]

    async def list_active_recurring(self) -> list[ScheduledTask]:
        async with self._session() as session:
            models = await ScheduledTaskRepository(session).list_active_recurring()
            return [ScheduledTask.from_model(m) for m in models]

    # -- Maintenance -------------------------------------------------------------

    async def prune_completed(self, older_than_days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        async with self._session() as session:
            return await ScheduledTaskRepository(session).delete_completed(cutoff)

    async def prune_execution_history(self, keep_per_task: int) -> int:
        async with self._session() as session:
            return await TaskExecutionRepository(session).prune_history(keep_per_task)

    async def get_counts(self, due_within: timedelta = timedelta(hours=1)) -> TaskCounts:
        due_before = datetime.now(timezone.utc) + due_within
        async with self._session() as session:
            counts = await ScheduledTaskRepository(session).count_by_status(due_before)
            return TaskCounts(**counts)
