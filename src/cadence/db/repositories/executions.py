"""Task execution history repository."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.db.models import ExecutionStatus, TaskExecutionModel


class TaskExecutionRepository:
    """Repository for task execution history."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        task_id: str,
        logs: list[str] | None = None,
        started_at: datetime | None = None,
        triggered_by: dict[str, Any] | None = None,
        execution_id: str | None = None,
    ) -> TaskExecutionModel:
        """Insert a running execution record.

        Args:
            task_id: The task being executed
            logs: Log lines collected so far
            started_at: Start instant (defaults to now)
            triggered_by: Opaque metadata about what started the run
            execution_id: Optional specific execution ID

        Returns:
            The created TaskExecutionModel
        """
        model = TaskExecutionModel(
            task_id=task_id,
            status=ExecutionStatus.RUNNING,
            started_at=started_at or datetime.now(timezone.utc),
            logs=list(logs or []),
            triggered_by=triggered_by,
        )
        if execution_id:
            model.execution_id = execution_id

        self.session.add(model)
        await self.session.flush()
        return model

    async def complete(
        self,
        execution_id: str,
        status: ExecutionStatus,
        logs: list[str],
        result: Any = None,
        error: str | None = None,
        duration_ms: int | None = None,
        completed_at: datetime | None = None,
    ) -> TaskExecutionModel | None:
        """Finish an execution record with its outcome and final log.

        Returns:
            Updated TaskExecutionModel if found
        """
        updated = await self.session.execute(
            update(TaskExecutionModel)
            .where(TaskExecutionModel.execution_id == execution_id)
            .values(
                status=status,
                completed_at=completed_at or datetime.now(timezone.utc),
                duration_ms=duration_ms,
                result=result,
                error=error,
                logs=list(logs),
            )
            .returning(TaskExecutionModel)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return updated.scalar_one_or_none()

    async def list_for_task(
        self, task_id: str, limit: int = 50
    ) -> list[TaskExecutionModel]:
        """List a task's executions, most recent first."""
        result = await self.session.execute(
            select(TaskExecutionModel)
            .where(TaskExecutionModel.task_id == task_id)
            .order_by(TaskExecutionModel.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_for_task(self, task_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(TaskExecutionModel)
            .where(TaskExecutionModel.task_id == task_id)
        )
        return result.scalar_one()

    async def prune_history(self, keep_per_task: int) -> int:
        """Delete all but the ``keep_per_task`` most recent executions per task.

        Returns:
            Number of execution records deleted
        """
        ranked = select(
            TaskExecutionModel.execution_id.label("execution_id"),
            func.row_number()
            .over(
                partition_by=TaskExecutionModel.task_id,
                order_by=TaskExecutionModel.started_at.desc(),
            )
            .label("rn"),
        ).subquery()

        result = await self.session.execute(
            delete(TaskExecutionModel)
            .where(
                TaskExecutionModel.execution_id.in_(
                    select(ranked.c.execution_id).where(ranked.c.rn > keep_per_task)
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
