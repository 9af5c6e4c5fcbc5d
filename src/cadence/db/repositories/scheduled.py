"""Scheduled task repository for database operations."""

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.db.models import ScheduledTaskModel, TaskStatus, TaskType


def _claimable(now: datetime):
    return or_(
        ScheduledTaskModel.claimed_until.is_(None),
        ScheduledTaskModel.claimed_until < now,
    )


class ScheduledTaskRepository:
    """Repository for scheduled task database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        type: TaskType,
        action: dict[str, Any],
        user_id: str | None = None,
        description: str | None = None,
        schedule: dict[str, Any] | None = None,
        trigger_config: dict[str, Any] | None = None,
        conditions: list[dict[str, Any]] | None = None,
        retry_policy: dict[str, Any] | None = None,
        notification_config: dict[str, Any] | None = None,
        next_run_at: datetime | None = None,
        task_id: str | None = None,
    ) -> ScheduledTaskModel:
        """Create a new scheduled task.

        Args:
            name: Task name
            type: One-time, recurring or trigger
            action: Serialised TaskAction
            user_id: Owning user, None for system tasks
            description: Optional description
            schedule: Schedule configuration ({"at": ...} or {"cron": ...})
            trigger_config: Trigger configuration for trigger tasks
            conditions: Opaque predicates checked before execution
            retry_policy: {"max_retries": int, "backoff_ms": int}
            notification_config: Opaque notification preferences
            next_run_at: First due instant, None if not time-driven
            task_id: Optional specific task ID

        Returns:
            The created ScheduledTaskModel
        """
        model = ScheduledTaskModel(
            name=name,
            type=type,
            action=action,
            user_id=user_id,
            description=description,
            schedule=schedule,
            trigger_config=trigger_config,
            conditions=conditions,
            retry_policy=retry_policy,
            notification_config=notification_config,
            status=TaskStatus.ACTIVE,
            next_run_at=next_run_at,
            run_count=0,
        )
        if task_id:
            model.task_id = task_id

        self.session.add(model)
        await self.session.flush()
        return model

    async def get(self, task_id: str) -> ScheduledTaskModel | None:
        """Get a scheduled task by ID."""
        result = await self.session.execute(
            select(ScheduledTaskModel).where(ScheduledTaskModel.task_id == task_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: str,
        type: TaskType | None = None,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[ScheduledTaskModel]:
        """List a user's tasks, newest first, optionally filtered."""
        query = select(ScheduledTaskModel).where(ScheduledTaskModel.user_id == user_id)
        if type is not None:
            query = query.where(ScheduledTaskModel.type == type)
        if status is not None:
            query = query.where(ScheduledTaskModel.status == status)
        query = query.order_by(ScheduledTaskModel.created_at.desc())
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_upcoming(
        self, user_id: str, limit: int = 10
    ) -> list[ScheduledTaskModel]:
        """List a user's active tasks that have a next run, soonest first."""
        result = await self.session.execute(
            select(ScheduledTaskModel)
            .where(ScheduledTaskModel.user_id == user_id)
            .where(ScheduledTaskModel.status == TaskStatus.ACTIVE)
            .where(ScheduledTaskModel.next_run_at.is_not(None))
            .order_by(ScheduledTaskModel.next_run_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_active_recurring(self) -> list[ScheduledTaskModel]:
        """List all active recurring tasks."""
        result = await self.session.execute(
            select(ScheduledTaskModel)
            .where(ScheduledTaskModel.type == TaskType.RECURRING)
            .where(ScheduledTaskModel.status == TaskStatus.ACTIVE)
        )
        return list(result.scalars().all())

    async def claim_due_tasks(
        self,
        limit: int,
        worker_id: str,
        claim_ttl: timedelta,
        now: datetime | None = None,
    ) -> list[ScheduledTaskModel]:
        """Select due tasks with row-level locking and claim them.

        Candidate rows are selected with FOR UPDATE SKIP LOCKED so concurrent
        pollers never block on each other, then claimed with a compare-and-set
        on ``claimed_until`` in the same transaction. A row claimed by another
        worker stays invisible until its claim is released or expires, so each
        due task is dispatched at most once even after this transaction commits.

        Args:
            limit: Maximum number of tasks to claim
            worker_id: Identifier written to ``claimed_by``
            claim_ttl: How long the claim is honoured
            now: Reference instant (defaults to current UTC time)

        Returns:
            Claimed ScheduledTaskModel instances ordered by next_run_at
        """
        now = now or datetime.now(timezone.utc)
        candidates = await self.session.execute(
            select(ScheduledTaskModel.task_id)
            .where(ScheduledTaskModel.status == TaskStatus.ACTIVE)
            .where(ScheduledTaskModel.type.in_([TaskType.ONE_TIME, TaskType.RECURRING]))
            .where(ScheduledTaskModel.next_run_at.is_not(None))
            .where(ScheduledTaskModel.next_run_at <= now)
            .where(_claimable(now))
            .order_by(ScheduledTaskModel.next_run_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        task_ids = list(candidates.scalars().all())
        if not task_ids:
            return []

        result = await self.session.execute(
            update(ScheduledTaskModel)
            .where(ScheduledTaskModel.task_id.in_(task_ids))
            .where(_claimable(now))
            .values(
                claimed_by=worker_id,
                claimed_until=now + claim_ttl,
                updated_at=now,
            )
            .returning(ScheduledTaskModel)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        claimed = list(result.scalars().all())
        claimed.sort(key=lambda m: m.next_run_at)
        return claimed

    async def update(
        self,
        task_id: str,
        **values: Any,
    ) -> ScheduledTaskModel | None:
        """Update a scheduled task.

        Unlike the narrower methods below, values are written as given, so
        passing ``next_run_at=None`` clears it.

        Returns:
            Updated ScheduledTaskModel if the task exists
        """
        if not values:
            return await self.get(task_id)

        values["updated_at"] = datetime.now(timezone.utc)

        result = await self.session.execute(
            update(ScheduledTaskModel)
            .where(ScheduledTaskModel.task_id == task_id)
            .values(**values)
            .returning(ScheduledTaskModel)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_status(self, task_id: str, status: TaskStatus) -> bool:
        """Set a task's status and release any claim on it."""
        result = await self.session.execute(
            update(ScheduledTaskModel)
            .where(ScheduledTaskModel.task_id == task_id)
            .values(
                status=status,
                claimed_by=None,
                claimed_until=None,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0

    async def mark_failed(self, task_id: str, run_count: int | None = None) -> bool:
        """Permanently fail a task, optionally pinning its attempt count."""
        if run_count is None:
            return await self.set_status(task_id, TaskStatus.FAILED)
        model = await self.update(
            task_id,
            status=TaskStatus.FAILED,
            run_count=run_count,
            claimed_by=None,
            claimed_until=None,
        )
        return model is not None

    async def reschedule(
        self, task_id: str, next_run_at: datetime, run_count: int | None = None
    ) -> bool:
        """Move a task's next run and release its claim, leaving it active."""
        values: dict[str, Any] = {
            "next_run_at": next_run_at,
            "claimed_by": None,
            "claimed_until": None,
            "updated_at": datetime.now(timezone.utc),
        }
        if run_count is not None:
            values["run_count"] = run_count
        result = await self.session.execute(
            update(ScheduledTaskModel)
            .where(ScheduledTaskModel.task_id == task_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0

    async def mark_executed(
        self,
        task_id: str,
        next_run_at: datetime | None,
        now: datetime | None = None,
    ) -> ScheduledTaskModel | None:
        """Record a successful run.

        One-time tasks become completed; other tasks keep their status and
        move to ``next_run_at``. The claim is released either way.

        Returns:
            Updated ScheduledTaskModel if the task exists
        """
        task = await self.get(task_id)
        if not task:
            return None

        now = now or datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "last_run_at": now,
            "run_count": ScheduledTaskModel.run_count + 1,
            "next_run_at": next_run_at,
            "claimed_by": None,
            "claimed_until": None,
            "updated_at": now,
        }
        if task.type == TaskType.ONE_TIME:
            values["status"] = TaskStatus.COMPLETED
            values["completed_at"] = now
            values["next_run_at"] = None

        result = await self.session.execute(
            update(ScheduledTaskModel)
            .where(ScheduledTaskModel.task_id == task_id)
            .values(**values)
            .returning(ScheduledTaskModel)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def record_attempt(self, task_id: str, now: datetime | None = None) -> bool:
        """Count a failed attempt towards run_count."""
        now = now or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(ScheduledTaskModel)
            .where(ScheduledTaskModel.task_id == task_id)
            .values(
                last_run_at=now,
                run_count=ScheduledTaskModel.run_count + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0

    async def delete(self, task_id: str) -> bool:
        """Delete a task and, through the foreign key, its executions."""
        result = await self.session.execute(
            delete(ScheduledTaskModel).where(ScheduledTaskModel.task_id == task_id)
        )
        return (result.rowcount or 0) > 0

    async def delete_completed(self, older_than: datetime) -> int:
        """Delete completed one-time tasks that finished before ``older_than``.

        Returns:
            Number of tasks deleted
        """
        result = await self.session.execute(
            delete(ScheduledTaskModel)
            .where(ScheduledTaskModel.type == TaskType.ONE_TIME)
            .where(ScheduledTaskModel.status == TaskStatus.COMPLETED)
            .where(ScheduledTaskModel.completed_at < older_than)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_by_status(self, due_before: datetime) -> dict[str, int]:
        """Aggregate task counts per status plus active tasks due before a cutoff."""
        status = ScheduledTaskModel.status
        result = await self.session.execute(
            select(
                func.count().filter(status == TaskStatus.ACTIVE).label("active"),
                func.count().filter(status == TaskStatus.PAUSED).label("paused"),
                func.count().filter(status == TaskStatus.COMPLETED).label("completed"),
                func.count().filter(status == TaskStatus.FAILED).label("failed"),
                func.count()
                .filter(
                    and_(
                        status == TaskStatus.ACTIVE,
                        ScheduledTaskModel.next_run_at <= due_before,
                    )
                )
                .label("due_soon"),
            ).select_from(ScheduledTaskModel)
        )
        row = result.one()
        return {
            "active": row.active or 0,
            "paused": row.paused or 0,
            "completed": row.completed or 0,
            "failed": row.failed or 0,
            "due_soon": row.due_soon or 0,
        }
