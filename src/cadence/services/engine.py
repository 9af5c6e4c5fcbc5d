"""Task engine: runs single tasks and manages task definitions."""

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from cadence.db.models import ExecutionStatus, TaskStatus, TaskType
from cadence.errors import StoreError, TaskNotFoundError, TaskValidationError
from cadence.models.actions import TaskAction, dump_action, parse_action
from cadence.models.scheduled_task import RetryPolicy, ScheduledTask, TaskExecution
from cadence.services.actions import ActionExecutor, ExecutionLog
from cadence.services.conditions import AllowAllConditions, ConditionEvaluator
from cadence.services.notifications import (
    LoggingNotifier,
    Notifier,
    Outcome,
    wants_notification,
)
from cadence.services.schedule import CronScheduleResolver, ScheduleResolver
from cadence.store import TaskStore

logger = logging.getLogger(__name__)

# Keyword arguments accepted by update_task and the columns they write
_UPDATABLE_FIELDS = {
    "name": "name",
    "description": "description",
    "type": "type",
    "schedule": "schedule",
    "trigger": "trigger_config",
    "action": "action",
    "conditions": "conditions",
    "retry_policy": "retry_policy",
    "notification": "notification_config",
}


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _coerce_action(action: TaskAction | dict[str, Any]) -> TaskAction:
    if isinstance(action, dict):
        try:
            return parse_action(action)
        except ValidationError as e:
            raise TaskValidationError(f"Invalid action: {e}") from e
    return action


def _coerce_retry_policy(policy: RetryPolicy | dict[str, Any] | None) -> RetryPolicy | None:
    if policy is None or isinstance(policy, RetryPolicy):
        return policy
    try:
        return RetryPolicy.from_dict(policy)
    except (TypeError, ValueError) as e:
        raise TaskValidationError(f"Invalid retry policy: {e}") from e


class TaskEngine:
    """Executes tasks and records their outcome.

    Retry and terminal failure decisions belong to the scheduler worker; the
    engine only records what happened and re-raises.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: ActionExecutor,
        resolver: ScheduleResolver | None = None,
        conditions: ConditionEvaluator | None = None,
        notifier: Notifier | None = None,
        action_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._resolver = resolver or CronScheduleResolver()
        self._conditions = conditions or AllowAllConditions()
        self._notifier = notifier or LoggingNotifier()
        self._action_timeout = action_timeout

    async def execute_task(
        self,
        task: ScheduledTask,
        triggered_by: dict[str, Any] | None = None,
    ) -> TaskExecution:
        """Run a task's action once and record the execution.

        Raises:
            Exception: whatever the action or the store raised, after the
                failed execution has been recorded where the store allowed it
        """
        started_at = datetime.now(timezone.utc)
        log = ExecutionLog([f"Starting task execution: {task.name}"])
        execution_id: str | None = None

        try:
            execution_id = await self._store.begin_execution(
                task.id, log.lines, started_at, triggered_by
            )
            if task.conditions and not await self._conditions.evaluate(task, task.conditions):
                log.append("Conditions not met, skipping execution")
                result = None
            else:
                log.append(f"Executing action: {task.action.type}")
                result = await self._executor.execute_with_timeout(
                    task.action, log, self._action_timeout
                )

            duration_ms = _elapsed_ms(started_at)
            log.append(f"Task completed successfully in {duration_ms}ms")
            next_run_at = None
            if task.is_recurring:
                next_run_at = self._resolver.next_run(
                    task.type, task.schedule, datetime.now(timezone.utc)
                )
            await self._store.record_success(
                task.id, execution_id, result, log.lines, duration_ms, next_run_at
            )
        except Exception as e:
            duration_ms = _elapsed_ms(started_at)
            log.append(f"Task failed: {e}")
            logger.warning(f"Task {task.id} ({task.name}) failed: {e}")
            if execution_id is not None:
                try:
                    await self._store.record_failure(
                        task.id, execution_id, str(e), log.lines, duration_ms
                    )
                except StoreError as store_error:
                    logger.error(f"Could not record failure of task {task.id}: {store_error}")
            if wants_notification(task, "failure"):
                await self._notify(task, "failure", str(e))
            raise

        if wants_notification(task, "success"):
            await self._notify(task, "success", result)

        return TaskExecution(
            id=execution_id,
            task_id=task.id,
            status=ExecutionStatus.COMPLETED,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_ms=duration_ms,
            result=result,
            logs=log.lines,
        )

    async def _notify(self, task: ScheduledTask, outcome: Outcome, payload: Any) -> None:
        try:
            await self._notifier.notify(task, outcome, payload)
        except Exception as e:
            logger.exception(f"Notification for task {task.id} failed: {e}")

    # -- Task management ---------------------------------------------------------

    def _validate(
        self,
        type: TaskType,
        schedule: dict[str, Any] | None,
        trigger: dict[str, Any] | None,
    ) -> None:
        if type == TaskType.TRIGGER:
            if not trigger:
                raise TaskValidationError("trigger tasks require trigger configuration")
            return
        self._resolver.validate(type, schedule)

    async def create_task(
        self,
        name: str,
        type: TaskType | str,
        action: TaskAction | dict[str, Any],
        user_id: str | None = None,
        description: str | None = None,
        schedule: dict[str, Any] | None = None,
        trigger: dict[str, Any] | None = None,
        conditions: list[dict[str, Any]] | None = None,
        retry_policy: RetryPolicy | dict[str, Any] | None = None,
        notification: dict[str, Any] | None = None,
    ) -> ScheduledTask:
        """Validate and persist a new task with its first due instant."""
        try:
            task_type = TaskType(type)
        except ValueError as e:
            raise TaskValidationError(f"Unknown task type: {type}") from e

        self._validate(task_type, schedule, trigger)
        task = await self._store.create_task(
            name=name,
            type=task_type,
            action=_coerce_action(action),
            user_id=user_id,
            description=description,
            schedule=schedule,
            trigger=trigger,
            conditions=conditions,
            retry_policy=_coerce_retry_policy(retry_policy),
            notification=notification,
            next_run_at=self._resolver.next_run(
                task_type, schedule, datetime.now(timezone.utc)
            ),
        )
        logger.info(f"Created {task_type.value} task {task.id} ({name})")
        return task

    async def update_task(self, task_id: str, **changes: Any) -> ScheduledTask:
        """Apply changes to a task, recomputing its next run if its schedule moved."""
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise TaskValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        values: dict[str, Any] = {}
        for key, value in changes.items():
            if key == "action":
                value = dump_action(_coerce_action(value))
            elif key == "retry_policy":
                policy = _coerce_retry_policy(value)
                value = policy.to_dict() if policy else None
            elif key == "type":
                try:
                    value = TaskType(value)
                except ValueError as e:
                    raise TaskValidationError(f"Unknown task type: {value}") from e
            values[_UPDATABLE_FIELDS[key]] = value

        if "schedule" in changes or "type" in changes:
            task_type = TaskType(changes.get("type", task.type))
            schedule = changes.get("schedule", task.schedule)
            self._validate(task_type, schedule, changes.get("trigger", task.trigger))
            values["next_run_at"] = self._resolver.next_run(
                task_type, schedule, datetime.now(timezone.utc)
            )

        updated = await self._store.update_task(task_id, **values)
        logger.info(f"Updated task {task_id}")
        return updated

    async def delete_task(self, task_id: str) -> None:
        await self._store.delete_task(task_id)
        logger.info(f"Deleted task {task_id}")

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        return await self._store.get_task(task_id)

    async def list_tasks(
        self,
        user_id: str,
        type: TaskType | None = None,
        status: TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[ScheduledTask]:
        return await self._store.list_tasks(user_id, type=type, status=status, limit=limit)

    async def pause_task(self, task_id: str) -> None:
        await self._store.set_status(task_id, TaskStatus.PAUSED)
        logger.info(f"Task {task_id} paused")

    async def resume_task(self, task_id: str) -> ScheduledTask:
        await self._store.set_status(task_id, TaskStatus.ACTIVE)
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        if task.next_run_at is None:
            next_run_at = self._resolver.next_run(
                task.type, task.schedule, datetime.now(timezone.utc)
            )
            if next_run_at is not None:
                await self._store.set_next_run(task_id, next_run_at)
                task.next_run_at = next_run_at

        logger.info(f"Task {task_id} resumed")
        return task

    async def run_now(self, task_id: str) -> TaskExecution:
        """Execute a task immediately, outside its schedule."""
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return await self.execute_task(task, triggered_by={"type": "manual"})

    async def trigger_task(self, task_id: str, payload: Any = None) -> TaskExecution:
        """Fire an active trigger task with an inbound event payload."""
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.type != TaskType.TRIGGER or task.status != TaskStatus.ACTIVE:
            raise TaskValidationError(f"Task {task_id} is not an active trigger task")
        return await self.execute_task(
            task, triggered_by={"type": "trigger", "payload": payload}
        )

    async def get_executions(self, task_id: str, limit: int = 50) -> list[TaskExecution]:
        return await self._store.list_executions(task_id, limit)

    async def get_upcoming_tasks(self, user_id: str, limit: int = 10) -> list[ScheduledTask]:
        return await self._store.list_upcoming(user_id, limit)

    # -- Lifecycle ---------------------------------------------------------------

    async def initialize(self) -> None:
        """Give every active recurring task without a next run its first due instant."""
        tasks = await self._store.list_active_recurring()
        scheduled = 0
        now = datetime.now(timezone.utc)
        for task in tasks:
            if task.next_run_at is not None:
                continue
            try:
                next_run_at = self._resolver.next_run(task.type, task.schedule, now)
            except TaskValidationError as e:
                logger.warning(f"Skipping recurring task {task.id}: {e}")
                continue
            if next_run_at is not None:
                await self._store.set_next_run(task.id, next_run_at)
                scheduled += 1

        logger.info(f"Initialized {len(tasks)} recurring tasks ({scheduled} rescheduled)")

    async def shutdown(self) -> None:
        logger.info("Task engine shut down")
