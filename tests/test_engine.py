"""Tests for the TaskEngine."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from cadence.db.models import ExecutionStatus, TaskStatus, TaskType
from cadence.errors import (
    ActionFailedError,
    StoreError,
    TaskNotFoundError,
    TaskValidationError,
)
from cadence.models.actions import AIPromptAction, SendEmailAction
from cadence.models.scheduled_task import RetryPolicy
from cadence.services.engine import TaskEngine

PROMPT = {"type": "ai-prompt", "prompt": "Summarise the inbox"}


def _at(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


class TestExecuteTask:
    """Tests for executing a single task."""

    async def test_one_time_success_completes_task(self, engine, store):
        """Test that a successful one-time run completes the task and records the execution."""
        task = await engine.create_task(
            name="Digest", type="one-time", action=PROMPT,
            schedule={"at": _at(timedelta(minutes=-1))},
        )

        execution = await engine.execute_task(task)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.result["response"] == "Hello from the model"
        assert execution.logs[0] == "Starting task execution: Digest"
        assert "Executing action: ai-prompt" in execution.logs
        assert execution.logs[-1].startswith("Task completed successfully in ")

        fetched = await store.get_task(task.id)
        assert fetched.status == TaskStatus.COMPLETED
        assert fetched.run_count == 1
        assert fetched.next_run_at is None

        [stored] = await engine.get_executions(task.id)
        assert stored.id == execution.id
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.logs == execution.logs

    async def test_recurring_success_advances_schedule(self, engine, store):
        """Test that a recurring run stays active with a future next run."""
        task = await engine.create_task(
            name="Every five", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "*/5 * * * *"},
        )

        await engine.execute_task(task)

        fetched = await store.get_task(task.id)
        assert fetched.status == TaskStatus.ACTIVE
        assert fetched.run_count == 1
        assert fetched.next_run_at.replace(tzinfo=None) > datetime.now(timezone.utc).replace(
            tzinfo=None
        )

    async def test_failure_recorded_and_reraised(self, engine, store, mock_completion):
        """Test that a failing action is recorded, counted, and re-raised."""
        mock_completion.complete.side_effect = RuntimeError("model overloaded")
        task = await engine.create_task(
            name="Digest", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "0 9 * * *"},
        )

        with pytest.raises(ActionFailedError, match="model overloaded"):
            await engine.execute_task(task)

        fetched = await store.get_task(task.id)
        assert fetched.status == TaskStatus.ACTIVE
        assert fetched.run_count == 1
        assert fetched.last_run_at is not None

        [execution] = await engine.get_executions(task.id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.error == "model overloaded"
        assert execution.logs[-1] == "Task failed: model overloaded"
        assert "AI prompt failed: model overloaded" in execution.logs

    async def test_begin_execution_store_error_is_raised(self, engine, store, mock_completion):
        """Test that a task whose execution record cannot be written does not run."""
        task = await engine.create_task(
            name="Digest", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "0 9 * * *"},
        )
        store.begin_execution = AsyncMock(side_effect=StoreError("insert conflict"))
        store.record_failure = AsyncMock()

        with pytest.raises(StoreError, match="insert conflict"):
            await engine.execute_task(task)

        mock_completion.complete.assert_not_awaited()
        store.record_failure.assert_not_awaited()

    async def test_conditions_not_met_skips_action(self, store, executor, mock_completion):
        """Test that unmet conditions skip the action but still complete the run."""
        conditions = AsyncMock()
        conditions.evaluate.return_value = False
        engine = TaskEngine(store, executor, conditions=conditions)
        task = await engine.create_task(
            name="Guarded", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "0 * * * *"},
            conditions=[{"kind": "weekday"}],
        )

        execution = await engine.execute_task(task)

        mock_completion.complete.assert_not_awaited()
        conditions.evaluate.assert_awaited_once()
        assert "Conditions not met, skipping execution" in execution.logs
        assert execution.result is None
        assert (await store.get_task(task.id)).run_count == 1

    async def test_notifications(self, store, executor, mock_completion):
        """Test that success and failure notifications follow the task's preferences."""
        notifier = AsyncMock()
        engine = TaskEngine(store, executor, notifier=notifier)
        task = await engine.create_task(
            name="Notify", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "0 * * * *"},
            notification={"onSuccess": True, "on_failure": True, "channels": ["email"]},
        )

        await engine.execute_task(task)
        assert notifier.notify.await_args.args[1] == "success"

        mock_completion.complete.side_effect = RuntimeError("down")
        with pytest.raises(ActionFailedError):
            await engine.execute_task(task)
        assert notifier.notify.await_args.args[1] == "failure"
        assert notifier.notify.await_args.args[2] == "down"

    async def test_notifier_errors_do_not_fail_task(self, store, executor):
        """Test that a broken notifier does not turn a success into a failure."""
        notifier = AsyncMock()
        notifier.notify.side_effect = RuntimeError("slack down")
        engine = TaskEngine(store, executor, notifier=notifier)
        task = await engine.create_task(
            name="Notify", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "0 * * * *"}, notification={"on_success": True},
        )

        execution = await engine.execute_task(task)
        assert execution.status == ExecutionStatus.COMPLETED

    async def test_no_notification_by_default(self, store, executor):
        """Test that tasks without notification preferences are not notified."""
        notifier = AsyncMock()
        engine = TaskEngine(store, executor, notifier=notifier)
        task = await engine.create_task(
            name="Quiet", type=TaskType.RECURRING, action=PROMPT,
            schedule={"cron": "0 * * * *"},
        )

        await engine.execute_task(task)
        notifier.notify.assert_not_awaited()


class TestCreateTask:
    """Tests for task creation and validation."""

    async def test_one_time_requires_at(self, engine):
        """Test that one-time tasks need schedule.at."""
        with pytest.raises(TaskValidationError, match="schedule.at"):
            await engine.create_task(name="t", type="one-time", action=PROMPT, schedule={})

    async def test_recurring_requires_cron(self, engine):
        """Test that recurring tasks need schedule.cron."""
        with pytest.raises(TaskValidationError, match="schedule.cron"):
            await engine.create_task(name="t", type="recurring", action=PROMPT)

    async def test_invalid_cron_rejected(self, engine):
        """Test that malformed cron expressions are rejected."""
        with pytest.raises(TaskValidationError, match="Invalid cron expression"):
            await engine.create_task(
                name="t", type="recurring", action=PROMPT, schedule={"cron": "every tuesday"}
            )

    async def test_trigger_requires_trigger_config(self, engine):
        """Test that trigger tasks need trigger configuration."""
        with pytest.raises(TaskValidationError, match="trigger configuration"):
            await engine.create_task(name="t", type="trigger", action=PROMPT)

    async def test_unknown_type_rejected(self, engine):
        """Test that unknown task types are rejected."""
        with pytest.raises(TaskValidationError, match="Unknown task type"):
            await engine.create_task(name="t", type="hourly", action=PROMPT)

    async def test_invalid_action_rejected(self, engine):
        """Test that an unparseable action dict is a validation error."""
        with pytest.raises(TaskValidationError, match="Invalid action"):
            await engine.create_task(
                name="t", type="trigger", action={"type": "nope"}, trigger={"event": "x"}
            )

    async def test_invalid_retry_policy_rejected(self, engine):
        """Test that a retry policy with a non-positive backoff is rejected."""
        with pytest.raises(TaskValidationError, match="Invalid retry policy"):
            await engine.create_task(
                name="t", type="trigger", action=PROMPT, trigger={"event": "x"},
                retry_policy={"maxRetries": 1, "backoffMs": 0},
            )

    async def test_one_time_next_run_is_at(self, engine):
        """Test that a one-time task is first due at schedule.at."""
        at = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)
        task = await engine.create_task(
            name="t", type="one-time", action=PROMPT, schedule={"at": at.isoformat()},
            retry_policy={"maxRetries": 2, "backoffMs": 500},
        )
        assert task.next_run_at.replace(tzinfo=None) == at.replace(tzinfo=None)
        assert task.retry_policy == RetryPolicy(max_retries=2, backoff_ms=500)

    async def test_trigger_has_no_next_run(self, engine):
        """Test that trigger tasks are not time-driven."""
        task = await engine.create_task(
            name="t", type="trigger", action=PROMPT, trigger={"event": "push"}
        )
        assert task.next_run_at is None
        assert task.trigger == {"event": "push"}


class TestManagement:
    """Tests for updating, pausing, resuming and running tasks."""

    async def test_update_recomputes_next_run(self, engine):
        """Test that changing the schedule moves next_run_at."""
        task = await engine.create_task(
            name="t", type="one-time", action=PROMPT,
            schedule={"at": "2030-01-01T00:00:00+00:00"},
        )
        updated = await engine.update_task(
            task.id, name="renamed", schedule={"at": "2031-06-01T00:00:00+00:00"}
        )

        assert updated.name == "renamed"
        assert updated.next_run_at.year == 2031

    async def test_update_replaces_action(self, engine):
        """Test that the action is replaced wholesale."""
        task = await engine.create_task(
            name="t", type="trigger", action=PROMPT, trigger={"event": "x"}
        )
        updated = await engine.update_task(
            task.id, action=SendEmailAction(to="a@example.com", subject="s", body="b")
        )
        assert isinstance(updated.action, SendEmailAction)

    async def test_update_rejects_unknown_fields(self, engine):
        """Test that only known fields can be updated."""
        task = await engine.create_task(
            name="t", type="trigger", action=PROMPT, trigger={"event": "x"}
        )
        with pytest.raises(TaskValidationError, match="run_count"):
            await engine.update_task(task.id, run_count=0)

    async def test_update_missing_task(self, engine):
        """Test that updating a missing task raises TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            await engine.update_task("00000000-0000-0000-0000-000000000000", name="x")

    async def test_pause_and_resume_recomputes_missing_next_run(self, engine, store):
        """Test that resuming a task without a next run gives it one."""
        task = await engine.create_task(
            name="t", type="recurring", action=PROMPT, schedule={"cron": "0 * * * *"}
        )
        await engine.pause_task(task.id)
        await store.set_next_run(task.id, None)
        assert (await engine.get_task(task.id)).status == TaskStatus.PAUSED

        resumed = await engine.resume_task(task.id)

        assert resumed.status == TaskStatus.ACTIVE
        assert resumed.next_run_at is not None
        assert (await engine.get_task(task.id)).next_run_at is not None

    async def test_delete_task(self, engine):
        """Test deleting a task."""
        task = await engine.create_task(
            name="t", type="trigger", action=PROMPT, trigger={"event": "x"}
        )
        await engine.delete_task(task.id)
        assert await engine.get_task(task.id) is None

    async def test_run_now(self, engine):
        """Test running a task on demand."""
        task = await engine.create_task(
            name="t", type="recurring", action=PROMPT, schedule={"cron": "0 0 1 1 *"}
        )
        execution = await engine.run_now(task.id)
        assert execution.status == ExecutionStatus.COMPLETED

    async def test_run_now_missing_task(self, engine):
        """Test that running a missing task raises TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            await engine.run_now("00000000-0000-0000-0000-000000000000")

    async def test_trigger_task(self, engine):
        """Test firing a trigger task with a payload."""
        task = await engine.create_task(
            name="t", type="trigger", action=PROMPT, trigger={"event": "push"}
        )
        execution = await engine.trigger_task(task.id, {"ref": "main"})
        assert execution.status == ExecutionStatus.COMPLETED

    async def test_trigger_rejects_non_trigger_tasks(self, engine):
        """Test that only active trigger tasks can be triggered."""
        task = await engine.create_task(
            name="t", type="recurring", action=PROMPT, schedule={"cron": "0 * * * *"}
        )
        with pytest.raises(TaskValidationError):
            await engine.trigger_task(task.id, {})

    async def test_list_and_upcoming(self, engine):
        """Test listing a user's tasks and upcoming runs."""
        await engine.create_task(
            name="later", type="one-time", action=PROMPT, user_id="u1",
            schedule={"at": _at(timedelta(days=2))},
        )
        await engine.create_task(
            name="sooner", type="one-time", action=PROMPT, user_id="u1",
            schedule={"at": _at(timedelta(hours=1))},
        )
        await engine.create_task(
            name="hook", type="trigger", action=PROMPT, user_id="u1", trigger={"event": "x"}
        )

        assert len(await engine.list_tasks("u1")) == 3
        assert len(await engine.list_tasks("u1", type=TaskType.TRIGGER)) == 1
        upcoming = await engine.get_upcoming_tasks("u1", limit=1)
        assert [t.name for t in upcoming] == ["sooner"]


class TestInitialize:
    """Tests for engine start-up."""

    async def test_fills_missing_next_runs(self, engine, store):
        """Test that active recurring tasks without a next run are scheduled."""
        task = await engine.create_task(
            name="t", type="recurring", action=PROMPT, schedule={"cron": "30 6 * * *"}
        )
        await store.set_next_run(task.id, None)

        await engine.initialize()

        assert (await store.get_task(task.id)).next_run_at is not None

    async def test_skips_tasks_with_bad_cron(self, engine, store):
        """Test that one bad stored schedule does not stop initialization."""
        bad = await store.create_task(
            name="bad", type=TaskType.RECURRING, action=AIPromptAction(prompt="hi"),
            schedule={"cron": "not a cron"},
        )
        good = await engine.create_task(
            name="good", type="recurring", action=PROMPT, schedule={"cron": "0 * * * *"}
        )
        await store.set_next_run(good.id, None)

        await engine.initialize()

        assert (await store.get_task(bad.id)).next_run_at is None
        assert (await store.get_task(good.id)).next_run_at is not None
