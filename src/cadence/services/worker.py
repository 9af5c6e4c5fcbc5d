"""Scheduler worker: the poll loop that dispatches due tasks."""

import asyncio
import enum
import logging
import random
from dataclasses import dataclass
from datetime import timedelta

from cadence.errors import StoreError
from cadence.models.scheduled_task import ScheduledTask
from cadence.services.backoff import next_retry_at
from cadence.services.engine import TaskEngine
from cadence.store import TaskCounts, TaskStore

logger = logging.getLogger(__name__)


class WorkerState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class PollResult:
    selected: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass(frozen=True)
class WorkerStatus:
    running: bool
    state: str
    poll_interval_ms: int
    batch_size: int


@dataclass(frozen=True)
class CleanupResult:
    tasks_deleted: int
    executions_deleted: int


class SchedulerWorker:
    """Polls the store for due tasks and runs each batch concurrently.

    Each tick runs as its own task, so a slow batch never delays the next
    selection. At most one copy of a task runs at a time across ticks and
    workers because the store claims every row it hands out. Failed tasks
    are rescheduled with exponential backoff until their retry policy is
    exhausted, then marked failed.
    """

    def __init__(
        self,
        store: TaskStore,
        engine: TaskEngine,
        poll_interval_ms: int = 30000,
        batch_size: int = 10,
        retention_days: int = 30,
        history_per_task: int = 100,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._poll_interval_ms = poll_interval_ms
        self._batch_size = batch_size
        self._retention_days = retention_days
        self._history_per_task = history_per_task
        self._rng = rng
        self._state = WorkerState.STOPPED
        self._lock = asyncio.Lock()
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[PollResult]] = set()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == WorkerState.RUNNING

    async def start(self) -> None:
        """Initialize recurring schedules, start a poll at once, then poll on a fixed interval."""
        async with self._lock:
            if self._state != WorkerState.STOPPED:
                logger.warning(f"Scheduler worker already {self._state.value}")
                return

            self._state = WorkerState.STARTING
            logger.info(
                f"Starting scheduler worker {self._store.worker_id} "
                f"(interval={self._poll_interval_ms}ms, batch_size={self._batch_size})"
            )
            try:
                await self._engine.initialize()
            except StoreError as e:
                logger.error(f"Failed to initialize recurring tasks: {e}")

            self._start_tick()
            self._loop_task = asyncio.create_task(
                self._run_loop(), name=f"scheduler-worker-{self._store.worker_id}"
            )
            self._state = WorkerState.RUNNING
            logger.info("Scheduler worker started")

    async def stop(self) -> None:
        """Cancel the poll loop and any ticks still in flight.

        Interrupted tasks keep their claim until the lease expires.
        """
        async with self._lock:
            if self._state == WorkerState.STOPPED:
                return

            self._state = WorkerState.STOPPING
            if self._loop_task is not None:
                self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
                self._loop_task = None

            ticks = list(self._in_flight)
            for tick in ticks:
                tick.cancel()
            await asyncio.gather(*ticks, return_exceptions=True)
            self._in_flight.clear()

            await self._engine.shutdown()
            self._state = WorkerState.STOPPED
            logger.info("Scheduler worker stopped")

    async def _run_loop(self) -> None:
        interval = self._poll_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self._start_tick()

    def _start_tick(self) -> None:
        tick = asyncio.create_task(self.poll_and_execute())
        self._in_flight.add(tick)
        tick.add_done_callback(self._on_tick_done)

    def _on_tick_done(self, tick: asyncio.Task[PollResult]) -> None:
        self._in_flight.discard(tick)
        if tick.cancelled():
            return
        error = tick.exception()
        if error is not None:
            logger.error(f"Scheduler poll error: {error}", exc_info=error)

    async def poll_and_execute(self) -> PollResult:
        """Claim one batch of due tasks and run them concurrently.

        Each task captures its own outcome, so a failing task never cancels
        or changes the result of another task in the batch.
        """
        try:
            tasks = await self._store.select_due_tasks(self._batch_size)
        except StoreError as e:
            logger.error(f"Error selecting due tasks, will retry next cycle: {e}")
            return PollResult()

        if not tasks:
            return PollResult()

        logger.info(f"Executing {len(tasks)} due tasks")
        async with asyncio.TaskGroup() as tg:
            runs = [tg.create_task(self._execute_task_safely(task)) for task in tasks]

        succeeded = sum(1 for run in runs if run.result())
        result = PollResult(
            selected=len(tasks), succeeded=succeeded, failed=len(tasks) - succeeded
        )
        logger.info(
            f"Poll cycle finished: {result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    async def _execute_task_safely(self, task: ScheduledTask) -> bool:
        try:
            await self._engine.execute_task(
                task,
                triggered_by={"type": "schedule", "worker_id": self._store.worker_id},
            )
            return True
        except Exception as e:
            logger.error(f"Task {task.id} ({task.name}) execution failed: {e}")
            await self._handle_task_failure(task)
            return False

    async def _handle_task_failure(self, task: ScheduledTask) -> None:
        """Reschedule with backoff or mark the task failed.

        Decided from the run_count the task had when it was selected. The
        attempt count is written here too, so an attempt whose execution
        record could not be stored still counts towards exhaustion.
        """
        policy = task.retry_policy
        attempts = task.run_count + 1
        try:
            if policy is None:
                await self._store.mark_failed(task.id, run_count=attempts)
                logger.warning(f"Task {task.id} failed permanently (no retry policy)")
            elif task.run_count >= policy.max_retries:
                await self._store.mark_failed(task.id, run_count=attempts)
                logger.warning(
                    f"Task {task.id} failed permanently after {attempts} attempts"
                )
            else:
                retry_at = next_retry_at(task.run_count, policy.backoff_ms, rng=self._rng)
                await self._store.reschedule_at(task.id, retry_at, run_count=attempts)
                logger.info(
                    f"Task {task.id} will retry at {retry_at.isoformat()} "
                    f"(retry {attempts}/{policy.max_retries})"
                )
        except StoreError as e:
            logger.error(f"Failed to apply retry policy to task {task.id}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error handling failure of task {task.id}: {e}")

    def get_status(self) -> WorkerStatus:
        return WorkerStatus(
            running=self.is_running,
            state=self._state.value,
            poll_interval_ms=self._poll_interval_ms,
            batch_size=self._batch_size,
        )

    async def get_stats(self) -> TaskCounts:
        return await self._store.get_counts(due_within=timedelta(hours=1))

    async def cleanup(self, older_than_days: int | None = None) -> CleanupResult:
        """Delete old completed one-time tasks and trim execution history."""
        days = self._retention_days if older_than_days is None else older_than_days
        tasks_deleted = await self._store.prune_completed(days)
        executions_deleted = await self._store.prune_execution_history(
            self._history_per_task
        )
        logger.info(
            f"Cleanup removed {tasks_deleted} completed tasks and "
            f"{executions_deleted} execution records"
        )
        return CleanupResult(tasks_deleted=tasks_deleted, executions_deleted=executions_deleted)
