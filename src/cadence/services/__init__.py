from .actions import (
    ActionDependencies,
    ActionExecutor,
    Completion,
    ExecutionLog,
    SandboxResult,
    ScrapeResult,
)
from .backoff import compute_backoff_ms, next_retry_at
from .conditions import AllowAllConditions
from .engine import TaskEngine
from .notifications import LoggingNotifier
from .schedule import CronScheduleResolver
from .worker import CleanupResult, PollResult, SchedulerWorker, WorkerStatus

__all__ = [
    "ActionDependencies",
    "ActionExecutor",
    "Completion",
    "ExecutionLog",
    "SandboxResult",
    "ScrapeResult",
    "compute_backoff_ms",
    "next_retry_at",
    "AllowAllConditions",
    "TaskEngine",
    "LoggingNotifier",
    "CronScheduleResolver",
    "CleanupResult",
    "PollResult",
    "SchedulerWorker",
    "WorkerStatus",
]
