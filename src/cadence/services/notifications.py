"""Success and failure notifications for finished task runs."""

import logging
from typing import Any, Literal, Protocol

from cadence.models.scheduled_task import ScheduledTask

logger = logging.getLogger(__name__)

Outcome = Literal["success", "failure"]


class Notifier(Protocol):
    async def notify(self, task: ScheduledTask, outcome: Outcome, payload: Any) -> None: ...


def wants_notification(task: ScheduledTask, outcome: Outcome) -> bool:
    """Whether the task's notification preferences ask for this outcome."""
    config = task.notification or {}
    if outcome == "success":
        return bool(config.get("on_success", config.get("onSuccess", False)))
    return bool(config.get("on_failure", config.get("onFailure", False)))


class LoggingNotifier:
    """Notifier that only writes to the application log."""

    async def notify(self, task: ScheduledTask, outcome: Outcome, payload: Any) -> None:
        channels = (task.notification or {}).get("channels")
        logger.info(f"Sending notification for task {task.id}: {outcome} (channels={channels})")
