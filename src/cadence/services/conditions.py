"""Pre-execution condition checks."""

from typing import Any, Protocol

from cadence.models.scheduled_task import ScheduledTask


class ConditionEvaluator(Protocol):
    async def evaluate(self, task: ScheduledTask, conditions: list[dict[str, Any]]) -> bool: ...


class AllowAllConditions:
    """Treats every condition as met."""

    async def evaluate(self, task: ScheduledTask, conditions: list[dict[str, Any]]) -> bool:
        return True
