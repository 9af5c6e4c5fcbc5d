"""Next-run computation for time-driven tasks.

Cron parsing is delegated to APScheduler's ``CronTrigger``; this module only
maps a task's opaque ``schedule`` dict onto it.
"""

from datetime import datetime, timezone
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger

from cadence.db.models import TaskType
from cadence.errors import TaskValidationError


class ScheduleResolver(Protocol):
    def validate(self, type: TaskType, schedule: dict[str, Any] | None) -> None: ...

    def next_run(
        self, type: TaskType, schedule: dict[str, Any] | None, after: datetime
    ) -> datetime | None: ...


def parse_instant(value: Any) -> datetime:
    """Parse an ISO 8601 string (or pass through a datetime) as an aware UTC instant."""
    if isinstance(value, datetime):
        instant = value
    else:
        try:
            instant = datetime.fromisoformat(str(value))
        except ValueError as e:
            raise TaskValidationError(f"Invalid schedule.at: {value}") from e
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


class CronScheduleResolver:
    """Resolves ``{"at": ...}`` and ``{"cron": ..., "timezone": ...}`` schedules."""

    def __init__(self, default_timezone: str = "UTC") -> None:
        self._default_timezone = default_timezone

    def _trigger(self, schedule: dict[str, Any]) -> CronTrigger:
        tz_name = schedule.get("timezone") or self._default_timezone
        try:
            return CronTrigger.from_crontab(schedule["cron"], timezone=ZoneInfo(tz_name))
        except (ValueError, KeyError) as e:
            raise TaskValidationError(f"Invalid cron expression: {schedule.get('cron')}") from e

    def validate(self, type: TaskType, schedule: dict[str, Any] | None) -> None:
        if type == TaskType.ONE_TIME:
            if not schedule or not schedule.get("at"):
                raise TaskValidationError("one-time tasks require schedule.at")
            parse_instant(schedule["at"])
        elif type == TaskType.RECURRING:
            if not schedule or not schedule.get("cron"):
                raise TaskValidationError("recurring tasks require schedule.cron")
            self._trigger(schedule)

    def next_run(
        self, type: TaskType, schedule: dict[str, Any] | None, after: datetime
    ) -> datetime | None:
        """Next due instant at or after ``after``, None if not time-driven."""
        if not schedule:
            return None
        if type == TaskType.ONE_TIME and schedule.get("at"):
            return parse_instant(schedule["at"])
        if type == TaskType.RECURRING and schedule.get("cron"):
            fire_time = self._trigger(schedule).get_next_fire_time(None, after)
            return fire_time.astimezone(timezone.utc) if fire_time else None
        return None
