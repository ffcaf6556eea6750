"""
Base task type and abstract BaseTask with next_run persistence in DB.
"""
import calendar
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from queue import Queue
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select

from schoolstats.core.db import session_scope
from schoolstats.core.models import TaskSchedule

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"
    HOURLY = "hourly"
    INTERVAL_SECONDS = "interval_seconds"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_time(time_str: Any) -> Tuple[int, int]:
    parts = str(time_str).strip().split(":")
    hour = int(parts[0]) if parts and parts[0] else 0
    minute = int(parts[1]) if len(parts) > 1 else 0
    return hour, minute


def _parse_weekday(value: Any) -> int:
    """Monday=0 .. Sunday=6; accepts an int or a day name."""
    if isinstance(value, int):
        return value % 7
    name = str(value).strip().lower()
    for i, day in enumerate(WEEKDAYS):
        if day.startswith(name[:3]):
            return i
    raise ValueError(f"Unknown weekday: {value}")


def _day_of_month(year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    # Days past the end of a short month run on its last day
    day = min(max(day, 1), calendar.monthrange(year, month)[1])
    return datetime(year, month, day, hour, minute)


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
) -> datetime:
    """Compute next run datetime from schedule_type, schedule_config, and last_run."""
    if last_run is None:
        last_run = _utc_now()

    if schedule_type == TaskType.DAILY and schedule_config:
        hour, minute = _parse_time(schedule_config.get("time", "00:00"))
        next_run = last_run.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if next_run <= last_run:
            next_run += timedelta(days=1)
        return next_run

    if schedule_type == TaskType.HOURLY:
        # Top of the next hour, like a "0 * * * *" cron entry
        return last_run.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)

    if schedule_type == TaskType.INTERVAL_SECONDS and schedule_config:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    if schedule_type == TaskType.WEEKLY and schedule_config:
        weekday = _parse_weekday(schedule_config.get("weekday", "sunday"))
        hour, minute = _parse_time(schedule_config.get("time", "00:00"))
        next_run = last_run.replace(hour=hour, minute=minute, second=0, microsecond=0)
        next_run += timedelta(days=(weekday - next_run.weekday()) % 7)
        if next_run <= last_run:
            next_run += timedelta(days=7)
        return next_run

    if schedule_type == TaskType.MONTHLY and schedule_config:
        day = int(schedule_config.get("day", 1))
        hour, minute = _parse_time(schedule_config.get("time", "00:00"))
        next_run = _day_of_month(last_run.year, last_run.month, day, hour, minute)
        if next_run <= last_run:
            year, month = (last_run.year + 1, 1) if last_run.month == 12 else (last_run.year, last_run.month + 1)
            next_run = _day_of_month(year, month, day, hour, minute)
        return next_run

    return last_run + timedelta(days=1)


def get_next_run_from_db(task_key: str) -> Optional[datetime]:
    """Read next_run_at for a task. None if no row or next_run_at is null (task will run immediately)."""
    try:
        with session_scope() as session:
            row = session.execute(
                select(TaskSchedule).where(TaskSchedule.task_key == task_key)
            ).scalars().first()
            if row and row.next_run_at is not None:
                return row.next_run_at
    except Exception as e:
        logger.debug(f"get_next_run_from_db {task_key}: {e}")
    return None


def upsert_task_schedule(
    task_key: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    next_run_at: Optional[datetime] = None,
    last_run_at: Optional[datetime] = None,
    last_error: Optional[str] = None,
    enabled: Optional[bool] = None,
) -> None:
    """Create or update TaskSchedule row. If next_run_at not given: for new row leave it null (run immediately); for existing row leave next_run_at unchanged."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_key == task_key)
        ).scalars().first()
        now = _utc_now()
        if row:
            if row.schedule_type != schedule_type or row.schedule_config != schedule_config:
                # Schedule changed in config: recompute from the last run
                row.next_run_at = compute_next_run(schedule_type, schedule_config, row.last_run_at or now)
            row.schedule_type = schedule_type
            row.schedule_config = schedule_config
            if next_run_at is not None:
                row.next_run_at = next_run_at
            if last_run_at is not None:
                row.last_run_at = last_run_at
            if last_error is not None:
                row.last_error = last_error
            if enabled is not None:
                row.enabled = enabled
            row.updated_at = now
        else:
            session.add(TaskSchedule(
                task_key=task_key,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                enabled=True if enabled is None else enabled,
                next_run_at=next_run_at,
                last_run_at=last_run_at,
                last_error=last_error,
                created_at=now,
                updated_at=now,
            ))


def update_after_run(task_key: str) -> None:
    """Update last_run_at and next_run_at in DB after a successful task run."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_key == task_key)
        ).scalars().first()
        if not row:
            return
        now = _utc_now()
        row.last_run_at = now
        row.last_error = None
        row.next_run_at = compute_next_run(row.schedule_type, row.schedule_config, now)
        row.updated_at = now


def record_task_error(task_key: str, error: str) -> None:
    """Store the failure and push next_run_at forward so the next tick retries instead of spinning."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_key == task_key)
        ).scalars().first()
        if not row:
            return
        now = _utc_now()
        row.last_error = error[:2000]
        row.next_run_at = compute_next_run(row.schedule_type, row.schedule_config, now)
        row.updated_at = now


class BaseTask(ABC):
    """
    Abstract base for scheduled pipeline tasks. Subclasses set task_key and
    default_schedule and implement run(); the base resolves the schedule from
    the task's config section and persists next_run in DB.
    """

    task_key: str = ""
    default_schedule: Tuple[str, Dict[str, Any]] = (TaskType.HOURLY, {})

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self.schedule_type, self.schedule_config = self._schedule_from_config(self.config)

    def _schedule_from_config(self, config: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        schedule_type, schedule_config = self.default_schedule
        if "interval_seconds" in config:
            return TaskType.INTERVAL_SECONDS, {"interval_seconds": int(config["interval_seconds"])}
        if "day_of_month" in config:
            hour, minute = _parse_time(config.get("schedule_time", "00:00"))
            return TaskType.MONTHLY, {"day": int(config["day_of_month"]), "time": f"{hour:02d}:{minute:02d}"}
        if "weekday" in config:
            return TaskType.WEEKLY, {"weekday": config["weekday"], "time": config.get("schedule_time", "00:00")}
        if "schedule_time" in config:
            try:
                hour, minute = _parse_time(config["schedule_time"])
                return TaskType.DAILY, {"time": f"{hour:02d}:{minute:02d}"}
            except (ValueError, IndexError):
                self.logger.warning(f"Invalid schedule_time for {self.task_key}: {config['schedule_time']}")
        if config.get("schedule") == TaskType.HOURLY:
            return TaskType.HOURLY, {}
        return schedule_type, dict(schedule_config)

    @property
    def enabled(self) -> bool:
        return bool(self.config.get("enable", True))

    def get_next_run(self, last_run: Optional[datetime] = None) -> datetime:
        """Compute next run time from schedule_type and schedule_config."""
        return compute_next_run(self.schedule_type, self.schedule_config, last_run)

    def ensure_scheduled(self, next_run_at: Optional[datetime] = None) -> None:
        """Ensure TaskSchedule row exists so next run survives restarts. Does not overwrite next_run_at on existing row."""
        upsert_task_schedule(
            self.task_key,
            self.schedule_type,
            self.schedule_config,
            next_run_at=next_run_at,
            enabled=self.enabled,
        )

    @abstractmethod
    def run(
        self,
        config: Dict[str, Any],
        result_queue: Queue,
        **kwargs: Any,
    ) -> None:
        """
        Execute the task. Subclass should: do work, then call update_after_run(self.task_key), then result_queue.put((task_key, result)).
        """
        pass
