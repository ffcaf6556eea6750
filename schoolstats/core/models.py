"""
Core DB models: task schedule (next_run persistence) for the scheduler.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import Column, String, Boolean, DateTime, Text, JSON, select

from schoolstats.core.db import Base, session_scope


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskSchedule(Base):
    """Per-task schedule: next_run_at and last_run_at so scheduling survives restarts."""
    __tablename__ = "task_schedules"

    task_key = Column(String(255), primary_key=True)  # e.g. "publish-assignments"
    schedule_type = Column(String(64), nullable=False)  # DAILY, HOURLY, INTERVAL_SECONDS, WEEKLY, MONTHLY
    schedule_config = Column(JSON, nullable=True)  # e.g. {"time": "06:00"}, {"interval_seconds": 60}
    enabled = Column(Boolean, default=True, nullable=False)
    next_run_at = Column(DateTime(timezone=False), nullable=True)  # null = run immediately (e.g. new DB)
    last_run_at = Column(DateTime(timezone=False), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


def get_all_task_schedules() -> List[Dict[str, Any]]:
    """Return all TaskSchedule rows as list of dicts (for API). Datetimes are naive UTC."""
    rows = get_all_task_schedule_records()
    return [
        {
            "task_key": r.task_key,
            "schedule_type": r.schedule_type,
            "schedule_config": r.schedule_config,
            "enabled": r.enabled,
            "next_run_at": r.next_run_at,
            "last_run_at": r.last_run_at,
            "last_error": r.last_error,
        }
        for r in rows
    ]


def get_all_task_schedule_records() -> List[TaskSchedule]:
    """Return all TaskSchedule ORM rows (for API serialization via Pydantic from_attributes)."""
    with session_scope() as session:
        return list(session.execute(select(TaskSchedule).order_by(TaskSchedule.task_key)).scalars().all())


def set_task_enabled(task_key: str, enabled: bool) -> None:
    """Persist enabled flag for a task (stop/restart from the admin API)."""
    with session_scope() as session:
        row = session.execute(select(TaskSchedule).where(TaskSchedule.task_key == task_key)).scalars().first()
        if row:
            row.enabled = enabled
            row.updated_at = _utc_now()
