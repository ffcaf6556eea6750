"""
Service layer: create, prune and read dashboard snapshots.
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, func, select

from schoolstats.core.db import session_scope
from schoolstats.core.schema import ActivityLog, Assignment, AssignmentType, SchoolClass, User, UserRole
from schoolstats.plugins.dashboard_snapshot.models import DashboardSnapshot, SnapshotType
from schoolstats.plugins.statistics.models import SchoolStats
from schoolstats.plugins.students_needing_help.service import get_open_count

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _round_half_up(value: Optional[float]) -> int:
    return int(math.floor((value or 0) + 0.5))


def create_snapshot(snapshot_type: str = SnapshotType.DAILY, now: Optional[datetime] = None) -> DashboardSnapshot:
    """Copy current school-wide counts and the latest school averages into a new snapshot row."""
    if snapshot_type not in SnapshotType.ALL:
        raise ValueError(f"Invalid snapshot type: {snapshot_type}")
    now = now or _utc_now()
    with session_scope() as session:
        def count(stmt) -> int:
            return session.execute(stmt).scalar_one()

        published = Assignment.published_at.is_not(None)
        school = session.execute(
            select(SchoolStats).where(SchoolStats.date <= now.date()).order_by(SchoolStats.date.desc()).limit(1)
        ).scalars().first()
        snapshot = DashboardSnapshot(
            timestamp=now,
            snapshot_type=snapshot_type,
            total_classes=count(select(func.count(SchoolClass.id))),
            total_teachers=count(select(func.count(User.id)).where(User.role == UserRole.TEACHER)),
            total_students=count(select(func.count(User.id)).where(User.role == UserRole.STUDENT)),
            total_assignments=count(select(func.count(Assignment.id)).where(published)),
            class_assignments=count(
                select(func.count(Assignment.id)).where(published, Assignment.type == AssignmentType.CLASS)
            ),
            individual_assignments=count(
                select(func.count(Assignment.id)).where(published, Assignment.type == AssignmentType.INDIVIDUAL)
            ),
            average_completion_rate=_round_half_up(school.average_completion_rate if school else 0),
            average_success_rate=_round_half_up(school.average_score if school else 0),
            students_needing_attention=get_open_count(session),
            recent_activities=count(
                select(func.count(ActivityLog.id)).where(
                    ActivityLog.published_at.is_not(None),
                    ActivityLog.created_at >= now - RECENT_ACTIVITY_WINDOW,
                    ActivityLog.created_at <= now,
                )
            ),
        )
        session.add(snapshot)
        session.flush()
        logger.info(f"Created {snapshot_type} dashboard snapshot {snapshot.id}")
        return snapshot


def delete_old_snapshots(now: Optional[datetime] = None, retention_days: int = 30) -> int:
    cutoff = (now or _utc_now()) - timedelta(days=retention_days)
    with session_scope() as session:
        result = session.execute(delete(DashboardSnapshot).where(DashboardSnapshot.timestamp < cutoff))
        return result.rowcount or 0


def get_recent_snapshots(limit: int = 30) -> List[DashboardSnapshot]:
    """Newest first."""
    with session_scope() as session:
        return list(session.execute(
            select(DashboardSnapshot)
            .order_by(DashboardSnapshot.timestamp.desc(), DashboardSnapshot.id.desc())
            .limit(limit)
        ).scalars().all())
