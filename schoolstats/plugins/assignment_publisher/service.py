"""
Service layer: flip scheduled assignments active once their publish time passes.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from schoolstats.core.db import session_scope
from schoolstats.core.schema import ActivityLog, ActivityLogType, Assignment

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _due_for_activation(now: datetime):
    return (
        select(Assignment)
        .where(
            Assignment.published_at.is_not(None),
            Assignment.is_active.is_(False),
            Assignment.scheduled_publish_at.is_not(None),
            Assignment.scheduled_publish_at <= now,
        )
        .order_by(Assignment.scheduled_publish_at, Assignment.id)
    )


def publish_due_assignments(now: Optional[datetime] = None) -> List[int]:
    """
    In one transaction: activate every published, inactive assignment whose
    scheduled_publish_at has passed and log one ASSIGNMENT_CREATED row each.
    Returns the activated ids; a second call finds nothing.
    """
    now = now or _utc_now()
    with session_scope() as session:
        assignments = session.execute(_due_for_activation(now)).scalars().all()
        for assignment in assignments:
            assignment.is_active = True
            session.add(ActivityLog(
                type=ActivityLogType.ASSIGNMENT_CREATED,
                action="Scheduled assignment published",
                details={"topic": assignment.topic, "scheduled_publish_at": assignment.scheduled_publish_at.isoformat()},
                user_id=assignment.teacher_id,
                assignment_id=assignment.id,
                created_at=now,
                published_at=now,
            ))
            logger.info(f"Activated scheduled assignment {assignment.id} ({assignment.topic})")
        return [a.id for a in assignments]


def activate_missed_assignments(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Manual variant for the admin endpoint: same sweep, errors reported instead of raised."""
    try:
        activated = publish_due_assignments(now)
        return {"activated": len(activated), "errors": []}
    except Exception as e:
        logger.exception(f"Activation of missed assignments failed: {e}")
        return {"activated": 0, "errors": [f"Transaction failed during missed assignments activation: {e}"]}


def get_scheduled_assignments(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Published but inactive assignments still waiting for their publish time."""
    now = now or _utc_now()
    with session_scope() as session:
        rows = session.execute(
            select(Assignment)
            .where(
                Assignment.published_at.is_not(None),
                Assignment.is_active.is_(False),
                Assignment.scheduled_publish_at > now,
            )
            .order_by(Assignment.scheduled_publish_at)
        ).scalars().all()
        return [
            {
                "id": a.id,
                "topic": a.topic,
                "teacher_id": a.teacher_id,
                "scheduled_publish_at": a.scheduled_publish_at,
                "due_date": a.due_date,
            }
            for a in rows
        ]
