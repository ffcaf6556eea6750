from datetime import timedelta

from sqlalchemy import select

from schoolstats.core.db import session_scope
from schoolstats.core.schema import ActivityLog, ActivityLogType, Assignment
from schoolstats.plugins.assignment_publisher.service import (
    activate_missed_assignments,
    get_scheduled_assignments,
    publish_due_assignments,
)
from tests.conftest import NOW


def _assignment(assignment_id):
    with session_scope() as session:
        return session.get(Assignment, assignment_id)


def _logs():
    with session_scope() as session:
        return list(session.execute(select(ActivityLog)).scalars().all())


def test_due_assignment_is_activated_once(factory):
    teacher = factory.teacher()
    due, _ = factory.assignment(teacher_id=teacher, is_active=False, scheduled_publish_at=NOW - timedelta(hours=1))

    assert publish_due_assignments(now=NOW) == [due]
    assert publish_due_assignments(now=NOW + timedelta(minutes=1)) == []

    assert _assignment(due).is_active
    logs = _logs()
    assert len(logs) == 1
    assert logs[0].type == ActivityLogType.ASSIGNMENT_CREATED
    assert logs[0].assignment_id == due
    assert logs[0].user_id == teacher
    assert logs[0].published_at == NOW


def test_future_and_unpublished_assignments_stay_inactive(factory):
    future, _ = factory.assignment(is_active=False, scheduled_publish_at=NOW + timedelta(days=1))
    draft, _ = factory.assignment(is_active=False, published_at=None, scheduled_publish_at=NOW - timedelta(days=1))

    assert publish_due_assignments(now=NOW) == []
    assert not _assignment(future).is_active
    assert not _assignment(draft).is_active

    scheduled = get_scheduled_assignments(now=NOW)
    assert [a["id"] for a in scheduled] == [future]


def test_activate_missed_assignments_reports_count(factory):
    factory.assignment(is_active=False, scheduled_publish_at=NOW - timedelta(days=2))
    factory.assignment(is_active=False, scheduled_publish_at=NOW - timedelta(days=1))

    assert activate_missed_assignments(now=NOW) == {"activated": 2, "errors": []}
    assert activate_missed_assignments(now=NOW) == {"activated": 0, "errors": []}
