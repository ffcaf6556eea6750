"""
Service layer: classify every student and merge the result into students_needing_help, plus reads for the API.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from schoolstats.core.db import session_scope
from schoolstats.core.schema import (
    SchoolClass,
    User,
    UserRole,
    get_progress,
    get_question_counts,
    get_user_class_ids,
    get_user_ids_by_role,
    get_visible_assignments,
)
from schoolstats.plugins.statistics.calculator import assignment_rows, progress_rows
from schoolstats.plugins.students_needing_help.classifier import (
    HelpAnalysis,
    HelpThresholds,
    Severity,
    analyze_student,
    days_between,
    severity_for_days,
)
from schoolstats.plugins.students_needing_help.models import (
    StudentNeedingHelp,
    StudentNeedingHelpClass,
    StudentNeedingHelpTeacher,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def analyze(session: Session, student_id: int, now: datetime, thresholds: HelpThresholds) -> Dict[str, Any]:
    """Classify one student; also returns the class and teacher ids the record should link to."""
    visible = get_visible_assignments(session, student_id)
    ids = [a.id for a in visible]
    assignments = assignment_rows(visible, get_question_counts(session, ids))
    progress = progress_rows(get_progress(session, student_id=student_id, assignment_ids=ids))
    return {
        "analysis": analyze_student(assignments, progress, now, thresholds),
        "class_ids": get_user_class_ids(session, student_id),
        "teacher_ids": sorted({a.teacher_id for a in visible if a.teacher_id is not None}),
    }


def _open_records(session: Session, student_id: int) -> List[StudentNeedingHelp]:
    return list(session.execute(
        select(StudentNeedingHelp)
        .where(StudentNeedingHelp.student_id == student_id, StudentNeedingHelp.is_resolved.is_(False))
        .order_by(StudentNeedingHelp.id)
    ).scalars().all())


def _sync_links(session: Session, help_id: int, class_ids: List[int], teacher_ids: List[int]) -> None:
    session.execute(delete(StudentNeedingHelpClass).where(StudentNeedingHelpClass.help_id == help_id))
    session.execute(delete(StudentNeedingHelpTeacher).where(StudentNeedingHelpTeacher.help_id == help_id))
    for class_id in class_ids:
        session.add(StudentNeedingHelpClass(help_id=help_id, class_id=class_id))
    for teacher_id in teacher_ids:
        session.add(StudentNeedingHelpTeacher(help_id=help_id, teacher_id=teacher_id))


def merge_student(
    session: Session,
    student_id: int,
    analysis: HelpAnalysis,
    class_ids: List[int],
    teacher_ids: List[int],
    now: datetime,
) -> str:
    """
    Keyed merge by student id. An open record keeps the earlier of its stored and
    newly derived onset; a student who no longer matches has the open record resolved.
    Returns "created", "updated", "resolved" or "unchanged".
    """
    open_records = _open_records(session, student_id)

    if not analysis.needs_help:
        for record in open_records:
            record.is_resolved = True
            record.resolved_at = now
            record.last_updated = now
        return "resolved" if open_records else "unchanged"

    if open_records:
        record = open_records[0]
        # Duplicates can only come from older data; keep the oldest open record
        for duplicate in open_records[1:]:
            duplicate.is_resolved = True
            duplicate.resolved_at = now
        since = min(record.needs_help_since, analysis.needs_help_since)
        outcome = "updated"
    else:
        record = StudentNeedingHelp(student_id=student_id, is_resolved=False, created_at=now)
        session.add(record)
        since = analysis.needs_help_since
        outcome = "created"

    days = days_between(since, now)
    record.reasons = list(analysis.reasons)
    record.needs_help_since = since
    record.days_needing_help = days
    record.severity = severity_for_days(days)
    record.overdue_assignments = analysis.overdue_assignments
    record.average_score = analysis.average_score
    record.completion_rate = analysis.completion_rate
    record.last_updated = now
    session.flush()
    _sync_links(session, record.id, class_ids, teacher_ids)
    return outcome


def run_analysis(now: Optional[datetime] = None, thresholds: Optional[HelpThresholds] = None) -> Dict[str, int]:
    """
    Classify every student and merge the results in one transaction. Each student
    runs in its own savepoint: a failure is logged, rolled back alone and counted.
    """
    now = now or _utc_now()
    thresholds = thresholds or HelpThresholds()
    summary = {"analyzed": 0, "created": 0, "updated": 0, "resolved": 0, "unchanged": 0, "failed": 0}
    with session_scope() as session:
        for student_id in get_user_ids_by_role(session, UserRole.STUDENT):
            try:
                with session.begin_nested():
                    result = analyze(session, student_id, now, thresholds)
                    outcome = merge_student(
                        session, student_id, result["analysis"], result["class_ids"], result["teacher_ids"], now
                    )
            except Exception as e:
                summary["failed"] += 1
                logger.exception(f"Error analyzing student {student_id}: {e}")
                continue
            summary["analyzed"] += 1
            summary[outcome] += 1
    return summary


# ----- Reads -----

def _serialize(session: Session, record: StudentNeedingHelp) -> Dict[str, Any]:
    student = session.get(User, record.student_id)
    classes = session.execute(
        select(SchoolClass)
        .join(StudentNeedingHelpClass, StudentNeedingHelpClass.class_id == SchoolClass.id)
        .where(StudentNeedingHelpClass.help_id == record.id)
        .order_by(SchoolClass.id)
    ).scalars().all()
    teachers = session.execute(
        select(User)
        .join(StudentNeedingHelpTeacher, StudentNeedingHelpTeacher.teacher_id == User.id)
        .where(StudentNeedingHelpTeacher.help_id == record.id)
        .order_by(User.id)
    ).scalars().all()
    return {
        "id": record.id,
        "student_id": record.student_id,
        "reasons": record.reasons or [],
        "needs_help_since": record.needs_help_since,
        "days_needing_help": record.days_needing_help,
        "overdue_assignments": record.overdue_assignments,
        "average_score": record.average_score,
        "completion_rate": record.completion_rate,
        "severity": record.severity,
        "is_resolved": record.is_resolved,
        "resolved_at": record.resolved_at,
        "teacher_notes": record.teacher_notes,
        "actions_taken": record.actions_taken or [],
        "student": {"id": student.id, "username": student.username, "email": student.email} if student else None,
        "classes": [{"id": c.id, "name": c.name} for c in classes],
        "teachers": [{"id": t.id, "username": t.username} for t in teachers],
    }


def get_students_needing_help() -> Dict[str, Any]:
    """Open records, longest-running first, with a per-severity summary."""
    with session_scope() as session:
        records = session.execute(
            select(StudentNeedingHelp)
            .where(StudentNeedingHelp.is_resolved.is_(False))
            .order_by(StudentNeedingHelp.days_needing_help.desc(), StudentNeedingHelp.id)
        ).scalars().all()
        students = [_serialize(session, r) for r in records]
    summary = {
        "total": len(students),
        "critical": sum(1 for s in students if s["severity"] == Severity.CRITICAL),
        "warning": sum(1 for s in students if s["severity"] == Severity.WARNING),
        "recent": sum(1 for s in students if s["severity"] == Severity.RECENT),
    }
    return {"students": students, "summary": summary}


def get_open_count(session: Optional[Session] = None) -> int:
    stmt = select(func.count(StudentNeedingHelp.id)).where(StudentNeedingHelp.is_resolved.is_(False))
    if session is not None:
        return session.execute(stmt).scalar_one()
    with session_scope() as own:
        return own.execute(stmt).scalar_one()


def update_help_record(
    help_id: int,
    teacher_notes: Optional[str] = None,
    actions_taken: Optional[List[str]] = None,
) -> Optional[Dict[str, Any]]:
    """Teacher follow-up on a record. None when the record does not exist."""
    with session_scope() as session:
        record = session.get(StudentNeedingHelp, help_id)
        if record is None:
            return None
        if teacher_notes is not None:
            record.teacher_notes = teacher_notes
        if actions_taken is not None:
            record.actions_taken = list(actions_taken)
        record.last_updated = _utc_now()
        session.flush()
        return _serialize(session, record)
