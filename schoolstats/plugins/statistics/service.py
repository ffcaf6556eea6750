"""
Service layer: recompute statistics from the LMS tables, upsert them, and read them back.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from schoolstats.core.db import session_scope
from schoolstats.core.schema import (
    Assignment,
    ClassAssignment,
    ProgressRecord,
    Question,
    SchoolClass,
    User,
    UserRole,
    get_assignment_student_ids,
    get_class_student_ids,
    get_progress,
    get_question_counts,
    get_user_class_ids,
    get_user_ids_by_role,
    get_visible_assignments,
)
from schoolstats.plugins.statistics import calculator
from schoolstats.plugins.statistics.models import (
    AssignmentStats,
    ClassStats,
    PerformanceMetric,
    SchoolStats,
    StudentStats,
    TeacherStats,
)

logger = logging.getLogger(__name__)

METRIC_TIME_FRAME = "HOURLY"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _upsert(session: Session, model: Type[Any], key: Any, values: Dict[str, Any], now: datetime) -> Any:
    row = session.get(model, key)
    if row is None:
        pk_name = model.__mapper__.primary_key[0].name
        row = model(**{pk_name: key})
        session.add(row)
    for column, value in values.items():
        setattr(row, column, value)
    row.last_updated = now
    return row


def _count(session: Session, stmt) -> int:
    return session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()


# ----- Per-entity recompute (caller owns the session) -----

def update_assignment_statistics(session: Session, assignment_id: int, now: Optional[datetime] = None) -> AssignmentStats:
    now = now or _utc_now()
    total_questions = get_question_counts(session, [assignment_id])[assignment_id]
    scope = get_assignment_student_ids(session, assignment_id)
    progress = calculator.progress_rows(get_progress(session, assignment_ids=[assignment_id]))
    values = calculator.assignment_aggregate(total_questions, scope, progress)
    return _upsert(session, AssignmentStats, assignment_id, values, now)


def update_student_statistics(session: Session, student_id: int, now: Optional[datetime] = None) -> StudentStats:
    now = now or _utc_now()
    visible = get_visible_assignments(session, student_id)
    ids = [a.id for a in visible]
    assignments = calculator.assignment_rows(visible, get_question_counts(session, ids))
    progress = calculator.progress_rows(get_progress(session, student_id=student_id, assignment_ids=ids))
    values = calculator.student_aggregate(assignments, progress)
    return _upsert(session, StudentStats, student_id, values, now)


def update_class_statistics(session: Session, class_id: int, now: Optional[datetime] = None) -> ClassStats:
    now = now or _utc_now()
    student_ids = get_class_student_ids(session, class_id)
    student_stats = []
    if student_ids:
        student_stats = session.execute(
            select(StudentStats).where(StudentStats.student_id.in_(student_ids))
        ).scalars().all()
    class_assignments = select(ClassAssignment.assignment_id).where(ClassAssignment.class_id == class_id)
    total_assignments = _count(session, class_assignments)
    active_assignments = _count(
        session,
        select(Assignment.id).where(Assignment.id.in_(class_assignments), Assignment.is_active.is_(True)),
    )
    values = calculator.class_aggregate(len(student_ids), student_stats, total_assignments, active_assignments, now)
    return _upsert(session, ClassStats, class_id, values, now)


def update_teacher_statistics(session: Session, teacher_id: int, now: Optional[datetime] = None) -> TeacherStats:
    now = now or _utc_now()
    assignment_ids = list(session.execute(
        select(Assignment.id).where(Assignment.teacher_id == teacher_id)
    ).scalars().all())
    class_ids = get_user_class_ids(session, teacher_id)
    student_ids = set()
    for class_id in class_ids:
        student_ids.update(get_class_student_ids(session, class_id))
    assignment_stats = []
    if assignment_ids:
        assignment_stats = session.execute(
            select(AssignmentStats).where(AssignmentStats.assignment_id.in_(assignment_ids))
        ).scalars().all()
    active = _count(session, select(Assignment.id).where(
        Assignment.teacher_id == teacher_id, Assignment.is_active.is_(True)
    ))
    scheduled = _count(session, select(Assignment.id).where(
        Assignment.teacher_id == teacher_id,
        Assignment.is_active.is_(False),
        Assignment.scheduled_publish_at.is_not(None),
    ))
    values = calculator.teacher_aggregate(
        assignment_stats, len(assignment_ids), len(class_ids), len(student_ids), active, scheduled
    )
    return _upsert(session, TeacherStats, teacher_id, values, now)


def update_school_statistics(session: Session, now: Optional[datetime] = None) -> SchoolStats:
    now = now or _utc_now()
    counts = {
        "total_users": _count(session, select(User.id)),
        "total_teachers": _count(session, select(User.id).where(User.role == UserRole.TEACHER)),
        "total_students": _count(session, select(User.id).where(User.role == UserRole.STUDENT)),
        "total_classes": _count(session, select(SchoolClass.id)),
        "total_assignments": _count(session, select(Assignment.id)),
        "active_assignments": _count(session, select(Assignment.id).where(Assignment.is_active.is_(True))),
        "scheduled_assignments": _count(session, select(Assignment.id).where(
            Assignment.is_active.is_(False), Assignment.scheduled_publish_at.is_not(None)
        )),
    }
    assignment_stats = session.execute(select(AssignmentStats)).scalars().all()
    student_stats = session.execute(select(StudentStats)).scalars().all()
    values = calculator.school_aggregate(counts, assignment_stats, student_stats, now)
    return _upsert(session, SchoolStats, now.date(), values, now)


def _upsert_metric(
    session: Session,
    metric_type: str,
    entity_type: str,
    entity_id: Optional[int],
    value: float,
    now: datetime,
) -> None:
    stmt = select(PerformanceMetric).where(
        PerformanceMetric.metric_type == metric_type,
        PerformanceMetric.entity_type == entity_type,
        PerformanceMetric.time_frame == METRIC_TIME_FRAME,
        PerformanceMetric.date == now.date(),
        PerformanceMetric.hour == now.hour,
    )
    if entity_id is None:
        stmt = stmt.where(PerformanceMetric.entity_id.is_(None))
    else:
        stmt = stmt.where(PerformanceMetric.entity_id == entity_id)
    row = session.execute(stmt).scalars().first()
    if row is None:
        session.add(PerformanceMetric(
            metric_type=metric_type,
            entity_type=entity_type,
            entity_id=entity_id,
            time_frame=METRIC_TIME_FRAME,
            date=now.date(),
            hour=now.hour,
            value=value,
            created_at=now,
        ))
    else:
        row.value = value


def record_performance_metrics(session: Session, now: Optional[datetime] = None) -> int:
    """One point per hour for the school and each class: completion rate and average score."""
    now = now or _utc_now()
    written = 0
    school = session.get(SchoolStats, now.date())
    if school is not None:
        _upsert_metric(session, "completion_rate", "school", None, school.average_completion_rate, now)
        _upsert_metric(session, "average_score", "school", None, school.average_score, now)
        written += 2
    for row in session.execute(select(ClassStats)).scalars().all():
        _upsert_metric(session, "completion_rate", "class", row.class_id, row.average_completion, now)
        _upsert_metric(session, "average_score", "class", row.class_id, row.average_score, now)
        written += 2
    return written


def apply_retention(
    now: Optional[datetime] = None,
    metrics_retention_days: int = 90,
    school_stats_retention_days: int = 365,
) -> Dict[str, int]:
    now = now or _utc_now()
    metrics_cutoff = (now - timedelta(days=metrics_retention_days)).date()
    school_cutoff = (now - timedelta(days=school_stats_retention_days)).date()
    with session_scope() as session:
        metrics = session.execute(delete(PerformanceMetric).where(PerformanceMetric.date < metrics_cutoff))
        school = session.execute(delete(SchoolStats).where(SchoolStats.date < school_cutoff))
        return {"metrics_deleted": metrics.rowcount or 0, "school_stats_deleted": school.rowcount or 0}


def _sweep_entities(label: str, ids: List[int], update, now: datetime) -> Dict[str, int]:
    updated = 0
    failed = 0
    for entity_id in ids:
        try:
            with session_scope() as session:
                update(session, entity_id, now)
            updated += 1
        except Exception as e:
            failed += 1
            logger.exception(f"Error updating statistics for {label} {entity_id}: {e}")
    logger.info(f"Updated statistics for {updated} {label}(s), {failed} failed")
    return {"updated": updated, "failed": failed}


def run_full_sweep(
    now: Optional[datetime] = None,
    metrics_retention_days: int = 90,
    school_stats_retention_days: int = 365,
) -> Dict[str, Any]:
    """
    Full recompute, bottom-up so every roll-up reads fresh lower aggregates:
    assignments, students, classes, teachers, school; then metrics and retention.
    """
    now = now or _utc_now()
    with session_scope() as session:
        assignment_ids = list(session.execute(select(Assignment.id).order_by(Assignment.id)).scalars().all())
        student_ids = get_user_ids_by_role(session, UserRole.STUDENT)
        class_ids = list(session.execute(select(SchoolClass.id).order_by(SchoolClass.id)).scalars().all())
        teacher_ids = get_user_ids_by_role(session, UserRole.TEACHER)

    summary: Dict[str, Any] = {
        "assignments": _sweep_entities("assignment", assignment_ids, update_assignment_statistics, now),
        "students": _sweep_entities("student", student_ids, update_student_statistics, now),
        "classes": _sweep_entities("class", class_ids, update_class_statistics, now),
        "teachers": _sweep_entities("teacher", teacher_ids, update_teacher_statistics, now),
    }
    with session_scope() as session:
        update_school_statistics(session, now)
        session.flush()
        summary["metrics_written"] = record_performance_metrics(session, now)
    summary.update(apply_retention(now, metrics_retention_days, school_stats_retention_days))
    return summary


def record_progress(
    student_id: int,
    assignment_id: int,
    question_id: int,
    is_correct: bool,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Store one answer (a re-submission overwrites the previous attempt) and
    recompute the aggregates of that assignment and that student.
    """
    now = now or _utc_now()
    with session_scope() as session:
        student = session.get(User, student_id)
        if student is None or student.role != UserRole.STUDENT:
            raise LookupError(f"Student {student_id} not found")
        question = session.get(Question, question_id)
        if question is None or question.assignment_id != assignment_id:
            raise LookupError(f"Question {question_id} not found in assignment {assignment_id}")

        record = session.execute(select(ProgressRecord).where(
            ProgressRecord.student_id == student_id,
            ProgressRecord.assignment_id == assignment_id,
            ProgressRecord.question_id == question_id,
        )).scalars().first()
        if record is None:
            record = ProgressRecord(
                student_id=student_id,
                assignment_id=assignment_id,
                question_id=question_id,
                created_at=now,
            )
            session.add(record)
        record.is_complete = True
        record.is_correct = bool(is_correct)
        record.updated_at = now
        session.flush()

        assignment_stats = update_assignment_statistics(session, assignment_id, now)
        student_stats = update_student_statistics(session, student_id, now)
        session.flush()
        return {"progress_id": record.id, "assignment": assignment_stats, "student": student_stats}


# ----- Reads -----

def _get(model: Type[Any], key: Any) -> Optional[Any]:
    with session_scope() as session:
        return session.get(model, key)


def get_assignment_stats(assignment_id: int) -> Optional[AssignmentStats]:
    return _get(AssignmentStats, assignment_id)


def get_student_stats(student_id: int) -> Optional[StudentStats]:
    return _get(StudentStats, student_id)


def get_class_stats(class_id: int) -> Optional[ClassStats]:
    return _get(ClassStats, class_id)


def get_teacher_stats(teacher_id: int) -> Optional[TeacherStats]:
    return _get(TeacherStats, teacher_id)


def get_school_stats(day: Optional[date] = None) -> Optional[SchoolStats]:
    """The row for day (default today), falling back to the most recent row."""
    day = day or _utc_now().date()
    with session_scope() as session:
        row = session.get(SchoolStats, day)
        if row is None:
            row = session.execute(select(SchoolStats).order_by(SchoolStats.date.desc()).limit(1)).scalars().first()
        return row


def get_school_stats_trend(days: int = 30, now: Optional[datetime] = None) -> List[SchoolStats]:
    start = ((now or _utc_now()) - timedelta(days=days)).date()
    with session_scope() as session:
        return list(session.execute(
            select(SchoolStats).where(SchoolStats.date >= start).order_by(SchoolStats.date.asc())
        ).scalars().all())
