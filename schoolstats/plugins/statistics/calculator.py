"""
Pure aggregate functions: reduce progress rows and lower aggregates into one stats row per entity.
No DB access here; the service loads rows and upserts the returned column dicts.
"""
from collections import defaultdict, namedtuple
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Sequence, Set

# One question attempt. timestamp is the last write (updated_at), created_at the first attempt; naive UTC.
ProgressRow = namedtuple(
    "ProgressRow",
    ["student_id", "assignment_id", "question_id", "is_complete", "is_correct", "timestamp", "created_at"],
    defaults=(None, None),
)

# One assignment as seen by the calculator.
AssignmentRow = namedtuple(
    "AssignmentRow",
    ["id", "total_questions", "due_date", "is_active"],
    defaults=(None, True),
)

ACTIVE_STUDENT_WINDOW = timedelta(days=7)
DAILY_ACTIVE_WINDOW = timedelta(days=1)
NEEDS_HELP_COMPLETION = 50.0
NEEDS_HELP_ACCURACY = 60.0


def rate(part: float, whole: float) -> float:
    """Percentage rounded to 2 dp; 0 when whole is 0."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def mean(values: Iterable[float]) -> float:
    values = [v for v in values if v is not None]
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def answered_question_ids(progress: Iterable[ProgressRow]) -> Set[Any]:
    return {p.question_id for p in progress if p.is_complete and p.question_id is not None}


def is_assignment_complete(answered_ids: Iterable[Any], total_questions: int) -> bool:
    """Complete only when every question has a distinct answer; an assignment without questions never is."""
    return total_questions > 0 and len(set(answered_ids)) >= total_questions


def _tally(progress: Iterable[ProgressRow]) -> Dict[str, int]:
    answers = 0
    correct = 0
    for p in progress:
        if not p.is_complete:
            continue
        answers += 1
        if p.is_correct:
            correct += 1
    return {"answers": answers, "correct": correct}


def assignment_aggregate(
    total_questions: int,
    student_ids_in_scope: Iterable[int],
    progress: Sequence[ProgressRow],
) -> Dict[str, Any]:
    """Stats for one assignment. Progress from students outside the scope is ignored."""
    scope = set(student_ids_in_scope)
    by_student: Dict[int, List[ProgressRow]] = defaultdict(list)
    for p in progress:
        if p.student_id in scope:
            by_student[p.student_id].append(p)

    completed = 0
    in_progress = 0
    scores: List[float] = []
    total_answers = 0
    total_correct = 0
    for rows in by_student.values():
        tally = _tally(rows)
        total_answers += tally["answers"]
        total_correct += tally["correct"]
        answered = answered_question_ids(rows)
        if is_assignment_complete(answered, total_questions):
            completed += 1
            scores.append(tally["correct"] / tally["answers"] * 100 if tally["answers"] else 0.0)
        elif answered:
            in_progress += 1

    total_students = len(scope)
    return {
        "total_students": total_students,
        "completed_students": completed,
        "in_progress_students": in_progress,
        "not_started_students": total_students - completed - in_progress,
        "completion_rate": rate(completed, total_students),
        "average_score": mean(scores),
        "total_questions": total_questions,
        "total_answers": total_answers,
        "total_correct_answers": total_correct,
        "accuracy_rate": rate(total_correct, total_answers),
    }


def student_aggregate(
    assignments: Sequence[AssignmentRow],
    progress: Sequence[ProgressRow],
) -> Dict[str, Any]:
    """Stats for one student over their visible assignments."""
    visible = {a.id: a for a in assignments}
    by_assignment: Dict[int, List[ProgressRow]] = defaultdict(list)
    for p in progress:
        if p.assignment_id in visible:
            by_assignment[p.assignment_id].append(p)

    completed = 0
    in_progress = 0
    scores: List[float] = []
    for assignment in visible.values():
        rows = by_assignment.get(assignment.id, [])
        answered = answered_question_ids(rows)
        if is_assignment_complete(answered, assignment.total_questions):
            completed += 1
            correct = _tally(rows)["correct"]
            scores.append(min(correct, assignment.total_questions) / assignment.total_questions * 100)
        elif answered:
            in_progress += 1

    tally = _tally(p for rows in by_assignment.values() for p in rows)
    timestamps = [p.timestamp for rows in by_assignment.values() for p in rows if p.timestamp is not None]
    total_assignments = len(visible)
    return {
        "total_assignments": total_assignments,
        "completed_assignments": completed,
        "in_progress_assignments": in_progress,
        "not_started_assignments": total_assignments - completed - in_progress,
        "average_score": mean(scores),
        "total_questions": sum(a.total_questions for a in visible.values()),
        "total_answers": tally["answers"],
        "total_correct_answers": tally["correct"],
        "accuracy_rate": rate(tally["correct"], tally["answers"]),
        "completion_rate": rate(completed, total_assignments),
        "last_activity_date": max(timestamps) if timestamps else None,
    }


def needs_attention(stats: Any) -> bool:
    """Coarse dashboard flag on a student stats row: low completion or low accuracy."""
    return stats.completion_rate < NEEDS_HELP_COMPLETION or stats.accuracy_rate < NEEDS_HELP_ACCURACY


def class_aggregate(
    student_count: int,
    student_stats: Sequence[Any],
    total_assignments: int,
    active_assignments: int,
    now: datetime,
) -> Dict[str, Any]:
    """Roll student stats rows (objects with the student_stats columns) up to one class."""
    recent = now - ACTIVE_STUDENT_WINDOW
    activity = [s.last_activity_date for s in student_stats if s.last_activity_date is not None]
    return {
        "total_students": student_count,
        "total_assignments": total_assignments,
        "active_assignments": active_assignments,
        "average_completion": mean(s.completion_rate for s in student_stats),
        "average_score": mean(s.average_score for s in student_stats),
        "total_questions": sum(s.total_questions for s in student_stats),
        "total_answers": sum(s.total_answers for s in student_stats),
        "total_correct_answers": sum(s.total_correct_answers for s in student_stats),
        "accuracy_rate": mean(s.accuracy_rate for s in student_stats),
        "active_students": sum(1 for d in activity if d >= recent),
        "students_needing_help": sum(1 for s in student_stats if needs_attention(s)),
        "last_activity_date": max(activity) if activity else None,
    }


def teacher_aggregate(
    assignment_stats: Sequence[Any],
    total_assignments: int,
    total_classes: int,
    total_students: int,
    active_assignments: int,
    scheduled_assignments: int,
) -> Dict[str, Any]:
    """Roll a teacher's assignment stats rows up to one teacher."""
    return {
        "total_assignments": total_assignments,
        "total_classes": total_classes,
        "total_students": total_students,
        "average_class_completion": mean(s.completion_rate for s in assignment_stats),
        "average_class_score": mean(s.average_score for s in assignment_stats),
        "total_questions": sum(s.total_questions for s in assignment_stats),
        "active_assignments": active_assignments,
        "scheduled_assignments": scheduled_assignments,
    }


def school_aggregate(
    counts: Dict[str, int],
    assignment_stats: Sequence[Any],
    student_stats: Sequence[Any],
    now: datetime,
) -> Dict[str, Any]:
    """
    School-wide row for one day. counts holds total_users, total_teachers,
    total_students, total_classes, total_assignments, active_assignments and
    scheduled_assignments straight from the LMS tables.
    """
    since = now - DAILY_ACTIVE_WINDOW
    row = dict(counts)
    row.update({
        "completed_assignments": sum(
            1 for s in assignment_stats if s.total_students > 0 and s.completed_students >= s.total_students
        ),
        "completed_student_assignments": sum(s.completed_students for s in assignment_stats),
        "in_progress_student_assignments": sum(s.in_progress_students for s in assignment_stats),
        "not_started_student_assignments": sum(s.not_started_students for s in assignment_stats),
        "average_completion_rate": mean(s.completion_rate for s in assignment_stats),
        "average_score": mean(s.average_score for s in assignment_stats),
        "total_questions": sum(s.total_questions for s in assignment_stats),
        "total_answers": sum(s.total_answers for s in assignment_stats),
        "total_correct_answers": sum(s.total_correct_answers for s in assignment_stats),
        "daily_active_students": sum(
            1 for s in student_stats if s.last_activity_date is not None and s.last_activity_date >= since
        ),
        "students_needing_help": sum(1 for s in student_stats if needs_attention(s)),
    })
    return row


def progress_rows(records: Iterable[Any]) -> List[ProgressRow]:
    """ORM progress records -> ProgressRow tuples."""
    return [
        ProgressRow(
            student_id=r.student_id,
            assignment_id=r.assignment_id,
            question_id=r.question_id,
            is_complete=bool(r.is_complete),
            is_correct=bool(r.is_correct),
            timestamp=r.updated_at or r.created_at,
            created_at=r.created_at,
        )
        for r in records
    ]


def assignment_rows(assignments: Iterable[Any], question_counts: Dict[int, int]) -> List[AssignmentRow]:
    return [
        AssignmentRow(
            id=a.id,
            total_questions=question_counts.get(a.id, 0),
            due_date=a.due_date,
            is_active=bool(a.is_active),
        )
        for a in assignments
    ]

