"""
Rule-based at-risk classifier. Pure: takes a student's visible assignments and progress rows, returns a HelpAnalysis.
"""
import math
from collections import namedtuple
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from schoolstats.plugins.statistics.calculator import (
    AssignmentRow,
    ProgressRow,
    answered_question_ids,
    is_assignment_complete,
)


class Severity:
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    RECENT = "RECENT"


REASON_OVERDUE = "Low completion rate on overdue assignments"
REASON_LOW_SCORE = "Low average score on completed assignments"
REASON_LOW_COMPLETION = "Low overall completion rate"

HelpThresholds = namedtuple(
    "HelpThresholds",
    [
        "overdue_completion_threshold",  # % completion on overdue work
        "low_score_threshold",  # % correct of answered questions
        "min_answers",  # answers needed before the score rule applies
        "low_completion_threshold",  # % of all assignments completed
        "min_assignments",  # assignments needed before the completion rule applies
    ],
    defaults=(50.0, 50.0, 3, 50.0, 3),
)

HelpAnalysis = namedtuple(
    "HelpAnalysis",
    [
        "needs_help",
        "reasons",
        "needs_help_since",
        "days_needing_help",
        "overdue_assignments",
        "average_score",
        "completion_rate",
        "severity",
    ],
)


def thresholds_from_config(config: Optional[Dict[str, Any]]) -> HelpThresholds:
    config = config or {}
    defaults = HelpThresholds()
    return HelpThresholds(**{
        field: type(getattr(defaults, field))(config.get(field, getattr(defaults, field)))
        for field in HelpThresholds._fields
    })


def severity_for_days(days: int) -> str:
    """>14 days CRITICAL, >7 WARNING, else RECENT."""
    if days > 14:
        return Severity.CRITICAL
    if days > 7:
        return Severity.WARNING
    return Severity.RECENT


def days_between(since: datetime, now: datetime) -> int:
    """Whole days needing help, rounded up, at least 1."""
    return max(1, math.ceil((now - since) / timedelta(days=1)))


def analyze_student(
    assignments: Sequence[AssignmentRow],
    progress: Sequence[ProgressRow],
    now: datetime,
    thresholds: Optional[HelpThresholds] = None,
) -> HelpAnalysis:
    """
    Rules are OR-ed:
    (a) some assignments are overdue and fewer than the threshold share of them is complete;
        onset is the earliest overdue due date.
    (b) enough answered questions and the share answered correctly is below the threshold;
        onset moves back to the earliest incorrect answer if that is earlier.
    (c) enough assignments and the overall completion rate is below the threshold.
    """
    thresholds = thresholds or HelpThresholds()
    visible = {a.id: a for a in assignments}
    progress = [p for p in progress if p.assignment_id in visible]

    completed_ids = set()
    for assignment in visible.values():
        rows = [p for p in progress if p.assignment_id == assignment.id]
        if is_assignment_complete(answered_question_ids(rows), assignment.total_questions):
            completed_ids.add(assignment.id)

    total_assignments = len(visible)
    completion_rate = len(completed_ids) / total_assignments * 100 if total_assignments else 0.0

    answered = [p for p in progress if p.is_complete]
    correct = sum(1 for p in answered if p.is_correct)
    average_score = correct / len(answered) * 100 if answered else 0.0

    overdue = sorted(
        (a for a in visible.values() if a.due_date is not None and a.due_date < now),
        key=lambda a: a.due_date,
    )

    reasons: List[str] = []
    since = now

    if overdue:
        overdue_completed = sum(1 for a in overdue if a.id in completed_ids)
        if overdue_completed / len(overdue) * 100 < thresholds.overdue_completion_threshold:
            reasons.append(REASON_OVERDUE)
            since = overdue[0].due_date

    if len(answered) >= thresholds.min_answers and average_score < thresholds.low_score_threshold:
        reasons.append(REASON_LOW_SCORE)
        incorrect = [p.created_at or p.timestamp for p in answered if not p.is_correct]
        incorrect = [t for t in incorrect if t is not None]
        if incorrect and min(incorrect) < since:
            since = min(incorrect)

    if total_assignments >= thresholds.min_assignments and completion_rate < thresholds.low_completion_threshold:
        reasons.append(REASON_LOW_COMPLETION)

    needs_help = bool(reasons)
    days = days_between(since, now) if needs_help else 0
    return HelpAnalysis(
        needs_help=needs_help,
        reasons=reasons,
        needs_help_since=since if needs_help else None,
        days_needing_help=days,
        overdue_assignments=len(overdue),
        average_score=round(average_score, 2),
        completion_rate=round(completion_rate, 2),
        severity=severity_for_days(days),
    )
