"""
Service layer: summarize each active student's previous week and email it to the parent via SendGrid.
"""
import logging
from collections import namedtuple
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from schoolstats.core.db import session_scope
from schoolstats.core.schema import (
    ActivityLog,
    ActivityLogType,
    ProgressRecord,
    User,
    UserRole,
    get_progress,
    get_question_counts,
)
from schoolstats.plugins.statistics.calculator import answered_question_ids, is_assignment_complete, progress_rows
from schoolstats.plugins.weekly_parent_reports.models import ReportStatus, WeeklyParentReport

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
SEND_TIMEOUT = 15
MAX_LOGGED_ERRORS = 10

Week = namedtuple("Week", ["start", "end"])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def previous_week(now: datetime) -> Week:
    """Sunday to Saturday of the week before the one containing now."""
    this_sunday = now.date() - timedelta(days=(now.weekday() + 1) % 7)
    start = this_sunday - timedelta(days=7)
    return Week(start, start + timedelta(days=6))


def _week_bounds(week: Week):
    return datetime.combine(week.start, time.min), datetime.combine(week.end + timedelta(days=1), time.min)


def get_active_students(session: Session, week: Week) -> List[User]:
    """Students with at least one progress row created during the week."""
    start, end = _week_bounds(week)
    active = (
        select(ProgressRecord.student_id)
        .where(ProgressRecord.created_at >= start, ProgressRecord.created_at < end)
    )
    return list(session.execute(
        select(User).where(User.role == UserRole.STUDENT, User.id.in_(active)).order_by(User.id)
    ).scalars().all())


def build_student_summary(session: Session, student: User, week: Week) -> Dict[str, Any]:
    """Answers given during the week, and completion of the assignments they touched."""
    start, end = _week_bounds(week)
    rows = progress_rows(get_progress(session, student_id=student.id))
    week_rows = [p for p in rows if p.created_at is not None and start <= p.created_at < end]
    assignment_ids = sorted({p.assignment_id for p in week_rows})
    question_counts = get_question_counts(session, assignment_ids)
    completed = sum(
        1 for aid in assignment_ids
        if is_assignment_complete(
            answered_question_ids([p for p in rows if p.assignment_id == aid and (p.created_at or start) < end]),
            question_counts[aid],
        )
    )
    answers = [p for p in week_rows if p.is_complete]
    correct = sum(1 for p in answers if p.is_correct)
    return {
        "student_id": student.id,
        "username": student.username,
        "week_start": week.start.isoformat(),
        "week_end": week.end.isoformat(),
        "total_assignments": len(assignment_ids),
        "completed_assignments": completed,
        "total_answers": len(answers),
        "correct_answers": correct,
        "average_score": round(correct / len(answers) * 100, 2) if answers else 0.0,
        "completion_rate": round(completed / len(assignment_ids) * 100, 2) if assignment_ids else 0.0,
    }


def render_report(summary: Dict[str, Any]) -> Dict[str, str]:
    subject = f"Weekly Progress Report for {summary['username']} - {summary['week_start']} to {summary['week_end']}"
    text = (
        f"Weekly progress for {summary['username']} ({summary['week_start']} to {summary['week_end']})\n\n"
        f"Assignments worked on: {summary['total_assignments']}\n"
        f"Assignments completed: {summary['completed_assignments']}\n"
        f"Questions answered: {summary['total_answers']}\n"
        f"Correct answers: {summary['correct_answers']}\n"
        f"Average score: {summary['average_score']}%\n"
        f"Completion rate: {summary['completion_rate']}%\n"
    )
    return {"subject": subject, "text": text}


def send_email(api_key: str, sender: str, recipient: str, subject: str, text: str) -> None:
    """POST one plain-text message to SendGrid. Raises requests.RequestException on failure."""
    payload = {
        "personalizations": [{"to": [{"email": recipient}]}],
        "from": {"email": sender},
        "subject": subject,
        "content": [{"type": "text/plain", "value": text}],
    }
    r = requests.post(
        SENDGRID_URL,
        json=payload,
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=SEND_TIMEOUT,
    )
    r.raise_for_status()


def _report_student(
    session: Session,
    student: User,
    week: Week,
    api_key: str,
    sender: str,
    now: datetime,
) -> WeeklyParentReport:
    """Build, send and log one student's report. Send failures become a failed row; anything else raises."""
    summary = build_student_summary(session, student, week)
    report = WeeklyParentReport(
        student_id=student.id,
        week_start=week.start,
        week_end=week.end,
        recipient=student.parent_email,
        summary=summary,
        created_at=now,
    )
    if not student.parent_email:
        report.status = ReportStatus.SKIPPED
        logger.warning(f"No parent email for student {student.username}")
    else:
        content = render_report(summary)
        try:
            send_email(api_key, sender, student.parent_email, content["subject"], content["text"])
            report.status = ReportStatus.SENT
        except requests.RequestException as e:
            report.status = ReportStatus.FAILED
            report.error = str(e)
            logger.error(f"Failed to send report for {student.username}: {e}")
    session.add(report)
    return report


def send_weekly_reports(
    api_key: Optional[str],
    sender: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Send one report per active student for the previous week and log each attempt.
    A student whose report cannot be built is rolled back alone and counted as failed.
    Returns the run summary, or None when email is not configured.
    """
    if not api_key or not sender:
        logger.warning("Email is not configured (sendgrid_api_key / sender_email); skipping parent reports")
        return None
    now = now or _utc_now()
    week = previous_week(now)
    result = {"week_start": week.start.isoformat(), "week_end": week.end.isoformat(),
              "processed": 0, "sent": 0, "failed": 0, "skipped": 0, "errors": []}

    with session_scope() as session:
        students = get_active_students(session, week)
        logger.info(f"Weekly parent reports for {week.start} - {week.end}: {len(students)} active students")
        for student in students:
            username = student.username
            if student.parent_email:
                result["processed"] += 1
            try:
                with session.begin_nested():
                    report = _report_student(session, student, week, api_key, sender, now)
            except Exception as e:
                result["failed"] += 1
                result["errors"].append(f"Error processing student {username}: {e}")
                logger.exception(f"Error processing student {username}: {e}")
                continue
            result[report.status] += 1
            if report.status == ReportStatus.FAILED:
                result["errors"].append(f"Failed to send report for {username}: {report.error}")

        session.add(ActivityLog(
            type=ActivityLogType.SYSTEM_MAINTENANCE,
            action="weekly_parent_reports",
            details={**result, "errors": result["errors"][:MAX_LOGGED_ERRORS]},
            created_at=now,
            published_at=now,
        ))
    return result


def get_recent_reports(limit: int = 50) -> List[WeeklyParentReport]:
    """Newest first."""
    with session_scope() as session:
        return list(session.execute(
            select(WeeklyParentReport)
            .order_by(WeeklyParentReport.created_at.desc(), WeeklyParentReport.id.desc())
            .limit(limit)
        ).scalars().all())
