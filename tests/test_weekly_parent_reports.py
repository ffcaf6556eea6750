from datetime import date, datetime, timedelta

import pytest
import requests
from sqlalchemy import select

from schoolstats.core.db import session_scope
from schoolstats.core.schema import ActivityLog, ActivityLogType
from schoolstats.plugins.weekly_parent_reports import service
from schoolstats.plugins.weekly_parent_reports.models import ReportStatus
from tests.conftest import NOW

IN_WEEK = datetime(2024, 3, 5, 10, 0)


class _Response:
    def __init__(self, status_code=202):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def sent(monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        recipient = json["personalizations"][0]["to"][0]["email"]
        return _Response(500 if recipient.startswith("broken") else 202)

    monkeypatch.setattr(service.requests, "post", fake_post)
    return calls


def test_previous_week_is_sunday_to_saturday():
    assert service.previous_week(NOW) == (date(2024, 3, 3), date(2024, 3, 9))
    assert service.previous_week(datetime(2024, 3, 10, 18, 0)) == (date(2024, 3, 3), date(2024, 3, 9))
    assert service.previous_week(datetime(2024, 3, 9, 23, 0)) == (date(2024, 2, 25), date(2024, 3, 2))


def test_reports_go_to_parents_of_active_students(factory, sent):
    alice = factory.student(username="alice", parent_email="parent.alice@example.com")
    bob = factory.student(username="bob")
    carol = factory.student(username="carol", parent_email="broken@example.com")
    factory.student(username="idle", parent_email="idle@example.com")
    assignment, questions = factory.assignment(students=[alice, bob, carol], questions=2)
    factory.answers(alice, assignment, questions, correct_count=1, at=IN_WEEK)
    factory.answer(bob, assignment, questions[0], at=IN_WEEK)
    factory.answer(carol, assignment, questions[0], at=IN_WEEK)

    result = service.send_weekly_reports("SG.key", "school@example.com", now=NOW)

    assert result["processed"] == 2
    assert result["sent"] == 1
    assert result["failed"] == 1
    assert result["skipped"] == 1
    assert len(sent) == 2
    assert sent[0]["url"] == service.SENDGRID_URL
    assert sent[0]["headers"]["Authorization"] == "Bearer SG.key"
    assert sent[0]["json"]["from"] == {"email": "school@example.com"}
    assert "alice" in sent[0]["json"]["subject"]

    reports = {r.student_id: r for r in service.get_recent_reports()}
    assert set(reports) == {alice, bob, carol}
    assert reports[alice].status == ReportStatus.SENT
    assert reports[alice].summary["completed_assignments"] == 1
    assert reports[alice].summary["average_score"] == 50.0
    assert reports[bob].status == ReportStatus.SKIPPED
    assert reports[carol].status == ReportStatus.FAILED
    assert "500" in reports[carol].error

    with session_scope() as session:
        log = session.execute(select(ActivityLog)).scalars().one()
    assert log.type == ActivityLogType.SYSTEM_MAINTENANCE
    assert log.details["sent"] == 1


def test_activity_outside_the_week_is_ignored(factory, sent):
    student = factory.student(parent_email="p@example.com")
    assignment, questions = factory.assignment(students=[student])
    factory.answer(student, assignment, questions[0], at=IN_WEEK - timedelta(days=7))

    result = service.send_weekly_reports("SG.key", "school@example.com", now=NOW)

    assert result["processed"] == 0
    assert sent == []


def test_missing_api_key_skips_everything(factory, sent):
    student = factory.student(parent_email="p@example.com")
    assignment, questions = factory.assignment(students=[student])
    factory.answer(student, assignment, questions[0], at=IN_WEEK)

    assert service.send_weekly_reports(None, "school@example.com", now=NOW) is None
    assert sent == []
    assert service.get_recent_reports() == []


def test_student_whose_summary_fails_is_counted_and_others_still_sent(factory, sent, monkeypatch):
    alice = factory.student(username="alice", parent_email="parent.alice@example.com")
    bob = factory.student(username="bob", parent_email="parent.bob@example.com")
    carol = factory.student(username="carol", parent_email="parent.carol@example.com")
    assignment, questions = factory.assignment(students=[alice, bob, carol], questions=1)
    for student in (alice, bob, carol):
        factory.answer(student, assignment, questions[0], at=IN_WEEK)
    original = service.build_student_summary

    def fail_for_bob(session, student, week):
        if student.id == bob:
            raise ValueError("summary failed")
        return original(session, student, week)

    monkeypatch.setattr(service, "build_student_summary", fail_for_bob)

    result = service.send_weekly_reports("SG.key", "school@example.com", now=NOW)

    assert result["processed"] == 3
    assert result["sent"] == 2
    assert result["failed"] == 1
    assert any("bob" in error for error in result["errors"])
    assert len(sent) == 2
    assert {r.student_id for r in service.get_recent_reports()} == {alice, carol}

    with session_scope() as session:
        log = session.execute(select(ActivityLog)).scalars().one()
    assert log.details["failed"] == 1
