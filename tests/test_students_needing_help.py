from datetime import timedelta

import pytest
from sqlalchemy import select

from schoolstats.core.db import session_scope
from schoolstats.plugins.students_needing_help import service as help_service
from schoolstats.plugins.students_needing_help.classifier import REASON_OVERDUE, Severity
from schoolstats.plugins.students_needing_help.models import StudentNeedingHelp
from schoolstats.plugins.students_needing_help.service import (
    get_open_count,
    get_students_needing_help,
    run_analysis,
    update_help_record,
)
from tests.conftest import NOW


def _records(student_id):
    with session_scope() as session:
        return list(session.execute(
            select(StudentNeedingHelp).where(StudentNeedingHelp.student_id == student_id).order_by(StudentNeedingHelp.id)
        ).scalars().all())


@pytest.fixture
def overdue(factory):
    teacher = factory.teacher()
    student = factory.student(username="alice")
    class_id = factory.school_class(members=[teacher, student], name="Algebra")
    due = NOW - timedelta(days=10)
    assignment, questions = factory.assignment(teacher_id=teacher, classes=[class_id], questions=2, due_date=due)
    return {"teacher": teacher, "student": student, "class": class_id, "assignment": assignment,
            "questions": questions, "due": due}


def test_overdue_student_gets_one_open_record(overdue):
    summary = run_analysis(now=NOW)

    assert summary["analyzed"] == 1
    assert summary["created"] == 1
    records = _records(overdue["student"])
    assert len(records) == 1
    record = records[0]
    assert record.reasons == [REASON_OVERDUE]
    assert record.needs_help_since == overdue["due"]
    assert record.days_needing_help == 10
    assert record.severity == Severity.WARNING
    assert not record.is_resolved


def test_rerun_preserves_onset_and_escalates(overdue):
    run_analysis(now=NOW)
    summary = run_analysis(now=NOW + timedelta(days=5))

    assert summary["updated"] == 1
    records = _records(overdue["student"])
    assert len(records) == 1
    assert records[0].needs_help_since == overdue["due"]
    assert records[0].days_needing_help == 15
    assert records[0].severity == Severity.CRITICAL


def test_catching_up_resolves_the_record(overdue, factory):
    run_analysis(now=NOW)
    factory.answers(overdue["student"], overdue["assignment"], overdue["questions"], correct_count=2,
                    at=NOW + timedelta(days=1))

    summary = run_analysis(now=NOW + timedelta(days=2))

    assert summary["resolved"] == 1
    record = _records(overdue["student"])[0]
    assert record.is_resolved
    assert record.resolved_at == NOW + timedelta(days=2)
    assert get_open_count() == 0


def test_student_on_track_is_left_alone(factory):
    student = factory.student()
    assignment, questions = factory.assignment(students=[student], due_date=NOW - timedelta(days=1))
    factory.answers(student, assignment, questions, correct_count=2)

    summary = run_analysis(now=NOW)

    assert summary["unchanged"] == 1
    assert _records(student) == []


def test_read_side_includes_links_and_summary(overdue):
    run_analysis(now=NOW)

    data = get_students_needing_help()

    assert data["summary"] == {"total": 1, "critical": 0, "warning": 1, "recent": 0}
    entry = data["students"][0]
    assert entry["student"]["username"] == "alice"
    assert [c["name"] for c in entry["classes"]] == ["Algebra"]
    assert [t["id"] for t in entry["teachers"]] == [overdue["teacher"]]
    assert get_open_count() == 1


def test_teacher_follow_up(overdue):
    run_analysis(now=NOW)
    help_id = _records(overdue["student"])[0].id

    updated = update_help_record(help_id, teacher_notes="Called home", actions_taken=["parent call"])

    assert updated["teacher_notes"] == "Called home"
    assert updated["actions_taken"] == ["parent call"]
    assert update_help_record(help_id + 100, teacher_notes="x") is None


def test_one_failing_student_does_not_block_the_rest(overdue, factory, monkeypatch):
    bob = factory.student(username="bob")
    carol = factory.student(username="carol")
    factory.assignment(teacher_id=overdue["teacher"], students=[bob, carol], questions=1, due_date=overdue["due"])
    original = help_service.merge_student

    def merge_then_fail_for_bob(session, student_id, *args):
        outcome = original(session, student_id, *args)
        if student_id == bob:
            raise ValueError("merge failed")
        return outcome

    monkeypatch.setattr(help_service, "merge_student", merge_then_fail_for_bob)

    summary = run_analysis(now=NOW)

    assert summary["failed"] == 1
    assert summary["analyzed"] == 2
    assert summary["created"] == 2
    assert _records(bob) == []
    assert len(_records(overdue["student"])) == 1
    assert len(_records(carol)) == 1
    assert get_open_count() == 2
