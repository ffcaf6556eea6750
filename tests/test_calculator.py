from datetime import timedelta
from types import SimpleNamespace

from schoolstats.plugins.statistics.calculator import (
    AssignmentRow,
    ProgressRow,
    assignment_aggregate,
    class_aggregate,
    is_assignment_complete,
    mean,
    rate,
    school_aggregate,
    student_aggregate,
)
from tests.conftest import NOW


def _row(student, assignment, question, correct=True, complete=True, at=NOW):
    return ProgressRow(student, assignment, question, complete, correct, at, at)


def test_rate_and_mean_handle_empty_input():
    assert rate(1, 0) == 0.0
    assert rate(2, 3) == 66.67
    assert mean([]) == 0.0
    assert mean([50, 75, None]) == 62.5


def test_assignment_without_questions_is_never_complete():
    assert not is_assignment_complete(set(), 0)
    assert not is_assignment_complete({1}, 2)
    assert is_assignment_complete({1, 2}, 2)


def test_assignment_aggregate_counts_students_in_scope_only():
    progress = [
        _row(1, 10, 100, correct=True),
        _row(1, 10, 101, correct=False),
        _row(2, 10, 100, correct=True),
        # student 9 is not in scope
        _row(9, 10, 100),
        _row(9, 10, 101),
    ]
    stats = assignment_aggregate(2, [1, 2, 3], progress)

    assert stats["total_students"] == 3
    assert stats["completed_students"] == 1
    assert stats["in_progress_students"] == 1
    assert stats["not_started_students"] == 1
    assert stats["completion_rate"] == 33.33
    assert stats["average_score"] == 50.0
    assert stats["total_answers"] == 3
    assert stats["total_correct_answers"] == 2
    assert stats["accuracy_rate"] == 66.67


def test_incomplete_attempts_are_not_answers():
    progress = [_row(1, 10, 100), _row(1, 10, 101, complete=False)]
    stats = assignment_aggregate(2, [1], progress)
    assert stats["completed_students"] == 0
    assert stats["in_progress_students"] == 1
    assert stats["total_answers"] == 1


def test_student_aggregate_scores_against_question_count():
    assignments = [AssignmentRow(10, 4), AssignmentRow(11, 2), AssignmentRow(12, 3)]
    progress = [
        _row(1, 10, 100, True, at=NOW - timedelta(days=2)),
        _row(1, 10, 101, True),
        _row(1, 10, 102, False),
        _row(1, 10, 103, False),
        _row(1, 11, 110, True),
        # not visible to the student
        _row(1, 99, 990, True, at=NOW + timedelta(days=1)),
    ]
    stats = student_aggregate(assignments, progress)

    assert stats["total_assignments"] == 3
    assert stats["completed_assignments"] == 1
    assert stats["in_progress_assignments"] == 1
    assert stats["not_started_assignments"] == 1
    assert stats["average_score"] == 50.0
    assert stats["total_questions"] == 9
    assert stats["total_answers"] == 5
    assert stats["total_correct_answers"] == 3
    assert stats["accuracy_rate"] == 60.0
    assert stats["completion_rate"] == 33.33
    assert stats["last_activity_date"] == NOW


def test_student_without_assignments_has_zero_rates():
    stats = student_aggregate([], [])
    assert stats["total_assignments"] == 0
    assert stats["completion_rate"] == 0.0
    assert stats["last_activity_date"] is None


def _student_stats(completion, accuracy, score=0.0, last_activity=None, questions=0, answers=0, correct=0):
    return SimpleNamespace(
        completion_rate=completion,
        accuracy_rate=accuracy,
        average_score=score,
        last_activity_date=last_activity,
        total_questions=questions,
        total_answers=answers,
        total_correct_answers=correct,
    )


def test_class_aggregate_rolls_up_students():
    students = [
        _student_stats(100.0, 80.0, 80.0, NOW - timedelta(days=1), 4, 4, 3),
        _student_stats(20.0, 90.0, 40.0, NOW - timedelta(days=10), 4, 1, 1),
    ]
    stats = class_aggregate(3, students, 5, 4, NOW)

    assert stats["total_students"] == 3
    assert stats["average_completion"] == 60.0
    assert stats["average_score"] == 60.0
    assert stats["accuracy_rate"] == 85.0
    assert stats["active_students"] == 1
    assert stats["students_needing_help"] == 1
    assert stats["last_activity_date"] == NOW - timedelta(days=1)


def test_school_aggregate_counts_fully_completed_assignments():
    assignment_stats = [
        SimpleNamespace(total_students=2, completed_students=2, in_progress_students=0, not_started_students=0,
                        completion_rate=100.0, average_score=75.0, total_questions=2, total_answers=4,
                        total_correct_answers=3),
        SimpleNamespace(total_students=0, completed_students=0, in_progress_students=0, not_started_students=0,
                        completion_rate=0.0, average_score=0.0, total_questions=1, total_answers=0,
                        total_correct_answers=0),
    ]
    students = [_student_stats(100.0, 75.0, last_activity=NOW - timedelta(hours=2))]
    row = school_aggregate({"total_users": 3}, assignment_stats, students, NOW)

    assert row["total_users"] == 3
    assert row["completed_assignments"] == 1
    assert row["completed_student_assignments"] == 2
    assert row["average_completion_rate"] == 50.0
    assert row["daily_active_students"] == 1
    assert row["students_needing_help"] == 0
