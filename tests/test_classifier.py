from datetime import timedelta

from schoolstats.plugins.statistics.calculator import AssignmentRow, ProgressRow
from schoolstats.plugins.students_needing_help.classifier import (
    REASON_LOW_COMPLETION,
    REASON_LOW_SCORE,
    REASON_OVERDUE,
    HelpThresholds,
    Severity,
    analyze_student,
    days_between,
    severity_for_days,
    thresholds_from_config,
)
from tests.conftest import NOW


def _answers(assignment_id, questions, correct, at):
    return [
        ProgressRow(1, assignment_id, assignment_id * 10 + q, True, q < correct, at, at)
        for q in range(questions)
    ]


def test_overdue_incomplete_work_flags_student_from_due_date():
    due = NOW - timedelta(days=10)
    assignments = [
        AssignmentRow(1, 5, due),
        AssignmentRow(2, 5, NOW + timedelta(days=3)),
        AssignmentRow(3, 5, NOW + timedelta(days=3)),
        AssignmentRow(4, 5, None),
    ]
    answered_at = NOW - timedelta(days=2)
    progress = _answers(2, 5, 2, answered_at) + _answers(3, 5, 3, answered_at) + _answers(4, 5, 4, answered_at)

    analysis = analyze_student(assignments, progress, NOW)

    assert analysis.needs_help
    assert analysis.reasons == [REASON_OVERDUE]
    assert analysis.completion_rate == 75.0
    assert analysis.average_score == 60.0
    assert analysis.overdue_assignments == 1
    assert analysis.needs_help_since == due
    assert analysis.days_needing_help == 10
    assert analysis.severity == Severity.WARNING


def test_low_score_moves_onset_to_earliest_wrong_answer():
    due = NOW - timedelta(days=3)
    first_wrong = NOW - timedelta(days=20)
    assignments = [AssignmentRow(1, 4, due), AssignmentRow(2, 4, None)]
    progress = [
        ProgressRow(1, 2, 20, True, False, first_wrong, first_wrong),
        ProgressRow(1, 2, 21, True, False, NOW - timedelta(days=1), NOW - timedelta(days=1)),
        ProgressRow(1, 2, 22, True, True, NOW - timedelta(days=1), NOW - timedelta(days=1)),
    ]

    analysis = analyze_student(assignments, progress, NOW)

    assert analysis.reasons == [REASON_OVERDUE, REASON_LOW_SCORE]
    assert analysis.needs_help_since == first_wrong
    assert analysis.days_needing_help == 20
    assert analysis.severity == Severity.CRITICAL


def test_low_score_needs_minimum_answers():
    assignments = [AssignmentRow(1, 4, None)]
    progress = [ProgressRow(1, 1, 10, True, False, NOW, NOW), ProgressRow(1, 1, 11, True, False, NOW, NOW)]

    analysis = analyze_student(assignments, progress, NOW)

    assert not analysis.needs_help
    assert analysis.needs_help_since is None
    assert analysis.days_needing_help == 0


def test_low_overall_completion_with_enough_assignments():
    assignments = [AssignmentRow(i, 1, None) for i in range(1, 5)]
    progress = [ProgressRow(1, 1, 10, True, True, NOW, NOW)]

    analysis = analyze_student(assignments, progress, NOW)

    assert analysis.reasons == [REASON_LOW_COMPLETION]
    assert analysis.completion_rate == 25.0
    assert analysis.days_needing_help == 1
    assert analysis.severity == Severity.RECENT


def test_student_without_assignments_is_not_flagged():
    analysis = analyze_student([], [], NOW)
    assert not analysis.needs_help
    assert analysis.reasons == []


def test_severity_boundaries():
    assert severity_for_days(1) == Severity.RECENT
    assert severity_for_days(7) == Severity.RECENT
    assert severity_for_days(8) == Severity.WARNING
    assert severity_for_days(14) == Severity.WARNING
    assert severity_for_days(15) == Severity.CRITICAL


def test_days_between_rounds_up_and_is_at_least_one():
    assert days_between(NOW, NOW) == 1
    assert days_between(NOW - timedelta(days=2, hours=1), NOW) == 3


def test_thresholds_from_config_keeps_defaults_and_types():
    thresholds = thresholds_from_config({"low_score_threshold": "40", "min_answers": 5})
    assert thresholds.low_score_threshold == 40.0
    assert thresholds.min_answers == 5
    assert thresholds.overdue_completion_threshold == HelpThresholds().overdue_completion_threshold
