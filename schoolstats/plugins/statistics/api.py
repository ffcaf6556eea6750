"""
Per-plugin API for statistics. Mounted at /api/statistics/.
Stats ORM rows are serialized with Pydantic from_attributes inside the response envelope.
"""
from datetime import date as day_date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from schoolstats.api.schemas import Envelope, ok
from schoolstats.plugins.statistics import service
from schoolstats.plugins.statistics.task import StatisticsTask


class AssignmentStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignment_id: int
    total_students: int = 0
    completed_students: int = 0
    in_progress_students: int = 0
    not_started_students: int = 0
    completion_rate: float = 0.0
    average_score: float = 0.0
    total_questions: int = 0
    total_answers: int = 0
    total_correct_answers: int = 0
    accuracy_rate: float = 0.0
    last_updated: Optional[datetime] = None


class StudentStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: int
    total_assignments: int = 0
    completed_assignments: int = 0
    in_progress_assignments: int = 0
    not_started_assignments: int = 0
    average_score: float = 0.0
    total_questions: int = 0
    total_answers: int = 0
    total_correct_answers: int = 0
    accuracy_rate: float = 0.0
    completion_rate: float = 0.0
    last_activity_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class ClassStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    class_id: int
    total_students: int = 0
    total_assignments: int = 0
    active_assignments: int = 0
    average_completion: float = 0.0
    average_score: float = 0.0
    total_questions: int = 0
    total_answers: int = 0
    total_correct_answers: int = 0
    accuracy_rate: float = 0.0
    active_students: int = 0
    students_needing_help: int = 0
    last_activity_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class TeacherStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    teacher_id: int
    total_assignments: int = 0
    total_classes: int = 0
    total_students: int = 0
    average_class_completion: float = 0.0
    average_class_score: float = 0.0
    total_questions: int = 0
    active_assignments: int = 0
    scheduled_assignments: int = 0
    last_updated: Optional[datetime] = None


class SchoolStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: day_date
    total_users: int = 0
    total_teachers: int = 0
    total_students: int = 0
    total_classes: int = 0
    total_assignments: int = 0
    active_assignments: int = 0
    scheduled_assignments: int = 0
    completed_assignments: int = 0
    completed_student_assignments: int = 0
    in_progress_student_assignments: int = 0
    not_started_student_assignments: int = 0
    average_completion_rate: float = 0.0
    average_score: float = 0.0
    total_questions: int = 0
    total_answers: int = 0
    total_correct_answers: int = 0
    daily_active_students: int = 0
    students_needing_help: int = 0
    last_updated: Optional[datetime] = None


class ProgressRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: int = Field(alias="studentId")
    assignment_id: int = Field(alias="assignmentId")
    question_id: int = Field(alias="questionId")
    is_correct: bool = Field(alias="isCorrect")


class ProgressResponse(BaseModel):
    progress_id: int
    assignment: AssignmentStatsResponse
    student: StudentStatsResponse


def _found(row: Any, what: str, key: Any) -> Any:
    if row is None:
        raise HTTPException(status_code=404, detail=f"No statistics for {what} {key}")
    return row


def get_router(pipeline_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/statistics."""
    router = APIRouter(tags=["Statistics"])

    @router.get("/school", response_model=Envelope[SchoolStatsResponse])
    def get_school() -> Dict[str, Any]:
        """Today's school row, or the most recent one."""
        row = _found(service.get_school_stats(), "school", "")
        return ok(SchoolStatsResponse.model_validate(row))

    @router.get("/school/trend", response_model=Envelope[List[SchoolStatsResponse]])
    def get_school_trend(days: int = Query(30, ge=1, le=365)) -> Dict[str, Any]:
        rows = service.get_school_stats_trend(days)
        return ok([SchoolStatsResponse.model_validate(r) for r in rows])

    @router.get("/assignments/{assignment_id}", response_model=Envelope[AssignmentStatsResponse])
    def get_assignment(assignment_id: int) -> Dict[str, Any]:
        row = _found(service.get_assignment_stats(assignment_id), "assignment", assignment_id)
        return ok(AssignmentStatsResponse.model_validate(row))

    @router.get("/students/{student_id}", response_model=Envelope[StudentStatsResponse])
    def get_student(student_id: int) -> Dict[str, Any]:
        row = _found(service.get_student_stats(student_id), "student", student_id)
        return ok(StudentStatsResponse.model_validate(row))

    @router.get("/classes/{class_id}", response_model=Envelope[ClassStatsResponse])
    def get_class(class_id: int) -> Dict[str, Any]:
        row = _found(service.get_class_stats(class_id), "class", class_id)
        return ok(ClassStatsResponse.model_validate(row))

    @router.get("/teachers/{teacher_id}", response_model=Envelope[TeacherStatsResponse])
    def get_teacher(teacher_id: int) -> Dict[str, Any]:
        row = _found(service.get_teacher_stats(teacher_id), "teacher", teacher_id)
        return ok(TeacherStatsResponse.model_validate(row))

    @router.post("/refresh", response_model=Envelope[Dict[str, Any]])
    def refresh() -> Dict[str, Any]:
        """Run the statistics sweep now (shares the scheduled task's single-flight lock)."""
        if not pipeline_app.run_task_now(StatisticsTask.task_key):
            raise HTTPException(status_code=409, detail="Statistics update already running")
        return ok({"message": "Statistics updated"})

    @router.post("/progress", response_model=Envelope[ProgressResponse])
    def post_progress(body: ProgressRequest) -> Dict[str, Any]:
        """Record one answer and refresh that assignment's and student's statistics."""
        try:
            result = service.record_progress(body.student_id, body.assignment_id, body.question_id, body.is_correct)
        except LookupError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return ok(ProgressResponse(
            progress_id=result["progress_id"],
            assignment=AssignmentStatsResponse.model_validate(result["assignment"]),
            student=StudentStatsResponse.model_validate(result["student"]),
        ))

    return router
