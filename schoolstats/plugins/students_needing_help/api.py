"""
Per-plugin API for students needing help. Mounted at /api/students_needing_help/.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from schoolstats.api.schemas import Envelope, ok
from schoolstats.plugins.students_needing_help.service import (
    get_open_count,
    get_students_needing_help,
    update_help_record,
)


class StudentRef(BaseModel):
    id: int
    username: str
    email: Optional[str] = None


class ClassRef(BaseModel):
    id: int
    name: str


class TeacherRef(BaseModel):
    id: int
    username: str


class StudentNeedingHelpResponse(BaseModel):
    id: int
    student_id: int
    reasons: List[str] = []
    needs_help_since: datetime
    days_needing_help: int
    overdue_assignments: int = 0
    average_score: float = 0.0
    completion_rate: float = 0.0
    severity: str
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    teacher_notes: Optional[str] = None
    actions_taken: List[str] = []
    student: Optional[StudentRef] = None
    classes: List[ClassRef] = []
    teachers: List[TeacherRef] = []


class SeveritySummary(BaseModel):
    total: int = 0
    critical: int = 0
    warning: int = 0
    recent: int = 0


class StudentsNeedingHelpResponse(BaseModel):
    students: List[StudentNeedingHelpResponse]
    summary: SeveritySummary


class CountResponse(BaseModel):
    count: int


class HelpRecordUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    teacher_notes: Optional[str] = Field(default=None, alias="teacherNotes")
    actions_taken: Optional[List[str]] = Field(default=None, alias="actionsTaken")


def get_router(pipeline_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/students_needing_help."""
    router = APIRouter(tags=["Students Needing Help"])

    @router.get("/data", response_model=Envelope[StudentsNeedingHelpResponse])
    def get_data() -> Dict[str, Any]:
        """Open records ordered by days needing help, with a severity summary."""
        return ok(get_students_needing_help())

    @router.get("/count", response_model=Envelope[CountResponse])
    def get_count() -> Dict[str, Any]:
        return ok({"count": get_open_count()})

    @router.patch("/{help_id}", response_model=Envelope[StudentNeedingHelpResponse])
    def patch_record(help_id: int, body: HelpRecordUpdate) -> Dict[str, Any]:
        record = update_help_record(help_id, body.teacher_notes, body.actions_taken)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Record {help_id} not found")
        return ok(record)

    return router
