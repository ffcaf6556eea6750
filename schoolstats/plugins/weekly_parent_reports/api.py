"""
Per-plugin API for the weekly parent report log. Mounted at /api/weekly_parent_reports/.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

from schoolstats.api.schemas import Envelope, ok
from schoolstats.plugins.weekly_parent_reports.service import get_recent_reports


class WeeklyParentReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    week_start: date
    week_end: date
    recipient: Optional[str] = None
    status: str
    summary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime


def get_router(pipeline_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/weekly_parent_reports."""
    router = APIRouter(tags=["Weekly Parent Reports"])

    @router.get("/data", response_model=Envelope[List[WeeklyParentReportResponse]])
    def get_data(limit: int = Query(50, ge=1, le=500)) -> Dict[str, Any]:
        return ok([WeeklyParentReportResponse.model_validate(r) for r in get_recent_reports(limit)])

    return router
