"""
Per-plugin API for dashboard snapshots. Mounted at /api/dashboard_snapshot/.
Uses DashboardSnapshot ORM with Pydantic from_attributes.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

from schoolstats.api.schemas import Envelope, ok
from schoolstats.plugins.dashboard_snapshot.service import get_recent_snapshots


class DashboardSnapshotResponse(BaseModel):
    """Pydantic view of DashboardSnapshot for API; serializes from ORM."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    snapshot_type: str
    total_classes: int = 0
    total_teachers: int = 0
    total_students: int = 0
    total_assignments: int = 0
    class_assignments: int = 0
    individual_assignments: int = 0
    average_completion_rate: int = 0
    average_success_rate: int = 0
    students_needing_attention: int = 0
    recent_activities: int = 0


def get_router(pipeline_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/dashboard_snapshot."""
    router = APIRouter(tags=["Dashboard Snapshot"])

    @router.get("/data", response_model=Envelope[List[DashboardSnapshotResponse]])
    def get_data(limit: int = Query(30, ge=1, le=500)) -> Dict[str, Any]:
        """Most recent snapshots, newest first."""
        return ok([DashboardSnapshotResponse.model_validate(s) for s in get_recent_snapshots(limit)])

    return router
