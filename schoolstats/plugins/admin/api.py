"""
Admin API for scheduled tasks. Mounted at /api/admin/.
GET  /scheduled-tasks?action=health|scheduled-assignments|recent-snapshots
POST /scheduled-tasks {action, taskKey?, snapshotType?}
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from schoolstats.api.schemas import Envelope, ok
from schoolstats.plugins.assignment_publisher.service import activate_missed_assignments, get_scheduled_assignments
from schoolstats.plugins.dashboard_snapshot.api import DashboardSnapshotResponse
from schoolstats.plugins.dashboard_snapshot.models import SnapshotType
from schoolstats.plugins.dashboard_snapshot.service import create_snapshot, get_recent_snapshots

logger = logging.getLogger(__name__)

TASK_ACTIONS = ("restart-task", "stop-task", "run-task")


class AdminActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    task_key: Optional[str] = Field(None, alias="taskKey")
    snapshot_type: Optional[str] = Field(None, alias="snapshotType")


def get_router(pipeline_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/admin."""
    router = APIRouter(tags=["Admin"])

    @router.get("/scheduled-tasks", response_model=Envelope[Any])
    def get_scheduled_tasks(
        action: str = Query("health"),
        limit: int = Query(30, ge=1, le=500),
    ) -> Dict[str, Any]:
        if action == "health":
            return ok(pipeline_app.task_manager.health())
        if action == "scheduled-assignments":
            return ok(get_scheduled_assignments())
        if action == "recent-snapshots":
            return ok([DashboardSnapshotResponse.model_validate(s) for s in get_recent_snapshots(limit)])
        raise HTTPException(status_code=400, detail=f"Invalid action: {action}")

    @router.post("/scheduled-tasks", response_model=Envelope[Any])
    def post_scheduled_tasks(body: AdminActionRequest) -> Dict[str, Any]:
        task_manager = pipeline_app.task_manager

        if body.action in TASK_ACTIONS:
            if not body.task_key:
                raise HTTPException(status_code=400, detail="taskKey is required")
            if not task_manager.is_registered(body.task_key):
                raise HTTPException(status_code=404, detail=f"Unknown task: {body.task_key}")
            logger.info(f"Admin action {body.action} on {body.task_key}")
            if body.action == "restart-task":
                task_manager.restart_task(body.task_key)
                return ok({"message": f"Task {body.task_key} restarted"})
            if body.action == "stop-task":
                task_manager.stop_task(body.task_key)
                return ok({"message": f"Task {body.task_key} stopped"})
            if not pipeline_app.run_task_now(body.task_key):
                raise HTTPException(status_code=409, detail=f"Task {body.task_key} is already running")
            return ok({"message": f"Task {body.task_key} executed"})

        if body.action == "activate-missed-assignments":
            return ok(activate_missed_assignments())

        if body.action == "create-snapshot":
            snapshot_type = body.snapshot_type or SnapshotType.DAILY
            if snapshot_type not in SnapshotType.ALL:
                raise HTTPException(status_code=400, detail=f"Invalid snapshot type: {snapshot_type}")
            snapshot = create_snapshot(snapshot_type)
            return ok(DashboardSnapshotResponse.model_validate(snapshot))

        raise HTTPException(status_code=400, detail=f"Invalid action: {body.action}")

    return router
