"""
Background task: archive a dashboard snapshot and prune old ones, persist next_run in DB.
"""
from typing import Any, Dict, Optional

from schoolstats.core.task import BaseTask, TaskType, update_after_run
from schoolstats.plugins.dashboard_snapshot.models import SnapshotType
from schoolstats.plugins.dashboard_snapshot.service import create_snapshot, delete_old_snapshots


class DashboardSnapshotTask(BaseTask):
    """Create one snapshot per run; keep retention_days of history."""

    task_key = "dashboard-snapshot"
    default_schedule = (TaskType.DAILY, {"time": "06:00"})

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        snapshot = create_snapshot(config.get("snapshot_type", SnapshotType.DAILY))
        deleted = delete_old_snapshots(retention_days=int(config.get("retention_days", 30)))
        if deleted:
            self.logger.info(f"Deleted {deleted} old dashboard snapshot(s)")
        update_after_run(self.task_key)
        result_queue.put((self.task_key, snapshot.id))
