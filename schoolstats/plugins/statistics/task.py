"""
Background task: full statistics recompute and retention, persist next_run in DB.
"""
from typing import Any, Dict, Optional

from schoolstats.core.task import BaseTask, TaskType, update_after_run
from schoolstats.plugins.statistics.service import run_full_sweep


class StatisticsTask(BaseTask):
    """Recompute every aggregate bottom-up, record metrics, drop old rows."""

    task_key = "statistics"
    default_schedule = (TaskType.HOURLY, {})

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        self.logger.info("Starting statistics update")
        summary = run_full_sweep(
            metrics_retention_days=int(config.get("metrics_retention_days", 90)),
            school_stats_retention_days=int(config.get("school_stats_retention_days", 365)),
        )
        self.logger.info(
            f"Statistics updated: {summary['classes']['updated']} classes, {summary['teachers']['updated']} teachers, "
            f"{summary['metrics_deleted']} old metrics and {summary['school_stats_deleted']} old school rows deleted"
        )
        update_after_run(self.task_key)
        result_queue.put((self.task_key, summary))
