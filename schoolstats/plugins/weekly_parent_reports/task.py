"""
Background task: weekly parent progress emails, persist next_run in DB.
"""
from typing import Any, Dict, Optional

from schoolstats.core.task import BaseTask, TaskType, update_after_run
from schoolstats.plugins.weekly_parent_reports.service import send_weekly_reports


class WeeklyParentReportsTask(BaseTask):
    task_key = "weekly-parent-reports"
    default_schedule = (TaskType.WEEKLY, {"weekday": "sunday", "time": "18:00"})

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        result = send_weekly_reports(config.get("sendgrid_api_key"), config.get("sender_email"))
        if result is not None:
            self.logger.info(
                f"Weekly parent reports: {result['sent']} sent, {result['failed']} failed, {result['skipped']} skipped"
            )
        update_after_run(self.task_key)
        result_queue.put((self.task_key, result))
