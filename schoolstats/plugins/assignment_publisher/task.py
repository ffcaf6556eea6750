"""
Background task: publish scheduled assignments every minute, persist next_run in DB.
"""
from typing import Any, Dict, Optional

from schoolstats.core.task import BaseTask, TaskType, update_after_run
from schoolstats.plugins.assignment_publisher.service import publish_due_assignments


class PublishAssignmentsTask(BaseTask):
    """Activate assignments whose scheduled publish time has passed."""

    task_key = "publish-assignments"
    default_schedule = (TaskType.INTERVAL_SECONDS, {"interval_seconds": 60})

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        activated = publish_due_assignments()
        if activated:
            self.logger.info(f"Activated {len(activated)} scheduled assignment(s): {activated}")
        else:
            self.logger.debug("No assignments ready for activation")
        update_after_run(self.task_key)
        result_queue.put((self.task_key, activated))
