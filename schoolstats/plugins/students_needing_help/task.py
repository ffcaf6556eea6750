"""
Background task: re-classify students needing help, persist next_run in DB.
"""
from typing import Any, Dict, Optional

from schoolstats.core.task import BaseTask, TaskType, update_after_run
from schoolstats.plugins.students_needing_help.classifier import thresholds_from_config
from schoolstats.plugins.students_needing_help.service import run_analysis


class StudentsNeedingHelpTask(BaseTask):
    """Run the at-risk classifier over every student and merge the results."""

    task_key = "students-needing-help"
    default_schedule = (TaskType.HOURLY, {})

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        summary = run_analysis(thresholds=thresholds_from_config(config))
        self.logger.info(
            f"Students needing help: analyzed {summary['analyzed']}, new {summary['created']}, "
            f"updated {summary['updated']}, resolved {summary['resolved']}, failed {summary['failed']}"
        )
        update_after_run(self.task_key)
        result_queue.put((self.task_key, summary))
