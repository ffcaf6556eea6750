from datetime import datetime

import pytest

from schoolstats.core.models import get_all_task_schedules
from schoolstats.core.task import (
    BaseTask,
    TaskType,
    compute_next_run,
    get_next_run_from_db,
    record_task_error,
    update_after_run,
    upsert_task_schedule,
)

# A Wednesday
LAST_RUN = datetime(2024, 3, 13, 12, 30)


class _Task(BaseTask):
    task_key = "sample"
    default_schedule = (TaskType.DAILY, {"time": "06:00"})

    def run(self, config, result_queue, **kwargs):
        result_queue.put((self.task_key, None))


def test_hourly_runs_at_top_of_next_hour():
    assert compute_next_run(TaskType.HOURLY, {}, LAST_RUN) == datetime(2024, 3, 13, 13, 0)


def test_daily_rolls_over_when_time_has_passed():
    assert compute_next_run(TaskType.DAILY, {"time": "06:00"}, LAST_RUN) == datetime(2024, 3, 14, 6, 0)
    assert compute_next_run(TaskType.DAILY, {"time": "18:15"}, LAST_RUN) == datetime(2024, 3, 13, 18, 15)


def test_weekly_picks_next_matching_weekday():
    assert compute_next_run(TaskType.WEEKLY, {"weekday": "sunday", "time": "18:00"}, LAST_RUN) == datetime(2024, 3, 17, 18, 0)
    sunday_evening = datetime(2024, 3, 17, 18, 0)
    assert compute_next_run(TaskType.WEEKLY, {"weekday": "sunday", "time": "18:00"}, sunday_evening) == datetime(2024, 3, 24, 18, 0)


def test_interval_and_monthly():
    assert compute_next_run(TaskType.INTERVAL_SECONDS, {"interval_seconds": 60}, LAST_RUN) == datetime(2024, 3, 13, 12, 31)
    assert compute_next_run(TaskType.MONTHLY, {"day": 1, "time": "00:00"}, LAST_RUN) == datetime(2024, 4, 1, 0, 0)
    assert compute_next_run(TaskType.MONTHLY, {"day": 1}, datetime(2024, 12, 5)) == datetime(2025, 1, 1, 0, 0)


def test_monthly_day_past_month_end_runs_on_last_day():
    day_31 = {"day": 31, "time": "02:00"}
    assert compute_next_run(TaskType.MONTHLY, day_31, datetime(2024, 2, 10)) == datetime(2024, 2, 29, 2, 0)
    assert compute_next_run(TaskType.MONTHLY, day_31, datetime(2024, 2, 29, 3, 0)) == datetime(2024, 3, 31, 2, 0)
    assert compute_next_run(TaskType.MONTHLY, day_31, datetime(2024, 3, 31, 3, 0)) == datetime(2024, 4, 30, 2, 0)
    assert compute_next_run(TaskType.MONTHLY, {"day": 30}, datetime(2023, 1, 30, 1, 0)) == datetime(2023, 2, 28, 0, 0)


@pytest.mark.parametrize("config,expected", [
    ({}, (TaskType.DAILY, {"time": "06:00"})),
    ({"interval_seconds": "30"}, (TaskType.INTERVAL_SECONDS, {"interval_seconds": 30})),
    ({"schedule": "hourly"}, (TaskType.HOURLY, {})),
    ({"schedule_time": "7:5"}, (TaskType.DAILY, {"time": "07:05"})),
    ({"weekday": "monday", "schedule_time": "09:00"}, (TaskType.WEEKLY, {"weekday": "monday", "time": "09:00"})),
    ({"day_of_month": "31", "schedule_time": "02:30"}, (TaskType.MONTHLY, {"day": 31, "time": "02:30"})),
])
def test_schedule_from_config(config, expected):
    task = _Task(config)
    assert (task.schedule_type, task.schedule_config) == expected


def test_schedule_row_lifecycle(db):
    task = _Task({"enable": True})
    task.ensure_scheduled()
    assert get_next_run_from_db("sample") is None

    update_after_run("sample")
    next_run = get_next_run_from_db("sample")
    assert next_run is not None
    assert (next_run.hour, next_run.minute) == (6, 0)

    record_task_error("sample", "boom")
    row = get_all_task_schedules()[0]
    assert row["last_error"] == "boom"
    assert row["next_run_at"] is not None

    update_after_run("sample")
    assert get_all_task_schedules()[0]["last_error"] is None


def test_changed_schedule_recomputes_next_run(db):
    upsert_task_schedule("sample", TaskType.HOURLY, {}, next_run_at=datetime(2030, 1, 1))
    upsert_task_schedule("sample", TaskType.DAILY, {"time": "06:00"})
    next_run = get_next_run_from_db("sample")
    assert next_run != datetime(2030, 1, 1)
    assert (next_run.hour, next_run.minute) == (6, 0)
