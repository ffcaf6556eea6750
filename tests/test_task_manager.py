import threading
from datetime import datetime, timedelta, timezone

import pytest

from schoolstats.core.models import get_all_task_schedules
from schoolstats.core.task import TaskType, upsert_task_schedule
from schoolstats.core.task_manager import TaskManager


def _future():
    return datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)


@pytest.fixture
def manager(db):
    manager = TaskManager()
    manager.start()
    yield manager
    manager.stop()


def test_overlapping_run_is_skipped(manager):
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow(config, result_queue, **kwargs):
        calls.append(1)
        started.set()
        release.wait(5)

    manager.register_task("slow", slow)
    worker = threading.Thread(target=manager.run_task_now, args=("slow", {"enable": True}))
    worker.start()
    assert started.wait(5)

    assert manager.run_task_now("slow", {"enable": True}) is False
    release.set()
    worker.join(5)

    assert calls == [1]
    assert manager.run_task_now("slow", {"enable": True}) is True
    assert calls == [1, 1]


def test_failure_is_recorded_and_does_not_raise(manager):
    upsert_task_schedule("broken", TaskType.HOURLY, {})

    def broken(config, result_queue, **kwargs):
        raise RuntimeError("database unavailable")

    manager.register_task("broken", broken)
    assert manager.run_task_now("broken", {}) is True

    row = get_all_task_schedules()[0]
    assert row["last_error"] == "database unavailable"
    assert row["next_run_at"] is not None


def test_unknown_task_cannot_run(manager):
    assert manager.run_task_now("missing", {}) is False
    assert manager.stop_task("missing") is False
    assert manager.restart_task("missing") is False


def test_health_stop_and_restart(manager):
    for key in ("a", "b"):
        upsert_task_schedule(key, TaskType.HOURLY, {}, next_run_at=_future())
        manager.register_task(key, lambda config, result_queue, **kwargs: None)
        manager.schedule_registered_task(key, {"enable": True})

    health = manager.health()
    assert health["status"] == "healthy"
    assert health["total_tasks"] == 2
    assert health["active_tasks"] == 2

    assert manager.stop_task("a") is True
    health = manager.health()
    assert health["status"] == "degraded"
    assert health["active_tasks"] == 1
    assert {t["task_key"]: t["enabled"] for t in health["tasks"]} == {"a": False, "b": True}

    assert manager.restart_task("a") is True
    health = manager.health()
    assert health["status"] == "healthy"
    assert {t["task_key"]: t["enabled"] for t in health["tasks"]} == {"a": True, "b": True}
    assert {t["name"] for t in manager.get_active_timers()} == {"a", "b"}


def test_no_tasks_is_degraded(manager):
    assert manager.health()["status"] == "degraded"
