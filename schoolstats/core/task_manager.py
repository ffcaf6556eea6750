"""
Single place for scheduling: in-memory timers and DB-backed registered tasks.
"""
import logging
import threading
from datetime import datetime, timezone
from queue import Queue
from threading import Timer
from typing import Any, Callable, Dict, List, Optional

from schoolstats.core.models import get_all_task_schedules, set_task_enabled
from schoolstats.core.task import get_next_run_from_db, record_task_error


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Timer] = {}
        self.result_queue = Queue()
        self.logger = logging.getLogger("TaskManager")
        self._registered_tasks: Dict[str, Callable[..., None]] = {}
        self._registered_config: Dict[str, tuple] = {}  # task_key -> (config, config_data)
        self._locks: Dict[str, threading.Lock] = {}
        self._stopped: set = set()
        self._timers_lock = threading.Lock()
        self._running = False

    def start(self) -> None:
        self._running = True
        self.logger.info("Task manager started")

    @property
    def running(self) -> bool:
        return self._running

    def schedule_task(self, name: str, callback: Callable, delay: int, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds."""
        try:
            self.logger.info(f"Scheduling task {name} with delay {delay} seconds")
            with self._timers_lock:
                if name in self.tasks:
                    self.logger.debug(f"Cancelling existing timer {name}")
                    self.tasks[name].cancel()

                scheduled_time = datetime.now(timezone.utc).timestamp() + delay
                timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
                timer.daemon = True
                timer.scheduled_time = scheduled_time

                self.tasks[name] = timer
                timer.start()
            self.logger.info(
                f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time, tz=timezone.utc)}"
            )
        except Exception as e:
            self.logger.error(f"Error scheduling task {name}: {e}")

    def _run_task(self, name: str, callback: Callable, delay: int, one_time: bool) -> None:
        """Run the task and reschedule if needed."""
        try:
            callback()
            if not one_time and self._running and name not in self._stopped:
                self.schedule_task(name, callback, delay, one_time)
        except Exception as e:
            self.logger.error(f"Error running task {name}: {e}")

    def register_task(self, task_key: str, runnable: Callable[..., None]) -> None:
        """Register a runnable for a task. runnable(config, result_queue, **kwargs) does the work and updates next_run in DB."""
        self._registered_tasks[task_key] = runnable
        self._locks.setdefault(task_key, threading.Lock())
        self.logger.debug(f"Registered task: {task_key}")

    def is_registered(self, task_key: str) -> bool:
        return task_key in self._registered_tasks

    def schedule_registered_task(
        self,
        task_key: str,
        config: Dict[str, Any],
        config_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Schedule a registered task: run at next_run from DB (or immediately if past due).
        After running, the runnable updates next_run in DB; we reschedule again for the new next_run.
        """
        if task_key not in self._registered_tasks:
            self.logger.warning(f"No task registered: {task_key}")
            return
        self._registered_config[task_key] = (config, config_data)
        self._stopped.discard(task_key)
        next_run = get_next_run_from_db(task_key)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        # next_run_at null (new row) means run immediately
        if next_run is None:
            delay = 0
        else:
            delta = (next_run - now).total_seconds()
            delay = max(0, int(delta))
        callback = lambda: self._run_registered_and_reschedule(task_key)
        self.schedule_task(task_key, callback, delay, one_time=True)

    def _invoke(self, task_key: str) -> bool:
        """Run the registered runnable under its single-flight lock. Returns False when skipped."""
        runnable = self._registered_tasks.get(task_key)
        config, config_data = self._registered_config.get(task_key, (None, None))
        if runnable is None or config is None:
            return False
        lock = self._locks.setdefault(task_key, threading.Lock())
        if not lock.acquire(blocking=False):
            self.logger.warning(f"Task {task_key} is still running; skipping this tick")
            return False
        try:
            if config_data is not None:
                runnable(config, self.result_queue, config_data=config_data)
            else:
                runnable(config, self.result_queue)
        except Exception as e:
            self.logger.exception(f"Registered task {task_key} failed: {e}")
            try:
                record_task_error(task_key, str(e))
            except Exception:
                self.logger.exception(f"Could not record error for {task_key}")
        finally:
            lock.release()
        return True

    def _run_registered_and_reschedule(self, task_key: str) -> None:
        """Run the registered runnable then reschedule for next_run from DB."""
        if task_key in self._stopped:
            return
        self._invoke(task_key)
        if not self._running or task_key in self._stopped:
            return
        config, config_data = self._registered_config.get(task_key, (None, None))
        if config is not None:
            self.schedule_registered_task(task_key, config, config_data)

    def run_task_now(
        self,
        task_key: str,
        config: Optional[Dict[str, Any]] = None,
        config_data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Run a registered task once immediately. Returns False if unknown or already running."""
        if task_key not in self._registered_tasks:
            self.logger.warning(f"No task registered: {task_key}")
            return False
        if config is not None:
            self._registered_config[task_key] = (config, config_data)
        return self._invoke(task_key)

    def stop_task(self, task_key: str) -> bool:
        """Cancel the timer of one task and mark it disabled in DB."""
        if task_key not in self._registered_tasks:
            return False
        self._stopped.add(task_key)
        with self._timers_lock:
            timer = self.tasks.pop(task_key, None)
        if timer is not None:
            timer.cancel()
        set_task_enabled(task_key, False)
        self.logger.info(f"Stopped task {task_key}")
        return True

    def restart_task(self, task_key: str) -> bool:
        """Stop then reschedule a task with its last known config."""
        if task_key not in self._registered_tasks:
            return False
        config, config_data = self._registered_config.get(task_key, (None, None))
        self.stop_task(task_key)
        set_task_enabled(task_key, True)
        self.schedule_registered_task(task_key, config or {}, config_data)
        self.logger.info(f"Restarted task {task_key}")
        return True

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        with self._timers_lock:
            timers = list(self.tasks.items())
        for name, timer in timers:
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def get_task_status(self) -> List[Dict[str, Any]]:
        """One entry per registered task: whether it is scheduled, running now, and its DB schedule."""
        schedules = {row["task_key"]: row for row in get_all_task_schedules()}
        status = []
        for task_key in sorted(self._registered_tasks):
            row = schedules.get(task_key, {})
            lock = self._locks.get(task_key)
            status.append({
                "task_key": task_key,
                "is_active": task_key in self.tasks and task_key not in self._stopped,
                "is_running": bool(lock and lock.locked()),
                "enabled": row.get("enabled", True),
                "schedule_type": row.get("schedule_type"),
                "next_run_at": row.get("next_run_at"),
                "last_run_at": row.get("last_run_at"),
                "last_error": row.get("last_error"),
            })
        return status

    def health(self) -> Dict[str, Any]:
        """healthy when every registered task has an active timer, else degraded."""
        tasks = self.get_task_status()
        active = sum(1 for t in tasks if t["is_active"])
        return {
            "status": "healthy" if tasks and active == len(tasks) else "degraded",
            "total_tasks": len(tasks),
            "active_tasks": active,
            "tasks": tasks,
        }

    def stop(self) -> None:
        """Stop all scheduled tasks."""
        self._running = False
        with self._timers_lock:
            for task in self.tasks.values():
                task.cancel()
            self.tasks.clear()
        self.logger.info("Task manager stopped")
