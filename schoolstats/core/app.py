import logging
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from .config import Config
from .db import close_db, init_db
from .plugin_manager import PluginManager
from .task import BaseTask
from .task_manager import TaskManager


class PipelineApp:
    """Headless app: owns config, DB, the task manager and the optional API server thread."""

    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._log_handlers: List[logging.Handler] = []
        self._stop_event = threading.Event()

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._setup_logging()

        # Initialize database before managers so tables exist
        init_db(self.config.data)

        self.plugin_manager = PluginManager()
        self.plugin_manager.discover_plugins()
        self.task_manager = TaskManager()

        self.task_instances: Dict[str, BaseTask] = {}
        self.initialize_tasks()

    def _setup_logging(self) -> None:
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        # Replace the basic handler installed by main.py
        for handler in list(root_logger.handlers):
            if type(handler) in (logging.StreamHandler, logging.FileHandler):
                root_logger.removeHandler(handler)
        log_config = self.config.data.get("logging") or {}
        root_logger.setLevel(getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        if log_config.get("file"):
            file_handler = logging.FileHandler(log_config["file"])
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            self._log_handlers.append(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)
        self._log_handlers.append(console_handler)

        logging.info("School statistics pipeline starting...")

    def initialize_tasks(self) -> None:
        """Instantiate every discovered task with its config section and register it with the task manager."""
        for task_key in sorted(self.plugin_manager.tasks):
            try:
                task = self.plugin_manager.create_task(task_key, self.config.get_task_config(task_key))
                task.ensure_scheduled()
                self.task_instances[task_key] = task
                self.task_manager.register_task(task_key, task.run)
                self.logger.debug(f"Task {task_key} registered ({task.schedule_type} {task.schedule_config})")
            except Exception as e:
                self.logger.error(f"Error initializing task {task_key}: {e}")
                self.logger.exception(e)

    def schedule_tasks(self) -> None:
        for task_key, task in self.task_instances.items():
            if not task.enabled:
                self.logger.info(f"Task '{task_key}' disabled (enable: false)")
                continue
            self.task_manager.schedule_registered_task(task_key, task.config, self.config.data)

    def run_task_now(self, task_key: str) -> bool:
        """Run one task synchronously under its single-flight lock (admin API, manual refresh)."""
        task = self.task_instances.get(task_key)
        if task is None:
            return False
        return self.task_manager.run_task_now(task_key, task.config, self.config.data)

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Rebuild tasks whose config section changed and reschedule them"""
        self.logger.info("Handling config change")
        for task_key, old_task in list(self.task_instances.items()):
            try:
                task_config = self.config.get_task_config(task_key)
                if task_config == old_task.config:
                    continue
                task = self.plugin_manager.create_task(task_key, task_config)
                task.ensure_scheduled()
                self.task_instances[task_key] = task
                self.task_manager.register_task(task_key, task.run)
                if not self.task_manager.running:
                    continue
                if task.enabled:
                    self.task_manager.schedule_registered_task(task_key, task.config, new_config)
                else:
                    self.task_manager.stop_task(task_key)
            except Exception as e:
                self.logger.error(f"Error applying config change for {task_key}: {e}", exc_info=True)

    def start(self, start_api: bool = True) -> None:
        self.task_manager.start()
        self.schedule_tasks()
        if start_api:
            try:
                from schoolstats.api import run_api_server
                run_api_server(self)
            except Exception as e:
                self.logger.warning(f"API server not started: {e}")

    def _drain_result_queue(self) -> None:
        """Log background task results (called from the main thread)."""
        while not self.task_manager.result_queue.empty():
            task_key, result = self.task_manager.result_queue.get_nowait()
            self.logger.debug(f"Task result for {task_key}: {result}")

    def stop(self, *_args: Any) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        self.task_manager.stop()
        self.config.cleanup()
        close_db()
        root_logger = logging.getLogger()
        for handler in self._log_handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._log_handlers = []

    def run(self) -> None:
        signal.signal(signal.SIGINT, self.stop)
        signal.signal(signal.SIGTERM, self.stop)
        try:
            self.start()
            while not self._stop_event.wait(1.0):
                try:
                    self._drain_result_queue()
                except Exception as e:
                    logging.error(f"Error draining result queue: {e}")
        finally:
            self.logger.info("Shutting down")
            self.shutdown()
