import importlib
import pkgutil
from typing import Dict, Type
import logging

from .task import BaseTask


class PluginManager:
    def __init__(self):
        self.tasks: Dict[str, Type[BaseTask]] = {}
        self.logger = logging.getLogger(__name__)

    def discover_plugins(self, plugin_package: str = "schoolstats.plugins") -> None:
        """Discover and register all plugins in the specified package"""
        package = importlib.import_module(plugin_package)
        self.logger.info(f"Discovering plugins in package: {plugin_package}")

        for _, name, is_pkg in pkgutil.iter_modules(package.__path__):
            if is_pkg:
                try:
                    module = importlib.import_module(f"{plugin_package}.{name}")
                    self.logger.debug(f"Found plugin module: {name}")
                    if hasattr(module, "register_tasks"):
                        module.register_tasks(self)
                        self.logger.info(f"Registered tasks from plugin: {name}")
                except Exception as e:
                    self.logger.error(f"Error loading plugin {name}: {e}")
                    self.logger.exception(e)

    def register_task(self, task_class: Type[BaseTask]) -> None:
        """Register a task class under its task_key"""
        self.logger.debug(f"Registering task: {task_class.task_key}")
        self.tasks[task_class.task_key] = task_class

    def create_task(self, task_key: str, config: Dict) -> BaseTask:
        if task_key not in self.tasks:
            raise KeyError(f"Task '{task_key}' not found")
        return self.tasks[task_key](config)
