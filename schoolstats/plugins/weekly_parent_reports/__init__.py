from .task import WeeklyParentReportsTask


def register_tasks(plugin_manager):
    """Register the weekly parent report sender"""
    plugin_manager.register_task(WeeklyParentReportsTask)
