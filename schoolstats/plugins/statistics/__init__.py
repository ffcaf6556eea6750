from .task import StatisticsTask


def register_tasks(plugin_manager):
    """Register the statistics sweep"""
    plugin_manager.register_task(StatisticsTask)
