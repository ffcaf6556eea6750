from .task import StudentsNeedingHelpTask


def register_tasks(plugin_manager):
    """Register the at-risk classifier"""
    plugin_manager.register_task(StudentsNeedingHelpTask)
