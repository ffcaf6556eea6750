from .task import PublishAssignmentsTask


def register_tasks(plugin_manager):
    """Register the assignment publication sweep"""
    plugin_manager.register_task(PublishAssignmentsTask)
