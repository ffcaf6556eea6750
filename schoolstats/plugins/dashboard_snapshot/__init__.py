from .task import DashboardSnapshotTask


def register_tasks(plugin_manager):
    """Register the dashboard snapshot archiver"""
    plugin_manager.register_task(DashboardSnapshotTask)
