"""Pipeline plugins. Each package may expose register_tasks(plugin_manager) and an api.get_router(app)."""
