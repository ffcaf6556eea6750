"""Admin control surface for scheduled tasks; routes only, no background tasks."""
