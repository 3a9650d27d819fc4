"""Concrete collaborators for the monitoring engine: HTTP, storage, notifications, connectivity."""
