"""API routers for the trial risk engine."""

from . import domain_data, notifications, tasks, thresholds

__all__ = ["domain_data", "notifications", "tasks", "thresholds"]
