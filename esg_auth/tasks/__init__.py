"""Background maintenance tasks."""

from esg_auth.tasks.scheduler import MaintenanceScheduler, run_cleanup_now

__all__ = ["MaintenanceScheduler", "run_cleanup_now"]
