"""Scheduled jobs.

- Hourly sweep cancelling Pending subscriptions whose checkout was abandoned
"""

from paidroles.scheduler.cron import expire_pending_run, run_expire_pending

__all__ = ["expire_pending_run", "run_expire_pending"]
