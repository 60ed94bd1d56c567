"""Contest lifecycle scan task.

Starts, cancels (abandoned) and completes contests whose start or end
time has passed. Safe to run alongside the in-process scheduler: every
transition re-checks the contest status before writing.
"""

from arena.tasks import celery_app
from arena.tasks.jobs import run_job


@celery_app.task(bind=True, soft_time_limit=50, time_limit=60)
def scan_contests(self):
    """
    Scheduled: Every 60 seconds
    Timeout: 50 seconds

    Process:
    1. Load every upcoming and active contest
    2. Upcoming past start time:
       a. fewer than 2 entries -> refund fees, mark cancelled
       b. otherwise -> mark active
    3. Active past end time:
       a. value every entry at current prices
       b. rank by ROI and persist results
       c. mark completed (stays active if any price is missing)
    4. Log job run
    """
    return run_job(self, "scan_contests", lambda scheduler: scheduler.scan_contests())
