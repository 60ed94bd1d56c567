"""Snapshot capture tasks.

Append portfolio values and leaderboard standings for active contests.
"""

from arena.tasks import celery_app
from arena.tasks.jobs import run_job


@celery_app.task(bind=True, soft_time_limit=240, time_limit=280)
def record_portfolio_snapshots(self):
    """
    Scheduled: Every 5 minutes

    Appends one portfolio_performance row per entry of every active contest.
    """
    return run_job(
        self,
        "record_portfolio_snapshots",
        lambda scheduler: scheduler.record_portfolio_snapshots(),
    )


@celery_app.task(bind=True, soft_time_limit=540, time_limit=580)
def record_leaderboard_snapshots(self):
    """
    Scheduled: Every 10 minutes

    Appends one ranked leaderboard_history batch per active contest.
    """
    return run_job(
        self,
        "record_leaderboard_snapshots",
        lambda scheduler: scheduler.record_leaderboard_snapshots(),
    )
