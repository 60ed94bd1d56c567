"""Celery tasks for StockArena.

This module configures Celery and registers all periodic tasks. The beat
schedule mirrors the in-process scheduler so deployments that run the API
with ``RUN_SCHEDULER=false`` keep contests moving from a worker instead.
"""

from celery import Celery

from arena.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "arena",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "arena.tasks.lifecycle",
        "arena.tasks.snapshots",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=600,  # 10 minute hard limit
    task_soft_time_limit=540,  # 9 minute soft limit
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Contest lifecycle scan - every minute
    "scan-contests": {
        "task": "arena.tasks.lifecycle.scan_contests",
        "schedule": settings.scan_interval_seconds,
        "options": {"expires": settings.scan_interval_seconds - 5},
    },
    # Portfolio performance snapshots - every 5 minutes
    "record-portfolio-snapshots": {
        "task": "arena.tasks.snapshots.record_portfolio_snapshots",
        "schedule": settings.portfolio_snapshot_interval_seconds,
        "options": {"expires": settings.portfolio_snapshot_interval_seconds - 20},
    },
    # Leaderboard snapshots - every 10 minutes
    "record-leaderboard-snapshots": {
        "task": "arena.tasks.snapshots.record_leaderboard_snapshots",
        "schedule": settings.leaderboard_snapshot_interval_seconds,
        "options": {"expires": settings.leaderboard_snapshot_interval_seconds - 20},
    },
}
