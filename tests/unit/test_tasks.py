"""Tests for the Celery task wiring."""

from arena.api.routes.admin import TASK_MAP
from arena.tasks import celery_app
from arena.tasks.jobs import _records_processed


class TestBeatSchedule:
    """The beat schedule mirrors the in-process scheduler."""

    def test_periodic_jobs_registered(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["scan-contests"]["schedule"] == 60.0
        assert schedule["record-portfolio-snapshots"]["schedule"] == 300.0
        assert schedule["record-leaderboard-snapshots"]["schedule"] == 600.0

    def test_manual_triggers_match_beat_tasks(self):
        """Every manually triggerable task is a scheduled task."""
        scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}

        assert set(TASK_MAP.values()) == scheduled

    def test_tasks_are_registered(self):
        import arena.tasks.lifecycle  # noqa: F401
        import arena.tasks.snapshots  # noqa: F401

        for task_name in TASK_MAP.values():
            assert task_name in celery_app.tasks


class TestRecordsProcessed:
    def test_scan_counts_contests(self):
        assert _records_processed({"contests_checked": 4, "started": 1}) == 4

    def test_snapshot_counts_rows(self):
        assert _records_processed({"contests": 2, "snapshots_stored": 17}) == 17
        assert _records_processed({"contests": 2, "rows_stored": 9}) == 9

    def test_empty_stats(self):
        assert _records_processed({}) == 0
