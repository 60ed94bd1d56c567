"""Contest services for StockArena."""

from arena.services.contests import ContestService
from arena.services.lifecycle import ContestLifecycle, ResultsSummary
from arena.services.prizes import PrizeDistributor
from arena.services.scheduler import LifecycleScheduler, ScheduledTimer
from arena.services.snapshots import SnapshotRecorder

__all__ = [
    "ContestLifecycle",
    "ContestService",
    "LifecycleScheduler",
    "PrizeDistributor",
    "ResultsSummary",
    "ScheduledTimer",
    "SnapshotRecorder",
]
