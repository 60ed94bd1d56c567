"""Contest lifecycle scheduler.

Runs three periodic jobs on the event loop:

- contest scan (default every 60s): starts, cancels and completes contests
- portfolio snapshots (default every 5 minutes)
- leaderboard snapshots (default every 10 minutes)

On top of the scan it keeps one-shot timers for individual contest start
and end instants. Timers live in memory only and are advisory: they call
the same per-contest check as the scan, so a lost timer just means the
scan picks the contest up on its next pass, and a timer firing right
before the scan is harmless. ``start()`` re-registers timers for every
open contest so a restart does not lose the fast path.

Administrative overrides reuse the same transitions without the time
check, but still enforce each transition's status precondition.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

import structlog

from arena.config import Settings
from arena.models.domain import Contest, ContestStatus
from arena.services.exceptions import InvalidContestStateError
from arena.services.lifecycle import ContestLifecycle, ResultsSummary, utcnow
from arena.services.prizes import PrizeAward, PrizeDistributor, load_prize_split
from arena.services.snapshots import SnapshotRecorder

logger = structlog.get_logger(__name__)

TIMER_START = "start"
TIMER_END = "end"


@dataclass(frozen=True)
class ScheduledTimer:
    """A pending one-shot timer."""

    contest_id: uuid.UUID
    kind: str
    fire_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "contest_id": str(self.contest_id),
            "kind": self.kind,
            "fire_at": self.fire_at.isoformat(),
        }


class LifecycleScheduler:
    """Timer driven controller for contest lifecycles."""

    def __init__(
        self,
        ledger,
        price_oracle,
        clock: Callable[[], datetime] = utcnow,
        scan_interval: float = 60.0,
        portfolio_snapshot_interval: float = 300.0,
        leaderboard_snapshot_interval: float = 600.0,
        min_participants: int = 2,
        prize_split: Sequence[Decimal] | None = None,
    ):
        self.ledger = ledger
        self.clock = clock
        self.scan_interval = scan_interval
        self.portfolio_snapshot_interval = portfolio_snapshot_interval
        self.leaderboard_snapshot_interval = leaderboard_snapshot_interval

        self.lifecycle = ContestLifecycle(
            ledger, price_oracle, clock=clock, min_participants=min_participants
        )
        self.recorder = SnapshotRecorder(ledger, price_oracle, clock=clock)
        self.prizes = PrizeDistributor(ledger, split=prize_split)

        self._periodic_tasks: list[asyncio.Task] = []
        self._timers: dict[tuple[uuid.UUID, str], tuple[datetime, asyncio.Task]] = {}

    @classmethod
    def from_settings(cls, ledger, price_oracle, settings: Settings) -> "LifecycleScheduler":
        return cls(
            ledger,
            price_oracle,
            scan_interval=settings.scan_interval_seconds,
            portfolio_snapshot_interval=settings.portfolio_snapshot_interval_seconds,
            leaderboard_snapshot_interval=settings.leaderboard_snapshot_interval_seconds,
            min_participants=settings.min_participants,
            prize_split=load_prize_split(settings.load_defaults_config()),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._periodic_tasks)

    async def start(self) -> None:
        """Start the periodic jobs and re-register timers for open contests."""
        if self.running:
            logger.info("scheduler_already_running")
            return

        jobs = [
            ("contest_scan", self.scan_interval, self.scan_contests),
            ("portfolio_snapshots", self.portfolio_snapshot_interval, self.record_portfolio_snapshots),
            ("leaderboard_snapshots", self.leaderboard_snapshot_interval, self.record_leaderboard_snapshots),
        ]
        self._periodic_tasks = [
            asyncio.create_task(self._run_periodic(name, interval, job), name=f"scheduler-{name}")
            for name, interval, job in jobs
        ]
        logger.info(
            "scheduler_started",
            scan_interval=self.scan_interval,
            portfolio_snapshot_interval=self.portfolio_snapshot_interval,
            leaderboard_snapshot_interval=self.leaderboard_snapshot_interval,
        )

        try:
            await self.rehydrate_timers()
        except Exception as e:
            # The periodic scan still covers every contest
            logger.error("timer_rehydration_failed", error=str(e), exc_info=True)

    async def stop(self) -> None:
        """Cancel periodic jobs and pending timers, waiting for them to exit."""
        tasks = self._periodic_tasks + [task for _, task in self._timers.values()]
        self._periodic_tasks = []
        self._timers.clear()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler_stopped", tasks_cancelled=len(tasks))

    async def _run_periodic(
        self, name: str, interval: float, job: Callable[[], Awaitable[Any]]
    ) -> None:
        # First run happens immediately on start
        while True:
            try:
                await job()
            except Exception as e:
                logger.error("scheduler_job_failed", job=name, error=str(e), exc_info=True)
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Periodic jobs
    # ------------------------------------------------------------------

    async def scan_contests(self) -> dict[str, int]:
        return await self.lifecycle.scan()

    async def record_portfolio_snapshots(self) -> dict[str, Any]:
        return await self.recorder.record_portfolio_performance()

    async def record_leaderboard_snapshots(self) -> dict[str, Any]:
        return await self.recorder.record_leaderboards()

    # ------------------------------------------------------------------
    # One-shot timers
    # ------------------------------------------------------------------

    def schedule_contest_start(self, contest_id: uuid.UUID, start_time: datetime) -> bool:
        return self._schedule(contest_id, TIMER_START, start_time)

    def schedule_contest_end(self, contest_id: uuid.UUID, end_time: datetime) -> bool:
        return self._schedule(contest_id, TIMER_END, end_time)

    def schedule_contest(self, contest: Contest) -> int:
        """Register every timer still relevant for a contest's status."""
        scheduled = 0
        if contest.status == ContestStatus.UPCOMING.value:
            scheduled += self.schedule_contest_start(contest.id, contest.start_time)
        if contest.status in (ContestStatus.UPCOMING.value, ContestStatus.ACTIVE.value):
            scheduled += self.schedule_contest_end(contest.id, contest.end_time)
        return scheduled

    def cancel_scheduled_contest(self, contest_id: uuid.UUID) -> int:
        """Cancel both timers of a contest. Returns how many were pending."""
        cancelled = sum(
            self._cancel_timer((contest_id, kind)) for kind in (TIMER_START, TIMER_END)
        )
        logger.info("contest_timers_cancelled", contest_id=str(contest_id), cancelled=cancelled)
        return cancelled

    def get_scheduled_contests(self) -> list[ScheduledTimer]:
        timers = [
            ScheduledTimer(contest_id=contest_id, kind=kind, fire_at=fire_at)
            for (contest_id, kind), (fire_at, _) in self._timers.items()
        ]
        return sorted(timers, key=lambda t: t.fire_at)

    async def rehydrate_timers(self) -> int:
        contests = await self.ledger.list_contests_by_status(
            ContestStatus.UPCOMING, ContestStatus.ACTIVE
        )
        scheduled = sum(self.schedule_contest(contest) for contest in contests)
        logger.info("contest_timers_rehydrated", contests=len(contests), timers=scheduled)
        return scheduled

    def _schedule(self, contest_id: uuid.UUID, kind: str, fire_at: datetime) -> bool:
        delay = (fire_at - self.clock()).total_seconds()
        if delay <= 0:
            # Already due, the scan handles it
            return False

        key = (contest_id, kind)
        self._cancel_timer(key)
        task = asyncio.get_running_loop().create_task(
            self._fire_after(key, fire_at, delay), name=f"contest-{kind}-{contest_id}"
        )
        self._timers[key] = (fire_at, task)
        logger.info(
            "contest_timer_scheduled",
            contest_id=str(contest_id),
            kind=kind,
            fire_at=fire_at.isoformat(),
        )
        return True

    def _cancel_timer(self, key: tuple[uuid.UUID, str]) -> bool:
        pending = self._timers.pop(key, None)
        if pending is None:
            return False
        pending[1].cancel()
        return True

    async def _fire_after(
        self, key: tuple[uuid.UUID, str], fire_at: datetime, delay: float
    ) -> None:
        await asyncio.sleep(delay)

        pending = self._timers.get(key)
        if pending is not None and pending[1] is asyncio.current_task():
            del self._timers[key]

        contest_id, kind = key
        # Judge due-ness at the registered instant, so a contest whose times
        # moved later is left alone
        now = max(self.clock(), fire_at)
        try:
            status = await self.lifecycle.check_contest_by_id(contest_id, now=now)
            if status is ContestStatus.ACTIVE and kind == TIMER_START:
                contest = await self.lifecycle.get_contest(contest_id)
                self.schedule_contest_end(contest_id, contest.end_time)
        except Exception as e:
            logger.error(
                "contest_timer_failed",
                contest_id=str(contest_id),
                kind=kind,
                error=str(e),
                exc_info=True,
            )
            return

        logger.info("contest_timer_fired", contest_id=str(contest_id), kind=kind, status=status.value)

    # ------------------------------------------------------------------
    # Manual overrides
    # ------------------------------------------------------------------

    async def start_contest_manually(self, contest_id: uuid.UUID) -> ContestStatus:
        """
        Start an upcoming contest now.

        The abandonment rule still applies: with too few entrants the
        contest is cancelled and refunded instead.
        """
        contest = await self.lifecycle.get_contest(contest_id)
        status = await self.lifecycle.start_contest(contest)
        self._cancel_timer((contest_id, TIMER_START))
        if status is ContestStatus.CANCELLED:
            self._cancel_timer((contest_id, TIMER_END))
        logger.info("contest_started_manually", contest_id=str(contest_id), status=status.value)
        return status

    async def end_contest_manually(self, contest_id: uuid.UUID) -> ResultsSummary:
        contest = await self.lifecycle.get_contest(contest_id)
        summary = await self.lifecycle.complete_contest(contest)
        if summary.status is ContestStatus.COMPLETED:
            self._cancel_timer((contest_id, TIMER_END))
        logger.info(
            "contest_ended_manually",
            contest_id=str(contest_id),
            status=summary.status.value,
        )
        return summary

    async def calculate_results_manually(self, contest_id: uuid.UUID) -> ResultsSummary:
        """
        Recompute and persist results of a running contest without changing its status.

        Results of a completed contest are final and are never recomputed.
        """
        contest = await self.lifecycle.get_contest(contest_id)
        if contest.status != ContestStatus.ACTIVE.value:
            raise InvalidContestStateError(
                f"Results can only be calculated for active contests "
                f"(current status: {contest.status})"
            )
        return await self.lifecycle.calculate_results(contest)

    async def cancel_contest_manually(self, contest_id: uuid.UUID) -> ContestStatus:
        contest = await self.lifecycle.get_contest(contest_id)
        status = await self.lifecycle.cancel_contest(contest)
        self.cancel_scheduled_contest(contest_id)
        return status

    async def distribute_prizes(self, contest_id: uuid.UUID) -> list[PrizeAward]:
        return await self.prizes.distribute(contest_id)

    async def update_contest_status(
        self, contest_id: uuid.UUID, status: str
    ) -> ContestStatus:
        """
        Apply an administrative status change.

        Only forward transitions are accepted, and each one runs through
        the same transition logic as the timers.
        """
        try:
            target = ContestStatus(status)
        except ValueError:
            raise InvalidContestStateError(f"Invalid status: {status}") from None

        contest = await self.lifecycle.get_contest(contest_id)
        current = ContestStatus(contest.status)

        if (current, target) == (ContestStatus.UPCOMING, ContestStatus.ACTIVE):
            return await self.start_contest_manually(contest_id)
        if (current, target) == (ContestStatus.ACTIVE, ContestStatus.COMPLETED):
            summary = await self.end_contest_manually(contest_id)
            return summary.status
        if (current, target) == (ContestStatus.UPCOMING, ContestStatus.CANCELLED):
            return await self.cancel_contest_manually(contest_id)

        raise InvalidContestStateError(
            f"Cannot change contest status from {current.value} to {target.value}"
        )
