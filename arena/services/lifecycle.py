"""Contest lifecycle transitions.

State machine:

    upcoming --(start time, enough entrants)--> active --(end time)--> completed
        \
         +--(start time, too few entrants, or admin cancel)--> cancelled

Every transition is safe to run more than once for the same contest:

- The status flip is always the last write and is conditional on the
  expected current status, so a lost race is a no-op.
- Refunds skip users that already hold a refund transaction for the
  contest, and the contest only becomes cancelled after every refund
  has committed.
- Completion values and ranks every entry in memory, writes all results
  in one batch, then flips the status. A crash before the flip leaves the
  contest active and the next tick redoes the whole sequence.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from arena.models.domain import CoinTransactionType, Contest, ContestStatus
from arena.services.exceptions import ContestNotFoundError, InvalidContestStateError
from arena.services.ranking import EntryResult, assign_ranks
from arena.services.valuation import value_entries

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ResultsSummary:
    """Outcome of valuing and ranking a contest's entries."""

    contest_id: uuid.UUID
    results: list[EntryResult] = field(default_factory=list)
    unresolved: list[uuid.UUID] = field(default_factory=list)
    status: ContestStatus | None = None

    @property
    def complete(self) -> bool:
        return not self.unresolved

    def to_dict(self) -> dict[str, Any]:
        return {
            "contest_id": str(self.contest_id),
            "status": self.status.value if self.status else None,
            "ranked_entries": len(self.results),
            "unresolved_entries": [str(entry_id) for entry_id in self.unresolved],
        }


class ContestLifecycle:
    """Idempotent contest state transitions."""

    def __init__(
        self,
        ledger,
        price_oracle,
        clock: Callable[[], datetime] = utcnow,
        min_participants: int = 2,
    ):
        self.ledger = ledger
        self.price_oracle = price_oracle
        self.clock = clock
        self.min_participants = min_participants

    async def get_contest(self, contest_id: uuid.UUID) -> Contest:
        contest = await self.ledger.get_contest(contest_id)
        if contest is None:
            raise ContestNotFoundError(contest_id)
        return contest

    # ------------------------------------------------------------------
    # Time driven checks
    # ------------------------------------------------------------------

    async def scan(self) -> dict[str, int]:
        """
        Apply due transitions to every non-terminal contest.

        A failure on one contest is logged and the scan moves on; state was
        not advanced, so the next scan retries it.
        """
        stats = {
            "contests_checked": 0,
            "started": 0,
            "cancelled": 0,
            "completed": 0,
            "errors": 0,
        }
        contests = await self.ledger.list_contests_by_status(
            ContestStatus.UPCOMING, ContestStatus.ACTIVE
        )

        for contest in contests:
            stats["contests_checked"] += 1
            before = contest.status
            try:
                after = await self.check_contest(contest)
            except Exception as e:
                logger.error(
                    "contest_check_failed",
                    contest_id=str(contest.id),
                    status=before,
                    error=str(e),
                    exc_info=True,
                )
                stats["errors"] += 1
                continue

            if after.value != before:
                key = {
                    ContestStatus.ACTIVE: "started",
                    ContestStatus.CANCELLED: "cancelled",
                    ContestStatus.COMPLETED: "completed",
                }[after]
                stats[key] += 1

        logger.info("contest_scan_complete", **stats)
        return stats

    async def check_contest(self, contest: Contest, now: datetime | None = None) -> ContestStatus:
        """Run whichever transition is due for a contest at ``now``."""
        now = now or self.clock()
        status = ContestStatus(contest.status)

        if status is ContestStatus.UPCOMING and now >= contest.start_time:
            return await self.start_contest(contest)

        if status is ContestStatus.ACTIVE and now >= contest.end_time:
            summary = await self.complete_contest(contest)
            return summary.status

        return status

    async def check_contest_by_id(
        self, contest_id: uuid.UUID, now: datetime | None = None
    ) -> ContestStatus:
        contest = await self.get_contest(contest_id)
        return await self.check_contest(contest, now)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_contest(self, contest: Contest) -> ContestStatus:
        """
        Move an upcoming contest to active, or cancel it when abandoned.

        Raises:
            InvalidContestStateError: contest is not upcoming
        """
        self._require_status(contest, ContestStatus.UPCOMING, "Contest must be upcoming to start")

        participants = await self.ledger.count_entries(contest.id)
        if participants < self.min_participants:
            logger.warning(
                "contest_abandoned",
                contest_id=str(contest.id),
                contest_name=contest.name,
                participants=participants,
                min_participants=self.min_participants,
            )
            return await self.cancel_contest(
                contest, reason=f"Refund for abandoned contest: {contest.name}"
            )

        return await self._transition(contest, ContestStatus.UPCOMING, ContestStatus.ACTIVE)

    async def cancel_contest(self, contest: Contest, reason: str | None = None) -> ContestStatus:
        """
        Refund every entrant's fee, then mark the contest cancelled.

        Raises:
            InvalidContestStateError: contest is not upcoming
        """
        self._require_status(
            contest, ContestStatus.UPCOMING, "Only upcoming contests can be cancelled"
        )
        description = reason or f"Refund for cancelled contest: {contest.name}"

        entries = await self.ledger.list_entries(contest.id)
        refundable = entries if contest.entry_fee > 0 else []
        refunded = 0
        for entry in refundable:
            transaction = await self.ledger.credit_once(
                entry.user_id,
                contest.id,
                contest.entry_fee,
                CoinTransactionType.REFUND,
                description,
            )
            if transaction is None:
                continue

            refunded += 1
            logger.info(
                "entry_fee_refunded",
                contest_id=str(contest.id),
                user_id=str(entry.user_id),
                amount=contest.entry_fee,
            )

        status = await self._transition(contest, ContestStatus.UPCOMING, ContestStatus.CANCELLED)
        logger.info(
            "contest_cancelled",
            contest_id=str(contest.id),
            entries=len(entries),
            refunded=refunded,
        )
        return status

    async def calculate_results(self, contest: Contest) -> ResultsSummary:
        """
        Value and rank every entry and persist the results.

        Does not change the contest status. Entries whose prices cannot be
        resolved keep their previous results and are reported as unresolved.
        """
        entries = await self.ledger.list_entries(contest.id)
        results, unresolved = await value_entries(self.ledger, self.price_oracle, entries)

        # Unresolved entries with earlier results still hold a place in the ranking
        fresh = {r.entry_id: r for r in results}
        candidates = [
            fresh.get(entry.id)
            or EntryResult(
                entry_id=entry.id,
                user_id=entry.user_id,
                final_portfolio_value=entry.final_portfolio_value,
                roi=entry.roi,
            )
            for entry in entries
        ]
        ranked = assign_ranks(candidates)
        if ranked:
            await self.ledger.save_entry_results(ranked)

        summary = ResultsSummary(
            contest_id=contest.id,
            results=ranked,
            unresolved=[entry.id for entry in unresolved],
            status=ContestStatus(contest.status),
        )
        logger.info(
            "contest_results_calculated",
            contest_id=str(contest.id),
            ranked=len(ranked),
            unresolved=len(summary.unresolved),
        )
        return summary

    async def complete_contest(self, contest: Contest) -> ResultsSummary:
        """
        Finalise an active contest.

        The status only becomes completed once every entry has resolved
        results; otherwise the contest stays active until a later pass.

        Raises:
            InvalidContestStateError: contest is not active
        """
        self._require_status(contest, ContestStatus.ACTIVE, "Contest must be active to end")

        summary = await self.calculate_results(contest)
        if not summary.complete:
            logger.error(
                "contest_completion_blocked",
                contest_id=str(contest.id),
                unresolved_entries=[str(entry_id) for entry_id in summary.unresolved],
            )
            summary.status = ContestStatus.ACTIVE
            return summary

        summary.status = await self._transition(
            contest, ContestStatus.ACTIVE, ContestStatus.COMPLETED
        )
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_status(contest: Contest, expected: ContestStatus, message: str) -> None:
        if contest.status != expected.value:
            raise InvalidContestStateError(f"{message} (current status: {contest.status})")

    async def _transition(
        self, contest: Contest, expected: ContestStatus, new: ContestStatus
    ) -> ContestStatus:
        """Conditionally flip the status and report the status now stored."""
        if await self.ledger.transition_status(contest.id, expected, new):
            contest.status = new.value
            logger.info(
                "contest_status_changed",
                contest_id=str(contest.id),
                old_status=expected.value,
                new_status=new.value,
            )
            return new

        current = await self.get_contest(contest.id)
        logger.warning(
            "contest_transition_skipped",
            contest_id=str(contest.id),
            expected=expected.value,
            target=new.value,
            actual=current.status,
        )
        contest.status = current.status
        return ContestStatus(current.status)
