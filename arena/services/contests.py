"""Contest management service.

Thin request-level operations around the ledger: creating and editing
contests (keeping the scheduler's timers in sync), joining a contest with a
fixed coin budget, and reading leaderboards and performance history.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog

from arena.models.domain import (
    Contest,
    ContestEntry,
    ContestStatus,
    PortfolioPerformance,
)
from arena.services.exceptions import (
    ContestNotFoundError,
    ContestValidationError,
    EntryNotFoundError,
    InvalidContestStateError,
)
from arena.services.ledger import NewHolding
from arena.services.lifecycle import utcnow
from arena.services.ranking import EntryResult, assign_ranks, rank_changes
from arena.services.valuation import value_entries

logger = structlog.get_logger(__name__)

SHARES_PRECISION = Decimal("0.00000001")

EDITABLE_FIELDS = {
    "name",
    "description",
    "entry_fee",
    "prize_pool",
    "max_participants",
    "start_time",
    "end_time",
    "featured",
}


def _require_aware(*times: datetime) -> None:
    if any(t.tzinfo is None or t.utcoffset() is None for t in times):
        raise ContestValidationError("Contest times must include a timezone")


@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    user_id: uuid.UUID
    entry_id: uuid.UUID
    portfolio_value: Decimal
    roi: Decimal
    rank_change: int | None = None


class ContestService:
    """Contest CRUD, joining and read models."""

    def __init__(
        self,
        ledger,
        price_oracle,
        scheduler=None,
        clock: Callable[[], datetime] = utcnow,
        entry_budget: int = 100,
    ):
        self.ledger = ledger
        self.price_oracle = price_oracle
        self.scheduler = scheduler
        self.clock = clock
        self.entry_budget = entry_budget

    async def get_contest(self, contest_id: uuid.UUID) -> Contest:
        contest = await self.ledger.get_contest(contest_id)
        if contest is None:
            raise ContestNotFoundError(contest_id)
        return contest

    # ------------------------------------------------------------------
    # Admin CRUD
    # ------------------------------------------------------------------

    async def create_contest(
        self,
        name: str,
        entry_fee: int,
        prize_pool: int,
        max_participants: int,
        start_time: datetime,
        end_time: datetime,
        description: str | None = None,
        featured: bool = False,
    ) -> Contest:
        _require_aware(start_time, end_time)
        if end_time <= start_time:
            raise ContestValidationError("End time must be after start time")
        if start_time <= self.clock():
            raise ContestValidationError("Start time must be in the future")

        contest = await self.ledger.create_contest(
            name=name,
            description=description,
            entry_fee=entry_fee,
            prize_pool=prize_pool,
            max_participants=max_participants,
            start_time=start_time,
            end_time=end_time,
            status=ContestStatus.UPCOMING.value,
            featured=featured,
            prizes_distributed=False,
        )
        if self.scheduler is not None:
            self.scheduler.schedule_contest(contest)

        logger.info("contest_created", contest_id=str(contest.id), name=name)
        return contest

    async def update_contest(self, contest_id: uuid.UUID, **updates: Any) -> Contest:
        contest = await self.get_contest(contest_id)

        unknown = set(updates) - EDITABLE_FIELDS
        if unknown:
            raise ContestValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        if ContestStatus(contest.status).is_terminal:
            raise InvalidContestStateError(f"Cannot edit a {contest.status} contest")

        times_changed = "start_time" in updates or "end_time" in updates
        if times_changed:
            start_time = updates.get("start_time", contest.start_time)
            end_time = updates.get("end_time", contest.end_time)
            _require_aware(start_time, end_time)
            if end_time <= start_time:
                raise ContestValidationError("End time must be after start time")
            if contest.status != ContestStatus.UPCOMING.value and "start_time" in updates:
                raise InvalidContestStateError("Start time can only change before the contest starts")

        updated = await self.ledger.update_contest(contest_id, **updates)
        if times_changed and self.scheduler is not None:
            self.scheduler.cancel_scheduled_contest(contest_id)
            self.scheduler.schedule_contest(updated)

        logger.info("contest_updated", contest_id=str(contest_id), fields=sorted(updates))
        return updated

    async def delete_contest(self, contest_id: uuid.UUID) -> None:
        await self.get_contest(contest_id)
        if await self.ledger.count_entries(contest_id) > 0:
            raise ContestValidationError(
                "Cannot delete contest with participants. Cancel it instead."
            )
        if self.scheduler is not None:
            self.scheduler.cancel_scheduled_contest(contest_id)
        await self.ledger.delete_contest(contest_id)
        logger.info("contest_deleted", contest_id=str(contest_id))

    async def list_participants(self, contest_id: uuid.UUID) -> list[ContestEntry]:
        await self.get_contest(contest_id)
        return await self.ledger.list_entries(contest_id)

    async def dashboard_stats(self) -> dict[str, Any]:
        contests = await self.ledger.list_contests()
        by_status = {s.value: 0 for s in ContestStatus}
        for contest in contests:
            by_status[contest.status] = by_status.get(contest.status, 0) + 1

        return {
            "total_contests": len(contests),
            "contests_by_status": by_status,
            "total_prize_pool": sum(c.prize_pool for c in contests),
            "prizes_pending": sum(
                1
                for c in contests
                if c.status == ContestStatus.COMPLETED.value and not c.prizes_distributed
            ),
            "scheduled_timers": (
                len(self.scheduler.get_scheduled_contests()) if self.scheduler else 0
            ),
        }

    # ------------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------------

    async def join_contest(
        self,
        contest_id: uuid.UUID,
        user_id: uuid.UUID,
        allocations: list[tuple[str, int]],
    ) -> ContestEntry:
        """
        Enter a user into an upcoming contest.

        Args:
            allocations: (stock symbol, coins) pairs that must add up to the
                entry budget exactly

        Raises:
            ContestValidationError: bad portfolio, full contest, repeat entry
            InvalidContestStateError: contest is no longer open for entries
            InsufficientCoinsError: balance below the entry fee
        """
        if not allocations:
            raise ContestValidationError("Portfolio must contain at least one stock")
        if any(coins <= 0 for _, coins in allocations):
            raise ContestValidationError("Each holding must invest a positive number of coins")
        symbols = [symbol.upper() for symbol, _ in allocations]
        if len(set(symbols)) != len(symbols):
            raise ContestValidationError("Each stock can only appear once in a portfolio")
        total = sum(coins for _, coins in allocations)
        if total != self.entry_budget:
            raise ContestValidationError(
                f"Portfolio must total exactly {self.entry_budget} coins"
            )

        contest = await self.get_contest(contest_id)
        if contest.status != ContestStatus.UPCOMING.value:
            raise InvalidContestStateError("Contest is no longer accepting entries")
        if await self.ledger.get_entry_for_user(user_id, contest_id) is not None:
            raise ContestValidationError("Already joined this contest")

        holdings = []
        for symbol, (_, coins) in zip(symbols, allocations):
            price = await self.price_oracle.get_price(symbol)
            if price is None or price <= 0:
                raise ContestValidationError(f"Invalid stock: {symbol}")
            shares = (Decimal(coins) / price).quantize(SHARES_PRECISION, rounding=ROUND_HALF_UP)
            holdings.append(
                NewHolding(
                    stock_symbol=symbol,
                    coins_invested=coins,
                    shares_quantity=shares,
                    purchase_price=price,
                )
            )

        entry = await self.ledger.enter_contest(
            user_id=user_id,
            contest_id=contest_id,
            total_coins_invested=self.entry_budget,
            entry_fee=contest.entry_fee,
            description=f"Entry fee for contest: {contest.name}",
            holdings=holdings,
        )
        logger.info(
            "contest_joined",
            contest_id=str(contest_id),
            user_id=str(user_id),
            entry_id=str(entry.id),
            holdings=len(holdings),
        )
        return entry

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_leaderboard(self, contest_id: uuid.UUID) -> list[LeaderboardRow]:
        """
        Current standings with rank movement since the previous snapshot.

        Active contests are valued live; finished contests use their stored
        results.
        """
        contest = await self.get_contest(contest_id)
        entries = await self.ledger.list_entries(contest_id)

        if contest.status == ContestStatus.ACTIVE.value:
            results, _ = await value_entries(self.ledger, self.price_oracle, entries)
            ranked = assign_ranks(results)
        else:
            ranked = sorted(
                (
                    EntryResult(
                        entry_id=e.id,
                        user_id=e.user_id,
                        final_portfolio_value=e.final_portfolio_value,
                        roi=e.roi,
                        rank=e.rank,
                    )
                    for e in entries
                    if e.rank is not None
                ),
                key=lambda r: r.rank,
            )

        batches = await self.ledger.recent_leaderboard_batches(contest_id, batches=2)
        changes: dict[uuid.UUID, int] = {}
        if len(batches) == 2:
            changes = rank_changes(
                ((row.user_id, row.rank) for row in batches[0]),
                ((row.user_id, row.rank) for row in batches[1]),
            )

        return [
            LeaderboardRow(
                rank=r.rank,
                user_id=r.user_id,
                entry_id=r.entry_id,
                portfolio_value=r.final_portfolio_value,
                roi=r.roi,
                rank_change=changes.get(r.user_id),
            )
            for r in ranked
        ]

    async def get_performance_history(self, entry_id: uuid.UUID) -> list[PortfolioPerformance]:
        if await self.ledger.get_entry(entry_id) is None:
            raise EntryNotFoundError(entry_id)
        return await self.ledger.list_performance(entry_id)
