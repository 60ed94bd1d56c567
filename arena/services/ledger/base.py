"""Ledger interface consumed by the contest services.

The ledger is the durable store for contests, entries, holdings, snapshots
and coin transactions. Services only talk to it through this protocol so
that the scheduler can run against the database or an in-memory fake.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from arena.models.domain import (
    CoinTransaction,
    CoinTransactionType,
    Contest,
    ContestEntry,
    ContestStatus,
    LeaderboardHistory,
    PortfolioHolding,
    PortfolioPerformance,
    User,
)
from arena.services.ranking import EntryResult


@dataclass(frozen=True)
class NewHolding:
    """A holding to create when a user joins a contest."""

    stock_symbol: str
    coins_invested: int
    shares_quantity: Decimal
    purchase_price: Decimal


class Ledger(Protocol):
    # Contests
    async def get_contest(self, contest_id: uuid.UUID) -> Contest | None: ...

    async def list_contests(self) -> list[Contest]: ...

    async def list_contests_by_status(self, *statuses: ContestStatus) -> list[Contest]: ...

    async def create_contest(self, **fields: Any) -> Contest: ...

    async def update_contest(self, contest_id: uuid.UUID, **fields: Any) -> Contest | None: ...

    async def transition_status(
        self, contest_id: uuid.UUID, expected: ContestStatus, new: ContestStatus
    ) -> bool:
        """Set status to ``new`` only if it currently equals ``expected``."""
        ...

    async def mark_prizes_distributed(self, contest_id: uuid.UUID) -> bool: ...

    async def delete_contest(self, contest_id: uuid.UUID) -> bool: ...

    # Entries and holdings
    async def enter_contest(
        self,
        user_id: uuid.UUID,
        contest_id: uuid.UUID,
        total_coins_invested: int,
        entry_fee: int,
        description: str,
        holdings: list[NewHolding],
    ) -> ContestEntry:
        """
        Debit the entry fee, create the entry and its holdings atomically.

        The contest must still be upcoming and below ``max_participants``
        when the entry commits.
        """
        ...

    async def get_entry(self, entry_id: uuid.UUID) -> ContestEntry | None: ...

    async def get_entry_for_user(
        self, user_id: uuid.UUID, contest_id: uuid.UUID
    ) -> ContestEntry | None: ...

    async def list_entries(self, contest_id: uuid.UUID) -> list[ContestEntry]:
        """Entries of a contest in creation order."""
        ...

    async def count_entries(self, contest_id: uuid.UUID) -> int: ...

    async def save_entry_results(self, results: list[EntryResult]) -> None:
        """Write value, ROI and rank for each entry in a single commit."""
        ...

    async def list_holdings(self, entry_id: uuid.UUID) -> list[PortfolioHolding]: ...

    # Stocks and users
    async def get_stock_price(self, symbol: str) -> Decimal | None: ...

    async def get_user(self, user_id: uuid.UUID) -> User | None: ...

    # Coins
    async def credit_once(
        self,
        user_id: uuid.UUID,
        contest_id: uuid.UUID,
        amount: int,
        type: CoinTransactionType,
        description: str,
    ) -> CoinTransaction | None:
        """
        Credit a contest refund or prize unless the user already has one.

        The check for an existing ``(user, contest, type)`` transaction and
        the credit run under the same user row lock. Returns None when the
        credit was already made.
        """
        ...

    # Snapshots
    async def add_performance_snapshots(
        self, rows: list[tuple[uuid.UUID, Decimal]], timestamp: datetime
    ) -> int: ...

    async def list_performance(self, entry_id: uuid.UUID) -> list[PortfolioPerformance]: ...

    async def add_leaderboard_snapshot(
        self, contest_id: uuid.UUID, results: list[EntryResult], timestamp: datetime
    ) -> int: ...

    async def recent_leaderboard_batches(
        self, contest_id: uuid.UUID, batches: int = 2
    ) -> list[list[LeaderboardHistory]]:
        """Most recent snapshot batches, newest first, each ordered by rank."""
        ...
