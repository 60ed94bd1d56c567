"""Pytest configuration and fixtures for StockArena tests.

The services only talk to storage through the ledger protocol, so most tests
run against ``FakeLedger``, an in-memory ledger that keeps the same
conditional-update and single-unit coin semantics as the SQL one.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import inspect

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
from arena.services.exceptions import (
    ContestNotFoundError,
    ContestValidationError,
    InsufficientCoinsError,
    InvalidContestStateError,
    UserNotFoundError,
)
from arena.services.pricing import LedgerPriceOracle

T0 = datetime(2026, 3, 2, 14, 30, tzinfo=timezone.utc)


def _copy(obj):
    """Detached copy of a model instance, like a fresh read from the database."""
    mapper = inspect(type(obj))
    return type(obj)(**{attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


class FakeClock:
    """Settable clock returned by ``clock()`` calls."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeLedger:
    """In-memory ledger."""

    def __init__(self):
        self.users: dict[uuid.UUID, User] = {}
        self.prices: dict[str, Decimal] = {}
        self.contests: dict[uuid.UUID, Contest] = {}
        self.entries: list[ContestEntry] = []
        self.holdings: dict[uuid.UUID, list[PortfolioHolding]] = {}
        self.coin_transactions: list[CoinTransaction] = []
        self.performance: list[PortfolioPerformance] = []
        self.leaderboard: list[LeaderboardHistory] = []

        # Users whose next coin transaction fails, to simulate a crash
        self.fail_next_transaction_for: set[uuid.UUID] = set()
        self.transition_calls: list[tuple[uuid.UUID, ContestStatus, ContestStatus]] = []
        self._tick = 0

    def _created_at(self) -> datetime:
        self._tick += 1
        return T0 + timedelta(microseconds=self._tick)

    # ------------------------------------------------------------------
    # Test setup helpers
    # ------------------------------------------------------------------

    def add_user(self, coins_balance: int = 15000, username: str | None = None) -> User:
        user_id = uuid.uuid4()
        user = User(
            id=user_id,
            username=username or f"user-{user_id.hex[:8]}",
            coins_balance=coins_balance,
            created_at=self._created_at(),
        )
        self.users[user.id] = user
        return user

    def set_price(self, symbol: str, price: str | Decimal | None) -> None:
        if price is None:
            self.prices.pop(symbol, None)
        else:
            self.prices[symbol] = Decimal(price)

    def add_contest(self, **overrides: Any) -> Contest:
        fields = {
            "id": uuid.uuid4(),
            "name": "Weekly Tech Showdown",
            "description": None,
            "entry_fee": 50,
            "prize_pool": 1000,
            "max_participants": 10,
            "start_time": T0 + timedelta(hours=1),
            "end_time": T0 + timedelta(days=1),
            "status": ContestStatus.UPCOMING.value,
            "featured": False,
            "prizes_distributed": False,
            "created_at": self._created_at(),
        }
        fields.update(overrides)
        contest = Contest(**fields)
        self.contests[contest.id] = contest
        return _copy(contest)

    def add_entry(
        self,
        contest: Contest,
        user: User | None = None,
        holdings: dict[str, str] | None = None,
        total_coins_invested: int = 100,
        **results: Any,
    ) -> ContestEntry:
        """Enter a user without charging a fee. ``holdings`` maps symbol to shares."""
        user = user or self.add_user()
        entry = ContestEntry(
            id=uuid.uuid4(),
            user_id=user.id,
            contest_id=contest.id,
            total_coins_invested=total_coins_invested,
            final_portfolio_value=results.get("final_portfolio_value"),
            roi=results.get("roi"),
            rank=results.get("rank"),
            created_at=self._created_at(),
        )
        self.entries.append(entry)
        self.holdings[entry.id] = [
            PortfolioHolding(
                id=uuid.uuid4(),
                entry_id=entry.id,
                stock_symbol=symbol,
                coins_invested=0,
                shares_quantity=Decimal(shares),
                purchase_price=Decimal("1"),
            )
            for symbol, shares in (holdings or {}).items()
        ]
        return _copy(entry)

    def stored_contest(self, contest_id: uuid.UUID) -> Contest:
        return self.contests[contest_id]

    def stored_entry(self, entry_id: uuid.UUID) -> ContestEntry:
        return next(e for e in self.entries if e.id == entry_id)

    def transactions_for(
        self,
        contest_id: uuid.UUID,
        type: CoinTransactionType,
        user_id: uuid.UUID | None = None,
    ) -> list[CoinTransaction]:
        return [
            t for t in self.coin_transactions
            if t.contest_id == contest_id
            and t.type == type.value
            and (user_id is None or t.user_id == user_id)
        ]

    # ------------------------------------------------------------------
    # Contests
    # ------------------------------------------------------------------

    async def get_contest(self, contest_id):
        contest = self.contests.get(contest_id)
        return _copy(contest) if contest is not None else None

    async def list_contests(self):
        return [_copy(c) for c in sorted(self.contests.values(), key=lambda c: c.created_at)]

    async def list_contests_by_status(self, *statuses):
        wanted = {s.value for s in statuses}
        return [
            _copy(c)
            for c in sorted(self.contests.values(), key=lambda c: c.start_time)
            if c.status in wanted
        ]

    async def create_contest(self, **fields):
        return self.add_contest(**fields)

    async def update_contest(self, contest_id, **fields):
        contest = self.contests.get(contest_id)
        if contest is None:
            return None
        for key, value in fields.items():
            setattr(contest, key, value)
        return _copy(contest)

    async def transition_status(self, contest_id, expected, new):
        self.transition_calls.append((contest_id, expected, new))
        contest = self.contests.get(contest_id)
        if contest is None or contest.status != expected.value:
            return False
        contest.status = new.value
        return True

    async def mark_prizes_distributed(self, contest_id):
        contest = self.contests.get(contest_id)
        if contest is None or contest.prizes_distributed:
            return False
        contest.prizes_distributed = True
        return True

    async def delete_contest(self, contest_id):
        return self.contests.pop(contest_id, None) is not None

    # ------------------------------------------------------------------
    # Entries and holdings
    # ------------------------------------------------------------------

    async def enter_contest(
        self, user_id, contest_id, total_coins_invested, entry_fee, description, holdings
    ):
        contest = self.contests.get(contest_id)
        if contest is None:
            raise ContestNotFoundError(contest_id)
        if contest.status != ContestStatus.UPCOMING.value:
            raise InvalidContestStateError("Contest is no longer accepting entries")
        if sum(1 for e in self.entries if e.contest_id == contest_id) >= contest.max_participants:
            raise ContestValidationError("Contest is full")

        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if any(e.user_id == user_id and e.contest_id == contest_id for e in self.entries):
            raise ContestValidationError("Already joined this contest")

        if entry_fee > 0:
            self._add_coin_transaction(
                user, -entry_fee, CoinTransactionType.CONTEST_ENTRY, description, contest_id
            )

        entry = self.add_entry(
            self.contests[contest_id], user, total_coins_invested=total_coins_invested
        )
        self.holdings[entry.id] = [
            PortfolioHolding(
                id=uuid.uuid4(),
                entry_id=entry.id,
                stock_symbol=holding.stock_symbol,
                coins_invested=holding.coins_invested,
                shares_quantity=holding.shares_quantity,
                purchase_price=holding.purchase_price,
            )
            for holding in holdings
        ]
        return entry

    async def get_entry(self, entry_id):
        entry = next((e for e in self.entries if e.id == entry_id), None)
        return _copy(entry) if entry is not None else None

    async def get_entry_for_user(self, user_id, contest_id):
        entry = next(
            (e for e in self.entries if e.user_id == user_id and e.contest_id == contest_id),
            None,
        )
        return _copy(entry) if entry is not None else None

    async def list_entries(self, contest_id):
        return [_copy(e) for e in self.entries if e.contest_id == contest_id]

    async def count_entries(self, contest_id):
        return sum(1 for e in self.entries if e.contest_id == contest_id)

    async def save_entry_results(self, results):
        for r in results:
            entry = self.stored_entry(r.entry_id)
            entry.final_portfolio_value = r.final_portfolio_value
            entry.roi = r.roi
            entry.rank = r.rank

    async def list_holdings(self, entry_id):
        return list(self.holdings.get(entry_id, []))

    # ------------------------------------------------------------------
    # Stocks and users
    # ------------------------------------------------------------------

    async def get_stock_price(self, symbol):
        return self.prices.get(symbol.upper())

    async def get_user(self, user_id):
        return self.users.get(user_id)

    # ------------------------------------------------------------------
    # Coins
    # ------------------------------------------------------------------

    async def credit_once(self, user_id, contest_id, amount, type, description):
        if user_id in self.fail_next_transaction_for:
            self.fail_next_transaction_for.discard(user_id)
            raise RuntimeError("ledger unavailable")
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if self.transactions_for(contest_id, type, user_id):
            return None
        return self._add_coin_transaction(user, amount, type, description, contest_id)

    def _add_coin_transaction(self, user, amount, type, description, contest_id):
        before = user.coins_balance
        after = before + amount
        if after < 0:
            raise InsufficientCoinsError(user.id, before, -amount)
        transaction = CoinTransaction(
            id=uuid.uuid4(),
            user_id=user.id,
            type=type.value,
            amount=amount,
            coins_before=before,
            coins_after=after,
            description=description,
            contest_id=contest_id,
            created_at=self._created_at(),
        )
        self.coin_transactions.append(transaction)
        user.coins_balance = after
        return transaction

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def add_performance_snapshots(self, rows, timestamp):
        self.performance.extend(
            PortfolioPerformance(
                id=uuid.uuid4(), entry_id=entry_id, portfolio_value=value, timestamp=timestamp
            )
            for entry_id, value in rows
        )
        return len(rows)

    async def list_performance(self, entry_id):
        return sorted(
            (p for p in self.performance if p.entry_id == entry_id),
            key=lambda p: p.timestamp,
        )

    async def add_leaderboard_snapshot(self, contest_id, results, timestamp):
        self.leaderboard.extend(
            LeaderboardHistory(
                id=uuid.uuid4(),
                contest_id=contest_id,
                user_id=r.user_id,
                rank=r.rank,
                portfolio_value=r.final_portfolio_value,
                roi=r.roi,
                timestamp=timestamp,
            )
            for r in results
        )
        return len(results)

    async def recent_leaderboard_batches(self, contest_id, batches=2):
        rows = [row for row in self.leaderboard if row.contest_id == contest_id]
        timestamps = sorted({row.timestamp for row in rows}, reverse=True)[:batches]
        return [
            sorted((row for row in rows if row.timestamp == ts), key=lambda row: row.rank)
            for ts in timestamps
        ]


def _round_trip(method):
    async def wrapper(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await method(self, *args, **kwargs)

    return wrapper


class InterleavingLedger(FakeLedger):
    """In-memory ledger whose calls yield to the event loop like database round trips.

    Each call is still applied as one unit, as the locked SQL operations are,
    so concurrent callers interleave only between calls.
    """

    get_contest = _round_trip(FakeLedger.get_contest)
    transition_status = _round_trip(FakeLedger.transition_status)
    mark_prizes_distributed = _round_trip(FakeLedger.mark_prizes_distributed)
    enter_contest = _round_trip(FakeLedger.enter_contest)
    get_entry_for_user = _round_trip(FakeLedger.get_entry_for_user)
    list_entries = _round_trip(FakeLedger.list_entries)
    count_entries = _round_trip(FakeLedger.count_entries)
    get_stock_price = _round_trip(FakeLedger.get_stock_price)
    credit_once = _round_trip(FakeLedger.credit_once)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def oracle(ledger):
    """Prices straight from the in-memory stocks table."""
    return LedgerPriceOracle(ledger)


@pytest.fixture
def interleaving_ledger():
    return InterleavingLedger()
