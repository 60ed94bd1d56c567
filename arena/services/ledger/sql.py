"""SQLAlchemy implementation of the ledger.

Each operation opens its own session from the factory so a long-lived
scheduler never holds a connection between ticks. Operations that must not
be torn (coin movements, contest entry, result batches) run in a single
transaction.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.models.domain import (
    CoinTransaction,
    CoinTransactionType,
    Contest,
    ContestEntry,
    ContestStatus,
    LeaderboardHistory,
    PortfolioHolding,
    PortfolioPerformance,
    Stock,
    User,
)
from arena.services.exceptions import (
    ContestNotFoundError,
    ContestValidationError,
    InsufficientCoinsError,
    InvalidContestStateError,
    UserNotFoundError,
)
from arena.services.ledger.base import NewHolding
from arena.services.ranking import EntryResult

logger = structlog.get_logger(__name__)


class SqlLedger:
    """Ledger backed by the application database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Contests
    # ------------------------------------------------------------------

    async def get_contest(self, contest_id: uuid.UUID) -> Contest | None:
        async with self.session_factory() as session:
            return await session.get(Contest, contest_id)

    async def list_contests(self) -> list[Contest]:
        async with self.session_factory() as session:
            result = await session.execute(select(Contest).order_by(Contest.created_at))
            return list(result.scalars().all())

    async def list_contests_by_status(self, *statuses: ContestStatus) -> list[Contest]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Contest)
                .where(Contest.status.in_([s.value for s in statuses]))
                .order_by(Contest.start_time)
            )
            return list(result.scalars().all())

    async def create_contest(self, **fields: Any) -> Contest:
        async with self.session_factory() as session:
            contest = Contest(**fields)
            session.add(contest)
            await session.commit()
            await session.refresh(contest)
            return contest

    async def update_contest(self, contest_id: uuid.UUID, **fields: Any) -> Contest | None:
        async with self.session_factory() as session:
            contest = await session.get(Contest, contest_id)
            if contest is None:
                return None
            for key, value in fields.items():
                setattr(contest, key, value)
            await session.commit()
            return contest

    async def transition_status(
        self, contest_id: uuid.UUID, expected: ContestStatus, new: ContestStatus
    ) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Contest)
                .where(Contest.id == contest_id, Contest.status == expected.value)
                .values(status=new.value)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_prizes_distributed(self, contest_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Contest)
                .where(Contest.id == contest_id, Contest.prizes_distributed == False)
                .values(prizes_distributed=True)
            )
            await session.commit()
            return result.rowcount == 1

    async def delete_contest(self, contest_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(Contest).where(Contest.id == contest_id))
            await session.commit()
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Entries and holdings
    # ------------------------------------------------------------------

    async def enter_contest(
        self,
        user_id: uuid.UUID,
        contest_id: uuid.UUID,
        total_coins_invested: int,
        entry_fee: int,
        description: str,
        holdings: list[NewHolding],
    ) -> ContestEntry:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    # Capacity and status hold until commit under the contest row lock
                    contest = await session.get(Contest, contest_id, with_for_update=True)
                    if contest is None:
                        raise ContestNotFoundError(contest_id)
                    if contest.status != ContestStatus.UPCOMING.value:
                        raise InvalidContestStateError("Contest is no longer accepting entries")
                    participants = await session.execute(
                        select(func.count(ContestEntry.id)).where(
                            ContestEntry.contest_id == contest_id
                        )
                    )
                    if participants.scalar_one() >= contest.max_participants:
                        raise ContestValidationError("Contest is full")

                    user = await session.get(User, user_id, with_for_update=True)
                    if user is None:
                        raise UserNotFoundError(user_id)

                    if entry_fee > 0:
                        self._add_coin_transaction(
                            session,
                            user,
                            -entry_fee,
                            CoinTransactionType.CONTEST_ENTRY,
                            description,
                            contest_id,
                        )

                    entry = ContestEntry(
                        user_id=user_id,
                        contest_id=contest_id,
                        total_coins_invested=total_coins_invested,
                    )
                    session.add(entry)
                    await session.flush()

                    for holding in holdings:
                        session.add(
                            PortfolioHolding(
                                entry_id=entry.id,
                                stock_symbol=holding.stock_symbol,
                                coins_invested=holding.coins_invested,
                                shares_quantity=holding.shares_quantity,
                                purchase_price=holding.purchase_price,
                            )
                        )
                    await session.flush()
                    await session.refresh(entry)
            except IntegrityError as e:
                logger.warning(
                    "contest_entry_rejected",
                    user_id=str(user_id),
                    contest_id=str(contest_id),
                    error=str(e.orig),
                )
                raise ContestValidationError("Already joined this contest") from e

            return entry

    async def get_entry(self, entry_id: uuid.UUID) -> ContestEntry | None:
        async with self.session_factory() as session:
            return await session.get(ContestEntry, entry_id)

    async def get_entry_for_user(
        self, user_id: uuid.UUID, contest_id: uuid.UUID
    ) -> ContestEntry | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContestEntry).where(
                    ContestEntry.user_id == user_id,
                    ContestEntry.contest_id == contest_id,
                )
            )
            return result.scalar_one_or_none()

    async def list_entries(self, contest_id: uuid.UUID) -> list[ContestEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContestEntry)
                .where(ContestEntry.contest_id == contest_id)
                .order_by(ContestEntry.created_at, ContestEntry.id)
            )
            return list(result.scalars().all())

    async def count_entries(self, contest_id: uuid.UUID) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(ContestEntry.id)).where(
                    ContestEntry.contest_id == contest_id
                )
            )
            return result.scalar_one()

    async def save_entry_results(self, results: list[EntryResult]) -> None:
        async with self.session_factory() as session:
            for r in results:
                await session.execute(
                    update(ContestEntry)
                    .where(ContestEntry.id == r.entry_id)
                    .values(
                        final_portfolio_value=r.final_portfolio_value,
                        roi=r.roi,
                        rank=r.rank,
                    )
                )
            await session.commit()

    async def list_holdings(self, entry_id: uuid.UUID) -> list[PortfolioHolding]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PortfolioHolding).where(PortfolioHolding.entry_id == entry_id)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Stocks and users
    # ------------------------------------------------------------------

    async def get_stock_price(self, symbol: str) -> Decimal | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Stock.current_price).where(
                    Stock.symbol == symbol.upper(), Stock.is_active == True
                )
            )
            return result.scalar_one_or_none()

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    # ------------------------------------------------------------------
    # Coins
    # ------------------------------------------------------------------

    def _add_coin_transaction(
        self,
        session: AsyncSession,
        user: User,
        amount: int,
        type: CoinTransactionType,
        description: str,
        contest_id: uuid.UUID | None,
    ) -> CoinTransaction:
        """Stage the log row, then the balance change, on a locked user row."""
        before = user.coins_balance
        after = before + amount
        if after < 0:
            raise InsufficientCoinsError(user.id, before, -amount)

        transaction = CoinTransaction(
            user_id=user.id,
            type=type.value,
            amount=amount,
            coins_before=before,
            coins_after=after,
            description=description,
            contest_id=contest_id,
        )
        session.add(transaction)
        user.coins_balance = after
        return transaction

    async def credit_once(
        self,
        user_id: uuid.UUID,
        contest_id: uuid.UUID,
        amount: int,
        type: CoinTransactionType,
        description: str,
    ) -> CoinTransaction | None:
        async with self.session_factory() as session:
            async with session.begin():
                # Concurrent credits for the same user queue on this lock
                user = await session.get(User, user_id, with_for_update=True)
                if user is None:
                    raise UserNotFoundError(user_id)

                existing = await session.execute(
                    select(func.count(CoinTransaction.id)).where(
                        CoinTransaction.user_id == user_id,
                        CoinTransaction.contest_id == contest_id,
                        CoinTransaction.type == type.value,
                    )
                )
                if existing.scalar_one() > 0:
                    return None

                transaction = self._add_coin_transaction(
                    session, user, amount, type, description, contest_id
                )
                await session.flush()
                await session.refresh(transaction)
            return transaction

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def add_performance_snapshots(
        self, rows: list[tuple[uuid.UUID, Decimal]], timestamp: datetime
    ) -> int:
        async with self.session_factory() as session:
            session.add_all(
                PortfolioPerformance(
                    entry_id=entry_id, portfolio_value=value, timestamp=timestamp
                )
                for entry_id, value in rows
            )
            await session.commit()
        return len(rows)

    async def list_performance(self, entry_id: uuid.UUID) -> list[PortfolioPerformance]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PortfolioPerformance)
                .where(PortfolioPerformance.entry_id == entry_id)
                .order_by(PortfolioPerformance.timestamp)
            )
            return list(result.scalars().all())

    async def add_leaderboard_snapshot(
        self, contest_id: uuid.UUID, results: list[EntryResult], timestamp: datetime
    ) -> int:
        async with self.session_factory() as session:
            session.add_all(
                LeaderboardHistory(
                    contest_id=contest_id,
                    user_id=r.user_id,
                    rank=r.rank,
                    portfolio_value=r.final_portfolio_value,
                    roi=r.roi,
                    timestamp=timestamp,
                )
                for r in results
            )
            await session.commit()
        return len(results)

    async def recent_leaderboard_batches(
        self, contest_id: uuid.UUID, batches: int = 2
    ) -> list[list[LeaderboardHistory]]:
        async with self.session_factory() as session:
            ts_result = await session.execute(
                select(LeaderboardHistory.timestamp)
                .where(LeaderboardHistory.contest_id == contest_id)
                .distinct()
                .order_by(LeaderboardHistory.timestamp.desc())
                .limit(batches)
            )
            timestamps = list(ts_result.scalars().all())
            if not timestamps:
                return []

            rows_result = await session.execute(
                select(LeaderboardHistory)
                .where(
                    LeaderboardHistory.contest_id == contest_id,
                    LeaderboardHistory.timestamp.in_(timestamps),
                )
                .order_by(LeaderboardHistory.timestamp.desc(), LeaderboardHistory.rank)
            )
            grouped: dict[datetime, list[LeaderboardHistory]] = {ts: [] for ts in timestamps}
            for row in rows_result.scalars().all():
                grouped[row.timestamp].append(row)
            return [grouped[ts] for ts in timestamps]
