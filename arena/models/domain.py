"""Domain models for StockArena.

This module defines all database models for the contest platform.
Coins are integers; prices, share quantities, portfolio values and ROI are
stored as Numeric and handled as Decimal in Python.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from arena.models.base import Base, TimestampMixin


class ContestStatus(str, Enum):
    """Contest lifecycle states."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ContestStatus.COMPLETED, ContestStatus.CANCELLED)


class CoinTransactionType(str, Enum):
    """Kinds of coin balance movements."""
    PURCHASE = "purchase"
    EXCHANGE = "exchange"
    CONTEST_ENTRY = "contest_entry"
    PRIZE = "prize"
    REFUND = "refund"


class User(Base, TimestampMixin):
    """Platform user holding a virtual coin balance."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    coins_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=15000)

    def __repr__(self) -> str:
        return f"<User {self.username} coins={self.coins_balance}>"


class Stock(Base):
    """
    Tradable stock symbol.

    current_price is refreshed by the price feed and read at valuation time.
    """

    __tablename__ = "stocks"

    symbol: Mapped[str] = mapped_column(String(20), primary_key=True)
    company_name: Mapped[str] = mapped_column(Text, nullable=False)
    sector: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Stock {self.symbol} {self.current_price}>"


class Contest(Base, TimestampMixin):
    """
    Time-boxed competition.

    Status only ever moves forward:
    upcoming -> active -> completed, or upcoming -> cancelled when abandoned.
    """

    __tablename__ = "contests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_pool: Mapped[int] = mapped_column(Integer, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContestStatus.UPCOMING.value
    )
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prizes_distributed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Set once prize payments for the contest have all committed",
    )

    entries: Mapped[list["ContestEntry"]] = relationship(
        "ContestEntry", back_populates="contest", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_contests_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Contest {self.name} ({self.status})>"


class ContestEntry(Base, TimestampMixin):
    """
    One user's participation in one contest.

    final_portfolio_value, roi and rank are written together when results
    are calculated.
    """

    __tablename__ = "contest_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    contest_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False
    )
    total_coins_invested: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    final_portfolio_value: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    roi: Mapped[Decimal | None] = mapped_column(Numeric(9, 2), nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)

    contest: Mapped["Contest"] = relationship("Contest", back_populates="entries")
    holdings: Mapped[list["PortfolioHolding"]] = relationship(
        "PortfolioHolding", back_populates="entry", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "contest_id", name="uq_entry_user_contest"),
        Index("idx_entries_contest", "contest_id"),
    )

    def __repr__(self) -> str:
        return f"<ContestEntry user={self.user_id} contest={self.contest_id} rank={self.rank}>"


class PortfolioHolding(Base, TimestampMixin):
    """Stock allocation fixed at contest-join time."""

    __tablename__ = "portfolio_holdings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contest_entries.id", ondelete="CASCADE"), nullable=False
    )
    stock_symbol: Mapped[str] = mapped_column(
        String(20), ForeignKey("stocks.symbol"), nullable=False
    )
    coins_invested: Mapped[int] = mapped_column(Integer, nullable=False)
    shares_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 8), nullable=False)
    purchase_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    entry: Mapped["ContestEntry"] = relationship("ContestEntry", back_populates="holdings")

    def __repr__(self) -> str:
        return f"<PortfolioHolding {self.stock_symbol} x{self.shares_quantity}>"


class PortfolioPerformance(Base):
    """Append-only portfolio value time series, one row per entry per tick."""

    __tablename__ = "portfolio_performance"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contest_entries.id", ondelete="CASCADE"), nullable=False
    )
    portfolio_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_performance_entry_time", "entry_id", "timestamp"),
    )


class LeaderboardHistory(Base):
    """
    Append-only leaderboard snapshot row.

    Rows recorded in the same tick share one timestamp, which identifies
    the batch when computing rank changes.
    """

    __tablename__ = "leaderboard_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contest_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    portfolio_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    roi: Mapped[Decimal] = mapped_column(Numeric(9, 2), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_leaderboard_contest_time", "contest_id", "timestamp"),
    )


class CoinTransaction(Base, TimestampMixin):
    """
    Audit row for a single coin balance mutation.

    Every change to User.coins_balance is paired with exactly one row here.
    """

    __tablename__ = "coin_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, doc="Signed coin delta")
    coins_before: Mapped[int] = mapped_column(Integer, nullable=False)
    coins_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    contest_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contests.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        Index("idx_coin_tx_contest_user_type", "contest_id", "user_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<CoinTransaction {self.type} {self.amount:+d} user={self.user_id}>"


class JobRun(Base):
    """
    Task execution audit log.

    Every scheduled task run is logged here for:
    1. Monitoring and alerting
    2. Debugging failures
    3. Performance tracking
    """

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'running', 'success', 'failed'"
    )
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    def __repr__(self) -> str:
        return f"<JobRun {self.job_name} status={self.status}>"
