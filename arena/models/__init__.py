"""Database models for StockArena."""

from arena.models.base import Base, async_session_factory, engine
from arena.models.domain import (
    CoinTransaction,
    CoinTransactionType,
    Contest,
    ContestEntry,
    ContestStatus,
    JobRun,
    LeaderboardHistory,
    PortfolioHolding,
    PortfolioPerformance,
    Stock,
    User,
)

__all__ = [
    # Base
    "Base",
    "engine",
    "async_session_factory",
    # Enums
    "ContestStatus",
    "CoinTransactionType",
    # Domain models
    "User",
    "Stock",
    "Contest",
    "ContestEntry",
    "PortfolioHolding",
    "PortfolioPerformance",
    "LeaderboardHistory",
    "CoinTransaction",
    "JobRun",
]
