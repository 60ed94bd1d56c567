"""Snapshot recorder.

Appends point-in-time portfolio values and leaderboard standings for
active contests. Rows are only ever inserted; history starts whenever the
recorder first saw the contest active.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from arena.models.domain import ContestStatus
from arena.services.lifecycle import utcnow
from arena.services.ranking import assign_ranks
from arena.services.valuation import value_entries

logger = structlog.get_logger(__name__)


class SnapshotRecorder:
    """Records performance and leaderboard history for active contests."""

    def __init__(self, ledger, price_oracle, clock: Callable[[], datetime] = utcnow):
        self.ledger = ledger
        self.price_oracle = price_oracle
        self.clock = clock

    async def record_portfolio_performance(self) -> dict[str, Any]:
        """Append one PortfolioPerformance row per resolvable entry."""
        stats = {"contests": 0, "snapshots_stored": 0, "entries_skipped": 0, "errors": 0}
        timestamp = self.clock()

        for contest in await self.ledger.list_contests_by_status(ContestStatus.ACTIVE):
            stats["contests"] += 1
            try:
                entries = await self.ledger.list_entries(contest.id)
                results, unresolved = await value_entries(
                    self.ledger, self.price_oracle, entries
                )
                stats["entries_skipped"] += len(unresolved)
                stats["snapshots_stored"] += await self.ledger.add_performance_snapshots(
                    [(r.entry_id, r.final_portfolio_value) for r in results],
                    timestamp,
                )
            except Exception as e:
                logger.error(
                    "performance_snapshot_failed",
                    contest_id=str(contest.id),
                    error=str(e),
                    exc_info=True,
                )
                stats["errors"] += 1

        logger.info("portfolio_performance_recorded", **stats)
        return stats

    async def record_leaderboards(self) -> dict[str, Any]:
        """Append one ranked LeaderboardHistory batch per active contest."""
        stats = {"contests": 0, "rows_stored": 0, "entries_skipped": 0, "errors": 0}
        timestamp = self.clock()

        for contest in await self.ledger.list_contests_by_status(ContestStatus.ACTIVE):
            stats["contests"] += 1
            try:
                entries = await self.ledger.list_entries(contest.id)
                results, unresolved = await value_entries(
                    self.ledger, self.price_oracle, entries
                )
                stats["entries_skipped"] += len(unresolved)
                ranked = assign_ranks(results)
                if ranked:
                    stats["rows_stored"] += await self.ledger.add_leaderboard_snapshot(
                        contest.id, ranked, timestamp
                    )
            except Exception as e:
                logger.error(
                    "leaderboard_snapshot_failed",
                    contest_id=str(contest.id),
                    error=str(e),
                    exc_info=True,
                )
                stats["errors"] += 1

        logger.info("leaderboard_snapshots_recorded", **stats)
        return stats
