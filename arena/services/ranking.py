"""Rank calculation for contest entries.

Entries are ordered by ROI, highest first. Ties keep their input order
(entry creation order), so every ranked entry gets a distinct rank and a
contest with N resolved entries always holds exactly the ranks 1..N.
"""

import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable


@dataclass(frozen=True)
class EntryResult:
    """Valuation outcome for one entry, optionally with its rank."""

    entry_id: uuid.UUID
    user_id: uuid.UUID
    final_portfolio_value: Decimal | None
    roi: Decimal | None
    rank: int | None = None


def assign_ranks(results: Iterable[EntryResult]) -> list[EntryResult]:
    """
    Rank entries by ROI descending.

    Entries without an ROI are dropped; they are picked up by a later pass
    once their valuation resolves.
    """
    resolved = [r for r in results if r.roi is not None]
    # list.sort is stable with reverse=True, equal ROIs keep creation order
    resolved.sort(key=lambda r: r.roi, reverse=True)
    return [replace(r, rank=position) for position, r in enumerate(resolved, start=1)]


def rank_changes(
    latest: Iterable[tuple[uuid.UUID, int]],
    previous: Iterable[tuple[uuid.UUID, int]],
) -> dict[uuid.UUID, int]:
    """
    Compute rank movement per user between two leaderboard batches.

    Positive values mean the user climbed. Users missing from either
    batch have no change recorded.
    """
    previous_ranks = dict(previous)
    return {
        user_id: previous_ranks[user_id] - rank
        for user_id, rank in latest
        if user_id in previous_ranks
    }
