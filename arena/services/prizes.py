"""Prize distribution for completed contests.

The top ranked entries share the prize pool (default 50% / 30% / 20%),
each share floored to whole coins. Payment happens at most once per
contest: a contest flag blocks repeat runs, and each prize is credited
through the ledger only if the user holds no prize transaction for the
contest yet. That check runs under the user row lock, so a retry after a
partial failure pays only the winners that were missed and overlapping
runs cannot both pay.
"""

import uuid
from dataclasses import dataclass, replace
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Sequence

import structlog

from arena.models.domain import CoinTransactionType, ContestEntry, ContestStatus
from arena.services.exceptions import (
    ContestNotFoundError,
    InvalidContestStateError,
    PrizesAlreadyDistributedError,
)

logger = structlog.get_logger(__name__)

DEFAULT_PRIZE_SPLIT: tuple[Decimal, ...] = (
    Decimal("0.50"),
    Decimal("0.30"),
    Decimal("0.20"),
)


@dataclass(frozen=True)
class PrizeAward:
    """Prize owed to one ranked entry."""

    rank: int
    user_id: uuid.UUID
    entry_id: uuid.UUID
    amount: int
    paid: bool = False  # paid by this run

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": str(self.user_id),
            "entry_id": str(self.entry_id),
            "amount": self.amount,
            "paid": self.paid,
        }


def load_prize_split(defaults: dict[str, Any] | None) -> tuple[Decimal, ...]:
    """Read the prize split from the defaults.yaml mapping."""
    split = (defaults or {}).get("prizes", {}).get("split")
    if not split:
        return DEFAULT_PRIZE_SPLIT

    shares = tuple(Decimal(str(share)) for share in split)
    if any(share < 0 for share in shares) or sum(shares) > 1:
        raise ValueError(f"Invalid prize split: {split}")
    return shares


def calculate_prizes(
    prize_pool: int,
    ranked_entries: Sequence[ContestEntry],
    split: Sequence[Decimal] = DEFAULT_PRIZE_SPLIT,
) -> list[PrizeAward]:
    """
    Work out prize amounts for the best ranked entries.

    Args:
        prize_pool: Total coins to share
        ranked_entries: Entries with a rank, in any order
        split: Share of the pool for rank 1, 2, 3...
    """
    ordered = sorted((e for e in ranked_entries if e.rank is not None), key=lambda e: e.rank)
    awards = []
    for entry, share in zip(ordered, split):
        amount = int((Decimal(prize_pool) * share).to_integral_value(rounding=ROUND_FLOOR))
        awards.append(
            PrizeAward(
                rank=entry.rank,
                user_id=entry.user_id,
                entry_id=entry.id,
                amount=amount,
            )
        )
    return awards


class PrizeDistributor:
    """Pays contest prizes exactly once."""

    def __init__(self, ledger, split: Sequence[Decimal] | None = None):
        self.ledger = ledger
        self.split = tuple(split) if split is not None else DEFAULT_PRIZE_SPLIT

    async def distribute(self, contest_id: uuid.UUID) -> list[PrizeAward]:
        """
        Distribute the prize pool of a completed contest.

        Raises:
            ContestNotFoundError: unknown contest
            InvalidContestStateError: contest not completed or nobody ranked
            PrizesAlreadyDistributedError: prizes were paid before
        """
        contest = await self.ledger.get_contest(contest_id)
        if contest is None:
            raise ContestNotFoundError(contest_id)

        if contest.status != ContestStatus.COMPLETED.value:
            raise InvalidContestStateError(
                "Contest must be completed to distribute prizes"
            )
        if contest.prizes_distributed:
            raise PrizesAlreadyDistributedError(contest_id)

        entries = await self.ledger.list_entries(contest_id)
        awards = calculate_prizes(contest.prize_pool, entries, self.split)
        if not awards:
            raise InvalidContestStateError("No ranked participants to distribute prizes to")

        awarded = []
        for award in awards:
            if award.amount <= 0:
                awarded.append(award)
                continue

            transaction = await self.ledger.credit_once(
                award.user_id,
                contest_id,
                award.amount,
                CoinTransactionType.PRIZE,
                f"Prize for rank {award.rank} in contest: {contest.name}",
            )
            if transaction is None:
                logger.warning(
                    "prize_already_paid",
                    contest_id=str(contest_id),
                    user_id=str(award.user_id),
                    rank=award.rank,
                )
                awarded.append(award)
                continue

            awarded.append(replace(award, paid=True))

        if not await self.ledger.mark_prizes_distributed(contest_id):
            logger.warning("prizes_flag_already_set", contest_id=str(contest_id))

        logger.info(
            "prizes_distributed",
            contest_id=str(contest_id),
            winners=len(awarded),
            paid_now=sum(a.amount for a in awarded if a.paid),
        )
        return awarded
