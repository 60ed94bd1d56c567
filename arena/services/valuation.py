"""Portfolio valuation engine.

current_value = sum(shares_quantity * current_price) over all holdings
roi = (current_value - invested) / invested * 100

All arithmetic is Decimal. Values and ROI are quantized to cents only
after the sum, so repeated snapshots never accumulate rounding drift.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import structlog

from arena.models.domain import ContestEntry
from arena.services.exceptions import MissingPriceError
from arena.services.ranking import EntryResult

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class HoldingLike(Protocol):
    stock_symbol: str
    shares_quantity: Decimal


@dataclass(frozen=True)
class PortfolioValuation:
    """Point-in-time value of one portfolio."""

    current_value: Decimal
    invested: Decimal
    roi: Decimal


def compute_valuation(
    holdings: Iterable[HoldingLike],
    prices: Mapping[str, Decimal | None],
    total_invested: Decimal | int,
) -> PortfolioValuation:
    """
    Value holdings against a price map.

    Raises:
        MissingPriceError: if any holding's symbol has no price
    """
    holdings = list(holdings)
    missing = sorted({h.stock_symbol for h in holdings if prices.get(h.stock_symbol) is None})
    if missing:
        raise MissingPriceError(missing)

    invested = Decimal(total_invested)
    value = sum(
        (Decimal(h.shares_quantity) * Decimal(prices[h.stock_symbol]) for h in holdings),
        Decimal("0"),
    )

    if invested > 0:
        roi = (value - invested) / invested * HUNDRED
    else:
        roi = Decimal("0")

    return PortfolioValuation(
        current_value=value.quantize(CENT, rounding=ROUND_HALF_UP),
        invested=invested,
        roi=roi.quantize(CENT, rounding=ROUND_HALF_UP),
    )


async def value_entry(ledger, price_oracle, entry: ContestEntry) -> PortfolioValuation:
    """Load an entry's holdings and value them at current prices."""
    holdings = await ledger.list_holdings(entry.id)
    prices: dict[str, Decimal | None] = {}
    for holding in holdings:
        if holding.stock_symbol not in prices:
            prices[holding.stock_symbol] = await price_oracle.get_price(holding.stock_symbol)
    return compute_valuation(holdings, prices, entry.total_coins_invested)


async def value_entries(
    ledger, price_oracle, entries: Iterable[ContestEntry]
) -> tuple[list[EntryResult], list[ContestEntry]]:
    """
    Value every entry, separating those whose prices could not be resolved.

    Returns:
        (results in entry order, unresolved entries)
    """
    results = []
    unresolved = []
    for entry in entries:
        try:
            valuation = await value_entry(ledger, price_oracle, entry)
        except MissingPriceError as e:
            logger.error(
                "entry_valuation_failed",
                entry_id=str(entry.id),
                contest_id=str(entry.contest_id),
                missing_symbols=e.symbols,
            )
            unresolved.append(entry)
            continue

        results.append(
            EntryResult(
                entry_id=entry.id,
                user_id=entry.user_id,
                final_portfolio_value=valuation.current_value,
                roi=valuation.roi,
            )
        )
    return results, unresolved
