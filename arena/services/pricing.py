"""Price oracles.

An oracle answers "what is the current price of symbol S". Prices may be
stale but are authoritative at read time.
"""

from decimal import Decimal, InvalidOperation
from typing import Protocol

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


class PriceOracle(Protocol):
    async def get_price(self, symbol: str) -> Decimal | None: ...


class LedgerPriceOracle:
    """Reads current prices from the stocks table."""

    def __init__(self, ledger):
        self.ledger = ledger

    async def get_price(self, symbol: str) -> Decimal | None:
        return await self.ledger.get_stock_price(symbol)


class CachedPriceOracle:
    """
    Redis cache in front of another oracle.

    Cache misses, unparseable cache values and Redis outages all fall
    through to the wrapped oracle.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        fallback: PriceOracle,
        ttl_seconds: int = 60,
        key_prefix: str = "price",
    ):
        self.redis = redis_client
        self.fallback = fallback
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _get_key(self, symbol: str) -> str:
        return f"{self.key_prefix}:{symbol.upper()}"

    async def get_price(self, symbol: str) -> Decimal | None:
        key = self._get_key(symbol)

        try:
            cached = await self.redis.get(key)
        except RedisError as e:
            logger.warning("price_cache_unavailable", symbol=symbol, error=str(e))
            return await self.fallback.get_price(symbol)

        if cached:
            try:
                raw = cached.decode("utf-8") if isinstance(cached, bytes) else cached
                return Decimal(raw)
            except (InvalidOperation, UnicodeDecodeError) as e:
                logger.warning("invalid_cached_price", symbol=symbol, error=str(e))

        price = await self.fallback.get_price(symbol)
        if price is not None:
            try:
                await self.redis.set(key, str(price), ex=self.ttl_seconds)
            except RedisError as e:
                logger.warning("price_cache_write_failed", symbol=symbol, error=str(e))
        return price
