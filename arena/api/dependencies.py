"""FastAPI dependencies for StockArena."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from arena.config import get_settings
from arena.models.base import async_session_factory
from arena.services.contests import ContestService
from arena.services.scheduler import LifecycleScheduler


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    settings = get_settings()
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()


def get_scheduler(request: Request) -> LifecycleScheduler:
    """The process-wide scheduler built in the application lifespan."""
    return request.app.state.scheduler


def get_contest_service(
    request: Request,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
) -> ContestService:
    """Contest service bound to the application's ledger and scheduler."""
    settings = get_settings()
    return ContestService(
        ledger=request.app.state.ledger,
        price_oracle=request.app.state.price_oracle,
        scheduler=scheduler,
        clock=scheduler.clock,
        entry_budget=settings.entry_budget,
    )
