"""StockArena FastAPI application.

Fantasy stock-picking contests: users join with a fixed coin budget, the
lifecycle scheduler starts, finalises and cancels contests on time.
"""

from contextlib import asynccontextmanager

import redis.asyncio as redis
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from arena.api.errors import http_error
from arena.api.routes import admin, contests, health
from arena.config import get_settings
from arena.logging import configure_logging
from arena.models.base import async_session_factory
from arena.services.exceptions import ArenaError
from arena.services.ledger import SqlLedger
from arena.services.pricing import CachedPriceOracle, LedgerPriceOracle
from arena.services.scheduler import LifecycleScheduler

settings = get_settings()
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("starting_stockarena", version="0.1.0")

    redis_client = redis.from_url(settings.redis_url)
    ledger = SqlLedger(async_session_factory)
    price_oracle = CachedPriceOracle(
        redis_client,
        LedgerPriceOracle(ledger),
        ttl_seconds=settings.price_cache_ttl_seconds,
    )
    scheduler = LifecycleScheduler.from_settings(ledger, price_oracle, settings)

    app.state.ledger = ledger
    app.state.price_oracle = price_oracle
    app.state.scheduler = scheduler

    if settings.run_scheduler:
        await scheduler.start()
    else:
        logger.info("scheduler_disabled", reason="run_scheduler is false")

    yield

    await scheduler.stop()
    await redis_client.aclose()
    logger.info("shutting_down_stockarena")


# Create FastAPI application
app = FastAPI(
    title="StockArena",
    description="Fantasy stock trading contests with an automated lifecycle scheduler",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(contests.router)
app.include_router(admin.router)


# Error handlers
@app.exception_handler(ArenaError)
async def arena_error_handler(request: Request, exc: ArenaError):
    """Service errors that escaped a route become 404/400 responses."""
    error = http_error(exc)
    logger.info("request_rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    """Custom 500 handler."""
    logger.error("server_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
