"""Shared plumbing for Celery jobs.

Each job gets a fresh engine, a ledger and price oracle bound to it, and a
``job_runs`` audit row recording how the run went.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
import structlog

from arena.config import get_settings
from arena.models.base import get_task_session_factory
from arena.models.domain import JobRun
from arena.services.ledger import SqlLedger
from arena.services.pricing import CachedPriceOracle, LedgerPriceOracle
from arena.services.scheduler import LifecycleScheduler

logger = structlog.get_logger(__name__)

JobWork = Callable[[LifecycleScheduler], Awaitable[dict[str, Any]]]


def run_job(task, job_name: str, work: JobWork) -> dict[str, Any]:
    """Run an async job to completion on a private event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(run_tracked_job(task, job_name, work))
    finally:
        loop.close()


async def run_tracked_job(task, job_name: str, work: JobWork) -> dict[str, Any]:
    """Run ``work`` against a database backed scheduler, auditing the run."""
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    stats: dict[str, Any] = {}

    async with get_task_session_factory() as session_factory:
        async with session_factory() as session:
            job_run = JobRun(job_name=job_name, started_at=started_at, status="running")
            session.add(job_run)
            await session.commit()

            redis_client = redis.from_url(settings.redis_url)
            try:
                ledger = SqlLedger(session_factory)
                oracle = CachedPriceOracle(
                    redis_client,
                    LedgerPriceOracle(ledger),
                    ttl_seconds=settings.price_cache_ttl_seconds,
                )
                scheduler = LifecycleScheduler.from_settings(ledger, oracle, settings)
                stats = await work(scheduler)

                job_status = "success"
                logger.info(
                    "job_complete",
                    job_name=job_name,
                    duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
                    **stats,
                )

            except Exception as e:
                job_status = "failed"
                error_message = str(e)
                logger.error(
                    "job_failed",
                    job_name=job_name,
                    error=str(e),
                    task_id=task.request.id,
                )

            finally:
                await redis_client.aclose()
                job_run.completed_at = datetime.now(timezone.utc)
                job_run.status = job_status
                job_run.error_message = error_message
                job_run.records_processed = _records_processed(stats)
                job_run.job_metadata = stats
                await session.commit()

    return stats


def _records_processed(stats: dict[str, Any]) -> int:
    for key in ("contests_checked", "snapshots_stored", "rows_stored"):
        if key in stats:
            return int(stats[key])
    return 0
