"""
Pricing Job Scheduler
=====================

Runs the pricing maintenance jobs on their cadences as background asyncio
tasks:

- City demand metrics: every ``demand_refresh_interval_seconds`` (15 min)
- Car utilization rates: every ``utilization_refresh_interval_seconds`` (1 day)
- Snapshot retention sweep: every ``snapshot_cleanup_interval_seconds`` (1 day)

Usage (integrated into an application lifecycle)::

    from rental_pricing.services.pricingScheduler import (
        start_pricing_scheduler,
        stop_pricing_scheduler,
    )

    async def startup():
        await start_pricing_scheduler()

    async def shutdown():
        await stop_pricing_scheduler()

Each run opens its own session and commits it.  No external dependency like
Celery or APScheduler is required.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_pricing.core.config import settings
from rental_pricing.jobs.pricingJobs import (
    cleanup_old_snapshots,
    update_all_city_demand_metrics,
    update_utilization_rates,
)

logger = logging.getLogger(__name__)

JobFn = Callable[[AsyncSession], Awaitable[Any]]

# Internal state
_scheduler_tasks: list[asyncio.Task] = []
_running: bool = False


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------

async def _run_job_once(
    name: str,
    job: JobFn,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Run one job in a fresh session and commit; errors are logged."""
    try:
        async with session_factory() as db:
            await job(db)
            await db.commit()
    except Exception:
        logger.exception("Error in pricing job %s", name)


async def _run_periodically(
    name: str,
    job: JobFn,
    interval_seconds: float,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    logger.info("Pricing job %s scheduled (interval=%ss)", name, interval_seconds)
    while _running:
        await _run_job_once(name, job, session_factory)
        await asyncio.sleep(interval_seconds)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def start_pricing_scheduler(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> None:
    """Start the three pricing job loops."""
    global _running

    if _scheduler_tasks:
        logger.warning("Pricing scheduler is already running")
        return

    if session_factory is None:
        from rental_pricing.core.database import async_session_factory
        session_factory = async_session_factory

    schedule = [
        ("demand", update_all_city_demand_metrics, settings.demand_refresh_interval_seconds),
        ("utilization", update_utilization_rates, settings.utilization_refresh_interval_seconds),
        ("cleanup", cleanup_old_snapshots, settings.snapshot_cleanup_interval_seconds),
    ]

    _running = True
    for name, job, interval in schedule:
        _scheduler_tasks.append(
            asyncio.create_task(_run_periodically(name, job, interval, session_factory))
        )
    logger.info("Pricing scheduler started")


async def stop_pricing_scheduler() -> None:
    """Cancel the pricing job loops and wait for them to finish."""
    global _running

    _running = False

    if not _scheduler_tasks:
        return

    for task in _scheduler_tasks:
        task.cancel()
    for task in _scheduler_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _scheduler_tasks.clear()
    logger.info("Pricing scheduler stopped")


def is_running() -> bool:
    return _running and bool(_scheduler_tasks)
