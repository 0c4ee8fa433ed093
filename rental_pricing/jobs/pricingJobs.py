"""
Pricing Maintenance Jobs.

Keeps the cached pricing inputs fresh:

- City demand metrics: every 15 minutes
- Car utilization rates: daily
- Pricing snapshot retention sweep: daily, keeps the last 90 days

Each job is independently triggerable and never raises past its own
boundary.  Per-city and per-car failures are logged and the sweep continues.

Usage with a simple cron runner::

    python -m rental_pricing.jobs.pricingJobs demand
    python -m rental_pricing.jobs.pricingJobs utilization
    python -m rental_pricing.jobs.pricingJobs cleanup
    python -m rental_pricing.jobs.pricingJobs all

For an in-process cadence see ``rental_pricing.services.pricingScheduler``.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.core.clock import resolve_now
from rental_pricing.core.config import settings
from rental_pricing.models import City, PricingSnapshot
from rental_pricing.services.demandCalculator import get_city_demand_metrics
from rental_pricing.services.utilizationCalculator import (
    UtilizationSweepResult,
    update_all_car_utilization_rates,
)

logger = logging.getLogger(__name__)


@dataclass
class DemandRefreshResult:
    cities_processed: int = 0
    cities_failed: int = 0


@dataclass
class PricingJobsResult:
    """Aggregate result of a manual run of every pricing job."""
    demand: DemandRefreshResult = field(default_factory=DemandRefreshResult)
    utilization: Optional[UtilizationSweepResult] = None
    snapshots_deleted: int = 0


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

async def update_all_city_demand_metrics(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> DemandRefreshResult:
    """Recompute the demand metrics row of every city."""
    logger.info("Updating city demand metrics...")
    now = resolve_now(now)
    refresh = DemandRefreshResult()

    try:
        result = await db.execute(select(City.id, City.name))
        cities = result.all()
    except Exception:
        logger.exception("Error listing cities for demand refresh")
        return refresh

    for city in cities:
        try:
            async with db.begin_nested():
                # max_age=0 bypasses the cache so every row is recomputed
                await get_city_demand_metrics(
                    db, city.id, now=now, max_age=timedelta(0)
                )
            refresh.cities_processed += 1
            logger.debug("Updated demand metrics for %s", city.name)
        except Exception:
            refresh.cities_failed += 1
            logger.exception("Error updating demand metrics for %s", city.name)

    logger.info(
        "City demand metrics update completed: processed=%d, failed=%d",
        refresh.cities_processed,
        refresh.cities_failed,
    )
    return refresh


async def update_utilization_rates(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Optional[UtilizationSweepResult]:
    """Recompute every lease-eligible car's utilization rate."""
    logger.info("Updating car utilization rates...")
    try:
        return await update_all_car_utilization_rates(db, now=now)
    except Exception:
        logger.exception("Error updating utilization rates")
        return None


async def cleanup_old_snapshots(
    db: AsyncSession,
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Delete pricing snapshots older than the retention window.

    Returns:
        Number of snapshots deleted (0 on failure).
    """
    retention_days = retention_days or settings.snapshot_retention_days
    cutoff = resolve_now(now) - timedelta(days=retention_days)

    logger.info("Cleaning up pricing snapshots older than %s...", cutoff.isoformat())
    try:
        async with db.begin_nested():
            result = await db.execute(
                delete(PricingSnapshot).where(PricingSnapshot.created_at < cutoff)
            )
    except Exception:
        logger.exception("Error cleaning up old pricing snapshots")
        return 0

    deleted = result.rowcount or 0
    logger.info("Deleted %d old pricing snapshots", deleted)
    return deleted


async def run_all_pricing_jobs(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> PricingJobsResult:
    """Run demand, utilization and cleanup one after another."""
    logger.info("Running all pricing jobs...")
    outcome = PricingJobsResult()
    outcome.demand = await update_all_city_demand_metrics(db, now=now)
    outcome.utilization = await update_utilization_rates(db, now=now)
    outcome.snapshots_deleted = await cleanup_old_snapshots(db, now=now)
    logger.info("All pricing jobs completed")
    return outcome


JOBS = {
    "demand": update_all_city_demand_metrics,
    "utilization": update_utilization_rates,
    "cleanup": cleanup_old_snapshots,
    "all": run_all_pricing_jobs,
}


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

async def _cli_main(command: str) -> None:
    """Entry point for running a pricing job from the command line."""
    from rental_pricing.core.database import async_session_factory

    job = JOBS.get(command)
    if job is None:
        raise SystemExit(
            f"Unknown job '{command}'. Must be one of: {', '.join(JOBS)}"
        )

    async with async_session_factory() as session:
        try:
            result = await job(session)
            await session.commit()
            print(f"Pricing job '{command}' completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Pricing job '%s' failed", command)
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main(sys.argv[1] if len(sys.argv) > 1 else "all"))
