"""
Demand Calculator -- city-level supply/demand multiplier.

The multiplier is driven by the supply ratio: the fraction of a city's
eligible cars that are not booked for the requested window.  Plenty of
supply discounts the price, scarcity adds a premium:

    supply ratio   demand multiplier
    >= 0.7         0.70 - 0.79   (low demand)
    0.4 - 0.7      0.90 - 1.10   (normal)
    0.2 - 0.4      1.20 - 1.70   (high)
    < 0.2          1.80 - 2.50   (very high)

The result is always clamped to [0.6, 2.5].  Queries run inside a SAVEPOINT
and any data-access failure yields the neutral multiplier 1.0, leaving the
caller's transaction usable; this estimator never raises.

``get_city_demand_metrics`` maintains the per-city ``CityDemandMetrics``
cache row used by dashboards and the 15-minute refresh job.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.core.clock import as_utc, resolve_now
from rental_pricing.core.config import settings
from rental_pricing.models import Car, CarState, CityDemandMetrics, Contract, ContractState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NEUTRAL_MULTIPLIER = Decimal("1.0")
DEMAND_MIN = Decimal("0.6")
DEMAND_MAX = Decimal("2.5")

# Contract states that hold a car for the requested window
BOOKING_STATES = (ContractState.DRAFT, ContractState.ACTIVE)


def _clamp(value: Decimal, low: Decimal = DEMAND_MIN, high: Decimal = DEMAND_MAX) -> Decimal:
    return max(low, min(high, value))


def demand_score_for_supply_ratio(supply_ratio: Decimal) -> Decimal:
    """Map a supply ratio onto the four-segment demand curve, clamped."""
    if supply_ratio >= Decimal("0.7"):
        score = Decimal("0.7") + (supply_ratio - Decimal("0.7")) * Decimal("0.3")
    elif supply_ratio >= Decimal("0.4"):
        score = Decimal("0.9") + (Decimal("0.7") - supply_ratio) * Decimal("0.67")
    elif supply_ratio >= Decimal("0.2"):
        score = Decimal("1.2") + (Decimal("0.4") - supply_ratio) * Decimal("2.5")
    else:
        score = Decimal("1.8") + (Decimal("0.2") - supply_ratio) * Decimal("3.5")
    return _clamp(score)


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------

async def _count_eligible_cars(db: AsyncSession, city_id: uuid.UUID) -> int:
    """Cars in the city that can be leased and are not in the workshop."""
    stmt = (
        select(func.count())
        .select_from(Car)
        .where(
            Car.city_id == city_id,
            Car.available_for_lease == True,  # noqa: E712
            Car.state != CarState.MAINTENANCE,
        )
    )
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def _count_overlapping_contracts(
    db: AsyncSession,
    city_id: uuid.UUID,
    start_date: datetime,
    end_date: datetime,
) -> int:
    """Draft/active contracts in the city overlapping [start_date, end_date]."""
    stmt = (
        select(func.count())
        .select_from(Contract)
        .join(Car, Car.id == Contract.car_id)
        .where(
            Car.city_id == city_id,
            Contract.state.in_(BOOKING_STATES),
            or_(
                # Starts during the requested period
                and_(Contract.start_date >= start_date, Contract.start_date <= end_date),
                # Ends during the requested period
                and_(Contract.end_date >= start_date, Contract.end_date <= end_date),
                # Spans the entire requested period
                and_(Contract.start_date <= start_date, Contract.end_date >= end_date),
            ),
        )
    )
    result = await db.execute(stmt)
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def calculate_demand_multiplier(
    db: AsyncSession,
    city_id: uuid.UUID,
    start_date: datetime,
    end_date: datetime,
) -> Decimal:
    """Calculate the supply/demand multiplier for a city and date range.

    Returns:
        Multiplier in [0.6, 2.5]; 1.0 when the city has no eligible cars or
        the counts cannot be read.
    """
    try:
        async with db.begin_nested():
            total_cars = await _count_eligible_cars(db, city_id)
            if total_cars == 0:
                return NEUTRAL_MULTIPLIER

            overlapping = await _count_overlapping_contracts(
                db, city_id, start_date, end_date
            )
    except Exception:
        logger.exception("Error calculating demand multiplier for city %s", city_id)
        return NEUTRAL_MULTIPLIER

    supply_ratio = Decimal(total_cars - overlapping) / Decimal(total_cars)
    multiplier = demand_score_for_supply_ratio(supply_ratio)

    logger.debug(
        "Demand for city %s: total=%d overlapping=%d ratio=%s multiplier=%s",
        city_id,
        total_cars,
        overlapping,
        supply_ratio,
        multiplier,
    )
    return multiplier


async def count_city_availability(
    db: AsyncSession,
    city_id: uuid.UUID,
) -> tuple[int, int]:
    """Return ``(available_cars, active_contracts)`` for a city right now.

    Used for the supply/demand context captured on pricing snapshots.
    """
    total_stmt = (
        select(func.count())
        .select_from(Car)
        .where(Car.city_id == city_id, Car.available_for_lease == True)  # noqa: E712
    )
    active_stmt = (
        select(func.count())
        .select_from(Contract)
        .join(Car, Car.id == Contract.car_id)
        .where(Car.city_id == city_id, Contract.state == ContractState.ACTIVE)
    )
    total_cars = int((await db.execute(total_stmt)).scalar_one())
    active_contracts = int((await db.execute(active_stmt)).scalar_one())
    return total_cars - active_contracts, active_contracts


def _neutral_metrics(city_id: uuid.UUID, now: datetime) -> CityDemandMetrics:
    """Unsaved metrics value returned when the cache cannot be refreshed."""
    return CityDemandMetrics(
        city_id=city_id,
        total_cars=0,
        available_cars=0,
        active_contracts=0,
        utilization_rate=Decimal("0"),
        demand_score=NEUTRAL_MULTIPLIER,
        last_calculated=now,
    )


async def get_city_demand_metrics(
    db: AsyncSession,
    city_id: uuid.UUID,
    now: Optional[datetime] = None,
    max_age: Optional[timedelta] = None,
) -> CityDemandMetrics:
    """Return the cached demand metrics for a city, refreshing when stale.

    A cached row younger than ``max_age`` (default 15 minutes) is returned
    as-is.  Otherwise the counts are recomputed against ``now`` and the row
    is upserted.  Concurrent refreshes for the same city are last-writer-wins.

    Args:
        db: Async database session.
        city_id: City to report on.
        now: Reference time (defaults to the current UTC time).
        max_age: Freshness window for the cached row.

    Returns:
        The persisted ``CityDemandMetrics`` row, or an unsaved neutral value
        if the metrics could not be computed.
    """
    now = resolve_now(now)
    if max_age is None:
        max_age = timedelta(minutes=settings.demand_cache_max_age_minutes)

    try:
        async with db.begin_nested():
            stmt = select(CityDemandMetrics).where(CityDemandMetrics.city_id == city_id)
            result = await db.execute(stmt)
            metrics = result.scalar_one_or_none()

            if metrics is not None and as_utc(metrics.last_calculated) > now - max_age:
                return metrics

            total_stmt = (
                select(func.count())
                .select_from(Car)
                .where(Car.city_id == city_id, Car.available_for_lease == True)  # noqa: E712
            )
            total_cars = int((await db.execute(total_stmt)).scalar_one())

            active_stmt = (
                select(func.count())
                .select_from(Contract)
                .join(Car, Car.id == Contract.car_id)
                .where(
                    Car.city_id == city_id,
                    Contract.state == ContractState.ACTIVE,
                    Contract.start_date <= now,
                    Contract.end_date >= now,
                )
            )
            active_contracts = int((await db.execute(active_stmt)).scalar_one())

            available_cars = total_cars - active_contracts
            if total_cars > 0:
                utilization_rate = Decimal(active_contracts) / Decimal(total_cars)
                supply_ratio = Decimal(available_cars) / Decimal(total_cars)
            else:
                utilization_rate = Decimal("0")
                supply_ratio = Decimal("1")

            demand_score = _clamp(DEMAND_MAX - supply_ratio * Decimal("2"))

            if metrics is None:
                metrics = CityDemandMetrics(city_id=city_id)
                db.add(metrics)

            metrics.total_cars = total_cars
            metrics.available_cars = available_cars
            metrics.active_contracts = active_contracts
            metrics.utilization_rate = utilization_rate.quantize(Decimal("0.0001"))
            metrics.demand_score = demand_score.quantize(Decimal("0.0001"))
            metrics.last_calculated = now
            await db.flush()

            logger.info(
                "Refreshed demand metrics for city %s: total=%d active=%d demand=%s",
                city_id,
                total_cars,
                active_contracts,
                metrics.demand_score,
            )
            return metrics
    except Exception:
        logger.exception("Error getting demand metrics for city %s", city_id)
        return _neutral_metrics(city_id, now)
