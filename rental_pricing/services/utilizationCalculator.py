"""
Utilization Calculator -- per-car performance adjustments.

Two independent multipliers:

- Utilization: how busy the car has been over the lookback window (stored
  on the car by the daily sweep).  Idle cars get a discount, cars above the
  75% target get a premium.
- Maintenance: the car's condition score (0-100).

``update_car_utilization_rate`` / ``update_all_car_utilization_rates`` are
the background recomputation used by the daily job.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.core.clock import SECONDS_PER_DAY, as_utc, resolve_now
from rental_pricing.core.config import settings
from rental_pricing.models import Car, Contract, ContractState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TARGET_UTILIZATION = Decimal("0.75")

# Contract states that count as the car being on the road
UTILIZED_STATES = (ContractState.ACTIVE, ContractState.COMPLETED)


@dataclass
class UtilizationSweepResult:
    """Aggregate result of a utilization recomputation sweep."""
    cars_processed: int = 0
    cars_failed: int = 0
    rates: dict[uuid.UUID, Decimal] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------

def utilization_multiplier_for_rate(utilization_rate: Optional[Decimal]) -> Decimal:
    """Map a utilization rate onto its discrete pricing multiplier."""
    if utilization_rate is None:
        return Decimal("1.0")

    rate = Decimal(utilization_rate)
    if rate < Decimal("0.3"):
        return Decimal("0.75")
    if rate < Decimal("0.5"):
        return Decimal("0.85")
    if rate > Decimal("0.9"):
        return Decimal("1.25")
    if rate > TARGET_UTILIZATION:
        return Decimal("1.1")
    return Decimal("1.0")


async def calculate_utilization_multiplier(
    db: AsyncSession,
    car_id: uuid.UUID,
) -> Decimal:
    """Utilization multiplier for a car; 1.0 when no rate has been computed."""
    try:
        async with db.begin_nested():
            stmt = select(Car.utilization_rate).where(Car.id == car_id)
            result = await db.execute(stmt)
            utilization_rate = result.scalar_one_or_none()
    except Exception:
        logger.exception("Error calculating utilization multiplier for car %s", car_id)
        return Decimal("1.0")

    return utilization_multiplier_for_rate(utilization_rate)


def get_maintenance_multiplier(car: Car) -> Decimal:
    """Condition adjustment from the car's maintenance score."""
    score = car.maintenance_score
    if score is None:
        return Decimal("1.0")

    if score >= 95:
        return Decimal("1.05")
    if score >= 85:
        return Decimal("1.0")
    if score >= 70:
        return Decimal("0.95")
    return Decimal("0.85")


# ---------------------------------------------------------------------------
# Background recomputation
# ---------------------------------------------------------------------------

def _rented_days(
    start_date: datetime,
    end_date: datetime,
    window_start: datetime,
    now: datetime,
) -> int:
    """Whole days of a contract falling inside [window_start, now]."""
    start = max(as_utc(start_date), window_start)
    end = min(as_utc(end_date), now)
    days = math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)
    return max(0, days)


async def update_car_utilization_rate(
    db: AsyncSession,
    car_id: uuid.UUID,
    lookback_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Decimal:
    """Recompute and persist a car's utilization rate.

    Sums the days each active/completed contract overlaps the lookback
    window (clipped to ``now``) and divides by the window length, capped at
    1.0.  A car with no contracts in the window gets 0.

    Raises:
        ValueError: If the car does not exist.
    """
    now = resolve_now(now)
    lookback_days = lookback_days or settings.utilization_lookback_days
    window_start = now - timedelta(days=lookback_days)

    car = await db.get(Car, car_id)
    if car is None:
        raise ValueError(f"Car not found: {car_id}")

    stmt = select(Contract.start_date, Contract.end_date).where(
        Contract.car_id == car_id,
        Contract.state.in_(UTILIZED_STATES),
        Contract.end_date >= window_start,
        Contract.start_date <= now,
    )
    result = await db.execute(stmt)
    rows = result.all()

    total_rented_days = sum(
        _rented_days(row.start_date, row.end_date, window_start, now) for row in rows
    )
    utilization_rate = min(
        Decimal("1.0"),
        Decimal(total_rented_days) / Decimal(lookback_days),
    ).quantize(Decimal("0.0001"))

    car.utilization_rate = utilization_rate
    car.last_utilization_update = now
    await db.flush()

    logger.debug(
        "Utilization for car %s: %d rented days over %d -> %s",
        car_id,
        total_rented_days,
        lookback_days,
        utilization_rate,
    )
    return utilization_rate


async def update_all_car_utilization_rates(
    db: AsyncSession,
    lookback_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> UtilizationSweepResult:
    """Recompute utilization for every lease-eligible car, one at a time.

    Each car is updated inside its own SAVEPOINT; a failure is logged and the
    sweep moves on to the next car.
    """
    stmt = select(Car.id).where(Car.available_for_lease == True)  # noqa: E712
    result = await db.execute(stmt)
    car_ids = result.scalars().all()

    logger.info("Updating utilization rates for %d cars...", len(car_ids))

    sweep = UtilizationSweepResult()
    for car_id in car_ids:
        try:
            async with db.begin_nested():
                rate = await update_car_utilization_rate(
                    db, car_id, lookback_days=lookback_days, now=now
                )
            sweep.rates[car_id] = rate
            sweep.cars_processed += 1
        except Exception:
            sweep.cars_failed += 1
            logger.exception("Error updating utilization for car %s", car_id)

    logger.info(
        "Utilization rates updated: processed=%d, failed=%d",
        sweep.cars_processed,
        sweep.cars_failed,
    )
    return sweep
