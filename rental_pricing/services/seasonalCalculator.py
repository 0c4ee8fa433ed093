"""
Seasonal Calculator -- time-of-year, day-of-week, holiday and lead-time
adjustments.

Four independent layers multiply together:

1. Season: the highest matching admin ``SeasonalFactor`` replaces the
   default month curve (Jun-Aug x1.3, Jan-Mar x0.85, otherwise x1.0).
2. Day of week, short rentals only (<= 3 days): Friday/Saturday start
   x1.15, Monday start x0.95.
3. Holiday proximity: start within 2 days of a fixed-date holiday x1.25.
4. Booking lead time: fewer than 3 days ahead x1.15, more than 30 days
   ahead x0.95.

The product is not clamped here; the orchestrator's min/max window is the
safety net.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.core.clock import SECONDS_PER_DAY, as_utc, resolve_now
from rental_pricing.models import SeasonalFactor

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PEAK_SEASON_MONTHS = (6, 7, 8)
LOW_SEASON_MONTHS = (1, 2, 3)
PEAK_SEASON_MULTIPLIER = Decimal("1.3")
LOW_SEASON_MULTIPLIER = Decimal("0.85")

SHORT_RENTAL_MAX_DAYS = 3
WEEKEND_START_MULTIPLIER = Decimal("1.15")
MONDAY_START_MULTIPLIER = Decimal("0.95")

HOLIDAY_PROXIMITY_DAYS = 2
HOLIDAY_MULTIPLIER = Decimal("1.25")

LAST_MINUTE_DAYS = 3
EARLY_BIRD_DAYS = 30
LAST_MINUTE_MULTIPLIER = Decimal("1.15")
EARLY_BIRD_MULTIPLIER = Decimal("0.95")

# Fixed-date public holidays (month, day)
HOLIDAYS: list[tuple[int, int]] = [
    (1, 1),    # New Year's Day
    (2, 16),   # Independence Day
    (3, 11),   # Restoration of Independence
    (5, 1),    # Labour Day
    (6, 24),   # Midsummer
    (7, 6),    # Statehood Day
    (8, 15),   # Assumption Day
    (11, 1),   # All Saints' Day
    (12, 24),  # Christmas Eve
    (12, 25),  # Christmas Day
    (12, 26),  # Second day of Christmas
]


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------

def get_holidays(year: int) -> list[date]:
    return [date(year, month, day) for month, day in HOLIDAYS]


def _default_season_multiplier(start: date) -> Decimal:
    if start.month in PEAK_SEASON_MONTHS:
        return PEAK_SEASON_MULTIPLIER
    if start.month in LOW_SEASON_MONTHS:
        return LOW_SEASON_MULTIPLIER
    return Decimal("1.0")


def _day_of_week_multiplier(start: date, duration: int) -> Decimal:
    if duration > SHORT_RENTAL_MAX_DAYS:
        return Decimal("1.0")
    weekday = start.weekday()  # Monday=0 ... Sunday=6
    if weekday in (4, 5):
        return WEEKEND_START_MULTIPLIER
    if weekday == 0:
        return MONDAY_START_MULTIPLIER
    return Decimal("1.0")


def is_near_holiday(start: date) -> bool:
    """Whether ``start`` is within 2 days of a holiday in the same year."""
    return any(
        abs((start - holiday).days) <= HOLIDAY_PROXIMITY_DAYS
        for holiday in get_holidays(start.year)
    )


def _lead_time_multiplier(start_date: datetime, now: datetime) -> Decimal:
    days_until_start = math.floor(
        (as_utc(start_date) - now).total_seconds() / SECONDS_PER_DAY
    )
    if days_until_start < LAST_MINUTE_DAYS:
        return LAST_MINUTE_MULTIPLIER
    if days_until_start > EARLY_BIRD_DAYS:
        return EARLY_BIRD_MULTIPLIER
    return Decimal("1.0")


async def get_active_seasonal_factors(
    db: AsyncSession,
    on_date: date,
    city_id: Optional[uuid.UUID] = None,
) -> Sequence[SeasonalFactor]:
    """Active seasonal factors covering ``on_date`` for the city or globally.

    Returned highest multiplier first.  A lookup failure is logged and
    treated as "no custom factors".
    """
    stmt = (
        select(SeasonalFactor)
        .where(
            SeasonalFactor.is_active == True,  # noqa: E712
            SeasonalFactor.start_date <= on_date,
            SeasonalFactor.end_date >= on_date,
            or_(
                SeasonalFactor.city_id == city_id,
                SeasonalFactor.city_id.is_(None),
            ),
        )
        .order_by(SeasonalFactor.multiplier.desc())
    )
    try:
        async with db.begin_nested():
            result = await db.execute(stmt)
            return result.scalars().all()
    except Exception:
        logger.exception("Error fetching seasonal factors for %s", on_date)
        return []


async def calculate_seasonal_multiplier(
    db: AsyncSession,
    start_date: datetime,
    duration: int,
    city_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Decimal:
    """Calculate the seasonal multiplier for a rental.

    Args:
        db: Async database session.
        start_date: Rental start.
        duration: Rental length in days.
        city_id: City for city-scoped seasonal factors.
        now: Reference time for the lead-time layer.

    Returns:
        Product of the four seasonal layers.
    """
    now = resolve_now(now)
    start_day = as_utc(start_date).date()
    multiplier = Decimal("1.0")

    factors = await get_active_seasonal_factors(db, start_day, city_id)
    if factors:
        multiplier *= max(Decimal(f.multiplier) for f in factors)
    else:
        multiplier *= _default_season_multiplier(start_day)

    multiplier *= _day_of_week_multiplier(start_day, duration)

    if is_near_holiday(start_day):
        multiplier *= HOLIDAY_MULTIPLIER

    multiplier *= _lead_time_multiplier(start_date, now)

    return multiplier
