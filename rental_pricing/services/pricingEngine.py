"""
Dynamic Pricing Engine for car rentals.

Calculates the per-day and total price of a rental from:
- A cost-derived base price (or the car's manual override)
- Data-dependent multipliers, evaluated independently:
  - Supply / demand in the car's city
  - Seasonality (custom factors or month curve, weekday, holidays, lead time)
  - The car's own utilization
  - Customer loyalty
- Pure multipliers: rental duration discount and maintenance condition
- A min/max clamp, then admin-defined pricing rules

Cars with dynamic pricing disabled are charged their flat daily price.

All methods are async and accept an ``AsyncSession`` for transactional safety.
Estimators never raise: they degrade to their neutral value and log.  Only a
missing car, a car that cannot be leased, or an empty rental period abort a
calculation.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from rental_pricing.core.clock import SECONDS_PER_DAY, as_utc, resolve_now
from rental_pricing.models import Car, PricingSnapshot
from rental_pricing.services.basePriceCalculator import (
    MAX_PRICE_RATIO,
    MIN_PRICE_RATIO,
    calculate_base_price,
    round_money,
)
from rental_pricing.services.demandCalculator import (
    calculate_demand_multiplier,
    count_city_availability,
)
from rental_pricing.services.durationCalculator import calculate_duration_multiplier
from rental_pricing.services.loyaltyCalculator import calculate_customer_multiplier
from rental_pricing.services.ruleResolver import AppliedRule, apply_pricing_rules
from rental_pricing.services.seasonalCalculator import calculate_seasonal_multiplier
from rental_pricing.services.utilizationCalculator import (
    calculate_utilization_multiplier,
    get_maintenance_multiplier,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PricingError(Exception):
    """Base class for failures that abort a price calculation."""


class CarNotFoundError(PricingError):
    def __init__(self, car_id: uuid.UUID) -> None:
        self.car_id = car_id
        super().__init__(f"Car with ID {car_id} not found")


class CarNotLeasableError(PricingError):
    def __init__(self, car_id: uuid.UUID) -> None:
        self.car_id = car_id
        super().__init__(f"Car {car_id} is not available for lease")


class InvalidRentalPeriodError(PricingError):
    def __init__(self, start_date: datetime, end_date: datetime) -> None:
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Rental duration must be at least 1 day "
            f"(start={start_date.isoformat()}, end={end_date.isoformat()})"
        )


# ---------------------------------------------------------------------------
# Result data classes
# ---------------------------------------------------------------------------

NEUTRAL = Decimal("1.0")


@dataclass
class MultiplierSet:
    demand: Decimal = NEUTRAL
    seasonal: Decimal = NEUTRAL
    utilization: Decimal = NEUTRAL
    maintenance: Decimal = NEUTRAL
    duration: Decimal = NEUTRAL
    customer: Decimal = NEUTRAL

    def product(self) -> Decimal:
        return (
            self.demand
            * self.seasonal
            * self.utilization
            * self.maintenance
            * self.duration
            * self.customer
        )


@dataclass
class ConstraintWindow:
    """Min/max window the dynamic price was clamped to."""
    min: Decimal
    max: Decimal
    applied: bool = False


@dataclass
class PriceBreakdown:
    base: Decimal
    multipliers: MultiplierSet
    dynamic_price: Optional[Decimal] = None
    constraints: Optional[ConstraintWindow] = None
    rules: list[AppliedRule] = field(default_factory=list)


@dataclass
class PriceQuote:
    """Result of a dynamic price calculation."""
    car_id: uuid.UUID
    city_id: Optional[uuid.UUID]
    city_name: Optional[str]
    base_price: Decimal
    price_per_day: Decimal
    total_price: Decimal
    duration: int
    start_date: datetime
    end_date: datetime
    breakdown: PriceBreakdown
    is_dynamic: bool
    calculated_at: datetime
    snapshot_id: Optional[uuid.UUID] = None


@dataclass
class PricePreview:
    price_per_day: Decimal
    total_price: Decimal


@dataclass
class ContractPriceQuote:
    """The pricing fields a contract stores when it is created."""
    base_price: Decimal
    demand_multiplier: Decimal
    seasonal_multiplier: Decimal
    duration_discount: Decimal
    dynamic_price: Decimal
    final_price: Decimal
    total_price: Decimal
    duration: int
    pricing_snapshot_id: Optional[uuid.UUID]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _get_car(db: AsyncSession, car_id: uuid.UUID) -> Optional[Car]:
    stmt = select(Car).options(selectinload(Car.city)).where(Car.id == car_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _rental_duration(start_date: datetime, end_date: datetime) -> int:
    """Whole rental days, rounding any partial day up."""
    seconds = (as_utc(end_date) - as_utc(start_date)).total_seconds()
    return math.ceil(seconds / SECONDS_PER_DAY)


def _flat_total(price_per_day: Decimal, duration: int) -> Decimal:
    return round_money(Decimal(price_per_day) * duration)


async def _in_own_session(
    session_factory: async_sessionmaker[AsyncSession],
    estimator: Callable[..., Awaitable[Decimal]],
    *args: Any,
    **kwargs: Any,
) -> Decimal:
    async with session_factory() as session:
        return await estimator(session, *args, **kwargs)


async def _calculate_data_multipliers(
    db: AsyncSession,
    car: Car,
    start_date: datetime,
    end_date: datetime,
    duration: int,
    customer_id: Optional[uuid.UUID],
    now: datetime,
    session_factory: Optional[async_sessionmaker[AsyncSession]],
) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    """Demand, seasonal, utilization and customer multipliers.

    With a ``session_factory`` the four estimators run concurrently, each on
    its own session; otherwise they run one after another on ``db``.
    """
    calls: list[tuple[Callable[..., Awaitable[Decimal]], tuple, dict]] = [
        (calculate_demand_multiplier, (car.city_id, start_date, end_date), {}),
        (calculate_seasonal_multiplier, (start_date, duration, car.city_id), {"now": now}),
        (calculate_utilization_multiplier, (car.id,), {}),
        (calculate_customer_multiplier, (customer_id,), {"now": now}),
    ]

    if session_factory is not None:
        demand, seasonal, utilization, customer = await asyncio.gather(*[
            _in_own_session(session_factory, fn, *args, **kwargs)
            for fn, args, kwargs in calls
        ])
        return demand, seasonal, utilization, customer

    results = []
    for fn, args, kwargs in calls:
        results.append(await fn(db, *args, **kwargs))
    demand, seasonal, utilization, customer = results
    return demand, seasonal, utilization, customer


async def _save_pricing_snapshot(
    db: AsyncSession,
    quote: PriceQuote,
    now: datetime,
) -> Optional[uuid.UUID]:
    """Persist a snapshot of ``quote``; failures are logged and swallowed."""
    try:
        async with db.begin_nested():
            available_cars, active_contracts = await count_city_availability(
                db, quote.city_id
            )
            multipliers = quote.breakdown.multipliers
            snapshot = PricingSnapshot(
                id=uuid.uuid4(),
                car_id=quote.car_id,
                city_id=quote.city_id,
                request_date=now,
                start_date=quote.start_date,
                duration=quote.duration,
                base_price=quote.base_price,
                demand_multiplier=multipliers.demand,
                seasonal_multiplier=multipliers.seasonal,
                utilization_multiplier=multipliers.utilization,
                maintenance_multiplier=multipliers.maintenance,
                duration_multiplier=multipliers.duration,
                customer_multiplier=multipliers.customer,
                calculated_price=quote.breakdown.dynamic_price,
                final_price=quote.price_per_day,
                available_cars=available_cars,
                active_contracts=active_contracts,
            )
            db.add(snapshot)
            await db.flush()
        return snapshot.id
    except Exception:
        logger.exception("Error saving pricing snapshot for car %s", quote.car_id)
        return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def calculate_dynamic_price(
    db: AsyncSession,
    car_id: uuid.UUID,
    start_date: datetime,
    end_date: datetime,
    customer_id: Optional[uuid.UUID] = None,
    save_snapshot: bool = False,
    now: Optional[datetime] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> PriceQuote:
    """Calculate the dynamic price of renting a car.

    Pipeline::

        base x demand x seasonal x utilization x maintenance x duration x customer
            -> clamp to [min, max] -> round -> pricing rules -> x duration

    Args:
        db: Async database session.
        car_id: The car being priced.
        start_date: Rental start.
        end_date: Rental end.
        customer_id: Customer for loyalty pricing; ``None`` for guests.
        save_snapshot: Persist a ``PricingSnapshot`` for analytics.
        now: Reference time (defaults to the current UTC time).
        session_factory: Enables concurrent estimator evaluation, one session
            per estimator.

    Returns:
        PriceQuote with the full breakdown.

    Raises:
        CarNotFoundError: If the car does not exist.
        CarNotLeasableError: If the car is not available for lease.
        InvalidRentalPeriodError: If the period is shorter than one day,
            also for cars on flat pricing.
    """
    now = resolve_now(now)

    car = await _get_car(db, car_id)
    if car is None:
        raise CarNotFoundError(car_id)
    if not car.available_for_lease:
        raise CarNotLeasableError(car_id)

    duration = _rental_duration(start_date, end_date)
    if duration < 1:
        raise InvalidRentalPeriodError(start_date, end_date)

    city_name = car.city.name if car.city is not None else None

    # -- Flat pricing -------------------------------------------------------
    # The one-day minimum above applies here too
    if not car.use_dynamic_pricing:
        flat_price = Decimal(car.price_per_day)
        return PriceQuote(
            car_id=car.id,
            city_id=car.city_id,
            city_name=city_name,
            base_price=flat_price,
            price_per_day=flat_price,
            total_price=_flat_total(flat_price, duration),
            duration=duration,
            start_date=start_date,
            end_date=end_date,
            breakdown=PriceBreakdown(base=flat_price, multipliers=MultiplierSet()),
            is_dynamic=False,
            calculated_at=now,
        )

    # -- Multipliers --------------------------------------------------------
    base_price = Decimal(calculate_base_price(car))

    demand, seasonal, utilization, customer = await _calculate_data_multipliers(
        db, car, start_date, end_date, duration, customer_id, now, session_factory
    )
    multipliers = MultiplierSet(
        demand=demand,
        seasonal=seasonal,
        utilization=utilization,
        maintenance=get_maintenance_multiplier(car),
        duration=calculate_duration_multiplier(duration),
        customer=customer,
    )
    raw_price = base_price * multipliers.product()

    # -- Constraints --------------------------------------------------------
    min_price = (
        Decimal(car.min_price_per_day)
        if car.min_price_per_day is not None
        else base_price * MIN_PRICE_RATIO
    )
    max_price = (
        Decimal(car.max_price_per_day)
        if car.max_price_per_day is not None
        else base_price * MAX_PRICE_RATIO
    )
    clamped_price = max(min_price, min(max_price, raw_price))
    dynamic_price = round_money(clamped_price)

    # -- Rules --------------------------------------------------------------
    resolution = await apply_pricing_rules(db, car, start_date, end_date, dynamic_price)
    price_per_day = resolution.final_price
    total_price = round_money(price_per_day * duration)

    quote = PriceQuote(
        car_id=car.id,
        city_id=car.city_id,
        city_name=city_name,
        base_price=base_price,
        price_per_day=price_per_day,
        total_price=total_price,
        duration=duration,
        start_date=start_date,
        end_date=end_date,
        breakdown=PriceBreakdown(
            base=base_price,
            multipliers=multipliers,
            dynamic_price=dynamic_price,
            constraints=ConstraintWindow(
                min=round_money(min_price),
                max=round_money(max_price),
                applied=clamped_price != raw_price,
            ),
            rules=resolution.rules,
        ),
        is_dynamic=True,
        calculated_at=now,
    )

    logger.info(
        "Priced car %s for %d days: base=%s dynamic=%s final=%s total=%s",
        car.id,
        duration,
        base_price,
        dynamic_price,
        price_per_day,
        total_price,
    )

    if save_snapshot:
        quote.snapshot_id = await _save_pricing_snapshot(db, quote, now)

    return quote


async def get_bulk_price_previews(
    db: AsyncSession,
    car_ids: Sequence[uuid.UUID],
    start_date: datetime,
    end_date: datetime,
    now: Optional[datetime] = None,
) -> dict[uuid.UUID, PricePreview]:
    """Per-car guest prices for a listing page, without snapshots.

    Each car is priced inside its own SAVEPOINT.  A car whose calculation
    fails falls back to its flat price times the duration; cars that do not
    exist are left out of the result.
    """
    previews: dict[uuid.UUID, PricePreview] = {}

    for car_id in car_ids:
        try:
            async with db.begin_nested():
                quote = await calculate_dynamic_price(
                    db, car_id, start_date, end_date, now=now
                )
            previews[car_id] = PricePreview(
                price_per_day=quote.price_per_day,
                total_price=quote.total_price,
            )
        except Exception:
            logger.warning("Error calculating price for car %s", car_id, exc_info=True)
            car = await db.get(Car, car_id)
            if car is None:
                continue
            duration = max(1, _rental_duration(start_date, end_date))
            previews[car_id] = PricePreview(
                price_per_day=Decimal(car.price_per_day),
                total_price=_flat_total(car.price_per_day, duration),
            )

    return previews


async def quote_contract_price(
    db: AsyncSession,
    car_id: uuid.UUID,
    start_date: datetime,
    end_date: datetime,
    customer_id: Optional[uuid.UUID],
    now: Optional[datetime] = None,
) -> ContractPriceQuote:
    """Price a new contract and capture the values the contract stores.

    Always records a snapshot so the contract can reference it.
    """
    quote = await calculate_dynamic_price(
        db,
        car_id,
        start_date,
        end_date,
        customer_id=customer_id,
        save_snapshot=True,
        now=now,
    )
    multipliers = quote.breakdown.multipliers
    dynamic_price = (
        quote.breakdown.dynamic_price
        if quote.breakdown.dynamic_price is not None
        else quote.price_per_day
    )

    return ContractPriceQuote(
        base_price=quote.base_price,
        demand_multiplier=multipliers.demand,
        seasonal_multiplier=multipliers.seasonal,
        duration_discount=multipliers.duration,
        dynamic_price=dynamic_price,
        final_price=quote.price_per_day,
        total_price=quote.total_price,
        duration=quote.duration,
        pricing_snapshot_id=quote.snapshot_id,
    )
