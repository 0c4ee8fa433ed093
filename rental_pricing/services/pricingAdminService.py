"""
Pricing Admin Service -- business logic behind pricing administration.

Handles:
- Pricing rule CRUD
- Custom seasonal factors, including the default calendar
- Per-car pricing configuration and bulk initialisation from costs
- Analytics over recorded pricing snapshots and completed contracts
- Revenue by contract state and per-car utilization ratings

Payloads arrive as validated pydantic schemas; cross-field and missing-target
problems raise ``PricingConfigError``.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.core.clock import SECONDS_PER_DAY, as_utc, resolve_now
from rental_pricing.models import (
    Car,
    City,
    Contract,
    ContractState,
    PricingRule,
    PricingSnapshot,
    SeasonalFactor,
)
from rental_pricing.schemas.pricing import (
    CarPricingConfigUpdate,
    PricingRuleCreate,
    PricingRuleUpdate,
    SeasonalFactorCreate,
)
from rental_pricing.services.basePriceCalculator import (
    calculate_price_constraints,
    round_money,
)

logger = logging.getLogger(__name__)


class PricingConfigError(Exception):
    """Raised when a pricing configuration change cannot be applied."""


class PricingRuleNotFoundError(PricingConfigError):
    def __init__(self, rule_id: uuid.UUID) -> None:
        self.rule_id = rule_id
        super().__init__(f"Pricing rule {rule_id} not found")


# Default seasonal calendar seeded by ``create_default_seasonal_factors``
DEFAULT_SEASONAL_FACTORS: list[SeasonalFactorCreate] = [
    SeasonalFactorCreate(
        name="Summer Peak Season",
        start_date=date(2026, 6, 1),
        end_date=date(2026, 8, 31),
        multiplier=Decimal("1.3"),
    ),
    SeasonalFactorCreate(
        name="Christmas & New Year",
        start_date=date(2026, 12, 20),
        end_date=date(2027, 1, 5),
        multiplier=Decimal("1.25"),
    ),
    SeasonalFactorCreate(
        name="Easter Holiday",
        start_date=date(2026, 4, 10),
        end_date=date(2026, 4, 20),
        multiplier=Decimal("1.2"),
    ),
]


@dataclass
class PricingAnalytics:
    """Aggregates over the snapshots recorded in a trailing window."""
    period_start: datetime
    period_end: datetime
    snapshot_count: int = 0
    average_final_price: Optional[Decimal] = None
    average_multipliers: dict[str, Decimal] = field(default_factory=dict)
    average_price_by_city: dict[uuid.UUID, Decimal] = field(default_factory=dict)
    # Completed contracts ending inside the window
    completed_contracts: int = 0
    completed_revenue: Decimal = Decimal("0.00")
    average_revenue_per_contract: Optional[Decimal] = None
    average_price_per_day: Optional[Decimal] = None
    contracts_with_pricing: int = 0
    pricing_impact_percent: Optional[Decimal] = None
    # Lease-eligible fleet
    total_cars: int = 0
    dynamic_pricing_cars: int = 0
    dynamic_pricing_share: Optional[Decimal] = None


@dataclass
class CarRevenue:
    car_id: uuid.UUID
    label: str
    revenue: Decimal = Decimal("0.00")
    contracts: int = 0


@dataclass
class CityRevenue:
    city_name: str
    revenue: Decimal = Decimal("0.00")
    contracts: int = 0
    average_revenue: Optional[Decimal] = None


@dataclass
class RevenueAnalytics:
    """Contract revenue split by state over a trailing window.

    Completed contracts count as earned, active ones as pending and
    cancelled ones as lost.  Contracts are attributed to the window by
    their end date.
    """
    period_start: datetime
    period_end: datetime
    completed_revenue: Decimal = Decimal("0.00")
    pending_revenue: Decimal = Decimal("0.00")
    lost_revenue: Decimal = Decimal("0.00")
    completed_contracts: int = 0
    active_contracts: int = 0
    cancelled_contracts: int = 0
    average_revenue_per_contract: Optional[Decimal] = None
    top_cars: list[CarRevenue] = field(default_factory=list)
    revenue_by_city: Optional[dict[uuid.UUID, CityRevenue]] = None


@dataclass
class CarPerformance:
    car_id: uuid.UUID
    make: str
    model: str
    year: int
    city_name: str
    price_per_day: Decimal
    base_price_per_day: Optional[Decimal]
    utilization_rate: Optional[Decimal]
    rating: str


# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------

def _check_rule_consistency(rule: PricingRule) -> None:
    if rule.fixed_price is not None and rule.multiplier is not None:
        raise PricingConfigError("A rule sets either fixed_price or multiplier, not both")
    if (rule.start_date is None) != (rule.end_date is None):
        raise PricingConfigError("start_date and end_date must be given together")
    if rule.start_date is not None and rule.end_date < rule.start_date:
        raise PricingConfigError("end_date must not be before start_date")
    if (
        rule.min_price is not None
        and rule.max_price is not None
        and rule.min_price > rule.max_price
    ):
        raise PricingConfigError("min_price must not exceed max_price")


async def create_pricing_rule(
    db: AsyncSession,
    data: PricingRuleCreate,
) -> PricingRule:
    rule = PricingRule(**data.model_dump())
    db.add(rule)
    await db.flush()
    logger.info("Created pricing rule %s (%s, priority=%d)", rule.id, rule.name, rule.priority)
    return rule


async def list_pricing_rules(
    db: AsyncSession,
    active_only: bool = False,
) -> Sequence[PricingRule]:
    """All pricing rules, highest priority first."""
    stmt = select(PricingRule).order_by(PricingRule.priority.desc())
    if active_only:
        stmt = stmt.where(PricingRule.is_active == True)  # noqa: E712
    result = await db.execute(stmt)
    return result.scalars().all()


async def _get_rule(db: AsyncSession, rule_id: uuid.UUID) -> PricingRule:
    rule = await db.get(PricingRule, rule_id)
    if rule is None:
        raise PricingRuleNotFoundError(rule_id)
    return rule


async def update_pricing_rule(
    db: AsyncSession,
    rule_id: uuid.UUID,
    data: PricingRuleUpdate,
) -> PricingRule:
    """Apply a partial update to a rule.

    Setting ``fixed_price`` clears an existing multiplier and vice versa,
    so the rule keeps a single effect.

    Raises:
        PricingRuleNotFoundError: If the rule does not exist.
        PricingConfigError: If the merged rule is inconsistent.
    """
    rule = await _get_rule(db, rule_id)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("fixed_price") is not None:
        rule.multiplier = None
    if changes.get("multiplier") is not None:
        rule.fixed_price = None

    for key, value in changes.items():
        setattr(rule, key, value)

    _check_rule_consistency(rule)
    await db.flush()
    logger.info("Updated pricing rule %s: %s", rule_id, sorted(changes))
    return rule


async def delete_pricing_rule(db: AsyncSession, rule_id: uuid.UUID) -> None:
    rule = await _get_rule(db, rule_id)
    await db.delete(rule)
    await db.flush()
    logger.info("Deleted pricing rule %s", rule_id)


# ---------------------------------------------------------------------------
# Seasonal factors
# ---------------------------------------------------------------------------

async def create_seasonal_factor(
    db: AsyncSession,
    data: SeasonalFactorCreate,
) -> SeasonalFactor:
    factor = SeasonalFactor(**data.model_dump())
    db.add(factor)
    await db.flush()
    logger.info(
        "Created seasonal factor %s (%s..%s x%s)",
        factor.name,
        factor.start_date,
        factor.end_date,
        factor.multiplier,
    )
    return factor


async def list_seasonal_factors(db: AsyncSession) -> Sequence[SeasonalFactor]:
    result = await db.execute(
        select(SeasonalFactor).order_by(SeasonalFactor.start_date.asc())
    )
    return result.scalars().all()


async def create_default_seasonal_factors(db: AsyncSession) -> list[SeasonalFactor]:
    """Seed the default seasonal calendar, skipping names that already exist."""
    result = await db.execute(select(SeasonalFactor.name))
    existing = set(result.scalars().all())

    created = []
    for data in DEFAULT_SEASONAL_FACTORS:
        if data.name in existing:
            logger.info("Seasonal factor %s already exists, skipping", data.name)
            continue
        created.append(await create_seasonal_factor(db, data))
    return created


# ---------------------------------------------------------------------------
# Car pricing configuration
# ---------------------------------------------------------------------------

COST_FIELDS = ("daily_operating_cost", "monthly_financing_cost", "purchase_price")
PRICE_FIELDS = ("base_price_per_day", "min_price_per_day", "max_price_per_day")


async def update_car_pricing_config(
    db: AsyncSession,
    car_id: uuid.UUID,
    data: CarPricingConfigUpdate,
    calculate_prices: bool = False,
) -> Car:
    """Update a car's pricing configuration.

    Base/min/max prices are recomputed from the cost model when asked to,
    when only cost inputs were supplied, or when the car has no base price
    yet and none was supplied.

    Raises:
        PricingConfigError: If the car does not exist or min exceeds max.
    """
    car = await db.get(Car, car_id)
    if car is None:
        raise PricingConfigError(f"Car {car_id} not found")

    changes = data.model_dump(exclude_unset=True)
    prices_supplied = any(changes.get(name) is not None for name in PRICE_FIELDS)
    costs_supplied = any(name in changes for name in COST_FIELDS)

    should_calculate = (
        calculate_prices
        or (costs_supplied and not prices_supplied)
        or (car.base_price_per_day is None and changes.get("base_price_per_day") is None)
    )

    for key, value in changes.items():
        setattr(car, key, value)

    if should_calculate:
        # A stale manual base would short-circuit the cost model
        if changes.get("base_price_per_day") is None:
            car.base_price_per_day = None
        constraints = calculate_price_constraints(car)
        car.base_price_per_day = constraints.base_price_per_day
        car.min_price_per_day = constraints.min_price_per_day
        car.max_price_per_day = constraints.max_price_per_day

    if (
        car.min_price_per_day is not None
        and car.max_price_per_day is not None
        and car.min_price_per_day > car.max_price_per_day
    ):
        raise PricingConfigError(
            f"min_price_per_day ({car.min_price_per_day}) exceeds "
            f"max_price_per_day ({car.max_price_per_day})"
        )

    await db.flush()
    logger.info(
        "Updated pricing config for car %s: base=%s min=%s max=%s dynamic=%s",
        car_id,
        car.base_price_per_day,
        car.min_price_per_day,
        car.max_price_per_day,
        car.use_dynamic_pricing,
    )
    return car


async def initialise_car_pricing(
    db: AsyncSession,
    overwrite: bool = False,
) -> int:
    """Fill in recommended base/min/max prices for cars from their costs.

    Cars that already have a base price are left alone unless ``overwrite``.

    Returns:
        Number of cars updated.
    """
    stmt = select(Car)
    if not overwrite:
        stmt = stmt.where(Car.base_price_per_day.is_(None))
    result = await db.execute(stmt)
    cars = result.scalars().all()

    for car in cars:
        if overwrite:
            car.base_price_per_day = None
        constraints = calculate_price_constraints(car)
        car.base_price_per_day = constraints.base_price_per_day
        car.min_price_per_day = constraints.min_price_per_day
        car.max_price_per_day = constraints.max_price_per_day
        logger.debug(
            "Initialised pricing for car %s: base=%s [%s, %s]",
            car.id,
            constraints.base_price_per_day,
            constraints.min_price_per_day,
            constraints.max_price_per_day,
        )

    await db.flush()
    logger.info("Initialised pricing for %d cars", len(cars))
    return len(cars)


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def _avg(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.0001"))


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    return round_money(Decimal(part) / Decimal(whole) * 100)


def _contract_days(contract: Contract) -> int:
    seconds = (as_utc(contract.end_date) - as_utc(contract.start_date)).total_seconds()
    return math.ceil(seconds / SECONDS_PER_DAY)


async def _contracts_ending_between(
    db: AsyncSession,
    period_start: datetime,
    period_end: datetime,
    city_id: Optional[uuid.UUID] = None,
    states: Optional[Sequence[ContractState]] = None,
) -> Sequence:
    """(contract, car, city name) rows for contracts ending in the window."""
    stmt = (
        select(Contract, Car, City.name)
        .join(Car, Contract.car_id == Car.id)
        .join(City, Car.city_id == City.id)
        .where(Contract.end_date >= period_start, Contract.end_date <= period_end)
        .order_by(Contract.end_date.desc())
    )
    if city_id is not None:
        stmt = stmt.where(Car.city_id == city_id)
    if states is not None:
        stmt = stmt.where(Contract.state.in_(states))
    result = await db.execute(stmt)
    return result.all()


async def _count_fleet(
    db: AsyncSession,
    city_id: Optional[uuid.UUID] = None,
) -> tuple[int, int]:
    """Lease-eligible cars, and how many of them use dynamic pricing."""
    stmt = select(
        func.count(Car.id),
        func.sum(case((Car.use_dynamic_pricing == True, 1), else_=0)),  # noqa: E712
    ).where(Car.available_for_lease == True)  # noqa: E712
    if city_id is not None:
        stmt = stmt.where(Car.city_id == city_id)
    total, dynamic = (await db.execute(stmt)).one()
    return int(total or 0), int(dynamic or 0)


async def _add_snapshot_metrics(
    db: AsyncSession,
    analytics: PricingAnalytics,
    city_id: Optional[uuid.UUID],
) -> None:
    filters = [
        PricingSnapshot.created_at >= analytics.period_start,
        PricingSnapshot.created_at <= analytics.period_end,
    ]
    if city_id is not None:
        filters.append(PricingSnapshot.city_id == city_id)

    totals_stmt = select(
        func.count(PricingSnapshot.id),
        func.avg(PricingSnapshot.final_price),
        func.avg(PricingSnapshot.demand_multiplier),
        func.avg(PricingSnapshot.seasonal_multiplier),
        func.avg(PricingSnapshot.utilization_multiplier),
        func.avg(PricingSnapshot.duration_multiplier),
        func.avg(PricingSnapshot.customer_multiplier),
    ).where(*filters)
    row = (await db.execute(totals_stmt)).one()

    analytics.snapshot_count = int(row[0] or 0)
    if analytics.snapshot_count == 0:
        return

    final_avg = _avg(row[1])
    analytics.average_final_price = round_money(final_avg) if final_avg is not None else None
    for name, value in zip(
        ("demand", "seasonal", "utilization", "duration", "customer"),
        row[2:],
    ):
        analytics.average_multipliers[name] = _avg(value)

    by_city_stmt = (
        select(PricingSnapshot.city_id, func.avg(PricingSnapshot.final_price))
        .where(*filters)
        .group_by(PricingSnapshot.city_id)
    )
    for snapshot_city_id, avg_price in (await db.execute(by_city_stmt)).all():
        analytics.average_price_by_city[snapshot_city_id] = round_money(_avg(avg_price))


async def _add_contract_metrics(
    db: AsyncSession,
    analytics: PricingAnalytics,
    city_id: Optional[uuid.UUID],
) -> None:
    rows = await _contracts_ending_between(
        db,
        analytics.period_start,
        analytics.period_end,
        city_id,
        states=(ContractState.COMPLETED,),
    )
    contracts = [row[0] for row in rows]

    revenue = sum((Decimal(c.total_price) for c in contracts), Decimal("0"))
    analytics.completed_contracts = len(contracts)
    analytics.completed_revenue = round_money(revenue)
    if contracts:
        analytics.average_revenue_per_contract = round_money(revenue / len(contracts))

    total_days = sum(_contract_days(c) for c in contracts)
    if total_days > 0:
        analytics.average_price_per_day = round_money(revenue / total_days)

    # Revenue at the cost-based price versus what the dynamic price earned
    base_revenue = Decimal("0")
    dynamic_revenue = Decimal("0")
    priced = [c for c in contracts if c.dynamic_price is not None]
    for contract in priced:
        if contract.base_price and contract.dynamic_price:
            days = _contract_days(contract)
            base_revenue += Decimal(contract.base_price) * days
            dynamic_revenue += Decimal(contract.dynamic_price) * days
    analytics.contracts_with_pricing = len(priced)
    if base_revenue > 0:
        analytics.pricing_impact_percent = _percent(dynamic_revenue - base_revenue, base_revenue)

    analytics.total_cars, analytics.dynamic_pricing_cars = await _count_fleet(db, city_id)
    if analytics.total_cars > 0:
        analytics.dynamic_pricing_share = _percent(
            analytics.dynamic_pricing_cars, analytics.total_cars
        )


async def get_pricing_analytics(
    db: AsyncSession,
    days: int = 30,
    city_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> PricingAnalytics:
    """Summarise pricing over the last ``days`` days.

    Snapshot averages describe what the engine quoted; the contract metrics
    describe what completed rentals actually earned, how much of the
    lease-eligible fleet runs on dynamic pricing, and the percentage by
    which dynamic prices moved revenue away from the base prices.
    """
    period_end = resolve_now(now)
    analytics = PricingAnalytics(
        period_start=period_end - timedelta(days=days),
        period_end=period_end,
    )
    await _add_snapshot_metrics(db, analytics, city_id)
    await _add_contract_metrics(db, analytics, city_id)
    return analytics


async def get_revenue_analytics(
    db: AsyncSession,
    days: int = 90,
    city_id: Optional[uuid.UUID] = None,
    group_by_city: bool = False,
    top: int = 10,
    now: Optional[datetime] = None,
) -> RevenueAnalytics:
    """Revenue of the contracts that ended in the last ``days`` days.

    Draft contracts are ignored.  ``top_cars`` ranks cars by completed
    revenue; ``revenue_by_city`` is only filled when ``group_by_city``.
    """
    period_end = resolve_now(now)
    analytics = RevenueAnalytics(
        period_start=period_end - timedelta(days=days),
        period_end=period_end,
    )
    rows = await _contracts_ending_between(
        db, analytics.period_start, period_end, city_id
    )

    by_car: dict[uuid.UUID, CarRevenue] = {}
    by_city: dict[uuid.UUID, CityRevenue] = {}
    for contract, car, city_name in rows:
        amount = Decimal(contract.total_price)
        if contract.state == ContractState.ACTIVE:
            analytics.active_contracts += 1
            analytics.pending_revenue += amount
        elif contract.state == ContractState.CANCELLED:
            analytics.cancelled_contracts += 1
            analytics.lost_revenue += amount
        elif contract.state == ContractState.COMPLETED:
            analytics.completed_contracts += 1
            analytics.completed_revenue += amount

            car_revenue = by_car.setdefault(
                car.id, CarRevenue(car_id=car.id, label=f"{car.make} {car.model}")
            )
            car_revenue.revenue += amount
            car_revenue.contracts += 1

            city_revenue = by_city.setdefault(car.city_id, CityRevenue(city_name=city_name))
            city_revenue.revenue += amount
            city_revenue.contracts += 1

    analytics.completed_revenue = round_money(analytics.completed_revenue)
    analytics.pending_revenue = round_money(analytics.pending_revenue)
    analytics.lost_revenue = round_money(analytics.lost_revenue)
    if analytics.completed_contracts:
        analytics.average_revenue_per_contract = round_money(
            analytics.completed_revenue / analytics.completed_contracts
        )

    analytics.top_cars = sorted(
        by_car.values(), key=lambda c: c.revenue, reverse=True
    )[:top]

    if group_by_city:
        for city_revenue in by_city.values():
            city_revenue.average_revenue = round_money(
                city_revenue.revenue / city_revenue.contracts
            )
        analytics.revenue_by_city = by_city

    logger.debug(
        "Revenue %s..%s: completed=%s pending=%s lost=%s",
        analytics.period_start,
        period_end,
        analytics.completed_revenue,
        analytics.pending_revenue,
        analytics.lost_revenue,
    )
    return analytics


def performance_rating(utilization_rate: Optional[Decimal]) -> str:
    if utilization_rate is None:
        return "Unknown"
    if utilization_rate >= Decimal("0.8"):
        return "Excellent"
    if utilization_rate >= Decimal("0.6"):
        return "Good"
    if utilization_rate >= Decimal("0.4"):
        return "Fair"
    return "Poor"


async def get_car_performance(
    db: AsyncSession,
    city_id: Optional[uuid.UUID] = None,
) -> list[CarPerformance]:
    """Lease-eligible cars rated by utilization, busiest first.

    Cars whose utilization has never been computed are rated ``Unknown``
    and listed last.
    """
    stmt = (
        select(Car, City.name)
        .join(City, Car.city_id == City.id)
        .where(Car.available_for_lease == True)  # noqa: E712
    )
    if city_id is not None:
        stmt = stmt.where(Car.city_id == city_id)
    result = await db.execute(stmt)

    performance = [
        CarPerformance(
            car_id=car.id,
            make=car.make,
            model=car.model,
            year=car.year,
            city_name=city_name,
            price_per_day=car.price_per_day,
            base_price_per_day=car.base_price_per_day,
            utilization_rate=car.utilization_rate,
            rating=performance_rating(car.utilization_rate),
        )
        for car, city_name in result.all()
    ]
    performance.sort(
        key=lambda p: (p.utilization_rate is None, -(p.utilization_rate or 0))
    )
    return performance
