"""
Base Price Calculator -- cost model.

Derives the foundational daily price of a car from what it costs to keep
on the road, plus a profit margin:

- Daily operating cost (insurance, maintenance, parking), as-is
- Monthly financing cost / 30
- Straight-line depreciation: purchase price / useful life / 365

A manually configured base price always wins.  When the cost inputs are
missing the legacy flat ``price_per_day`` is used, and failing that a fixed
default.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from rental_pricing.core.config import settings
from rental_pricing.models import Car

CENT = Decimal("0.01")

MIN_PRICE_RATIO = Decimal("0.6")
MAX_PRICE_RATIO = Decimal("2.5")

DAYS_PER_MONTH = Decimal("30")
DAYS_PER_YEAR = Decimal("365")


@dataclass(frozen=True)
class PriceConstraints:
    """Recommended pricing configuration for a car."""
    base_price_per_day: Decimal
    min_price_per_day: Decimal
    max_price_per_day: Decimal


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_base_price(
    car: Car,
    profit_margin: Optional[Decimal] = None,
    useful_life_years: Optional[int] = None,
) -> Decimal:
    """Calculate the base price per day for a car.

    Args:
        car: Car with its cost attributes loaded.
        profit_margin: Markup applied to the daily cost (default from settings).
        useful_life_years: Depreciation horizon (default from settings).

    Returns:
        Base price per day, rounded to 2 decimals.
    """
    if car.base_price_per_day is not None and car.base_price_per_day > 0:
        return car.base_price_per_day

    margin = profit_margin if profit_margin is not None else settings.profit_margin
    life_years = useful_life_years or settings.useful_life_years

    daily_cost = Decimal("0")

    if car.daily_operating_cost:
        daily_cost += Decimal(car.daily_operating_cost)

    if car.monthly_financing_cost:
        daily_cost += Decimal(car.monthly_financing_cost) / DAYS_PER_MONTH

    # One full year's depreciation spread per day, independent of the car's age
    if car.purchase_price:
        annual_depreciation = Decimal(car.purchase_price) / Decimal(life_years)
        daily_cost += annual_depreciation / DAYS_PER_YEAR

    base_price = daily_cost * margin

    if base_price <= 0:
        if car.price_per_day:
            return car.price_per_day
        return settings.fallback_base_price

    return round_money(base_price)


def calculate_price_constraints(car: Car) -> PriceConstraints:
    """Propose a base price and the 60% / 250% min/max window around it."""
    base_price = calculate_base_price(car)
    return PriceConstraints(
        base_price_per_day=base_price,
        min_price_per_day=round_money(base_price * MIN_PRICE_RATIO),
        max_price_per_day=round_money(base_price * MAX_PRICE_RATIO),
    )
