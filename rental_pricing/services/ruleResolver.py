"""
Pricing Rule Resolver.

Applies admin-authored ``PricingRule`` overrides on top of the computed
dynamic price.  Matching rules (car-specific, city-specific or global, whose
date window is unbounded or overlaps the rental) are applied in ascending
priority, so the highest-priority rule composes last:

1. A fixed price replaces the running price; otherwise a multiplier scales it.
2. The rule's own min/max clamp is applied right after its adjustment.

Only rules that actually moved the price are reported.  The rule lookup runs
in a SAVEPOINT; any failure falls back to the unmodified price with no rules
applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.models import Car, PricingRule
from rental_pricing.services.basePriceCalculator import round_money

logger = logging.getLogger(__name__)


@dataclass
class AppliedRule:
    """A pricing rule that changed the price."""
    name: str
    description: Optional[str]
    adjustment: Decimal


@dataclass
class RuleResolution:
    """Outcome of running the rules over a price."""
    final_price: Decimal
    rules: list[AppliedRule] = field(default_factory=list)


async def _get_matching_rules(
    db: AsyncSession,
    car: Car,
    start_date: datetime,
    end_date: datetime,
) -> Sequence[PricingRule]:
    """Active rules targeting this car, its city, or everything, for the window."""
    stmt = (
        select(PricingRule)
        .where(
            PricingRule.is_active == True,  # noqa: E712
            or_(
                PricingRule.car_id == car.id,
                and_(PricingRule.car_id.is_(None), PricingRule.city_id == car.city_id),
                and_(PricingRule.car_id.is_(None), PricingRule.city_id.is_(None)),
            ),
            or_(
                and_(PricingRule.start_date.is_(None), PricingRule.end_date.is_(None)),
                and_(
                    PricingRule.start_date <= end_date,
                    PricingRule.end_date >= start_date,
                ),
            ),
        )
        .order_by(PricingRule.priority.asc(), PricingRule.created_at.asc())
    )
    async with db.begin_nested():
        result = await db.execute(stmt)
        return result.scalars().all()


def resolve_rules(
    rules: Sequence[PricingRule],
    current_price: Decimal,
) -> RuleResolution:
    """Layer ``rules`` (already in application order) over ``current_price``."""
    final_price = current_price
    applied: list[AppliedRule] = []

    for rule in rules:
        new_price = final_price

        if rule.fixed_price is not None:
            new_price = Decimal(rule.fixed_price)
        elif rule.multiplier is not None:
            new_price = final_price * Decimal(rule.multiplier)

        if rule.min_price is not None:
            new_price = max(new_price, Decimal(rule.min_price))
        if rule.max_price is not None:
            new_price = min(new_price, Decimal(rule.max_price))

        if new_price != final_price:
            applied.append(AppliedRule(
                name=rule.name,
                description=rule.description,
                adjustment=round_money(new_price - final_price),
            ))
            final_price = new_price

    return RuleResolution(final_price=round_money(final_price), rules=applied)


async def apply_pricing_rules(
    db: AsyncSession,
    car: Car,
    start_date: datetime,
    end_date: datetime,
    current_price: Decimal,
) -> RuleResolution:
    """Apply the matching pricing rules to ``current_price``.

    Returns:
        RuleResolution with the final per-day price and the rules that
        changed it.  On any error, the original price and no rules.
    """
    try:
        rules = await _get_matching_rules(db, car, start_date, end_date)
        if not rules:
            return RuleResolution(final_price=current_price)
        return resolve_rules(rules, current_price)
    except Exception:
        logger.exception("Error applying pricing rules for car %s", car.id)
        return RuleResolution(final_price=current_price)
