"""
Loyalty Calculator -- personalised pricing from a customer's rental history.

Tiers by completed rentals:

    2-5 rentals                      5% (Returning)
    6-10 rentals                     8% (Regular)
    11+ rentals or >= 5000 lifetime  12% (VIP)

A rental that ended within the last 60 days adds 3 points when a tier
already applies.  The total discount is capped at 15%, so the multiplier is
always in [0.85, 1.0].  Guests and first-time customers pay full price.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pricing.core.clock import as_utc, resolve_now
from rental_pricing.core.config import settings
from rental_pricing.models import Contract, ContractState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HISTORY_STATES = (ContractState.COMPLETED, ContractState.ACTIVE)

VIP_LIFETIME_VALUE = Decimal("5000")
RECENT_ACTIVITY_BONUS = Decimal("0.03")
MAX_LOYALTY_DISCOUNT = Decimal("0.15")


@dataclass(frozen=True)
class LoyaltyInfo:
    """Customer-facing loyalty status."""
    tier: str
    discount_percent: int
    rentals_count: int
    lifetime_value: Decimal


def _tier_discount(completed_rentals: int, lifetime_value: Decimal) -> Decimal:
    if 2 <= completed_rentals <= 5:
        return Decimal("0.05")
    if 6 <= completed_rentals <= 10:
        return Decimal("0.08")
    if completed_rentals > 10 or lifetime_value >= VIP_LIFETIME_VALUE:
        return Decimal("0.12")
    return Decimal("0")


async def _get_rental_history(
    db: AsyncSession,
    customer_id: uuid.UUID,
) -> Sequence:
    """Completed and active contracts for a customer."""
    stmt = select(
        Contract.state,
        Contract.total_price,
        Contract.end_date,
    ).where(
        Contract.customer_id == customer_id,
        Contract.state.in_(HISTORY_STATES),
    )
    async with db.begin_nested():
        result = await db.execute(stmt)
        return result.all()


async def calculate_customer_multiplier(
    db: AsyncSession,
    customer_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Decimal:
    """Calculate the loyalty multiplier for a customer.

    Args:
        db: Async database session.
        customer_id: Customer, or ``None`` for guest pricing.
        now: Reference time for the recent-activity bonus.

    Returns:
        Multiplier in [0.85, 1.0].
    """
    if customer_id is None:
        return Decimal("1.0")

    now = resolve_now(now)

    try:
        history = await _get_rental_history(db, customer_id)
    except Exception:
        logger.exception("Error calculating customer multiplier for %s", customer_id)
        return Decimal("1.0")

    if not history:
        return Decimal("1.0")

    completed_rentals = sum(1 for c in history if c.state == ContractState.COMPLETED)
    lifetime_value = sum((Decimal(c.total_price) for c in history), Decimal("0"))

    discount = _tier_discount(completed_rentals, lifetime_value)

    recent_cutoff = now - timedelta(days=settings.loyalty_recent_window_days)
    recent_rental = any(as_utc(c.end_date) >= recent_cutoff for c in history)
    if recent_rental and discount > 0:
        discount += RECENT_ACTIVITY_BONUS

    return Decimal("1.0") - min(discount, MAX_LOYALTY_DISCOUNT)


async def get_customer_loyalty_info(
    db: AsyncSession,
    customer_id: Optional[uuid.UUID],
) -> LoyaltyInfo:
    """Loyalty tier summary for display (no recent-activity bonus)."""
    if customer_id is None:
        return LoyaltyInfo(tier="Guest", discount_percent=0, rentals_count=0, lifetime_value=Decimal("0"))

    try:
        history = await _get_rental_history(db, customer_id)
    except Exception:
        logger.exception("Error getting loyalty info for %s", customer_id)
        return LoyaltyInfo(tier="Unknown", discount_percent=0, rentals_count=0, lifetime_value=Decimal("0"))

    completed_rentals = sum(1 for c in history if c.state == ContractState.COMPLETED)
    lifetime_value = sum((Decimal(c.total_price) for c in history), Decimal("0"))

    if completed_rentals >= 11 or lifetime_value >= VIP_LIFETIME_VALUE:
        tier, discount_percent = "VIP", 12
    elif completed_rentals >= 6:
        tier, discount_percent = "Regular", 8
    elif completed_rentals >= 2:
        tier, discount_percent = "Returning", 5
    else:
        tier, discount_percent = "New Customer", 0

    return LoyaltyInfo(
        tier=tier,
        discount_percent=discount_percent,
        rentals_count=completed_rentals,
        lifetime_value=lifetime_value.quantize(Decimal("0.01")),
    )
