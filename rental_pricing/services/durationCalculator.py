"""
Duration Calculator.

Longer rentals get a better daily rate.  Pure functions, no I/O.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# (max days inclusive, multiplier); anything longer gets the monthly rate
DURATION_TIERS: list[tuple[int, Decimal]] = [
    (2, Decimal("1.0")),
    (6, Decimal("0.95")),
    (13, Decimal("0.88")),
    (20, Decimal("0.82")),
    (29, Decimal("0.75")),
]
MONTHLY_MULTIPLIER = Decimal("0.65")


def calculate_duration_multiplier(days: int) -> Decimal:
    """Return the duration discount multiplier (< 1.0 means discount)."""
    for max_days, multiplier in DURATION_TIERS:
        if days <= max_days:
            return multiplier
    return MONTHLY_MULTIPLIER


def get_duration_discount_description(days: int) -> str:
    """Human-readable description of the duration discount, for quotes."""
    multiplier = calculate_duration_multiplier(days)
    discount_percent = int(
        ((Decimal("1") - multiplier) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )

    if discount_percent == 0:
        return "Standard daily rate"

    if days <= 6:
        period = "multi-day"
    elif days <= 13:
        period = "weekly"
    elif days <= 29:
        period = "extended"
    else:
        period = "monthly"

    return f"{discount_percent}% {period} rental discount"
