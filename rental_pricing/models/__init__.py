"""
Rental Pricing SQLAlchemy Models
================================

Central import point for all ORM models. Import ``Base`` from here for the
``create_all`` convenience in tests and scripts.

Usage::

    from rental_pricing.models import Base, Car, Contract, PricingRule
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Inventory --
from .car import Car, CarState, City

# -- Bookings --
from .contract import Contract, ContractState

# -- Pricing --
from .pricing import (
    CityDemandMetrics,
    PricingRule,
    PricingSnapshot,
    SeasonalFactor,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Inventory
    "Car",
    "CarState",
    "City",
    # Bookings
    "Contract",
    "ContractState",
    # Pricing
    "CityDemandMetrics",
    "PricingRule",
    "PricingSnapshot",
    "SeasonalFactor",
]
