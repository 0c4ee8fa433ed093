"""
Pydantic v2 schemas for the pricing admin store and price quotes.

Covers:
- Pricing rule create / update payloads
- Seasonal factor payloads
- Per-car pricing configuration
- Read models for quotes, demand metrics and loyalty status
- Read models for pricing, revenue and fleet performance analytics
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _require_positive_finite(v: Optional[Decimal]) -> Optional[Decimal]:
    if v is None:
        return v
    if not v.is_finite() or v <= 0:
        raise ValueError("Multiplier must be a positive, finite number")
    return v


# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------

class PricingRuleCreate(BaseModel):
    """Request body for creating a pricing rule.

    A rule either pins the price (``fixed_price``) or scales it
    (``multiplier``), never both.  ``min_price``/``max_price`` optionally
    clamp the result.
    """

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None

    car_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Target car; omit for city-wide or global rules",
    )
    city_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Target city; ignored when car_id is set",
    )

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    fixed_price: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    multiplier: Optional[Decimal] = None
    min_price: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    max_price: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)

    priority: int = Field(
        default=0,
        description="Rules apply in ascending priority; the highest composes last",
    )
    is_active: bool = True

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _require_positive_finite(v)

    @model_validator(mode="after")
    def validate_rule(self) -> "PricingRuleCreate":
        if self.fixed_price is not None and self.multiplier is not None:
            raise ValueError("A rule sets either fixed_price or multiplier, not both")
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be given together")
        if self.start_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must not exceed max_price")
        return self


class PricingRuleUpdate(BaseModel):
    """Partial update of a pricing rule; only supplied fields change."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    fixed_price: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    multiplier: Optional[Decimal] = None
    min_price: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    max_price: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    priority: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _require_positive_finite(v)

    @model_validator(mode="after")
    def validate_effect(self) -> "PricingRuleUpdate":
        if self.fixed_price is not None and self.multiplier is not None:
            raise ValueError("A rule sets either fixed_price or multiplier, not both")
        return self


class PricingRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    car_id: Optional[uuid.UUID] = None
    city_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    fixed_price: Optional[Decimal] = None
    multiplier: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    priority: int
    is_active: bool


# ---------------------------------------------------------------------------
# Seasonal factors
# ---------------------------------------------------------------------------

class SeasonalFactorCreate(BaseModel):
    """Request body for a custom seasonal factor (inclusive date window)."""

    name: str = Field(min_length=1, max_length=200)
    start_date: date
    end_date: date
    multiplier: Decimal
    city_id: Optional[uuid.UUID] = None
    is_active: bool = True

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, v: Decimal) -> Decimal:
        return _require_positive_finite(v)

    @model_validator(mode="after")
    def validate_window(self) -> "SeasonalFactorCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SeasonalFactorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    start_date: date
    end_date: date
    multiplier: Decimal
    city_id: Optional[uuid.UUID] = None
    is_active: bool


# ---------------------------------------------------------------------------
# Car pricing configuration
# ---------------------------------------------------------------------------

class CarPricingConfigUpdate(BaseModel):
    """Pricing fields an admin may change on a car."""

    base_price_per_day: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    min_price_per_day: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    max_price_per_day: Optional[Decimal] = Field(default=None, gt=0, allow_inf_nan=False)
    use_dynamic_pricing: Optional[bool] = None
    daily_operating_cost: Optional[Decimal] = Field(default=None, ge=0, allow_inf_nan=False)
    monthly_financing_cost: Optional[Decimal] = Field(default=None, ge=0, allow_inf_nan=False)
    purchase_price: Optional[Decimal] = Field(default=None, ge=0, allow_inf_nan=False)
    maintenance_score: Optional[Decimal] = Field(default=None, ge=0, le=100)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class AppliedRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    description: Optional[str] = None
    adjustment: Decimal


class MultiplierSetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    demand: Decimal
    seasonal: Decimal
    utilization: Decimal
    maintenance: Decimal
    duration: Decimal
    customer: Decimal


class ConstraintWindowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min: Decimal
    max: Decimal
    applied: bool


class PriceBreakdownOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base: Decimal
    multipliers: MultiplierSetOut
    dynamic_price: Optional[Decimal] = None
    constraints: Optional[ConstraintWindowOut] = None
    rules: list[AppliedRuleOut] = Field(default_factory=list)


class PriceQuoteOut(BaseModel):
    """Price quote with full breakdown."""

    model_config = ConfigDict(from_attributes=True)

    car_id: uuid.UUID
    city_id: Optional[uuid.UUID] = None
    city_name: Optional[str] = None
    base_price: Decimal
    price_per_day: Decimal
    total_price: Decimal
    duration: int
    start_date: datetime
    end_date: datetime
    breakdown: PriceBreakdownOut
    is_dynamic: bool
    calculated_at: datetime
    snapshot_id: Optional[uuid.UUID] = None


class CityDemandMetricsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    city_id: uuid.UUID
    total_cars: int
    available_cars: int
    active_contracts: int
    utilization_rate: Decimal
    demand_score: Decimal
    last_calculated: datetime


class LoyaltyInfoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tier: str
    discount_percent: int
    rentals_count: int
    lifetime_value: Decimal


# ---------------------------------------------------------------------------
# Analytics read models
# ---------------------------------------------------------------------------

class PricingAnalyticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_start: datetime
    period_end: datetime
    snapshot_count: int
    average_final_price: Optional[Decimal] = None
    average_multipliers: dict[str, Decimal] = Field(default_factory=dict)
    average_price_by_city: dict[uuid.UUID, Decimal] = Field(default_factory=dict)
    completed_contracts: int
    completed_revenue: Decimal
    average_revenue_per_contract: Optional[Decimal] = None
    average_price_per_day: Optional[Decimal] = None
    contracts_with_pricing: int
    pricing_impact_percent: Optional[Decimal] = None
    total_cars: int
    dynamic_pricing_cars: int
    dynamic_pricing_share: Optional[Decimal] = None


class CarRevenueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    car_id: uuid.UUID
    label: str
    revenue: Decimal
    contracts: int


class CityRevenueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    city_name: str
    revenue: Decimal
    contracts: int
    average_revenue: Optional[Decimal] = None


class RevenueAnalyticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_start: datetime
    period_end: datetime
    completed_revenue: Decimal
    pending_revenue: Decimal
    lost_revenue: Decimal
    completed_contracts: int
    active_contracts: int
    cancelled_contracts: int
    average_revenue_per_contract: Optional[Decimal] = None
    top_cars: list[CarRevenueOut] = Field(default_factory=list)
    revenue_by_city: Optional[dict[uuid.UUID, CityRevenueOut]] = None


class CarPerformanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    car_id: uuid.UUID
    make: str
    model: str
    year: int
    city_name: str
    price_per_day: Decimal
    base_price_per_day: Optional[Decimal] = None
    utilization_rate: Optional[Decimal] = None
    rating: str
