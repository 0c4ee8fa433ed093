"""
SQLAlchemy models for pricing_snapshots, city_demand_metrics,
seasonal_factors and pricing_rules.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PricingSnapshot(Base):
    """
    Immutable record of one completed price calculation, kept for analytics.
    Rows are never updated, so there is no updated_at column; only the
    retention sweep removes them.
    """
    __tablename__ = "pricing_snapshots"
    __table_args__ = (
        Index("ix_pricing_snapshots_car_created", "car_id", "created_at"),
        Index("ix_pricing_snapshots_city_created", "city_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    car_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cars.id", ondelete="CASCADE"),
        nullable=False,
    )
    city_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cities.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Request
    request_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)

    # Calculation breakdown
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    demand_multiplier: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    seasonal_multiplier: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    utilization_multiplier: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    maintenance_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(8, 6), nullable=False, default=Decimal("1.0")
    )
    duration_multiplier: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    customer_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(8, 6), nullable=False, default=Decimal("1.0")
    )
    calculated_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    final_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Supply / demand context at calculation time
    available_cars: Mapped[int] = mapped_column(Integer, nullable=False)
    active_contracts: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<PricingSnapshot(id={self.id}, car={self.car_id}, "
            f"final={self.final_price})>"
        )


class CityDemandMetrics(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-city demand cache; at most one row per city."""
    __tablename__ = "city_demand_metrics"

    city_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cities.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    total_cars: Mapped[int] = mapped_column(Integer, nullable=False)
    available_cars: Mapped[int] = mapped_column(Integer, nullable=False)
    active_contracts: Mapped[int] = mapped_column(Integer, nullable=False)
    utilization_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    demand_score: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)

    last_calculated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<CityDemandMetrics(city={self.city_id}, "
            f"demand={self.demand_score}, at={self.last_calculated})>"
        )


class SeasonalFactor(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "seasonal_factors"
    __table_args__ = (
        Index(
            "ix_seasonal_factors_window_active",
            "start_date",
            "end_date",
            "is_active",
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Inclusive window
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)

    # NULL = applies to every city
    city_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cities.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<SeasonalFactor(id={self.id}, name={self.name}, "
            f"multiplier={self.multiplier}, active={self.is_active})>"
        )


class PricingRule(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "pricing_rules"
    __table_args__ = (
        Index(
            "ix_pricing_rules_window_active",
            "start_date",
            "end_date",
            "is_active",
        ),
        Index("ix_pricing_rules_priority", "priority"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Targeting (NULL = applies broadly)
    car_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cars.id", ondelete="CASCADE"),
        nullable=True,
    )
    city_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cities.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Date window (NULL = unbounded)
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Effect: fixed price XOR multiplier, plus an optional clamp
    fixed_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 4), nullable=True)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Applied in ascending order; the highest priority composes last
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<PricingRule(id={self.id}, name={self.name}, "
            f"priority={self.priority}, active={self.is_active})>"
        )
