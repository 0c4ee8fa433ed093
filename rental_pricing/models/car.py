"""
SQLAlchemy models for cities and cars.

Only the columns the pricing subsystem reads or maintains are modelled;
the rest of the inventory record belongs to the fleet management service.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CarState(str, enum.Enum):
    AVAILABLE = "available"
    LEASED = "leased"
    MAINTENANCE = "maintenance"


class City(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "cities"

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    country: Mapped[str] = mapped_column(String(2), nullable=False)

    cars: Mapped[list["Car"]] = relationship("Car", back_populates="city")

    def __repr__(self) -> str:
        return f"<City(id={self.id}, name={self.name})>"


class Car(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "cars"

    city_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cities.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Display
    make: Mapped[str] = mapped_column(String(80), nullable=False)
    model: Mapped[str] = mapped_column(String(80), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Fleet state
    state: Mapped[CarState] = mapped_column(
        Enum(CarState, name="car_state"),
        nullable=False,
        default=CarState.AVAILABLE,
        server_default="AVAILABLE",
    )
    available_for_lease: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    odometer_km: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Legacy flat price (used when dynamic pricing is off, and as fallback)
    price_per_day: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Pricing configuration
    base_price_per_day: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    min_price_per_day: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    max_price_per_day: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    use_dynamic_pricing: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    # Cost inputs for the base price
    daily_operating_cost: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    monthly_financing_cost: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    acquired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Maintained by the pricing background jobs
    maintenance_score: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("100")
    )
    utilization_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 4), nullable=True
    )
    last_utilization_update: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    city: Mapped["City"] = relationship("City", back_populates="cars")

    def __repr__(self) -> str:
        return (
            f"<Car(id={self.id}, make={self.make}, model={self.model}, "
            f"dynamic={self.use_dynamic_pricing})>"
        )
