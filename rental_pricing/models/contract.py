"""
SQLAlchemy model for rental contracts (bookings).

The contract lifecycle is owned by the reservations service; pricing reads
contracts for demand, utilization and loyalty, and the quoting integration
writes the pricing columns when a contract is created.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ContractState(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Contract(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "contracts"

    car_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cars.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # Users live in the identity service; no local foreign key
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    state: Mapped[ContractState] = mapped_column(
        Enum(ContractState, name="contract_state"),
        nullable=False,
        default=ContractState.ACTIVE,
        server_default="ACTIVE",
    )

    # Quoted pricing (written once when the contract is priced)
    base_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    demand_multiplier: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 4), nullable=True
    )
    seasonal_multiplier: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 4), nullable=True
    )
    duration_discount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 4), nullable=True
    )
    dynamic_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    final_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    pricing_snapshot_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pricing_snapshots.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    car: Mapped["Car"] = relationship("Car")

    def __repr__(self) -> str:
        return (
            f"<Contract(id={self.id}, car={self.car_id}, "
            f"state={self.state}, total={self.total_price})>"
        )
