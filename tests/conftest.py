"""
Shared pytest fixtures for the pricing unit tests.

Provides mock database sessions and sample domain objects that mirror
production ORM models without requiring a live database connection.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from rental_pricing.models import Car, CarState, City


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()``, ``db.commit()``
    and ``async with db.begin_nested():`` out of the box.  Individual tests
    configure ``mock_db.execute.return_value`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()

    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    return session


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_city() -> City:
    city = MagicMock(spec=City)
    city.id = uuid.uuid4()
    city.name = "Lisbon"
    city.country = "PT"
    return city


@pytest.fixture
def sample_car(sample_city) -> Car:
    """A lease-eligible car with dynamic pricing and a manual base of 40."""
    car = MagicMock(spec=Car)
    car.id = uuid.uuid4()
    car.city_id = sample_city.id
    car.city = sample_city
    car.make = "Renault"
    car.model = "Clio"
    car.year = 2023
    car.state = CarState.AVAILABLE
    car.available_for_lease = True
    car.price_per_day = Decimal("45.00")
    car.base_price_per_day = Decimal("40.00")
    car.min_price_per_day = None
    car.max_price_per_day = None
    car.use_dynamic_pricing = True
    car.daily_operating_cost = None
    car.monthly_financing_cost = None
    car.purchase_price = None
    car.acquired_at = None
    car.maintenance_score = Decimal("90")
    car.utilization_rate = None
    car.last_utilization_update = None
    return car


@pytest.fixture
def cost_based_car(sample_city) -> Car:
    """A car priced from its cost inputs (no manual base price)."""
    car = MagicMock(spec=Car)
    car.id = uuid.uuid4()
    car.city_id = sample_city.id
    car.city = sample_city
    car.price_per_day = Decimal("55.00")
    car.base_price_per_day = None
    car.min_price_per_day = None
    car.max_price_per_day = None
    car.daily_operating_cost = Decimal("15.00")
    car.monthly_financing_cost = Decimal("300.00")
    car.purchase_price = Decimal("18250.00")
    car.acquired_at = datetime(2024, 3, 1, tzinfo=timezone.utc)
    car.maintenance_score = Decimal("100")
    return car
