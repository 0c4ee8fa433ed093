"""
E2E test fixtures for the pricing engine.

Provides:
- An async SQLite database (in-memory) created from the ORM metadata
- A session wrapped in a transaction that is rolled back after each test
- Seed data: two cities, a small fleet and helpers for contracts

SQLite has no native SAVEPOINT-aware transaction handling in the driver, so
the connection runs in autocommit mode and SQLAlchemy emits BEGIN itself;
this keeps ``begin_nested()`` working the same way it does on PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rental_pricing.models import Car, CarState, City, Contract, ContractState
from rental_pricing.models.base import Base

# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

# Every ID contains a hex letter: the UUID column has NUMERIC affinity on
# SQLite, which would store an all-digit hex string as a number.
LISBON_ID = uuid.UUID("c1717a00-0000-4000-8000-00000000000a")
PORTO_ID = uuid.UUID("c1717a00-0000-4000-8000-00000000000b")

CLIO_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
GOLF_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
FLAT_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
RETIRED_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")
WORKSHOP_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")
PORTO_CAR_ID = uuid.UUID("ffffffff-ffff-ffff-ffff-ffffffffffff")

CUSTOMER_ID = uuid.UUID("c0570e00-0000-4000-8000-0000000000a1")

# 2026-10-19 is a Monday; rentals start nine days later on Wednesday 2026-10-28
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
RENTAL_START = datetime(2026, 10, 28, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Async engine + session (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def _test_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(_test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session inside a transaction that is always rolled back."""
    session_factory = async_sessionmaker(
        bind=_test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        await session.begin()
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


def _car(car_id: uuid.UUID, city_id: uuid.UUID, **overrides) -> Car:
    values = dict(
        id=car_id,
        city_id=city_id,
        make="Renault",
        model="Clio",
        year=2023,
        state=CarState.AVAILABLE,
        available_for_lease=True,
        price_per_day=Decimal("45.00"),
        base_price_per_day=Decimal("40.00"),
        use_dynamic_pricing=True,
        maintenance_score=Decimal("90"),
    )
    values.update(overrides)
    return Car(**values)


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession) -> AsyncSession:
    """Two cities and a fleet of cars.

    Lisbon: four lease-eligible cars (one of them flat-priced), one retired
    car and one car in the workshop.  Porto: a single car.
    """
    db_session.add_all([
        City(id=LISBON_ID, name="Lisbon", country="PT"),
        City(id=PORTO_ID, name="Porto", country="PT"),
    ])
    await db_session.flush()

    db_session.add_all([
        _car(CLIO_ID, LISBON_ID),
        _car(
            GOLF_ID,
            LISBON_ID,
            make="Volkswagen",
            model="Golf",
            base_price_per_day=None,
            daily_operating_cost=Decimal("15.00"),
            monthly_financing_cost=Decimal("300.00"),
            purchase_price=Decimal("18250.00"),
            acquired_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        ),
        _car(FLAT_ID, LISBON_ID, model="Megane", use_dynamic_pricing=False),
        _car(RETIRED_ID, LISBON_ID, model="Twingo", available_for_lease=False),
        _car(WORKSHOP_ID, LISBON_ID, model="Kangoo", state=CarState.MAINTENANCE),
        _car(PORTO_CAR_ID, PORTO_ID, model="Captur"),
    ])
    await db_session.flush()
    return db_session


@pytest.fixture
def make_contract(db_session: AsyncSession):
    """Factory adding a contract to the session (not flushed)."""

    def _make(
        car_id: uuid.UUID,
        start: datetime,
        days: int,
        state: ContractState = ContractState.ACTIVE,
        customer_id: uuid.UUID = CUSTOMER_ID,
        total_price: Decimal = Decimal("200.00"),
    ) -> Contract:
        contract = Contract(
            car_id=car_id,
            customer_id=customer_id,
            start_date=start,
            end_date=start + timedelta(days=days),
            total_price=total_price,
            state=state,
        )
        db_session.add(contract)
        return contract

    return _make
