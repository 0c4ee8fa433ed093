"""
Initialise and inspect the dynamic pricing data.

Usage::

    python scripts/init_pricing.py init            # cars + seasonal factors + jobs
    python scripts/init_pricing.py init-cars       # recommended prices from costs
    python scripts/init_pricing.py init-seasonal   # default seasonal calendar
    python scripts/init_pricing.py report          # pricing analytics, last 30 days
    python scripts/init_pricing.py revenue         # contract revenue, last 90 days
    python scripts/init_pricing.py performance     # fleet utilization ratings
    python scripts/init_pricing.py rules           # pricing rules by priority
    python scripts/init_pricing.py seasonal        # seasonal factors
    python scripts/init_pricing.py quote CAR_ID YYYY-MM-DD DAYS [CUSTOMER_ID]
    python scripts/init_pricing.py demand CITY_ID
    python scripts/init_pricing.py loyalty CUSTOMER_ID

Reports are printed as JSON.
"""

import asyncio
import logging
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Path setup
SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
sys.path.insert(0, str(ROOT_DIR))

from rental_pricing.core.config import settings
from rental_pricing.jobs.pricingJobs import run_all_pricing_jobs
from rental_pricing.schemas.pricing import (
    CarPerformanceOut,
    CityDemandMetricsOut,
    LoyaltyInfoOut,
    PriceQuoteOut,
    PricingAnalyticsOut,
    PricingRuleOut,
    RevenueAnalyticsOut,
    SeasonalFactorOut,
)
from rental_pricing.services.demandCalculator import get_city_demand_metrics
from rental_pricing.services.loyaltyCalculator import get_customer_loyalty_info
from rental_pricing.services.pricingAdminService import (
    create_default_seasonal_factors,
    get_car_performance,
    get_pricing_analytics,
    get_revenue_analytics,
    initialise_car_pricing,
    list_pricing_rules,
    list_seasonal_factors,
)
from rental_pricing.services.pricingEngine import calculate_dynamic_price

INIT_COMMANDS = ("init", "init-cars", "init-seasonal")
REPORT_COMMANDS = (
    "report",
    "revenue",
    "performance",
    "rules",
    "seasonal",
    "quote",
    "demand",
    "loyalty",
)
COMMANDS = INIT_COMMANDS + REPORT_COMMANDS


def _print_json(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2))


def _print_list(out_model: type[BaseModel], items) -> None:
    print("[")
    print(",\n".join(out_model.model_validate(item).model_dump_json(indent=2) for item in items))
    print("]")


async def init_cars(session: AsyncSession) -> None:
    count = await initialise_car_pricing(session)
    print(f"Initialised pricing for {count} cars.")


async def init_seasonal(session: AsyncSession) -> None:
    created = await create_default_seasonal_factors(session)
    for factor in created:
        print(f"Created seasonal factor {factor.name} ({factor.start_date} - {factor.end_date}, x{factor.multiplier})")
    print(f"Created {len(created)} seasonal factors.")


async def report(session: AsyncSession, command: str, args: list[str]) -> None:
    if command == "report":
        _print_json(PricingAnalyticsOut.model_validate(await get_pricing_analytics(session, days=30)))
    elif command == "revenue":
        analytics = await get_revenue_analytics(session, days=90, group_by_city=True)
        _print_json(RevenueAnalyticsOut.model_validate(analytics))
    elif command == "performance":
        _print_list(CarPerformanceOut, await get_car_performance(session))
    elif command == "rules":
        _print_list(PricingRuleOut, await list_pricing_rules(session))
    elif command == "seasonal":
        _print_list(SeasonalFactorOut, await list_seasonal_factors(session))
    elif command == "quote":
        car_id, start, days = uuid.UUID(args[0]), args[1], int(args[2])
        customer_id = uuid.UUID(args[3]) if len(args) > 3 else None
        start_date = datetime.strptime(start, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        quote = await calculate_dynamic_price(
            session,
            car_id,
            start_date,
            start_date + timedelta(days=days),
            customer_id=customer_id,
        )
        _print_json(PriceQuoteOut.model_validate(quote))
    elif command == "demand":
        metrics = await get_city_demand_metrics(session, uuid.UUID(args[0]))
        _print_json(CityDemandMetricsOut.model_validate(metrics))
    elif command == "loyalty":
        info = await get_customer_loyalty_info(session, uuid.UUID(args[0]))
        _print_json(LoyaltyInfoOut.model_validate(info))


REQUIRED_ARGS = {"quote": 3, "demand": 1, "loyalty": 1}


async def main(command: str, args: list[str]) -> None:
    if command not in COMMANDS:
        print(f"Unknown command '{command}'. Must be one of: {', '.join(COMMANDS)}")
        sys.exit(1)
    if len(args) < REQUIRED_ARGS.get(command, 0):
        print(__doc__)
        sys.exit(1)

    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with async_session() as session:
            async with session.begin():
                if command in ("init", "init-cars"):
                    await init_cars(session)
                if command in ("init", "init-seasonal"):
                    await init_seasonal(session)
                if command == "init":
                    await run_all_pricing_jobs(session)
                    print("Pricing jobs completed.")
                if command in REPORT_COMMANDS:
                    await report(session, command, args)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "init", sys.argv[2:]))
