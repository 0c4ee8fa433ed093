"""
Unit tests for the Dynamic Pricing Engine.

Estimators are patched at the engine module so each test pins the
multipliers and checks the orchestration: flat pricing, clamping,
rounding, rule application, snapshots and the bulk/contract variants.
"""

import uuid
from contextlib import ExitStack
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rental_pricing.models import PricingSnapshot
from rental_pricing.services.pricingEngine import (
    CarNotFoundError,
    CarNotLeasableError,
    InvalidRentalPeriodError,
    PricingError,
    calculate_dynamic_price,
    get_bulk_price_previews,
    quote_contract_price,
)
from rental_pricing.services.ruleResolver import AppliedRule, RuleResolution

ENGINE = "rental_pricing.services.pricingEngine"

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)
START = datetime(2026, 10, 21, tzinfo=timezone.utc)


def _passthrough_rules(db, car, start_date, end_date, current_price):
    return RuleResolution(final_price=current_price)


class _Estimators:
    """Patches every estimator and the car lookup in the engine module."""

    def __init__(
        self,
        car,
        demand="1.0",
        seasonal="1.0",
        utilization="1.0",
        customer="1.0",
        rules=_passthrough_rules,
    ):
        self.car = car
        self.get_car = AsyncMock(return_value=car)
        self.demand = AsyncMock(return_value=Decimal(demand))
        self.seasonal = AsyncMock(return_value=Decimal(seasonal))
        self.utilization = AsyncMock(return_value=Decimal(utilization))
        self.customer = AsyncMock(return_value=Decimal(customer))
        self.rules = AsyncMock(side_effect=rules)
        self.availability = AsyncMock(return_value=(7, 3))
        self._stack = ExitStack()

    def __enter__(self):
        for name, mock in (
            ("_get_car", self.get_car),
            ("calculate_demand_multiplier", self.demand),
            ("calculate_seasonal_multiplier", self.seasonal),
            ("calculate_utilization_multiplier", self.utilization),
            ("calculate_customer_multiplier", self.customer),
            ("apply_pricing_rules", self.rules),
            ("count_city_availability", self.availability),
        ):
            self._stack.enter_context(patch(f"{ENGINE}.{name}", new=mock))
        return self

    def __exit__(self, *exc):
        return self._stack.__exit__(*exc)


# ---------------------------------------------------------------------------
# Hard failures
# ---------------------------------------------------------------------------


class TestHardFailures:

    @pytest.mark.asyncio
    async def test_unknown_car(self, mock_db):
        car_id = uuid.uuid4()
        with _Estimators(None):
            with pytest.raises(CarNotFoundError) as exc_info:
                await calculate_dynamic_price(
                    mock_db, car_id, START, START + timedelta(days=3), now=NOW
                )
        assert exc_info.value.car_id == car_id
        assert isinstance(exc_info.value, PricingError)

    @pytest.mark.asyncio
    async def test_car_not_leasable(self, mock_db, sample_car):
        sample_car.available_for_lease = False
        with _Estimators(sample_car):
            with pytest.raises(CarNotLeasableError, match="not available for lease"):
                await calculate_dynamic_price(
                    mock_db, sample_car.id, START, START + timedelta(days=3), now=NOW
                )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, -2])
    async def test_empty_or_negative_period(self, mock_db, sample_car, days):
        with _Estimators(sample_car) as est:
            with pytest.raises(InvalidRentalPeriodError, match="at least 1 day"):
                await calculate_dynamic_price(
                    mock_db, sample_car.id, START, START + timedelta(days=days), now=NOW
                )
        est.demand.assert_not_awaited()


# ---------------------------------------------------------------------------
# Flat pricing
# ---------------------------------------------------------------------------


class TestFlatPricing:

    @pytest.mark.asyncio
    async def test_dynamic_pricing_disabled(self, mock_db, sample_car):
        sample_car.use_dynamic_pricing = False
        with _Estimators(sample_car, demand="2.0") as est:
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=3), now=NOW
            )

        assert quote.is_dynamic is False
        assert quote.price_per_day == Decimal("45.00")
        assert quote.total_price == Decimal("135.00")
        assert quote.duration == 3
        multipliers = quote.breakdown.multipliers
        assert {
            multipliers.demand,
            multipliers.seasonal,
            multipliers.utilization,
            multipliers.maintenance,
            multipliers.duration,
            multipliers.customer,
        } == {Decimal("1.0")}
        est.demand.assert_not_awaited()
        est.rules.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flat_pricing_still_needs_a_full_day(self, mock_db, sample_car):
        sample_car.use_dynamic_pricing = False
        with _Estimators(sample_car):
            with pytest.raises(InvalidRentalPeriodError):
                await calculate_dynamic_price(
                    mock_db, sample_car.id, START, START, now=NOW
                )


# ---------------------------------------------------------------------------
# Dynamic pricing
# ---------------------------------------------------------------------------


class TestDynamicPricing:

    @pytest.mark.asyncio
    async def test_worked_example(self, mock_db, sample_car):
        """40 x 1.6 x 1.3 x 1.1 x 0.88 (7 days) x 0.95 = 76.51072."""
        with _Estimators(
            sample_car, demand="1.6", seasonal="1.3", utilization="1.1", customer="0.95"
        ):
            quote = await calculate_dynamic_price(
                mock_db,
                sample_car.id,
                START,
                START + timedelta(days=7),
                customer_id=uuid.uuid4(),
                now=NOW,
            )

        assert quote.is_dynamic is True
        assert quote.base_price == Decimal("40.00")
        assert quote.breakdown.multipliers.duration == Decimal("0.88")
        assert quote.breakdown.multipliers.maintenance == Decimal("1.0")
        assert quote.breakdown.dynamic_price == Decimal("76.51")
        assert quote.price_per_day == Decimal("76.51")
        assert quote.total_price == Decimal("535.57")
        assert quote.breakdown.constraints.min == Decimal("24.00")
        assert quote.breakdown.constraints.max == Decimal("100.00")
        assert quote.breakdown.constraints.applied is False
        assert quote.city_name == "Lisbon"

    @pytest.mark.asyncio
    async def test_partial_day_rounds_up(self, mock_db, sample_car):
        with _Estimators(sample_car):
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=2, hours=1), now=NOW
            )
        assert quote.duration == 3
        # 3 days earns the multi-day discount
        assert quote.price_per_day == Decimal("38.00")

    @pytest.mark.asyncio
    async def test_clamped_to_default_max(self, mock_db, sample_car):
        with _Estimators(sample_car, demand="2.5", seasonal="1.3"):
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=2), now=NOW
            )
        assert quote.price_per_day == Decimal("100.00")
        assert quote.breakdown.constraints.applied is True

    @pytest.mark.asyncio
    async def test_clamped_to_car_min(self, mock_db, sample_car):
        sample_car.min_price_per_day = Decimal("45.00")
        with _Estimators(sample_car, demand="0.6"):
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=2), now=NOW
            )
        assert quote.price_per_day == Decimal("45.00")
        assert quote.breakdown.constraints.min == Decimal("45.00")

    @pytest.mark.asyncio
    async def test_price_within_window(self, mock_db, sample_car):
        with _Estimators(sample_car, demand="2.5", seasonal="1.8", utilization="1.25", customer="0.85"):
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=1), now=NOW
            )
        window = quote.breakdown.constraints
        assert window.min <= quote.breakdown.dynamic_price <= window.max

    @pytest.mark.asyncio
    async def test_rules_override_final_price(self, mock_db, sample_car):
        def fixed_fifty(db, car, start_date, end_date, current_price):
            return RuleResolution(
                final_price=Decimal("50.00"),
                rules=[AppliedRule("Flat", None, Decimal("50.00") - current_price)],
            )

        with _Estimators(sample_car, demand="1.6", rules=fixed_fifty) as est:
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=4), now=NOW
            )

        # 40 x 1.6 x 0.95 = 60.80 before the rule
        assert quote.breakdown.dynamic_price == Decimal("60.80")
        assert quote.price_per_day == Decimal("50.00")
        assert quote.total_price == Decimal("200.00")
        assert quote.breakdown.rules[0].name == "Flat"
        est.rules.assert_awaited_once()
        assert est.rules.await_args.args[4] == Decimal("60.80")

    @pytest.mark.asyncio
    async def test_estimators_share_db_without_factory(self, mock_db, sample_car):
        customer_id = uuid.uuid4()
        with _Estimators(sample_car) as est:
            await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=3),
                customer_id=customer_id, now=NOW,
            )

        est.demand.assert_awaited_once_with(
            mock_db, sample_car.city_id, START, START + timedelta(days=3)
        )
        est.seasonal.assert_awaited_once_with(mock_db, START, 3, sample_car.city_id, now=NOW)
        est.utilization.assert_awaited_once_with(mock_db, sample_car.id)
        est.customer.assert_awaited_once_with(mock_db, customer_id, now=NOW)

    @pytest.mark.asyncio
    async def test_estimators_get_own_sessions_with_factory(self, mock_db, sample_car):
        sessions = []

        def open_session():
            session = AsyncMock()
            ctx = MagicMock()
            ctx.__aenter__ = AsyncMock(return_value=session)
            ctx.__aexit__ = AsyncMock(return_value=False)
            sessions.append(session)
            return ctx

        factory = MagicMock(side_effect=open_session)

        with _Estimators(sample_car, demand="1.2") as est:
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=3),
                now=NOW, session_factory=factory,
            )

        assert factory.call_count == 4
        assert quote.breakdown.multipliers.demand == Decimal("1.2")
        used = [
            est.demand.await_args.args[0],
            est.seasonal.await_args.args[0],
            est.utilization.await_args.args[0],
            est.customer.await_args.args[0],
        ]
        assert mock_db not in used
        assert len({id(s) for s in used}) == 4


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshots:

    @pytest.mark.asyncio
    async def test_not_saved_by_default(self, mock_db, sample_car):
        with _Estimators(sample_car):
            quote = await calculate_dynamic_price(
                mock_db, sample_car.id, START, START + timedelta(days=3), now=NOW
            )
        assert quote.snapshot_id is None
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_snapshot_captures_breakdown(self, mock_db, sample_car):
        with _Estimators(sample_car, demand="1.6", seasonal="1.3", utilization="1.1", customer="0.95"):
            quote = await calculate_dynamic_price(
                mock_db,
                sample_car.id,
                START,
                START + timedelta(days=7),
                save_snapshot=True,
                now=NOW,
            )

        mock_db.begin_nested.assert_called_once()
        snapshot = mock_db.add.call_args.args[0]
        assert isinstance(snapshot, PricingSnapshot)
        assert quote.snapshot_id == snapshot.id
        assert snapshot.car_id == sample_car.id
        assert snapshot.city_id == sample_car.city_id
        assert snapshot.request_date == NOW
        assert snapshot.duration == 7
        assert snapshot.available_cars == 7
        assert snapshot.active_contracts == 3
        assert snapshot.final_price == Decimal("76.51")
        # Stored multipliers reproduce the pre-rule price
        product = (
            snapshot.base_price
            * snapshot.demand_multiplier
            * snapshot.seasonal_multiplier
            * snapshot.utilization_multiplier
            * snapshot.maintenance_multiplier
            * snapshot.duration_multiplier
            * snapshot.customer_multiplier
        )
        assert product.quantize(Decimal("0.01")) == snapshot.calculated_price

    @pytest.mark.asyncio
    async def test_snapshot_failure_is_swallowed(self, mock_db, sample_car):
        with _Estimators(sample_car) as est:
            est.availability.side_effect = RuntimeError("insert failed")
            quote = await calculate_dynamic_price(
                mock_db,
                sample_car.id,
                START,
                START + timedelta(days=3),
                save_snapshot=True,
                now=NOW,
            )
        assert quote.snapshot_id is None
        assert quote.price_per_day == Decimal("38.00")


# ---------------------------------------------------------------------------
# Bulk previews and contract quotes
# ---------------------------------------------------------------------------


def _quote(price_per_day: str, total: str):
    quote = MagicMock()
    quote.price_per_day = Decimal(price_per_day)
    quote.total_price = Decimal(total)
    return quote


class TestGetBulkPricePreviews:

    @pytest.mark.asyncio
    async def test_mixes_dynamic_fallback_and_missing(self, mock_db, sample_car):
        priced_id, failing_id, missing_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

        async def fake_calculate(db, car_id, start_date, end_date, now=None):
            if car_id == priced_id:
                return _quote("61.20", "183.60")
            if car_id == failing_id:
                raise RuntimeError("estimator exploded")
            raise CarNotFoundError(car_id)

        mock_db.get.side_effect = lambda model, car_id: sample_car if car_id == failing_id else None

        with patch(f"{ENGINE}.calculate_dynamic_price", side_effect=fake_calculate):
            previews = await get_bulk_price_previews(
                mock_db,
                [priced_id, failing_id, missing_id],
                START,
                START + timedelta(days=3),
            )

        assert set(previews) == {priced_id, failing_id}
        assert previews[priced_id].price_per_day == Decimal("61.20")
        assert previews[failing_id].price_per_day == Decimal("45.00")
        assert previews[failing_id].total_price == Decimal("135.00")
        # One savepoint per car, so a failed car leaves the session usable
        assert mock_db.begin_nested.call_count == 3


class TestQuoteContractPrice:

    @pytest.mark.asyncio
    async def test_always_saves_snapshot(self, mock_db, sample_car):
        customer_id = uuid.uuid4()
        with _Estimators(sample_car, demand="1.6", seasonal="1.3", utilization="1.1", customer="0.95"):
            contract_quote = await quote_contract_price(
                mock_db, sample_car.id, START, START + timedelta(days=7), customer_id, now=NOW
            )

        snapshot = mock_db.add.call_args.args[0]
        assert contract_quote.pricing_snapshot_id == snapshot.id
        assert contract_quote.base_price == Decimal("40.00")
        assert contract_quote.demand_multiplier == Decimal("1.6")
        assert contract_quote.seasonal_multiplier == Decimal("1.3")
        assert contract_quote.duration_discount == Decimal("0.88")
        assert contract_quote.dynamic_price == Decimal("76.51")
        assert contract_quote.final_price == Decimal("76.51")
        assert contract_quote.total_price == Decimal("535.57")
        assert contract_quote.duration == 7
