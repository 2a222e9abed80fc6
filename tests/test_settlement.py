"""
Unit Tests for Load Settlement

Run with: pytest tests/test_settlement.py -v
"""

from decimal import Decimal

import pytest

from courier_core.core.errors import ValidationError
from courier_core.data.models import BillingRule, Driver, FleetRole, LoadRequest, LoadStatus
from courier_core.services.payee import PayeeType
from courier_core.services.settlement import SettlementCalculator


@pytest.fixture
def calculator(config, clock):
    return SettlementCalculator(config_manager=config, clock=clock)


@pytest.fixture
def fleet_driver():
    return Driver(
        first_name="Dana",
        last_name="Reyes",
        email="dana@example.com",
        fleet_id="fleet-1",
        fleet_role=FleetRole.DRIVER,
    )


def make_load(driver, status, **fields):
    return LoadRequest(
        tracking_code="CC-SETTLE01",
        shipper_id="shipper-1",
        driver_id=driver.driver_id,
        status=status,
        pickup_facility_id="A",
        pickup_address="1 A St",
        dropoff_facility_id="B",
        dropoff_address="2 B St",
        **fields,
    )


class TestCompleted:

    def test_full_quote_to_fleet(self, calculator, fleet_driver, clock):
        load = make_load(fleet_driver, LoadStatus.DELIVERED, quote_amount=Decimal("120.00"))
        settlement = calculator.for_completed(load, fleet_driver)
        assert settlement.billable_amount == Decimal("120.00")
        assert settlement.billing_rule == BillingRule.BILLABLE
        assert settlement.payee.type == PayeeType.FLEET
        assert settlement.payee.id == "fleet-1"
        assert settlement.settled_at == clock()

    def test_unquoted_delivery_settles_to_zero(self, calculator, fleet_driver):
        settlement = calculator.for_completed(make_load(fleet_driver, LoadStatus.DELIVERED), fleet_driver)
        assert settlement.billable_amount == Decimal("0.00")
        assert settlement.billing_rule == BillingRule.BILLABLE
        assert settlement.payee.id == "fleet-1"

    def test_requires_delivery(self, calculator, fleet_driver):
        load = make_load(fleet_driver, LoadStatus.IN_TRANSIT, quote_amount=Decimal("120.00"))
        with pytest.raises(ValidationError, match="Only delivered loads"):
            calculator.for_completed(load, fleet_driver)


class TestCancelled:

    @pytest.mark.parametrize(
        "rule, expected",
        [
            (BillingRule.BILLABLE, Decimal("120.00")),
            (BillingRule.PARTIAL, Decimal("60.00")),
            (BillingRule.NOT_BILLABLE, Decimal("0.00")),
            (None, Decimal("0.00")),
        ],
    )
    def test_billing_rules(self, calculator, fleet_driver, rule, expected):
        load = make_load(
            fleet_driver,
            LoadStatus.CANCELLED,
            quote_amount=Decimal("120.00"),
            cancellation_billing_rule=rule,
        )
        settlement = calculator.for_cancelled(load, fleet_driver)
        assert settlement.billable_amount == expected
        assert settlement.basis == "cancelled"

    def test_unquoted_load_settles_to_zero(self, calculator, fleet_driver):
        load = make_load(fleet_driver, LoadStatus.CANCELLED, cancellation_billing_rule=BillingRule.BILLABLE)
        assert calculator.for_cancelled(load, fleet_driver).billable_amount == Decimal("0.00")
