"""
Unit Tests for Fleet Payee Resolution

Run with: pytest tests/test_payee.py -v
"""

import pytest

from courier_core.core.errors import ValidationError
from courier_core.data.models import Driver, FleetRole
from courier_core.services.payee import FleetPayeeResolver, PayeeType


@pytest.fixture
def resolver():
    return FleetPayeeResolver()


def driver_with(role, fleet_id=None):
    return Driver.model_construct(
        driver_id="drv-1",
        first_name="Dana",
        last_name="Reyes",
        email="dana@example.com",
        fleet_role=role,
        fleet_id=fleet_id,
    )


def test_independent_driver_is_paid_directly(resolver):
    payee = resolver.payee(driver_with(FleetRole.INDEPENDENT))
    assert payee.type == PayeeType.DRIVER
    assert payee.id == "drv-1"


@pytest.mark.parametrize("role", [FleetRole.OWNER, FleetRole.ADMIN, FleetRole.DRIVER])
def test_fleet_members_are_paid_through_the_fleet(resolver, role):
    payee = resolver.payee(driver_with(role, fleet_id="fleet-9"))
    assert payee.type == PayeeType.FLEET
    assert payee.id == "fleet-9"


def test_fleet_role_without_fleet_is_invalid(resolver):
    with pytest.raises(ValidationError, match="no fleet"):
        resolver.payee(driver_with(FleetRole.DRIVER))


def test_unknown_role_is_invalid(resolver):
    with pytest.raises(ValidationError, match="Invalid fleet role: CONTRACTOR"):
        resolver.payee(driver_with("CONTRACTOR", fleet_id="fleet-9"))
