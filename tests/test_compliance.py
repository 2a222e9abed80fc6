"""
Unit Tests for the Compliance Gate

Run with: pytest tests/test_compliance.py -v
"""

from datetime import timedelta

import pytest

from conftest import make_driver, make_vehicle
from courier_core.core.errors import ComplianceError
from courier_core.data.models import LoadRequest, LoadStatus
from courier_core.services.compliance import ComplianceGate, days_until


@pytest.fixture
def gate(config, clock):
    return ComplianceGate(config_manager=config, clock=clock)


@pytest.fixture
def specimen_load():
    """Load carrying UN3373 biological substances."""
    return LoadRequest(
        tracking_code="CC-TEST0001",
        shipper_id="shipper-1",
        pickup_facility_id="FAC-1",
        pickup_address="1 Lab Way",
        dropoff_facility_id="FAC-2",
        dropoff_address="2 Hospital Rd",
        requires_hazmat_certification=True,
    )


@pytest.fixture
def plain_load(specimen_load):
    return specimen_load.model_copy(update={"requires_hazmat_certification": False})


def test_days_until_rounds_up(clock):
    assert days_until(clock() + timedelta(days=2, hours=1), clock()) == 3
    assert days_until(clock() - timedelta(hours=1), clock()) == 0


class TestCleanCredentials:

    def test_compliant_driver_passes(self, gate, clock, specimen_load):
        driver = make_driver(clock)
        result = gate.check(specimen_load, driver, make_vehicle(clock, driver), LoadStatus.SCHEDULED)
        assert result.passed
        assert result.errors == []
        assert result.warnings == []
        assert result.transition_target == LoadStatus.SCHEDULED
        assert result.checked_at == clock()


class TestHardFailures:

    def test_expired_license(self, gate, clock, plain_load):
        driver = make_driver(clock, license_expiry=clock() - timedelta(days=1))
        result = gate.check(plain_load, driver, make_vehicle(clock, driver))
        assert not result.passed
        assert result.errors[0].startswith("Driver license expired on")

    def test_no_vehicle(self, gate, clock, plain_load):
        result = gate.check(plain_load, make_driver(clock), None)
        assert result.errors == ["Load has no assigned vehicle"]

    def test_inactive_vehicle(self, gate, clock, plain_load):
        driver = make_driver(clock)
        result = gate.check(plain_load, driver, make_vehicle(clock, driver, is_active=False))
        assert any("inactive" in error for error in result.errors)

    def test_missing_registration(self, gate, clock, plain_load):
        driver = make_driver(clock)
        result = gate.check(plain_load, driver, make_vehicle(clock, driver, registration_expiry_date=None))
        assert any("no registration" in error for error in result.errors)

    def test_expired_registration(self, gate, clock, plain_load):
        driver = make_driver(clock)
        vehicle = make_vehicle(clock, driver, registration_expiry_date=clock() - timedelta(days=3))
        result = gate.check(plain_load, driver, vehicle)
        assert any(error.startswith("Vehicle registration expired") for error in result.errors)

    def test_uncertified_driver_on_specimen_load(self, gate, clock, specimen_load):
        driver = make_driver(clock, hazmat_certified=False, hazmat_cert_expiry=None)
        result = gate.check(specimen_load, driver, make_vehicle(clock, driver))
        assert result.errors == ["Load requires UN3373 certification and driver is not certified"]

    def test_expired_certification_on_specimen_load(self, gate, clock, specimen_load):
        driver = make_driver(clock, hazmat_cert_expiry=clock() - timedelta(days=10))
        result = gate.check(specimen_load, driver, make_vehicle(clock, driver))
        assert result.errors[0].startswith("UN3373 certification expired on")

    def test_all_failures_reported_together(self, gate, clock, specimen_load):
        driver = make_driver(
            clock,
            license_expiry=clock() - timedelta(days=1),
            hazmat_certified=False,
        )
        result = gate.check(specimen_load, driver, None)
        assert len(result.errors) == 3

    def test_require_raises_with_every_reason(self, gate, clock, specimen_load):
        driver = make_driver(clock, license_expiry=clock() - timedelta(days=1))
        with pytest.raises(ComplianceError) as exc_info:
            gate.require(specimen_load, driver, None, LoadStatus.PICKED_UP)
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.code == "COMPLIANCE_ERROR"


class TestWarnings:

    def test_license_expiring_soon(self, gate, clock, plain_load):
        driver = make_driver(clock, license_expiry=clock() + timedelta(days=10))
        result = gate.check(plain_load, driver, make_vehicle(clock, driver))
        assert result.passed
        assert result.warnings == ["Driver license expires in 10 days"]

    def test_license_not_on_file(self, gate, clock, plain_load):
        driver = make_driver(clock, license_expiry=None)
        result = gate.check(plain_load, driver, make_vehicle(clock, driver))
        assert result.passed
        assert "not on file" in result.warnings[0]

    def test_registration_expiring_soon(self, gate, clock, plain_load):
        driver = make_driver(clock)
        vehicle = make_vehicle(clock, driver, registration_expiry_date=clock() + timedelta(days=30))
        result = gate.check(plain_load, driver, vehicle)
        assert result.warnings == ["Vehicle registration expires in 30 days"]

    def test_registration_expiring_in_29_days(self, gate, clock, plain_load):
        driver = make_driver(clock)
        vehicle = make_vehicle(clock, driver, registration_expiry_date=clock() + timedelta(days=29))
        result = gate.check(plain_load, driver, vehicle, LoadStatus.PICKED_UP)
        assert result.passed
        assert result.warnings == ["Vehicle registration expires in 29 days"]

    def test_expired_insurance_only_warns(self, gate, clock, plain_load):
        driver = make_driver(clock)
        vehicle = make_vehicle(clock, driver, insurance_expiry_date=clock() - timedelta(days=1))
        result = gate.check(plain_load, driver, vehicle)
        assert result.passed
        assert result.warnings[0].startswith("Vehicle insurance expired")

    def test_expired_certification_warns_when_not_required(self, gate, clock, plain_load):
        driver = make_driver(clock, hazmat_cert_expiry=clock() - timedelta(days=1))
        result = gate.check(plain_load, driver, make_vehicle(clock, driver))
        assert result.passed
        assert result.warnings == ["UN3373 certification has expired"]

    def test_stale_hazard_training(self, gate, clock, plain_load):
        driver = make_driver(clock, hazard_training_date=clock() - timedelta(days=400))
        result = gate.check(plain_load, driver, make_vehicle(clock, driver))
        assert result.passed
        assert "annual refresher due" in result.warnings[0]


def test_gate_reads_the_clock_on_every_call(gate, clock, plain_load):
    """A credential valid at assignment can lapse before pickup."""
    driver = make_driver(clock, license_expiry=clock() + timedelta(days=1))
    vehicle = make_vehicle(clock, driver)
    assert gate.check(plain_load, driver, vehicle).passed

    clock.advance(days=2)
    assert not gate.check(plain_load, driver, vehicle).passed
