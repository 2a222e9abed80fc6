"""
Compliance Gate - credential checks at load transition boundaries.

This service:
- Validates driver license, vehicle registration and activity status
- Enforces UN3373 (biological substance) certification for loads that need it
- Warns about credentials that are about to lapse
- Is evaluated against the clock on every call; nothing is cached

Credentials can lapse between assignment and pickup, so the gate runs at
assignment, pickup and delivery.
"""

import math
from datetime import datetime, timezone
from time import time
from typing import Any, Optional

from pydantic import BaseModel

from courier_core.core.errors import ComplianceError
from courier_core.data.models.driver import Driver, Vehicle
from courier_core.data.models.load import LoadRequest, LoadStatus
from courier_core.services.base import BaseService, ServiceDecision

SECONDS_PER_DAY = 86400


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def days_until(expiry: datetime, now: datetime) -> int:
    """Whole days until ``expiry``, rounded up (negative once past)."""
    return math.ceil((_aware(expiry) - _aware(now)).total_seconds() / SECONDS_PER_DAY)


class ComplianceResult(BaseModel):
    """Result of a compliance check."""

    passed: bool
    errors: list[str]
    warnings: list[str]
    transition_target: Optional[LoadStatus] = None
    driver_id: str
    vehicle_id: Optional[str] = None
    checked_at: datetime


class ComplianceGate(BaseService):
    """Compliance Gate for driver and vehicle credentials."""

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the compliance gate."""
        super().__init__(service_name="compliance_gate", **kwargs)

        # Load configuration
        self.windows = self.config_manager.get_compliance_config()

    def check(
        self,
        load: Optional[LoadRequest],
        driver: Driver,
        vehicle: Optional[Vehicle],
        transition_target: Optional[LoadStatus] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceResult:
        """
        Check driver and vehicle credentials.

        Args:
            load: Load being moved (decides whether UN3373 certification is required)
            driver: Driver snapshot
            vehicle: Vehicle snapshot, or None when no vehicle is assigned
            transition_target: Status the load is about to enter
            now: Evaluation time (defaults to the service clock)

        Returns:
            ComplianceResult; ``passed`` is False when any hard error was found
        """
        start_time = time()
        now = now or self.now()

        errors: list[str] = []
        warnings: list[str] = []

        # Driver license
        if driver.license_expiry is None:
            warnings.append("Driver license expiry date is not on file")
        else:
            days = days_until(driver.license_expiry, now)
            if _aware(driver.license_expiry) < _aware(now):
                errors.append(f"Driver license expired on {driver.license_expiry.date().isoformat()}")
            elif days <= self.windows.license_warning_days:
                warnings.append(f"Driver license expires in {days} days")

        # Vehicle
        if vehicle is None:
            errors.append("Load has no assigned vehicle")
        else:
            if not vehicle.is_active:
                errors.append(f"Vehicle {vehicle.plate} is inactive")

            if vehicle.registration_expiry_date is None:
                errors.append(f"Vehicle {vehicle.plate} has no registration on file")
            else:
                days = days_until(vehicle.registration_expiry_date, now)
                if _aware(vehicle.registration_expiry_date) < _aware(now):
                    errors.append(
                        f"Vehicle registration expired on "
                        f"{vehicle.registration_expiry_date.date().isoformat()}"
                    )
                elif days <= self.windows.registration_warning_days:
                    warnings.append(f"Vehicle registration expires in {days} days")

            if vehicle.insurance_expiry_date is not None and _aware(vehicle.insurance_expiry_date) < _aware(now):
                warnings.append(
                    f"Vehicle insurance expired on {vehicle.insurance_expiry_date.date().isoformat()}"
                )

        # UN3373 certification
        cert_expired = driver.hazmat_cert_expiry is not None and _aware(driver.hazmat_cert_expiry) < _aware(now)
        if load is not None and load.requires_hazmat_certification:
            if not driver.hazmat_certified:
                errors.append("Load requires UN3373 certification and driver is not certified")
            elif cert_expired:
                errors.append(
                    f"UN3373 certification expired on {driver.hazmat_cert_expiry.date().isoformat()}"
                )
        elif driver.hazmat_certified and cert_expired:
            warnings.append("UN3373 certification has expired")

        # Hazard training
        if driver.hazard_training_date is not None:
            age_days = -days_until(driver.hazard_training_date, now)
            if age_days > self.windows.hazard_training_max_age_days:
                warnings.append(f"Hazard training is {age_days} days old; annual refresher due")

        result = ComplianceResult(
            passed=not errors,
            errors=errors,
            warnings=warnings,
            transition_target=transition_target,
            driver_id=driver.driver_id,
            vehicle_id=vehicle.vehicle_id if vehicle else None,
            checked_at=now,
        )

        self.logger.info(
            "compliance_check",
            driver_id=driver.driver_id,
            vehicle_id=result.vehicle_id,
            transition_target=transition_target.value if transition_target else None,
            errors=len(errors),
            warnings=len(warnings),
        )

        self.log_decision(
            ServiceDecision(
                timestamp=now,
                service_name=self.service_name,
                decision_type="compliance_check",
                input_data={
                    "load_id": load.load_id if load else None,
                    "driver_id": driver.driver_id,
                    "vehicle_id": result.vehicle_id,
                },
                output_data={"passed": result.passed, "errors": errors, "warnings": warnings},
                execution_time_seconds=time() - start_time,
            )
        )

        return result

    def require(
        self,
        load: Optional[LoadRequest],
        driver: Driver,
        vehicle: Optional[Vehicle],
        transition_target: Optional[LoadStatus] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceResult:
        """
        Same as ``check`` but raises on any hard failure.

        Raises:
            ComplianceError: Listing every failing reason at once
        """
        result = self.check(load, driver, vehicle, transition_target, now)
        if not result.passed:
            raise ComplianceError(result.errors, result.warnings)
        return result
