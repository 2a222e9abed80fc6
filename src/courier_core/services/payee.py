"""
Payee resolution for invoices and settlements.
"""

from enum import Enum

from pydantic import BaseModel

from courier_core.core.errors import ValidationError
from courier_core.data.models.driver import Driver, FleetRole


class PayeeType(str, Enum):
    """Who receives payment for a load."""

    DRIVER = "DRIVER"
    FLEET = "FLEET"


class Payee(BaseModel):
    """Payee of an invoice."""

    type: PayeeType
    id: str


class FleetPayeeResolver:
    """
    Maps a driver's fleet membership to the payee of their loads.

    Independent drivers are paid directly; every fleet member's earnings go
    to the fleet, whatever their role in it.
    """

    def payee(self, driver: Driver) -> Payee:
        """
        Resolve the payee for loads run by ``driver``.

        Args:
            driver: Driver snapshot

        Returns:
            Payee of type DRIVER (independent) or FLEET

        Raises:
            ValidationError: For an unknown role or a fleet role without a fleet
        """
        role = driver.fleet_role
        role_name = getattr(role, "value", str(role))
        if role == FleetRole.INDEPENDENT or driver.fleet_id is None:
            if role != FleetRole.INDEPENDENT:
                raise ValidationError(
                    f"Driver {driver.driver_id} has fleet role {role_name} but no fleet",
                    details={"driver_id": driver.driver_id, "fleet_role": role_name},
                )
            return Payee(type=PayeeType.DRIVER, id=driver.driver_id)

        if role in (FleetRole.OWNER, FleetRole.ADMIN, FleetRole.DRIVER):
            return Payee(type=PayeeType.FLEET, id=driver.fleet_id)

        raise ValidationError(
            f"Invalid fleet role: {role_name}",
            details={"driver_id": driver.driver_id, "fleet_role": role_name},
        )
