"""
Driver, vehicle and fleet data models.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from courier_core.data.models.load import utcnow


class DriverStatus(str, Enum):
    """Driver availability."""

    AVAILABLE = "AVAILABLE"
    ON_ROUTE = "ON_ROUTE"
    OFF_DUTY = "OFF_DUTY"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    INACTIVE = "INACTIVE"


class FleetRole(str, Enum):
    """Driver's membership role in a fleet."""

    INDEPENDENT = "INDEPENDENT"
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    DRIVER = "DRIVER"


# Fleet roles allowed to act on behalf of other drivers in the same fleet
FLEET_MANAGER_ROLES = frozenset({FleetRole.OWNER, FleetRole.ADMIN})


class Driver(BaseModel):
    """A courier driver and the credentials the compliance gate reads."""

    model_config = ConfigDict(from_attributes=True)

    driver_id: str = Field(default_factory=lambda: uuid4().hex)
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    status: DriverStatus = DriverStatus.AVAILABLE

    # Credentials
    license_expiry: Optional[datetime] = None
    hazmat_certified: bool = False
    hazmat_cert_expiry: Optional[datetime] = None
    hazard_training_date: Optional[datetime] = None

    # Fleet membership
    fleet_id: Optional[str] = None
    fleet_role: FleetRole = FleetRole.INDEPENDENT

    # Pricing preference
    minimum_rate_per_mile: Optional[Decimal] = Field(None, ge=0)

    @computed_field
    @property
    def full_name(self) -> str:
        """First and last name."""
        return f"{self.first_name} {self.last_name}"

    @model_validator(mode="after")
    def check_fleet_membership(self) -> "Driver":
        """INDEPENDENT drivers have no fleet; every other role has one."""
        if self.fleet_role == FleetRole.INDEPENDENT and self.fleet_id is not None:
            raise ValueError("Independent driver cannot belong to a fleet")
        if self.fleet_role != FleetRole.INDEPENDENT and self.fleet_id is None:
            raise ValueError(f"Fleet role {self.fleet_role.value} requires a fleet")
        return self


class Vehicle(BaseModel):
    """A driver's vehicle. Compliance is derived at call time, never cached."""

    model_config = ConfigDict(from_attributes=True)

    vehicle_id: str = Field(default_factory=lambda: uuid4().hex)
    driver_id: str
    plate: str
    is_active: bool = True
    registration_expiry_date: Optional[datetime] = None
    insurance_expiry_date: Optional[datetime] = None
    current_odometer: Optional[int] = Field(None, ge=0)


class Shipper(BaseModel):
    """Shipper contact used as a notification recipient."""

    model_config = ConfigDict(from_attributes=True)

    shipper_id: str = Field(default_factory=lambda: uuid4().hex)
    company_name: str
    email: str


class Fleet(BaseModel):
    """A group of drivers invoiced as one payee."""

    model_config = ConfigDict(from_attributes=True)

    fleet_id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    owner_id: str
    tax_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class FleetInvite(BaseModel):
    """A redeemable invitation code that admits a driver to a fleet."""

    model_config = ConfigDict(from_attributes=True)

    invite_id: str = Field(default_factory=lambda: uuid4().hex)
    code: str = Field(..., min_length=1)
    fleet_id: str
    role: FleetRole = FleetRole.DRIVER
    max_uses: Optional[int] = Field(None, ge=1)
    used_count: int = Field(0, ge=0)
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        """True once the expiry has passed."""
        return self.expires_at is not None and self.expires_at <= now

    @computed_field
    @property
    def is_exhausted(self) -> bool:
        """True once every allowed use has been consumed."""
        return self.max_uses is not None and self.used_count >= self.max_uses

    @model_validator(mode="after")
    def check_usage(self) -> "FleetInvite":
        """Usage never exceeds the cap and invites never grant OWNER or INDEPENDENT."""
        if self.max_uses is not None and self.used_count > self.max_uses:
            raise ValueError("Invite used_count exceeds max_uses")
        if self.role not in (FleetRole.ADMIN, FleetRole.DRIVER):
            raise ValueError(f"Invites cannot grant role {self.role.value}")
        return self
