"""
Load data model - represents a chain-of-custody courier shipment.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class LoadStatus(str, Enum):
    """Load lifecycle status."""

    NEW = "NEW"
    QUOTE_REQUESTED = "QUOTE_REQUESTED"
    REQUESTED = "REQUESTED"
    QUOTED = "QUOTED"
    QUOTE_ACCEPTED = "QUOTE_ACCEPTED"
    DRIVER_QUOTE_PENDING = "DRIVER_QUOTE_PENDING"
    DRIVER_QUOTE_SUBMITTED = "DRIVER_QUOTE_SUBMITTED"
    SCHEDULED = "SCHEDULED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DENIED = "DENIED"


TERMINAL_STATUSES = frozenset({LoadStatus.CANCELLED, LoadStatus.DENIED, LoadStatus.COMPLETED})

# Statuses that only make sense with a driver attached
DRIVER_REQUIRED_STATUSES = frozenset(
    {
        LoadStatus.REQUESTED,
        LoadStatus.DRIVER_QUOTE_PENDING,
        LoadStatus.DRIVER_QUOTE_SUBMITTED,
        LoadStatus.SCHEDULED,
        LoadStatus.PICKED_UP,
        LoadStatus.IN_TRANSIT,
        LoadStatus.DELIVERED,
        LoadStatus.COMPLETED,
    }
)


class ServiceType(str, Enum):
    """Service class requested by the shipper. Legacy values are priced as ROUTINE."""

    ROUTINE = "ROUTINE"
    STAT = "STAT"
    CRITICAL_STAT = "CRITICAL_STAT"

    # Legacy
    SAME_DAY = "SAME_DAY"
    SCHEDULED_ROUTE = "SCHEDULED_ROUTE"
    OVERFLOW = "OVERFLOW"
    GOVERNMENT = "GOVERNMENT"
    OTHER = "OTHER"


class ActorType(str, Enum):
    """Who performed an action."""

    SYSTEM = "SYSTEM"
    SHIPPER = "SHIPPER"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"


class CancellationReason(str, Enum):
    """Why a load was cancelled."""

    CLIENT_CANCELLED = "CLIENT_CANCELLED"
    DRIVER_NO_SHOW = "DRIVER_NO_SHOW"
    VEHICLE_BREAKDOWN = "VEHICLE_BREAKDOWN"
    FACILITY_CLOSED = "FACILITY_CLOSED"
    WEATHER = "WEATHER"
    OTHER = "OTHER"


class BillingRule(str, Enum):
    """How a cancelled load is billed downstream."""

    BILLABLE = "BILLABLE"
    PARTIAL = "PARTIAL"
    NOT_BILLABLE = "NOT_BILLABLE"


class DenialReason(str, Enum):
    """Why a driver declined a scheduling request."""

    PRICE_TOO_LOW = "PRICE_TOO_LOW"
    ROUTE_NOT_FEASIBLE = "ROUTE_NOT_FEASIBLE"
    TIMING_NOT_WORKABLE = "TIMING_NOT_WORKABLE"
    TOO_FAR = "TOO_FAR"
    EQUIPMENT_REQUIRED = "EQUIPMENT_REQUIRED"
    ALREADY_BOOKED = "ALREADY_BOOKED"
    OTHER = "OTHER"


class QuoteDecision(str, Enum):
    """Shipper decision on a driver-submitted quote."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class TrackingEventCode(str, Enum):
    """Codes for the immutable chain-of-custody audit trail."""

    REQUEST_RECEIVED = "REQUEST_RECEIVED"
    QUOTE_REQUESTED = "QUOTE_REQUESTED"
    DRIVER_REQUESTED = "DRIVER_REQUESTED"
    PRICE_QUOTED = "PRICE_QUOTED"
    SHIPPER_CONFIRMED = "SHIPPER_CONFIRMED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    DRIVER_QUOTE_REQUESTED = "DRIVER_QUOTE_REQUESTED"
    QUOTE_REJECTED = "QUOTE_REJECTED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    PAPERWORK_COMPLETED = "PAPERWORK_COMPLETED"
    CANCELLED = "CANCELLED"
    DENIED = "DENIED"
    DRIVER_RELEASED = "DRIVER_RELEASED"
    RESTORED = "RESTORED"


class TrackingEvent(BaseModel):
    """
    One entry in a load's audit trail.

    Events are append-only; the model is frozen and the store offers no update path.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    load_id: str
    code: TrackingEventCode
    label: str
    description: Optional[str] = None
    actor_type: ActorType
    actor_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class LoadRequest(BaseModel):
    """
    A shipment from a pickup facility to a dropoff facility.

    The model validator enforces the lifecycle invariants, so projecting an
    illegal combination of fields fails before anything is written.
    """

    model_config = ConfigDict(from_attributes=True, validate_assignment=False)

    # Identification
    load_id: str = Field(default_factory=lambda: uuid4().hex, description="Unique load identifier")
    tracking_code: str = Field(..., description="Public tracking code shown to shippers")
    status: LoadStatus = Field(LoadStatus.NEW, description="Current lifecycle status")

    # Parties
    shipper_id: str = Field(..., description="Owning shipper")
    driver_id: Optional[str] = Field(None, description="Assigned driver")
    vehicle_id: Optional[str] = Field(None, description="Assigned vehicle")
    created_by: ActorType = Field(ActorType.SHIPPER, description="Who originated the load")

    # Route
    pickup_facility_id: str
    pickup_address: str
    dropoff_facility_id: str
    dropoff_address: str
    total_distance_miles: Optional[Decimal] = Field(None, ge=0)

    # Service
    service_type: ServiceType = ServiceType.ROUTINE
    requires_hazmat_certification: bool = Field(
        False, description="UN3373 biological substance handling required"
    )
    ready_time: Optional[datetime] = None
    delivery_deadline: Optional[datetime] = None

    # Pricing
    quote_amount: Optional[Decimal] = Field(None, ge=0)
    rate_per_mile: Optional[Decimal] = None
    quote_notes: Optional[str] = None
    quote_accepted_at: Optional[datetime] = None

    # Driver-submitted quote
    driver_quote_amount: Optional[Decimal] = Field(None, ge=0)
    driver_quote_notes: Optional[str] = None
    driver_quote_submitted_at: Optional[datetime] = None
    driver_quote_expires_at: Optional[datetime] = None
    shipper_quote_decision: Optional[QuoteDecision] = None
    shipper_quote_decision_at: Optional[datetime] = None

    # Transition timestamps
    created_at: datetime = Field(default_factory=utcnow)
    assigned_at: Optional[datetime] = None
    accepted_by_driver_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Cancellation
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[CancellationReason] = None
    cancellation_billing_rule: Optional[BillingRule] = None
    cancelled_by: Optional[ActorType] = None
    cancelled_by_id: Optional[str] = None
    cancellation_notes: Optional[str] = None

    # Driver denial
    driver_denied_at: Optional[datetime] = None
    driver_denial_reason: Optional[DenialReason] = None
    driver_denial_notes: Optional[str] = None
    last_denied_by_driver_id: Optional[str] = None

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """True for CANCELLED, DENIED and COMPLETED."""
        return self.status in TERMINAL_STATUSES

    @computed_field
    @property
    def has_pending_driver_quote(self) -> bool:
        """A driver quote is awaiting the shipper's decision."""
        return self.shipper_quote_decision == QuoteDecision.PENDING

    @model_validator(mode="after")
    def check_lifecycle_invariants(self) -> "LoadRequest":
        """Reject field combinations the lifecycle can never produce."""
        active = [
            name
            for name, flag in (
                ("driver quote pending", self.has_pending_driver_quote),
                ("cancelled", self.cancelled_at is not None),
                ("denied", self.driver_denied_at is not None),
            )
            if flag
        ]
        if len(active) > 1:
            raise ValueError(f"Load cannot be {' and '.join(active)} at the same time")

        if self.status in DRIVER_REQUIRED_STATUSES and not self.driver_id:
            raise ValueError(f"Load in status {self.status.value} requires an assigned driver")

        return self
