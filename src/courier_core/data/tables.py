"""
SQLAlchemy table definitions backing the persistence store.
"""

from datetime import timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from courier_core.data.models.driver import DriverStatus, FleetRole
from courier_core.data.models.load import (
    ActorType,
    BillingRule,
    CancellationReason,
    DenialReason,
    LoadStatus,
    QuoteDecision,
    ServiceType,
    TrackingEventCode,
)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns timezone-aware UTC. Naive input is taken as UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def _enum(enum_cls) -> Enum:
    return Enum(enum_cls, native_enum=False, length=32, validate_strings=True)


Money = Numeric(12, 2, asdecimal=True)


class ShipperRow(Base):
    __tablename__ = "shippers"

    shipper_id = Column(String(64), primary_key=True)
    company_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)


class FleetRow(Base):
    __tablename__ = "fleets"

    fleet_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(64), nullable=False)
    tax_id = Column(String(64))
    created_at = Column(UTCDateTime, nullable=False)


class DriverRow(Base):
    __tablename__ = "drivers"
    __table_args__ = (
        CheckConstraint(
            "(fleet_role = 'INDEPENDENT' AND fleet_id IS NULL) "
            "OR (fleet_role != 'INDEPENDENT' AND fleet_id IS NOT NULL)",
            name="ck_driver_fleet_membership",
        ),
    )

    driver_id = Column(String(64), primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50))
    status = Column(_enum(DriverStatus), nullable=False, default=DriverStatus.AVAILABLE)

    license_expiry = Column(UTCDateTime)
    hazmat_certified = Column(Boolean, nullable=False, default=False)
    hazmat_cert_expiry = Column(UTCDateTime)
    hazard_training_date = Column(UTCDateTime)

    fleet_id = Column(String(64), ForeignKey("fleets.fleet_id"))
    fleet_role = Column(_enum(FleetRole), nullable=False, default=FleetRole.INDEPENDENT)

    minimum_rate_per_mile = Column(Numeric(8, 2, asdecimal=True))


class VehicleRow(Base):
    __tablename__ = "vehicles"

    vehicle_id = Column(String(64), primary_key=True)
    driver_id = Column(String(64), ForeignKey("drivers.driver_id"), nullable=False, index=True)
    plate = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    registration_expiry_date = Column(UTCDateTime)
    insurance_expiry_date = Column(UTCDateTime)
    current_odometer = Column(Integer)


class FleetInviteRow(Base):
    __tablename__ = "fleet_invites"
    __table_args__ = (
        CheckConstraint(
            "max_uses IS NULL OR used_count <= max_uses", name="ck_invite_usage_cap"
        ),
    )

    invite_id = Column(String(64), primary_key=True)
    code = Column(String(16), nullable=False, unique=True, index=True)
    fleet_id = Column(String(64), ForeignKey("fleets.fleet_id"), nullable=False)
    role = Column(_enum(FleetRole), nullable=False, default=FleetRole.DRIVER)
    max_uses = Column(Integer)
    used_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, nullable=False)


class LoadRow(Base):
    __tablename__ = "load_requests"

    load_id = Column(String(64), primary_key=True)
    tracking_code = Column(String(32), nullable=False, unique=True, index=True)
    status = Column(_enum(LoadStatus), nullable=False, index=True)

    shipper_id = Column(String(64), ForeignKey("shippers.shipper_id"), nullable=False, index=True)
    driver_id = Column(String(64), ForeignKey("drivers.driver_id"), index=True)
    vehicle_id = Column(String(64), ForeignKey("vehicles.vehicle_id"))
    created_by = Column(_enum(ActorType), nullable=False)

    pickup_facility_id = Column(String(64), nullable=False)
    pickup_address = Column(Text, nullable=False)
    dropoff_facility_id = Column(String(64), nullable=False)
    dropoff_address = Column(Text, nullable=False)
    total_distance_miles = Column(Numeric(10, 2, asdecimal=True))

    service_type = Column(_enum(ServiceType), nullable=False)
    requires_hazmat_certification = Column(Boolean, nullable=False, default=False)
    ready_time = Column(UTCDateTime)
    delivery_deadline = Column(UTCDateTime)

    quote_amount = Column(Money)
    rate_per_mile = Column(Numeric(10, 2, asdecimal=True))
    quote_notes = Column(Text)
    quote_accepted_at = Column(UTCDateTime)

    driver_quote_amount = Column(Money)
    driver_quote_notes = Column(Text)
    driver_quote_submitted_at = Column(UTCDateTime)
    driver_quote_expires_at = Column(UTCDateTime)
    shipper_quote_decision = Column(_enum(QuoteDecision))
    shipper_quote_decision_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, nullable=False)
    assigned_at = Column(UTCDateTime)
    accepted_by_driver_at = Column(UTCDateTime)
    picked_up_at = Column(UTCDateTime)
    delivered_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)

    cancelled_at = Column(UTCDateTime)
    cancellation_reason = Column(_enum(CancellationReason))
    cancellation_billing_rule = Column(_enum(BillingRule))
    cancelled_by = Column(_enum(ActorType))
    cancelled_by_id = Column(String(64))
    cancellation_notes = Column(Text)

    driver_denied_at = Column(UTCDateTime)
    driver_denial_reason = Column(_enum(DenialReason))
    driver_denial_notes = Column(Text)
    last_denied_by_driver_id = Column(String(64))


class TrackingEventRow(Base):
    __tablename__ = "tracking_events"

    # Insertion order; several events can share a timestamp
    sequence = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), nullable=False, unique=True)
    load_id = Column(String(64), ForeignKey("load_requests.load_id"), nullable=False, index=True)
    code = Column(_enum(TrackingEventCode), nullable=False)
    label = Column(String(255), nullable=False)
    description = Column(Text)
    actor_type = Column(_enum(ActorType), nullable=False)
    actor_id = Column(String(64))
    created_at = Column(UTCDateTime, nullable=False, index=True)


@event.listens_for(TrackingEventRow, "before_update")
def _refuse_event_update(mapper, connection, target) -> None:
    raise ValueError("Tracking events are append-only")


@event.listens_for(TrackingEventRow, "before_delete")
def _refuse_event_delete(mapper, connection, target) -> None:
    raise ValueError("Tracking events are append-only")


# Columns a load write may touch; identity and creation fields are fixed at insert
LOAD_WRITABLE_COLUMNS = frozenset(
    column.name
    for column in LoadRow.__table__.columns
    if column.name not in {"load_id", "tracking_code", "shipper_id", "created_at", "created_by"}
)

