"""
Data models for courier operations.

Pydantic models for loads, drivers, vehicles, fleets and invites.
"""

from courier_core.data.models.auth import AuthContext, UserType
from courier_core.data.models.driver import (
    Driver,
    DriverStatus,
    Fleet,
    FleetInvite,
    FleetRole,
    Shipper,
    Vehicle,
)
from courier_core.data.models.load import (
    ActorType,
    BillingRule,
    CancellationReason,
    DenialReason,
    LoadRequest,
    LoadStatus,
    QuoteDecision,
    ServiceType,
    TrackingEvent,
    TrackingEventCode,
)

__all__ = [
    "ActorType",
    "AuthContext",
    "BillingRule",
    "CancellationReason",
    "DenialReason",
    "Driver",
    "DriverStatus",
    "Fleet",
    "FleetInvite",
    "FleetRole",
    "LoadRequest",
    "LoadStatus",
    "QuoteDecision",
    "ServiceType",
    "Shipper",
    "TrackingEvent",
    "TrackingEventCode",
    "UserType",
    "Vehicle",
]
