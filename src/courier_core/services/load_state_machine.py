"""
Load State Machine - the entry point for every load lifecycle action.

This service:
- Authorizes the caller against the load (shipper, driver, fleet manager, admin)
- Rejects actions the transition table does not allow from the current status
- Prices quotes through the rate engine and enforces driver minimum rates
- Runs the compliance gate at assignment, pickup and delivery, and refuses
  to double-book a driver
- Commits the status change and its tracking event in one transaction,
  conditional on the status it read
- Produces settlements on completion and billable cancellation
- Hands notification intents to the dispatcher only after the commit
"""

import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from time import time
from typing import Any, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from courier_core.core.errors import (
    AuthorizationError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from courier_core.data.models.auth import AuthContext, UserType
from courier_core.data.models.driver import FLEET_MANAGER_ROLES, Driver, DriverStatus, Vehicle
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
from courier_core.data.store import PersistenceStore, StoreTransaction
from courier_core.services.base import BaseService, ServiceDecision
from courier_core.services.compliance import ComplianceGate
from courier_core.services.rate_engine import (
    MinimumRateAdjustment,
    RateEngine,
    RateQuote,
    to_decimal,
    to_money,
)
from courier_core.services.schedule import ACTIVE_STATUSES, ScheduleChecker
from courier_core.services.settlement import LoadSettlement, SettlementCalculator
from courier_core.services.transitions import EVENT_CODES, LoadAction, next_status
from courier_core.tools.distance import DistanceProvider
from courier_core.tools.notifier import NotificationDispatcher, NotificationIntent, NotificationKind

TRACKING_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Driver statuses that may not take on new work
_INELIGIBLE_DRIVER_STATUSES = frozenset({DriverStatus.PENDING_APPROVAL, DriverStatus.INACTIVE})

# Cleared whenever a driver comes off a load
_DRIVER_ASSIGNMENT_CLEARED = {
    "driver_id": None,
    "vehicle_id": None,
    "assigned_at": None,
    "accepted_by_driver_at": None,
}

_DRIVER_QUOTE_CLEARED = {
    "driver_quote_amount": None,
    "driver_quote_notes": None,
    "driver_quote_submitted_at": None,
    "driver_quote_expires_at": None,
}


def generate_tracking_code() -> str:
    """Public tracking code, e.g. ``CC-7K2M9QXD``."""
    return "CC-" + "".join(secrets.choice(TRACKING_CODE_ALPHABET) for _ in range(8))


def _parse_enum(enum_cls: Any, value: Any, field: str) -> Any:
    try:
        return enum_cls(value.upper() if isinstance(value, str) else value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field}: {value} (allowed: {allowed})",
            details={"field": field, "value": str(value)},
        ) from None


class TransitionOutcome(BaseModel):
    """
    Result of a load lifecycle operation.

    Notifications are listed here and delivered after the commit; the state
    change never depends on them.
    """

    load: LoadRequest
    previous_status: Optional[LoadStatus] = None
    action: Optional[LoadAction] = None
    event: TrackingEvent
    notifications: list[NotificationIntent] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    quote: Optional[RateQuote] = None
    minimum_adjustment: Optional[MinimumRateAdjustment] = None
    settlement: Optional[LoadSettlement] = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.load.status


class LoadStateMachine(BaseService):
    """
    Load State Machine for the courier lifecycle.

    One instance can serve concurrent requests: it keeps no per-load state,
    and concurrent writers to the same load are serialized by the store's
    conditional write. The loser of a race gets StaleStateError; retrying is
    the caller's decision.
    """

    def __init__(
        self,
        store: PersistenceStore,
        rate_engine: Optional[RateEngine] = None,
        compliance_gate: Optional[ComplianceGate] = None,
        settlement_calculator: Optional[SettlementCalculator] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        distance_provider: Optional[DistanceProvider] = None,
        schedule_checker: Optional[ScheduleChecker] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the load state machine.

        Args:
            store: Persistence store
            rate_engine: Optional rate engine (built from the same config if omitted)
            compliance_gate: Optional compliance gate
            settlement_calculator: Optional settlement calculator
            dispatcher: Optional notification dispatcher; without one, intents
                are only returned on the outcome
            distance_provider: Optional road-distance lookup for pricing loads
                that have no distance on record
            schedule_checker: Optional double-booking check
            **kwargs: Passed to BaseService (config_manager, logger, clock)
        """
        super().__init__(service_name="load_state_machine", **kwargs)

        shared = {"config_manager": self.config_manager, "clock": self.clock}
        self.store = store
        self.rate_engine = rate_engine or RateEngine(**shared)
        self.compliance_gate = compliance_gate or ComplianceGate(**shared)
        self.settlement_calculator = settlement_calculator or SettlementCalculator(**shared)
        self.schedule_checker = schedule_checker or ScheduleChecker(**shared)
        self.dispatcher = dispatcher
        self.distance_provider = distance_provider

        # Load configuration
        self.lifecycle = self.config_manager.get_lifecycle_config()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_load(self, load_id: str) -> LoadRequest:
        """Current state of a load."""
        return self.store.read_load(load_id)

    def get_tracking_history(self, load_id: str) -> list[TrackingEvent]:
        """Audit trail of a load, oldest first."""
        self.store.read_load(load_id)
        return self.store.list_tracking_events(load_id)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _require_admin(self, auth: AuthContext) -> None:
        if not auth.is_admin:
            raise AuthorizationError("Administrator access required")

    def _require_shipper_or_admin(self, auth: AuthContext, load: LoadRequest) -> None:
        if auth.is_admin:
            return
        if auth.user_type == UserType.SHIPPER and auth.user_id == load.shipper_id:
            return
        raise AuthorizationError("Only the shipper who owns this load may do this")

    def _manages_driver(self, auth: AuthContext, driver_id: str) -> bool:
        """True if the caller is an OWNER/ADMIN of the driver's fleet."""
        if auth.user_type != UserType.DRIVER:
            return False
        actor = self.store.read_driver(auth.user_id)
        if actor.fleet_id is None or actor.fleet_role not in FLEET_MANAGER_ROLES:
            return False
        return self.store.read_driver(driver_id).fleet_id == actor.fleet_id

    def _require_driver_or_manager(
        self, auth: AuthContext, load: LoadRequest, allow_admin: bool = False
    ) -> None:
        if allow_admin and auth.is_admin:
            return
        if load.driver_id is None:
            raise AuthorizationError(
                "Only the assigned driver may do this and this load has none",
                details={"load_id": load.load_id},
            )
        if auth.user_type == UserType.DRIVER and auth.user_id == load.driver_id:
            return
        if self._manages_driver(auth, load.driver_id):
            return
        raise AuthorizationError("Only the assigned driver may do this")

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    def _guard(self, load: LoadRequest, action: LoadAction) -> LoadStatus:
        return next_status(load.status, action)

    def _eligible_driver(self, driver_id: str) -> Driver:
        driver = self.store.read_driver(driver_id)
        if driver.status in _INELIGIBLE_DRIVER_STATUSES:
            raise ValidationError(
                f"Driver {driver.driver_id} is {driver.status.value} and cannot take loads",
                details={"driver_id": driver.driver_id, "driver_status": driver.status.value},
            )
        return driver

    def _driver_vehicle(self, driver: Driver, vehicle_id: str) -> Vehicle:
        vehicle = self.store.read_vehicle(vehicle_id)
        if vehicle.driver_id != driver.driver_id:
            raise ValidationError(
                f"Vehicle {vehicle.plate} does not belong to driver {driver.driver_id}",
                details={"vehicle_id": vehicle.vehicle_id, "driver_id": driver.driver_id},
            )
        return vehicle

    def _check_schedule(self, driver_id: str, load: LoadRequest) -> list[str]:
        """Block a double booking; return warnings for minor overlaps."""
        held = self.store.list_driver_loads(driver_id, ACTIVE_STATUSES)
        return self.schedule_checker.require(driver_id, load, held).warnings

    def _assigned_vehicle(self, load: LoadRequest) -> Optional[Vehicle]:
        if load.vehicle_id is None:
            return None
        try:
            return self.store.read_vehicle(load.vehicle_id)
        except NotFoundError:
            return None

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _project(self, load: LoadRequest, fields: dict[str, Any]) -> LoadRequest:
        """Validate the state the load would be in after applying ``fields``."""
        data = load.model_dump()
        data.update(fields)
        try:
            return LoadRequest.model_validate(data)
        except ModelValidationError as e:
            messages = [error["msg"] for error in e.errors()]
            raise ValidationError(
                "Transition would leave the load in an invalid state: " + "; ".join(messages),
                details={"load_id": load.load_id, "errors": messages},
            ) from e

    def _event(
        self,
        load_id: str,
        code: TrackingEventCode,
        auth: AuthContext,
        label: str,
        description: Optional[str],
        now: datetime,
    ) -> TrackingEvent:
        return TrackingEvent(
            load_id=load_id,
            code=code,
            label=label,
            description=description,
            actor_type=auth.actor_type,
            actor_id=auth.user_id,
            created_at=now,
        )

    def _transition(
        self,
        load: LoadRequest,
        action: LoadAction,
        auth: AuthContext,
        fields: dict[str, Any],
        label: str,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[LoadRequest, TrackingEvent]:
        """
        Write the new status and its tracking event atomically.

        The write only applies if the load is still in the status it was read
        in; otherwise StaleStateError propagates and nothing is written.
        """
        now = now or self.now()
        target = next_status(load.status, action)
        fields = {**fields, "status": target}
        self._project(load, fields)
        event = self._event(load.load_id, EVENT_CODES[action], auth, label, description, now)

        def _apply(tx: StoreTransaction) -> LoadRequest:
            updated = tx.write_load(load.load_id, load.status, fields)
            tx.append_tracking_event(load.load_id, event)
            return updated

        try:
            updated = self.store.run_transaction(_apply)
        except StaleStateError as e:
            self.logger.warning(
                "transition_conflict",
                load_id=load.load_id,
                action=action.value,
                expected_status=e.expected,
                actual_status=e.actual,
            )
            raise

        self.logger.info(
            "transition_committed",
            load_id=load.load_id,
            action=action.value,
            from_status=load.status.value,
            to_status=target.value,
            actor_type=auth.actor_type.value,
            actor_id=auth.user_id,
        )
        return updated, event

    def _payload(self, load: LoadRequest, **extra: Any) -> dict[str, Any]:
        payload = {
            "load_id": load.load_id,
            "tracking_code": load.tracking_code,
            "status": load.status.value,
        }
        for key, value in extra.items():
            payload[key] = str(value) if isinstance(value, (Decimal, datetime)) else value
        return payload

    def _notify_shipper(self, load: LoadRequest, kind: NotificationKind, **extra: Any) -> NotificationIntent:
        shipper = self.store.read_shipper(load.shipper_id)
        return NotificationIntent(
            kind=kind,
            recipient_address=shipper.email,
            recipient_type="shipper",
            payload=self._payload(load, **extra),
        )

    def _notify_driver(
        self, load: LoadRequest, driver_id: Optional[str], kind: NotificationKind, **extra: Any
    ) -> list[NotificationIntent]:
        if driver_id is None:
            return []
        driver = self.store.read_driver(driver_id)
        return [
            NotificationIntent(
                kind=kind,
                recipient_address=driver.email,
                recipient_type="driver",
                payload=self._payload(load, **extra),
            )
        ]

    def _finish(self, outcome: TransitionOutcome, start_time: float) -> TransitionOutcome:
        """Record the decision and deliver notifications, after the commit."""
        self.log_decision(
            ServiceDecision(
                timestamp=outcome.event.created_at,
                service_name=self.service_name,
                decision_type="load_transition",
                input_data={
                    "load_id": outcome.load.load_id,
                    "action": outcome.action.value if outcome.action else "create",
                    "from_status": outcome.previous_status.value if outcome.previous_status else None,
                },
                output_data={
                    "to_status": outcome.load.status.value,
                    "event_code": outcome.event.code.value,
                    "notifications": len(outcome.notifications),
                    "warnings": outcome.warnings,
                },
                execution_time_seconds=time() - start_time,
            )
        )
        if self.dispatcher is not None and outcome.notifications:
            self.dispatcher.dispatch(outcome.notifications)
        return outcome

    # ------------------------------------------------------------------
    # Creation and quoting
    # ------------------------------------------------------------------

    def create_load(
        self,
        auth: AuthContext,
        shipper_id: str,
        pickup_facility_id: str,
        pickup_address: str,
        dropoff_facility_id: str,
        dropoff_address: str,
        service_type: Union[ServiceType, str] = ServiceType.ROUTINE,
        ready_time: Optional[datetime] = None,
        delivery_deadline: Optional[datetime] = None,
        total_distance_miles: Optional[Union[Decimal, float, int, str]] = None,
        requires_hazmat_certification: bool = False,
        request_quote: bool = False,
    ) -> TransitionOutcome:
        """
        Create a load.

        Shippers and admins create NEW loads (QUOTE_REQUESTED when
        ``request_quote`` is set). A driver creating a load for a shipper
        creates it REQUESTED and already attached to themselves.

        Returns:
            TransitionOutcome with the REQUEST_RECEIVED event

        Raises:
            AuthorizationError: If a shipper creates a load for another shipper
            ValidationError: For an unknown service type or bad timing data
            NotFoundError: If the shipper does not exist
        """
        start_time = time()
        now = self.now()

        if auth.user_type == UserType.SHIPPER and auth.user_id != shipper_id:
            raise AuthorizationError("Shippers can only create loads for themselves")
        if auth.user_type == UserType.SYSTEM:
            raise AuthorizationError("Loads must be created by a shipper, driver or administrator")

        parsed_type = self.rate_engine.parse_service_type(service_type)
        if ready_time and delivery_deadline and delivery_deadline <= ready_time:
            raise ValidationError("Delivery deadline must be after the ready time")

        driver_id = None
        if auth.user_type == UserType.DRIVER:
            status = LoadStatus.REQUESTED
            driver_id = self._eligible_driver(auth.user_id).driver_id
        elif request_quote:
            status = LoadStatus.QUOTE_REQUESTED
        else:
            status = LoadStatus.NEW

        self.store.read_shipper(shipper_id)

        try:
            load = LoadRequest(
                tracking_code=generate_tracking_code(),
                status=status,
                shipper_id=shipper_id,
                driver_id=driver_id,
                created_by=auth.actor_type,
                pickup_facility_id=pickup_facility_id,
                pickup_address=pickup_address,
                dropoff_facility_id=dropoff_facility_id,
                dropoff_address=dropoff_address,
                total_distance_miles=to_decimal(total_distance_miles) if total_distance_miles is not None else None,
                service_type=parsed_type,
                requires_hazmat_certification=requires_hazmat_certification,
                ready_time=ready_time,
                delivery_deadline=delivery_deadline,
                created_at=now,
            )
        except ModelValidationError as e:
            raise ValidationError(
                "Invalid load: " + "; ".join(error["msg"] for error in e.errors()),
                details={"errors": [error["msg"] for error in e.errors()]},
            ) from e

        event = self._event(
            load.load_id,
            TrackingEventCode.REQUEST_RECEIVED,
            auth,
            "Request Received",
            f"{parsed_type.value} pickup at {pickup_address}",
            now,
        )

        def _insert(tx: StoreTransaction) -> LoadRequest:
            created = tx.insert_load(load)
            tx.append_tracking_event(created.load_id, event)
            return created

        created = self.store.run_transaction(_insert)
        self.logger.info(
            "load_created",
            load_id=created.load_id,
            status=created.status.value,
            created_by=created.created_by.value,
        )

        notifications = []
        if auth.user_type == UserType.DRIVER:
            notifications.append(self._notify_shipper(created, NotificationKind.LOAD_STATUS_CHANGED))

        return self._finish(
            TransitionOutcome(load=created, event=event, notifications=notifications),
            start_time,
        )

    def request_quote(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """Shipper asks for a quote on a NEW load."""
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_shipper_or_admin(auth, load)
        self._guard(load, LoadAction.REQUEST_QUOTE)

        updated, event = self._transition(load, LoadAction.REQUEST_QUOTE, auth, {}, "Quote Requested")
        return self._finish(
            TransitionOutcome(load=updated, previous_status=load.status, action=LoadAction.REQUEST_QUOTE, event=event),
            start_time,
        )

    def request_driver(self, auth: AuthContext, load_id: str, driver_id: str) -> TransitionOutcome:
        """Shipper sends a scheduling request for a NEW load to a specific driver."""
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_shipper_or_admin(auth, load)
        self._guard(load, LoadAction.REQUEST_DRIVER)
        driver = self._eligible_driver(driver_id)

        updated, event = self._transition(
            load,
            LoadAction.REQUEST_DRIVER,
            auth,
            {"driver_id": driver.driver_id},
            "Driver Requested",
            f"Scheduling request sent to {driver.full_name}",
        )
        notifications = self._notify_driver(updated, driver.driver_id, NotificationKind.LOAD_STATUS_CHANGED)
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.REQUEST_DRIVER,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    def set_quote(
        self,
        auth: AuthContext,
        load_id: str,
        amount: Optional[Union[Decimal, float, int, str]] = None,
        distance_miles: Optional[Union[Decimal, float, int, str]] = None,
        notes: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Quote a load.

        With no ``amount`` the rate engine prices the load from its distance,
        service type and ready time. A load with no distance on record is
        measured with the distance provider, when one is configured. When a
        driver is already attached their minimum rate per mile is enforced.

        Re-quoting an accepted load sends it back to QUOTED and clears the
        acceptance; the shipper has to accept again.

        Raises:
            ValidationError: If no amount is given and the distance is unknown
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_admin(auth)
        self._guard(load, LoadAction.SET_QUOTE)

        distance = to_decimal(distance_miles) if distance_miles is not None else load.total_distance_miles
        quote = None
        if amount is None:
            if distance is None and self.distance_provider is not None:
                quote = self.rate_engine.quote_route(
                    self.distance_provider,
                    load.pickup_address,
                    load.dropoff_address,
                    load.service_type,
                    load.ready_time,
                    load.delivery_deadline,
                )
                if quote is not None:
                    distance = quote.distance_miles
            if distance is None:
                raise ValidationError(
                    "Distance is required to price this load", details={"load_id": load.load_id}
                )
            if quote is None:
                quote = self.rate_engine.quote(distance, load.service_type, load.ready_time, load.delivery_deadline)
            price = quote.total_rate
        else:
            price = to_money(to_decimal(amount))
            if price < 0:
                raise ValidationError("Quote amount cannot be negative", details={"amount": str(price)})

        adjustment = None
        if load.driver_id is not None and distance:
            driver = self.store.read_driver(load.driver_id)
            adjustment = self.rate_engine.apply_minimum(price, distance, driver.minimum_rate_per_mile)
            price = adjustment.rate

        fields: dict[str, Any] = {
            "quote_amount": price,
            "rate_per_mile": to_money(price / distance) if distance else None,
            "total_distance_miles": distance,
        }
        if notes is not None:
            fields["quote_notes"] = notes
        if load.quote_accepted_at is not None:
            fields["quote_accepted_at"] = None

        updated, event = self._transition(
            load,
            LoadAction.SET_QUOTE,
            auth,
            fields,
            "Price Quoted",
            f"Quote of ${price:.2f} prepared",
        )
        notifications = [self._notify_shipper(updated, NotificationKind.QUOTE_READY, amount=price)]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.SET_QUOTE,
                event=event,
                notifications=notifications,
                quote=quote,
                minimum_adjustment=adjustment,
            ),
            start_time,
        )

    def accept_quote(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """
        Shipper accepts the quote on a QUOTED load.

        Raises:
            ValidationError: If the load has no quote amount
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_shipper_or_admin(auth, load)
        self._guard(load, LoadAction.ACCEPT_QUOTE)
        if load.quote_amount is None:
            raise ValidationError("Load has no quote to accept", details={"load_id": load.load_id})

        now = self.now()
        updated, event = self._transition(
            load,
            LoadAction.ACCEPT_QUOTE,
            auth,
            {"quote_accepted_at": now},
            "Quote Accepted by Shipper",
            f"Quote of ${load.quote_amount:.2f} accepted and shipment confirmed",
            now,
        )
        notifications = self._notify_driver(
            updated, updated.driver_id, NotificationKind.QUOTE_ACCEPTED, amount=load.quote_amount
        )
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.ACCEPT_QUOTE,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    def reopen_quote(self, auth: AuthContext, load_id: str, notes: Optional[str] = None) -> TransitionOutcome:
        """
        Decline the quote on a QUOTED load and send it back to NEW.

        The quote and any driver attached to the load are cleared so the load
        can be re-quoted or requested again.
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_shipper_or_admin(auth, load)
        self._guard(load, LoadAction.REOPEN_QUOTE)

        fields: dict[str, Any] = {
            **_DRIVER_ASSIGNMENT_CLEARED,
            "quote_amount": None,
            "rate_per_mile": None,
        }
        if notes is not None:
            fields["quote_notes"] = notes

        updated, event = self._transition(load, LoadAction.REOPEN_QUOTE, auth, fields, "Quote Declined", notes)

        notifications = []
        if auth.is_admin:
            notifications.append(
                self._notify_shipper(updated, NotificationKind.LOAD_STATUS_CHANGED, label="Quote Declined")
            )
        notifications += self._notify_driver(
            updated, load.driver_id, NotificationKind.LOAD_STATUS_CHANGED, label="Quote Declined"
        )
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.REOPEN_QUOTE,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_driver(
        self, auth: AuthContext, load_id: str, driver_id: str, vehicle_id: str
    ) -> TransitionOutcome:
        """
        Assign a driver and vehicle to a load (admin or the driver's fleet manager).

        Raises:
            ComplianceError: If the driver or vehicle fails a hard compliance check
            ValidationError: If the driver is already booked for the load's time window
        """
        start_time = time()
        load = self.store.read_load(load_id)
        if not auth.is_admin and not self._manages_driver(auth, driver_id):
            raise AuthorizationError("Only an administrator or the driver's fleet manager may assign drivers")
        self._guard(load, LoadAction.ASSIGN_DRIVER)

        driver = self._eligible_driver(driver_id)
        vehicle = self._driver_vehicle(driver, vehicle_id)
        compliance = self.compliance_gate.require(load, driver, vehicle, LoadStatus.SCHEDULED)
        warnings = compliance.warnings + self._check_schedule(driver.driver_id, load)

        now = self.now()
        updated, event = self._transition(
            load,
            LoadAction.ASSIGN_DRIVER,
            auth,
            {"driver_id": driver.driver_id, "vehicle_id": vehicle.vehicle_id, "assigned_at": now},
            "Driver Assigned",
            f"{driver.full_name} assigned with vehicle {vehicle.plate}",
            now,
        )
        notifications = self._notify_driver(updated, driver.driver_id, NotificationKind.DRIVER_ASSIGNED)
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.ASSIGN_DRIVER,
                event=event,
                notifications=notifications,
                warnings=warnings,
            ),
            start_time,
        )

    def accept_load(self, auth: AuthContext, load_id: str, vehicle_id: str) -> TransitionOutcome:
        """
        Driver accepts a load, scheduling it with their vehicle.

        Raises:
            ValidationError: If another driver already holds the load, or the
                driver is already booked for its time window
            ComplianceError: If the driver or vehicle fails a hard compliance check
        """
        start_time = time()
        load = self.store.read_load(load_id)
        if auth.user_type != UserType.DRIVER:
            raise AuthorizationError("Only drivers can accept loads")
        self._guard(load, LoadAction.ACCEPT_LOAD)
        if load.driver_id is not None and load.driver_id != auth.user_id:
            raise ValidationError(
                "Load is already held by another driver", details={"load_id": load.load_id}
            )

        driver = self._eligible_driver(auth.user_id)
        vehicle = self._driver_vehicle(driver, vehicle_id)
        compliance = self.compliance_gate.require(load, driver, vehicle, LoadStatus.SCHEDULED)
        warnings = compliance.warnings + self._check_schedule(driver.driver_id, load)

        now = self.now()
        updated, event = self._transition(
            load,
            LoadAction.ACCEPT_LOAD,
            auth,
            {
                "driver_id": driver.driver_id,
                "vehicle_id": vehicle.vehicle_id,
                "assigned_at": now,
                "accepted_by_driver_at": now,
            },
            "Driver Accepted",
            f"{driver.full_name} accepted the load with vehicle {vehicle.plate}",
            now,
        )
        notifications = [
            self._notify_shipper(updated, NotificationKind.DRIVER_ASSIGNED, driver_name=driver.full_name)
        ]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.ACCEPT_LOAD,
                event=event,
                notifications=notifications,
                warnings=warnings,
            ),
            start_time,
        )

    def deny_load(
        self,
        auth: AuthContext,
        load_id: str,
        reason: Union[DenialReason, str],
        notes: Optional[str] = None,
    ) -> TransitionOutcome:
        """Driver declines a scheduling request. The load stays DENIED until an admin restores it."""
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_driver_or_manager(auth, load)
        self._guard(load, LoadAction.DENY)
        denial = _parse_enum(DenialReason, reason, "denial reason")

        now = self.now()
        updated, event = self._transition(
            load,
            LoadAction.DENY,
            auth,
            {
                **_DRIVER_ASSIGNMENT_CLEARED,
                "driver_denied_at": now,
                "driver_denial_reason": denial,
                "driver_denial_notes": notes,
                "last_denied_by_driver_id": load.driver_id,
            },
            "Not Scheduled",
            f"Driver declined: {denial.value}" + (f" - {notes}" if notes else ""),
            now,
        )
        notifications = [
            self._notify_shipper(updated, NotificationKind.LOAD_DENIED, reason=denial.value, notes=notes)
        ]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.DENY,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    def release_load(self, auth: AuthContext, load_id: str, reason: Optional[str] = None) -> TransitionOutcome:
        """Driver gives back a SCHEDULED load; it returns to NEW without a driver."""
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_driver_or_manager(auth, load)
        self._guard(load, LoadAction.RELEASE)

        updated, event = self._transition(
            load,
            LoadAction.RELEASE,
            auth,
            dict(_DRIVER_ASSIGNMENT_CLEARED),
            "Driver Released Load",
            reason,
        )
        notifications = [self._notify_shipper(updated, NotificationKind.LOAD_RELEASED, reason=reason)]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.RELEASE,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    # ------------------------------------------------------------------
    # Driver-submitted quotes
    # ------------------------------------------------------------------

    def claim_for_quote(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """Driver takes an open load to prepare their own quote for it."""
        start_time = time()
        load = self.store.read_load(load_id)
        if auth.user_type != UserType.DRIVER:
            raise AuthorizationError("Only drivers can quote loads")
        self._guard(load, LoadAction.CLAIM_FOR_QUOTE)
        driver = self._eligible_driver(auth.user_id)

        updated, event = self._transition(
            load,
            LoadAction.CLAIM_FOR_QUOTE,
            auth,
            {"driver_id": driver.driver_id},
            "Driver Preparing Quote",
            f"{driver.full_name} is preparing a quote",
        )
        return self._finish(
            TransitionOutcome(
                load=updated, previous_status=load.status, action=LoadAction.CLAIM_FOR_QUOTE, event=event
            ),
            start_time,
        )

    def submit_driver_quote(
        self,
        auth: AuthContext,
        load_id: str,
        amount: Union[Decimal, float, int, str],
        notes: Optional[str] = None,
        vehicle_id: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Assigned driver submits a quote for the shipper to approve.

        The quote expires after the configured TTL (48 hours by default).
        Approval schedules the load, so a vehicle must be named here unless
        one is already on the load.

        Raises:
            AuthorizationError: If the caller is not the assigned driver
            ValidationError: If the amount fails the plausibility bounds or no
                vehicle is given
        """
        start_time = time()
        load = self.store.read_load(load_id)
        if auth.user_type != UserType.DRIVER or auth.user_id != load.driver_id:
            raise AuthorizationError("Only the assigned driver can submit a quote for this load")
        self._guard(load, LoadAction.SUBMIT_DRIVER_QUOTE)

        price = to_money(to_decimal(amount))
        self.rate_engine.validate_quote_bounds(price, load.service_type, load.total_distance_miles)
        if vehicle_id is None and load.vehicle_id is None:
            raise ValidationError(
                "A vehicle is required to submit a quote", details={"load_id": load.load_id}
            )

        now = self.now()
        expires_at = now + timedelta(hours=self.lifecycle.driver_quote_ttl_hours)
        fields: dict[str, Any] = {
            "driver_quote_amount": price,
            "driver_quote_notes": notes,
            "driver_quote_submitted_at": now,
            "driver_quote_expires_at": expires_at,
            "shipper_quote_decision": QuoteDecision.PENDING,
            "shipper_quote_decision_at": None,
        }
        if vehicle_id is not None:
            driver = self.store.read_driver(load.driver_id)
            fields["vehicle_id"] = self._driver_vehicle(driver, vehicle_id).vehicle_id

        updated, event = self._transition(
            load,
            LoadAction.SUBMIT_DRIVER_QUOTE,
            auth,
            fields,
            "Driver Quote Submitted",
            f"Driver quoted ${price:.2f}",
            now,
        )
        notifications = [
            self._notify_shipper(
                updated, NotificationKind.QUOTE_SUBMITTED, amount=price, expires_at=expires_at, notes=notes
            )
        ]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.SUBMIT_DRIVER_QUOTE,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    def approve_driver_quote(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """
        Shipper approves the driver's quote, scheduling the load at that price.

        The driver and vehicle pass the same compliance and double-booking
        checks as any other assignment.

        Raises:
            ValidationError: If there is no driver quote, it has expired, or
                the driver is already booked for the load's time window
            ComplianceError: If the driver or vehicle fails a hard compliance check
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_shipper_or_admin(auth, load)
        self._guard(load, LoadAction.APPROVE_DRIVER_QUOTE)
        if load.driver_quote_amount is None:
            raise ValidationError("Load has no driver quote to approve", details={"load_id": load.load_id})

        now = self.now()
        if load.driver_quote_expires_at is not None and load.driver_quote_expires_at <= now:
            raise ValidationError(
                "Driver quote has expired",
                details={"load_id": load.load_id, "expired_at": load.driver_quote_expires_at.isoformat()},
            )

        driver = self.store.read_driver(load.driver_id)
        compliance = self.compliance_gate.require(load, driver, self._assigned_vehicle(load), LoadStatus.SCHEDULED)
        warnings = compliance.warnings + self._check_schedule(driver.driver_id, load)

        updated, event = self._transition(
            load,
            LoadAction.APPROVE_DRIVER_QUOTE,
            auth,
            {
                "quote_amount": load.driver_quote_amount,
                "rate_per_mile": (
                    to_money(load.driver_quote_amount / load.total_distance_miles)
                    if load.total_distance_miles
                    else load.rate_per_mile
                ),
                "quote_accepted_at": now,
                "shipper_quote_decision": QuoteDecision.APPROVED,
                "shipper_quote_decision_at": now,
                "assigned_at": now,
                "accepted_by_driver_at": load.driver_quote_submitted_at,
            },
            "Driver Quote Approved",
            f"Quote of ${load.driver_quote_amount:.2f} approved by shipper",
            now,
        )
        notifications = self._notify_driver(
            updated, updated.driver_id, NotificationKind.DRIVER_QUOTE_APPROVED, amount=load.driver_quote_amount
        )
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.APPROVE_DRIVER_QUOTE,
                event=event,
                notifications=notifications,
                warnings=warnings,
            ),
            start_time,
        )

    def reject_driver_quote(
        self, auth: AuthContext, load_id: str, notes: Optional[str] = None
    ) -> TransitionOutcome:
        """
        Shipper rejects the driver's quote.

        One write returns the load to NEW and clears the driver, the vehicle,
        the assignment timestamps and every driver-quote field.
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_shipper_or_admin(auth, load)
        self._guard(load, LoadAction.REJECT_DRIVER_QUOTE)

        now = self.now()
        fields: dict[str, Any] = {
            **_DRIVER_ASSIGNMENT_CLEARED,
            **_DRIVER_QUOTE_CLEARED,
            "shipper_quote_decision": QuoteDecision.DENIED,
            "shipper_quote_decision_at": now,
        }
        if notes is not None:
            fields["quote_notes"] = notes

        updated, event = self._transition(
            load,
            LoadAction.REJECT_DRIVER_QUOTE,
            auth,
            fields,
            "Driver Quote Rejected",
            notes,
            now,
        )
        notifications = self._notify_driver(
            updated, load.driver_id, NotificationKind.DRIVER_QUOTE_REJECTED, notes=notes
        )
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.REJECT_DRIVER_QUOTE,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    # ------------------------------------------------------------------
    # Custody
    # ------------------------------------------------------------------

    def _custody_step(
        self,
        auth: AuthContext,
        load_id: str,
        action: LoadAction,
        label: str,
        timestamp_field: Optional[str],
        gated: bool,
    ) -> TransitionOutcome:
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_driver_or_manager(auth, load, allow_admin=True)
        target = self._guard(load, action)

        warnings: list[str] = []
        if gated:
            driver = self.store.read_driver(load.driver_id)
            compliance = self.compliance_gate.require(load, driver, self._assigned_vehicle(load), target)
            warnings = compliance.warnings

        now = self.now()
        fields = {timestamp_field: now} if timestamp_field else {}
        updated, event = self._transition(load, action, auth, fields, label, None, now)
        notifications = [
            self._notify_shipper(updated, NotificationKind.LOAD_STATUS_CHANGED, label=label)
        ]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=action,
                event=event,
                notifications=notifications,
                warnings=warnings,
            ),
            start_time,
        )

    def mark_picked_up(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """
        Driver takes custody of the shipment.

        Raises:
            ComplianceError: If credentials lapsed since assignment; nothing is written
        """
        return self._custody_step(auth, load_id, LoadAction.PICK_UP, "Picked Up", "picked_up_at", gated=True)

    def mark_in_transit(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """Shipment is on its way."""
        return self._custody_step(auth, load_id, LoadAction.START_TRANSIT, "In Transit", None, gated=False)

    def mark_delivered(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """
        Shipment handed over at the dropoff facility.

        Raises:
            ComplianceError: If credentials lapsed in transit; nothing is written
        """
        return self._custody_step(auth, load_id, LoadAction.DELIVER, "Delivered", "delivered_at", gated=True)

    def complete(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """
        Close out a delivered load and settle it with the driver's payee.

        A load that was never quoted settles at 0.00 rather than staying
        stuck in DELIVERED.
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_admin(auth)
        self._guard(load, LoadAction.COMPLETE)

        driver = self.store.read_driver(load.driver_id)
        settlement = self.settlement_calculator.for_completed(load, driver)

        now = self.now()
        updated, event = self._transition(
            load,
            LoadAction.COMPLETE,
            auth,
            {"completed_at": now},
            "Paperwork Completed",
            f"Settled ${settlement.billable_amount:.2f} to {settlement.payee.type.value.lower()} {settlement.payee.id}",
            now,
        )
        notifications = [self._notify_shipper(updated, NotificationKind.LOAD_STATUS_CHANGED, label="Completed")]
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.COMPLETE,
                event=event,
                notifications=notifications,
                settlement=settlement,
            ),
            start_time,
        )

    # ------------------------------------------------------------------
    # Cancellation and restore
    # ------------------------------------------------------------------

    def cancel(
        self,
        auth: AuthContext,
        load_id: str,
        reason: Union[CancellationReason, str],
        billing_rule: Optional[Union[BillingRule, str]] = None,
        notes: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Cancel a load that has not been delivered.

        The shipper and, if one is assigned, the driver are always notified.
        An assigned load also gets a settlement priced by ``billing_rule``.

        Raises:
            AuthorizationError: If a shipper does not own the load, or a driver
                is neither its assigned driver nor that driver's fleet manager
        """
        start_time = time()
        load = self.store.read_load(load_id)
        if auth.user_type == UserType.SHIPPER:
            self._require_shipper_or_admin(auth, load)
        elif auth.user_type == UserType.DRIVER:
            self._require_driver_or_manager(auth, load)
        self._guard(load, LoadAction.CANCEL)

        cancellation_reason = _parse_enum(CancellationReason, reason, "cancellation reason")
        rule = _parse_enum(BillingRule, billing_rule, "billing rule") if billing_rule is not None else None

        now = self.now()
        fields: dict[str, Any] = {
            "cancelled_at": now,
            "cancellation_reason": cancellation_reason,
            "cancellation_billing_rule": rule,
            "cancelled_by": auth.actor_type,
            "cancelled_by_id": auth.user_id,
            "cancellation_notes": notes,
        }
        if load.has_pending_driver_quote:
            fields.update(_DRIVER_QUOTE_CLEARED)
            fields["shipper_quote_decision"] = None

        settlement = None
        if load.driver_id is not None:
            driver = self.store.read_driver(load.driver_id)
            settlement = self.settlement_calculator.for_cancelled(self._project(load, fields), driver)

        updated, event = self._transition(
            load,
            LoadAction.CANCEL,
            auth,
            fields,
            f"Load Cancelled - {cancellation_reason.value}",
            notes,
            now,
        )

        extra = {"reason": cancellation_reason.value, "cancelled_by": auth.actor_type.value}
        notifications = [self._notify_shipper(updated, NotificationKind.LOAD_CANCELLED, **extra)]
        notifications += self._notify_driver(updated, load.driver_id, NotificationKind.LOAD_CANCELLED, **extra)
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=LoadAction.CANCEL,
                event=event,
                notifications=notifications,
                settlement=settlement,
            ),
            start_time,
        )

    def restore(self, auth: AuthContext, load_id: str, notes: Optional[str] = None) -> TransitionOutcome:
        """
        Reopen a cancelled or denied load (admin only).

        A cancelled load that still has a driver goes back to REQUESTED for
        that driver; otherwise the load returns to NEW.
        """
        start_time = time()
        load = self.store.read_load(load_id)
        self._require_admin(auth)

        if load.status == LoadStatus.CANCELLED and load.driver_id is not None:
            action = LoadAction.RESTORE_TO_REQUESTED
        else:
            action = LoadAction.RESTORE_TO_OPEN
        self._guard(load, action)

        fields = {
            "cancelled_at": None,
            "cancellation_reason": None,
            "cancellation_billing_rule": None,
            "cancelled_by": None,
            "cancelled_by_id": None,
            "cancellation_notes": None,
            "driver_denied_at": None,
            "driver_denial_reason": None,
            "driver_denial_notes": None,
        }
        updated, event = self._transition(load, action, auth, fields, "Load Restored", notes)

        notifications = [self._notify_shipper(updated, NotificationKind.LOAD_RESTORED)]
        notifications += self._notify_driver(updated, updated.driver_id, NotificationKind.LOAD_RESTORED)
        return self._finish(
            TransitionOutcome(
                load=updated,
                previous_status=load.status,
                action=action,
                event=event,
                notifications=notifications,
            ),
            start_time,
        )

    def shipper_claim(self, auth: AuthContext, load_id: str) -> TransitionOutcome:
        """
        Shipper confirms a load a driver created on their behalf.

        Audit only: appends a SHIPPER_CONFIRMED event and leaves the status alone.

        Raises:
            ValidationError: If a driver did not create the load
            InvalidTransitionError: If the load is already closed
        """
        start_time = time()
        load = self.store.read_load(load_id)
        if auth.user_type != UserType.SHIPPER or auth.user_id != load.shipper_id:
            raise AuthorizationError("Only the shipper who owns this load may claim it")
        self._guard(load, LoadAction.SHIPPER_CLAIM)
        if load.created_by != ActorType.DRIVER:
            raise ValidationError(
                "Only loads created by a driver can be claimed",
                details={"load_id": load.load_id, "created_by": load.created_by.value},
            )

        updated, event = self._transition(
            load,
            LoadAction.SHIPPER_CLAIM,
            auth,
            {},
            "Shipper Claimed in Portal",
            "Shipper confirmed the driver-created load",
        )
        return self._finish(
            TransitionOutcome(load=updated, previous_status=load.status, action=LoadAction.SHIPPER_CLAIM, event=event),
            start_time,
        )
