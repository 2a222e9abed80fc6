"""
Persistence store for loads, tracking events, drivers and fleet invites.

Every state change goes through a conditional write (UPDATE ... WHERE the row
is still in the expected state), so concurrent requests serialize on the
database rather than on in-process locks. A zero-row result is re-read to tell
"record missing" apart from "someone else got there first".
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, TypeVar

import structlog
from sqlalchemy import create_engine, or_, select, update
from sqlalchemy import event as sa_event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from courier_core.core.config import ConfigManager, get_config
from courier_core.core.errors import NotFoundError, StaleStateError, ValidationError
from courier_core.data.models.driver import Driver, Fleet, FleetInvite, FleetRole, Shipper, Vehicle
from courier_core.data.models.load import LoadRequest, LoadStatus, TrackingEvent
from courier_core.data.tables import (
    LOAD_WRITABLE_COLUMNS,
    Base,
    DriverRow,
    FleetInviteRow,
    FleetRow,
    LoadRow,
    ShipperRow,
    TrackingEventRow,
    VehicleRow,
)

T = TypeVar("T")


def _row_values(model: Any, row_cls: type) -> dict[str, Any]:
    """Column values for ``row_cls`` taken from a pydantic model."""
    return {
        column.name: getattr(model, column.name)
        for column in row_cls.__table__.columns
        if hasattr(model, column.name)
    }


class StoreTransaction(ABC):
    """Operations available inside one atomic unit of work."""

    # Loads

    @abstractmethod
    def read_load(self, load_id: str) -> LoadRequest:
        """Return the load or raise NotFoundError."""

    @abstractmethod
    def insert_load(self, load: LoadRequest) -> LoadRequest:
        """Persist a new load."""

    @abstractmethod
    def write_load(
        self, load_id: str, expected_status: LoadStatus, fields: dict[str, Any]
    ) -> LoadRequest:
        """
        Apply ``fields`` only if the load is still in ``expected_status``.

        Raises:
            NotFoundError: If the load does not exist
            StaleStateError: If the load is in a different status
        """

    @abstractmethod
    def append_tracking_event(self, load_id: str, event: TrackingEvent) -> TrackingEvent:
        """Append an immutable audit event."""

    @abstractmethod
    def list_driver_loads(self, driver_id: str, statuses: Iterable[LoadStatus]) -> list[LoadRequest]:
        """Loads held by ``driver_id`` in any of ``statuses``."""

    @abstractmethod
    def list_tracking_events(self, load_id: str) -> list[TrackingEvent]:
        """Audit trail in insertion order."""

    # Profiles (owned by collaborators, read by the core)

    @abstractmethod
    def read_driver(self, driver_id: str) -> Driver: ...

    @abstractmethod
    def read_vehicle(self, vehicle_id: str) -> Vehicle: ...

    @abstractmethod
    def read_shipper(self, shipper_id: str) -> Shipper: ...

    @abstractmethod
    def read_fleet(self, fleet_id: str) -> Fleet: ...

    @abstractmethod
    def insert_driver(self, driver: Driver) -> Driver: ...

    @abstractmethod
    def insert_vehicle(self, vehicle: Vehicle) -> Vehicle: ...

    @abstractmethod
    def insert_shipper(self, shipper: Shipper) -> Shipper: ...

    @abstractmethod
    def insert_fleet(self, fleet: Fleet) -> Fleet: ...

    # Fleet invites

    @abstractmethod
    def insert_fleet_invite(self, invite: FleetInvite) -> FleetInvite: ...

    @abstractmethod
    def find_fleet_invite(self, code: str) -> Optional[FleetInvite]:
        """Invite by code, or None."""

    @abstractmethod
    def claim_invite_use(self, code: str, now: datetime) -> bool:
        """Increment ``used_count`` if the invite is unexpired and under its cap."""

    @abstractmethod
    def join_fleet(self, driver_id: str, fleet_id: str, role: FleetRole) -> bool:
        """Attach a driver to a fleet only if the driver is currently independent."""


class PersistenceStore(ABC):
    """
    Store interface consumed by the core.

    Single-operation helpers each run in their own transaction; use
    ``run_transaction`` to group several operations atomically.
    """

    @abstractmethod
    def run_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        """
        Run ``fn`` inside one transaction.

        Commits when ``fn`` returns, rolls back when it raises.
        """

    def read_load(self, load_id: str) -> LoadRequest:
        return self.run_transaction(lambda tx: tx.read_load(load_id))

    def write_load(
        self, load_id: str, expected_status: LoadStatus, fields: dict[str, Any]
    ) -> LoadRequest:
        return self.run_transaction(lambda tx: tx.write_load(load_id, expected_status, fields))

    def append_tracking_event(self, load_id: str, event: TrackingEvent) -> TrackingEvent:
        return self.run_transaction(lambda tx: tx.append_tracking_event(load_id, event))

    def list_tracking_events(self, load_id: str) -> list[TrackingEvent]:
        return self.run_transaction(lambda tx: tx.list_tracking_events(load_id))

    def list_driver_loads(self, driver_id: str, statuses: Iterable[LoadStatus]) -> list[LoadRequest]:
        return self.run_transaction(lambda tx: tx.list_driver_loads(driver_id, statuses))

    def read_driver(self, driver_id: str) -> Driver:
        return self.run_transaction(lambda tx: tx.read_driver(driver_id))

    def read_vehicle(self, vehicle_id: str) -> Vehicle:
        return self.run_transaction(lambda tx: tx.read_vehicle(vehicle_id))

    def read_shipper(self, shipper_id: str) -> Shipper:
        return self.run_transaction(lambda tx: tx.read_shipper(shipper_id))

    def read_fleet(self, fleet_id: str) -> Fleet:
        return self.run_transaction(lambda tx: tx.read_fleet(fleet_id))

    def find_fleet_invite(self, code: str) -> Optional[FleetInvite]:
        return self.run_transaction(lambda tx: tx.find_fleet_invite(code))

    def insert_driver(self, driver: Driver) -> Driver:
        return self.run_transaction(lambda tx: tx.insert_driver(driver))

    def insert_vehicle(self, vehicle: Vehicle) -> Vehicle:
        return self.run_transaction(lambda tx: tx.insert_vehicle(vehicle))

    def insert_shipper(self, shipper: Shipper) -> Shipper:
        return self.run_transaction(lambda tx: tx.insert_shipper(shipper))

    def insert_fleet(self, fleet: Fleet) -> Fleet:
        return self.run_transaction(lambda tx: tx.insert_fleet(fleet))

    def insert_fleet_invite(self, invite: FleetInvite) -> FleetInvite:
        return self.run_transaction(lambda tx: tx.insert_fleet_invite(invite))


class SqlAlchemyTransaction(StoreTransaction):
    """StoreTransaction over one SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _get(self, row_cls: type, key: str, resource: str) -> Any:
        row = self.session.get(row_cls, key, populate_existing=True)
        if row is None:
            raise NotFoundError(resource, key)
        return row

    def _insert(self, model: Any, row_cls: type) -> None:
        self.session.add(row_cls(**_row_values(model, row_cls)))
        self.session.flush()

    def read_load(self, load_id: str) -> LoadRequest:
        return LoadRequest.model_validate(self._get(LoadRow, load_id, "Load"))

    def insert_load(self, load: LoadRequest) -> LoadRequest:
        self._insert(load, LoadRow)
        return load

    def write_load(
        self, load_id: str, expected_status: LoadStatus, fields: dict[str, Any]
    ) -> LoadRequest:
        unknown = set(fields) - LOAD_WRITABLE_COLUMNS
        if unknown:
            raise ValidationError(
                f"Fields not writable on a load: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        result = self.session.execute(
            update(LoadRow)
            .where(LoadRow.load_id == load_id, LoadRow.status == expected_status)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = self.session.get(LoadRow, load_id, populate_existing=True)
            if current is None:
                raise NotFoundError("Load", load_id)
            raise StaleStateError(load_id, expected_status.value, LoadStatus(current.status).value)

        return self.read_load(load_id)

    def append_tracking_event(self, load_id: str, event: TrackingEvent) -> TrackingEvent:
        if event.load_id != load_id:
            raise ValidationError(
                "Tracking event belongs to a different load",
                details={"load_id": load_id, "event_load_id": event.load_id},
            )
        self._insert(event, TrackingEventRow)
        return event

    def list_driver_loads(self, driver_id: str, statuses: Iterable[LoadStatus]) -> list[LoadRequest]:
        rows = self.session.scalars(
            select(LoadRow)
            .where(LoadRow.driver_id == driver_id, LoadRow.status.in_(list(statuses)))
            .order_by(LoadRow.ready_time)
        )
        return [LoadRequest.model_validate(row) for row in rows]

    def list_tracking_events(self, load_id: str) -> list[TrackingEvent]:
        rows = self.session.scalars(
            select(TrackingEventRow)
            .where(TrackingEventRow.load_id == load_id)
            .order_by(TrackingEventRow.sequence)
        )
        return [TrackingEvent.model_validate(row) for row in rows]

    def read_driver(self, driver_id: str) -> Driver:
        return Driver.model_validate(self._get(DriverRow, driver_id, "Driver"))

    def read_vehicle(self, vehicle_id: str) -> Vehicle:
        return Vehicle.model_validate(self._get(VehicleRow, vehicle_id, "Vehicle"))

    def read_shipper(self, shipper_id: str) -> Shipper:
        return Shipper.model_validate(self._get(ShipperRow, shipper_id, "Shipper"))

    def read_fleet(self, fleet_id: str) -> Fleet:
        return Fleet.model_validate(self._get(FleetRow, fleet_id, "Fleet"))

    def insert_driver(self, driver: Driver) -> Driver:
        self._insert(driver, DriverRow)
        return driver

    def insert_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self._insert(vehicle, VehicleRow)
        return vehicle

    def insert_shipper(self, shipper: Shipper) -> Shipper:
        self._insert(shipper, ShipperRow)
        return shipper

    def insert_fleet(self, fleet: Fleet) -> Fleet:
        self._insert(fleet, FleetRow)
        return fleet

    def insert_fleet_invite(self, invite: FleetInvite) -> FleetInvite:
        self._insert(invite, FleetInviteRow)
        return invite

    def find_fleet_invite(self, code: str) -> Optional[FleetInvite]:
        row = self.session.scalars(
            select(FleetInviteRow)
            .where(FleetInviteRow.code == code)
            .execution_options(populate_existing=True)
        ).first()
        return FleetInvite.model_validate(row) if row is not None else None

    def claim_invite_use(self, code: str, now: datetime) -> bool:
        result = self.session.execute(
            update(FleetInviteRow)
            .where(
                FleetInviteRow.code == code,
                or_(
                    FleetInviteRow.max_uses.is_(None),
                    FleetInviteRow.used_count < FleetInviteRow.max_uses,
                ),
                or_(FleetInviteRow.expires_at.is_(None), FleetInviteRow.expires_at > now),
            )
            .values(used_count=FleetInviteRow.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def join_fleet(self, driver_id: str, fleet_id: str, role: FleetRole) -> bool:
        result = self.session.execute(
            update(DriverRow)
            .where(
                DriverRow.driver_id == driver_id,
                DriverRow.fleet_role == FleetRole.INDEPENDENT,
                DriverRow.fleet_id.is_(None),
            )
            .values(fleet_id=fleet_id, fleet_role=role)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def _use_immediate_transactions(engine: Engine) -> None:
    """
    Make SQLite take the write lock at BEGIN.

    pysqlite's own transaction handling defers locking to the first write,
    which lets two conditional updates interleave; emitting BEGIN IMMEDIATE
    ourselves serializes writers the way row locks do on PostgreSQL.
    """

    @sa_event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @sa_event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine suitable for the store.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured Engine
    """
    engine_kwargs: dict[str, Any] = {"echo": echo, "future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(database_url, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        _use_immediate_transactions(engine)
    return engine


class SqlAlchemyStore(PersistenceStore):
    """
    PersistenceStore backed by SQLAlchemy.

    Works against PostgreSQL in production and SQLite in tests and local runs.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            engine: Optional engine (defaults to one built from DATABASE_URL)
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
        """
        if engine is None:
            config_manager = config_manager or get_config()
            engine = create_store_engine(config_manager.env.database_url)

        self.engine = engine
        self.logger = logger or structlog.get_logger(component="store")
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        self.logger.info("schema_created", dialect=self.engine.dialect.name)

    def run_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        with self._session_factory.begin() as session:
            return fn(SqlAlchemyTransaction(session))

    def __repr__(self) -> str:
        """String representation of the store."""
        return f"{self.__class__.__name__}(dialect='{self.engine.dialect.name}')"
