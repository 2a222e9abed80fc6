"""
Shared fixtures for the courier core test suite.

Every test gets its own SQLite database file and a frozen clock set to
Monday 2024-12-16 14:00 America/Chicago (20:00 UTC), inside business hours.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

import pytest

from courier_core.core.config import ConfigManager, EnvironmentSettings
from courier_core.data.models import (
    AuthContext,
    Driver,
    Shipper,
    UserType,
    Vehicle,
)
from courier_core.data.store import SqlAlchemyStore, create_store_engine
from courier_core.services.load_state_machine import LoadStateMachine
from courier_core.tools.distance import DistanceProvider, DistanceUnavailableError
from courier_core.tools.notifier import NotificationDispatcher, NotificationKind, Notifier

BUSINESS_HOURS_NOW = datetime(2024, 12, 16, 20, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


class RecordingNotifier(Notifier):
    """Keeps every delivered notification in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationKind, str, dict[str, Any]]] = []

    def notify(self, kind, recipient_address, payload):
        self.sent.append((kind, recipient_address, payload))

    def kinds_for(self, address: str) -> list[NotificationKind]:
        return [kind for kind, recipient, _ in self.sent if recipient == address]


class FailingNotifier(Notifier):
    """Notifier whose channel is always down."""

    def notify(self, kind, recipient_address, payload):
        raise ConnectionError("SMTP server unavailable")


class FixedDistance(DistanceProvider):
    """Every route is the same length."""

    def __init__(self, miles):
        self.miles = miles

    def distance_miles(self, origin, destination):
        return self.miles


class DownDistance(DistanceProvider):
    def distance_miles(self, origin, destination):
        raise DistanceUnavailableError("OpenRouteService timed out")


# =============================================================================
# CONFIGURATION AND INFRASTRUCTURE
# =============================================================================

@pytest.fixture
def env_settings(tmp_path):
    """Environment settings isolated from the developer's .env file."""
    return EnvironmentSettings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'courier.db'}",
        OPENROUTESERVICE_API_KEY="test-ors-key",
        DISTANCE_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def config(env_settings):
    """Config manager reading the packaged config.yaml."""
    return ConfigManager(env_settings=env_settings)


@pytest.fixture
def clock():
    """Frozen clock inside business hours."""
    return FrozenClock(BUSINESS_HOURS_NOW)


@pytest.fixture
def store(config):
    """Fresh SQLite-backed store with the schema created."""
    engine = create_store_engine(config.env.database_url)
    store = SqlAlchemyStore(engine=engine, config_manager=config)
    store.create_schema()
    yield store
    engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def machine(store, config, clock, notifier):
    """Load state machine delivering to the recording notifier."""
    return LoadStateMachine(
        store,
        dispatcher=NotificationDispatcher(notifier),
        config_manager=config,
        clock=clock,
    )


# =============================================================================
# SEED DATA
# =============================================================================

def make_driver(clock, **overrides) -> Driver:
    """Fully compliant independent driver."""
    values = {
        "first_name": "Dana",
        "last_name": "Reyes",
        "email": f"{uuid4().hex[:8]}@drivers.example",
        "license_expiry": clock() + timedelta(days=400),
        "hazmat_certified": True,
        "hazmat_cert_expiry": clock() + timedelta(days=400),
        "hazard_training_date": clock() - timedelta(days=90),
    }
    values.update(overrides)
    return Driver(**values)


def make_vehicle(clock, driver: Driver, **overrides) -> Vehicle:
    """Active vehicle with current registration and insurance."""
    values = {
        "driver_id": driver.driver_id,
        "plate": f"CC-{driver.driver_id[:4].upper()}",
        "registration_expiry_date": clock() + timedelta(days=200),
        "insurance_expiry_date": clock() + timedelta(days=200),
    }
    values.update(overrides)
    return Vehicle(**values)


@pytest.fixture
def shipper(store):
    return store.insert_shipper(Shipper(company_name="St. Luke's Lab", email="lab@stlukes.example"))


@pytest.fixture
def driver(store, clock):
    return store.insert_driver(make_driver(clock, email="dana@example.com"))


@pytest.fixture
def vehicle(store, clock, driver):
    return store.insert_vehicle(make_vehicle(clock, driver))


@pytest.fixture
def other_driver(store, clock):
    return store.insert_driver(make_driver(clock, first_name="Sam", email="sam@example.com"))


@pytest.fixture
def other_vehicle(store, clock, other_driver):
    return store.insert_vehicle(make_vehicle(clock, other_driver))


@pytest.fixture
def admin_auth():
    return AuthContext(user_id="admin-1", user_type=UserType.ADMIN)


@pytest.fixture
def shipper_auth(shipper):
    return AuthContext(user_id=shipper.shipper_id, user_type=UserType.SHIPPER)


@pytest.fixture
def driver_auth(driver):
    return AuthContext(user_id=driver.driver_id, user_type=UserType.DRIVER)


@pytest.fixture
def other_driver_auth(other_driver):
    return AuthContext(user_id=other_driver.driver_id, user_type=UserType.DRIVER)


@pytest.fixture
def create_load(machine, shipper, shipper_auth):
    """Factory creating a NEW load owned by the shipper fixture."""

    def _create(auth=None, **overrides):
        values = {
            "shipper_id": shipper.shipper_id,
            "pickup_facility_id": "FAC-PICKUP",
            "pickup_address": "100 Main St, Springfield, IL",
            "dropoff_facility_id": "FAC-DROPOFF",
            "dropoff_address": "900 Oak Ave, Springfield, IL",
            "service_type": "STAT",
            "total_distance_miles": Decimal("20"),
        }
        values.update(overrides)
        return machine.create_load(auth or shipper_auth, **values).load

    return _create
