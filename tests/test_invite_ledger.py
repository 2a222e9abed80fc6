"""
Unit Tests for the Invite Ledger

Covers fleet creation, invite issuance, lookup, redemption rules and the
guarantee that concurrent redemptions never exceed ``max_uses``.

Run with: pytest tests/test_invite_ledger.py -v
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import make_driver
from courier_core.core.errors import AuthorizationError, NotFoundError, ValidationError
from courier_core.data.models import AuthContext, FleetRole, UserType
from courier_core.services.invite_ledger import InviteLedger, generate_invite_code


def as_driver(driver):
    return AuthContext(user_id=driver.driver_id, user_type=UserType.DRIVER)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger(store, config, clock):
    return InviteLedger(store, config_manager=config, clock=clock)


@pytest.fixture
def owner(store, clock):
    return store.insert_driver(make_driver(clock, first_name="Olive", email="olive@fleet.example"))


@pytest.fixture
def fleet(ledger, owner):
    """Fleet owned by ``owner``."""
    return ledger.create_fleet(as_driver(owner), owner.driver_id, "Olive's Couriers")


@pytest.fixture
def recruit(store, clock):
    return store.insert_driver(make_driver(clock, first_name="Rex", email="rex@example.com"))


# =============================================================================
# FLEETS AND INVITES
# =============================================================================

class TestCreateFleet:

    def test_owner_joins_as_owner(self, store, fleet, owner):
        refreshed = store.read_driver(owner.driver_id)
        assert refreshed.fleet_id == fleet.fleet_id
        assert refreshed.fleet_role == FleetRole.OWNER

    def test_fleet_member_cannot_create_another(self, ledger, fleet, owner):
        with pytest.raises(ValidationError, match="already belongs to a fleet"):
            ledger.create_fleet(as_driver(owner), owner.driver_id, "Second Fleet")

    def test_cannot_create_for_someone_else(self, ledger, owner, recruit):
        with pytest.raises(AuthorizationError):
            ledger.create_fleet(as_driver(recruit), owner.driver_id, "Hijacked")


class TestIssueInvite:

    def test_code_format(self):
        code = generate_invite_code()
        assert len(code) == 8
        assert code.isalnum() and code.upper() == code

    def test_owner_issues_invite(self, ledger, fleet, owner):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=3, expires_in_days=7)
        assert invite.fleet_id == fleet.fleet_id
        assert invite.role == FleetRole.DRIVER
        assert invite.used_count == 0
        assert invite.expires_at is not None

    def test_plain_member_cannot_issue(self, ledger, fleet, owner, recruit):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id)
        ledger.redeem(as_driver(recruit), invite.code, recruit.driver_id)
        with pytest.raises(AuthorizationError):
            ledger.issue_invite(as_driver(recruit), fleet.fleet_id)

    def test_owner_role_cannot_be_granted(self, ledger, fleet, owner):
        with pytest.raises(ValidationError, match="Invalid invite"):
            ledger.issue_invite(as_driver(owner), fleet.fleet_id, role=FleetRole.OWNER)

    def test_unknown_fleet(self, ledger, admin_auth):
        with pytest.raises(NotFoundError):
            ledger.issue_invite(admin_auth, "no-such-fleet")


class TestLookup:

    def test_valid_invite(self, ledger, fleet, owner):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=2)
        lookup = ledger.lookup(invite.code.lower())
        assert lookup.is_valid
        assert lookup.fleet_name == "Olive's Couriers"
        assert lookup.remaining_uses == 2

    def test_expired_invite(self, ledger, fleet, owner, clock):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, expires_in_days=1)
        clock.advance(days=2)
        lookup = ledger.lookup(invite.code)
        assert not lookup.is_valid
        assert lookup.reason == "Invite has expired"

    def test_unknown_code(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.lookup("ZZZZZZZZ")


# =============================================================================
# REDEMPTION
# =============================================================================

class TestRedeem:

    def test_redeem_joins_fleet(self, ledger, store, fleet, owner, recruit):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, role=FleetRole.ADMIN)
        result = ledger.redeem(as_driver(recruit), invite.code, recruit.driver_id)

        assert result.fleet_id == fleet.fleet_id
        assert result.role == FleetRole.ADMIN
        joined = store.read_driver(recruit.driver_id)
        assert joined.fleet_id == fleet.fleet_id
        assert joined.fleet_role == FleetRole.ADMIN
        assert store.find_fleet_invite(invite.code).used_count == 1

    def test_expired_invite_rejected(self, ledger, fleet, owner, recruit, clock):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, expires_in_days=1)
        clock.advance(days=1)
        with pytest.raises(ValidationError, match="expired"):
            ledger.redeem(as_driver(recruit), invite.code, recruit.driver_id)

    def test_exhausted_invite_rejected(self, ledger, store, clock, fleet, owner, recruit):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=1)
        ledger.redeem(as_driver(recruit), invite.code, recruit.driver_id)

        latecomer = store.insert_driver(make_driver(clock))
        with pytest.raises(ValidationError, match="maximum number of uses"):
            ledger.redeem(as_driver(latecomer), invite.code, latecomer.driver_id)

    def test_fleet_member_rejected_without_consuming_a_use(self, ledger, store, fleet, owner):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=1)
        with pytest.raises(ValidationError, match="already belongs to a fleet"):
            ledger.redeem(as_driver(owner), invite.code, owner.driver_id)
        assert store.find_fleet_invite(invite.code).used_count == 0

    def test_unknown_driver_rolls_back(self, ledger, store, fleet, owner, admin_auth):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=1)
        with pytest.raises(NotFoundError):
            ledger.redeem(admin_auth, invite.code, "ghost-driver")
        assert store.find_fleet_invite(invite.code).used_count == 0

    def test_cannot_redeem_for_another_driver(self, ledger, fleet, owner, recruit, driver):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id)
        with pytest.raises(AuthorizationError):
            ledger.redeem(as_driver(driver), invite.code, recruit.driver_id)

    def test_unknown_code(self, ledger, recruit):
        with pytest.raises(NotFoundError):
            ledger.redeem(as_driver(recruit), "NOPE1234", recruit.driver_id)


class TestConcurrentRedemption:

    def test_single_use_invite_admits_exactly_one(self, ledger, store, clock, fleet, owner):
        """Eight drivers race for one seat; exactly one gets it."""
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=1)
        drivers = [store.insert_driver(make_driver(clock)) for _ in range(8)]

        def attempt(candidate):
            try:
                ledger.redeem(as_driver(candidate), invite.code, candidate.driver_id)
                return "joined"
            except ValidationError as e:
                return e.message

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, drivers))

        assert outcomes.count("joined") == 1
        assert all(
            outcome == "Invite has reached its maximum number of uses"
            for outcome in outcomes
            if outcome != "joined"
        )
        assert store.find_fleet_invite(invite.code).used_count == 1
        members = [store.read_driver(d.driver_id) for d in drivers]
        assert sum(1 for member in members if member.fleet_id == fleet.fleet_id) == 1

    def test_capped_invite_never_overshoots(self, ledger, store, clock, fleet, owner):
        invite = ledger.issue_invite(as_driver(owner), fleet.fleet_id, max_uses=3)
        drivers = [store.insert_driver(make_driver(clock)) for _ in range(10)]

        def attempt(candidate):
            try:
                ledger.redeem(as_driver(candidate), invite.code, candidate.driver_id)
                return True
            except ValidationError:
                return False

        with ThreadPoolExecutor(max_workers=10) as pool:
            joined = sum(pool.map(attempt, drivers))

        assert joined == 3
        assert store.find_fleet_invite(invite.code).used_count == 3
