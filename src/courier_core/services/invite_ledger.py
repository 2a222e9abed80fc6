"""
Invite Ledger - fleet creation, invite issuance and race-safe redemption.

Redemption is a single transaction of two conditional updates: the invite's
use counter only moves while it is unexpired and under its cap, and the
driver only joins while still independent. If either update touches zero
rows the whole transaction rolls back, so ``used_count`` can never pass
``max_uses`` however many drivers redeem at once.
"""

import secrets
import string
from datetime import timedelta
from typing import Any, Optional

from pydantic import BaseModel

from courier_core.core.errors import AuthorizationError, NotFoundError, ValidationError
from courier_core.data.models.auth import AuthContext, UserType
from courier_core.data.models.driver import FLEET_MANAGER_ROLES, Fleet, FleetInvite, FleetRole
from courier_core.data.store import PersistenceStore, StoreTransaction
from courier_core.services.base import BaseService

INVITE_CODE_LENGTH = 8
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    """Random upper-case alphanumeric invite code."""
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    """Codes are case-insensitive; stored upper-case."""
    return code.strip().upper()


class RedemptionResult(BaseModel):
    """Outcome of a successful invite redemption."""

    driver_id: str
    fleet_id: str
    role: FleetRole
    invite_code: str


class InviteLookup(BaseModel):
    """Read-only view of an invite's validity."""

    code: str
    fleet_id: str
    fleet_name: str
    role: FleetRole
    is_valid: bool
    reason: Optional[str] = None
    remaining_uses: Optional[int] = None


class InviteLedger(BaseService):
    """Invite Ledger for fleet membership."""

    def __init__(self, store: PersistenceStore, **kwargs: Any) -> None:
        """
        Initialize the invite ledger.

        Args:
            store: Persistence store
            **kwargs: Passed to BaseService (config_manager, logger, clock)
        """
        super().__init__(service_name="invite_ledger", **kwargs)
        self.store = store

    def _require_fleet_manager(self, tx: StoreTransaction, auth: AuthContext, fleet_id: str) -> None:
        if auth.is_admin:
            return
        if auth.user_type == UserType.DRIVER:
            actor = tx.read_driver(auth.user_id)
            if actor.fleet_id == fleet_id and actor.fleet_role in FLEET_MANAGER_ROLES:
                return
        raise AuthorizationError("Only the fleet owner, a fleet admin or an administrator may manage invites")

    def create_fleet(
        self,
        auth: AuthContext,
        owner_id: str,
        name: str,
        tax_id: Optional[str] = None,
    ) -> Fleet:
        """
        Create a fleet and make ``owner_id`` its OWNER.

        Args:
            auth: Caller; must be the owner themselves or an administrator
            owner_id: Driver who will own the fleet
            name: Fleet name
            tax_id: Optional tax identifier

        Returns:
            The created Fleet

        Raises:
            AuthorizationError: If the caller may not act for ``owner_id``
            ValidationError: If the owner already belongs to a fleet
            NotFoundError: If the owner does not exist
        """
        if not auth.is_admin and auth.user_id != owner_id:
            raise AuthorizationError("Drivers can only create a fleet for themselves")
        if not name.strip():
            raise ValidationError("Fleet name is required")

        fleet = Fleet(name=name.strip(), owner_id=owner_id, tax_id=tax_id, created_at=self.now())

        def _create(tx: StoreTransaction) -> Fleet:
            tx.read_driver(owner_id)
            tx.insert_fleet(fleet)
            if not tx.join_fleet(owner_id, fleet.fleet_id, FleetRole.OWNER):
                raise ValidationError(
                    "Driver already belongs to a fleet",
                    details={"driver_id": owner_id},
                )
            return fleet

        created = self.store.run_transaction(_create)
        self.logger.info("fleet_created", fleet_id=created.fleet_id, owner_id=owner_id)
        return created

    def issue_invite(
        self,
        auth: AuthContext,
        fleet_id: str,
        role: FleetRole = FleetRole.DRIVER,
        max_uses: Optional[int] = None,
        expires_in_days: Optional[int] = None,
    ) -> FleetInvite:
        """
        Issue a new invite code for a fleet.

        Args:
            auth: Caller; fleet OWNER/ADMIN or an administrator
            fleet_id: Fleet the invite admits drivers to
            role: Role granted on redemption (DRIVER or ADMIN)
            max_uses: Optional cap on redemptions
            expires_in_days: Optional lifetime in days

        Returns:
            The stored FleetInvite
        """
        if expires_in_days is not None and expires_in_days <= 0:
            raise ValidationError("expires_in_days must be positive")

        now = self.now()
        try:
            invite = FleetInvite(
                code=generate_invite_code(),
                fleet_id=fleet_id,
                role=role,
                max_uses=max_uses,
                expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
                created_at=now,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid invite: {e}") from e

        def _issue(tx: StoreTransaction) -> FleetInvite:
            tx.read_fleet(fleet_id)
            self._require_fleet_manager(tx, auth, fleet_id)
            return tx.insert_fleet_invite(invite)

        issued = self.store.run_transaction(_issue)
        self.logger.info(
            "invite_issued",
            fleet_id=fleet_id,
            role=role.value,
            max_uses=max_uses,
            expires_at=issued.expires_at.isoformat() if issued.expires_at else None,
        )
        return issued

    def lookup(self, code: str) -> InviteLookup:
        """
        Check whether an invite code can still be redeemed.

        Raises:
            NotFoundError: If no invite has this code
        """
        code = normalize_invite_code(code)

        def _lookup(tx: StoreTransaction) -> tuple[FleetInvite, Fleet]:
            invite = tx.find_fleet_invite(code)
            if invite is None:
                raise NotFoundError("Invite", code)
            return invite, tx.read_fleet(invite.fleet_id)

        invite, fleet = self.store.run_transaction(_lookup)

        reason = None
        if invite.is_expired(self.now()):
            reason = "Invite has expired"
        elif invite.is_exhausted:
            reason = "Invite has reached its maximum number of uses"

        return InviteLookup(
            code=invite.code,
            fleet_id=fleet.fleet_id,
            fleet_name=fleet.name,
            role=invite.role,
            is_valid=reason is None,
            reason=reason,
            remaining_uses=(invite.max_uses - invite.used_count) if invite.max_uses is not None else None,
        )

    def redeem(self, auth: AuthContext, code: str, driver_id: str) -> RedemptionResult:
        """
        Redeem an invite code, adding the driver to the invite's fleet.

        Args:
            auth: Caller; must be the driver themselves or an administrator
            code: Invite code (case-insensitive)
            driver_id: Driver joining the fleet

        Returns:
            RedemptionResult with the fleet and role granted

        Raises:
            AuthorizationError: If the caller may not act for ``driver_id``
            NotFoundError: If the invite or driver does not exist
            ValidationError: If the invite is expired or exhausted, or the
                driver already belongs to a fleet
        """
        if not auth.is_admin and auth.user_id != driver_id:
            raise AuthorizationError("Drivers can only redeem invites for themselves")

        code = normalize_invite_code(code)
        now = self.now()

        def _redeem(tx: StoreTransaction) -> RedemptionResult:
            if not tx.claim_invite_use(code, now):
                invite = tx.find_fleet_invite(code)
                if invite is None:
                    raise NotFoundError("Invite", code)
                if invite.is_expired(now):
                    raise ValidationError("Invite has expired", details={"code": code})
                raise ValidationError(
                    "Invite has reached its maximum number of uses",
                    details={"code": code, "max_uses": invite.max_uses},
                )

            invite = tx.find_fleet_invite(code)
            if not tx.join_fleet(driver_id, invite.fleet_id, invite.role):
                # Rolls back the use claimed above
                driver = tx.read_driver(driver_id)
                raise ValidationError(
                    "Driver already belongs to a fleet",
                    details={"driver_id": driver.driver_id, "fleet_id": driver.fleet_id},
                )

            return RedemptionResult(
                driver_id=driver_id,
                fleet_id=invite.fleet_id,
                role=invite.role,
                invite_code=code,
            )

        try:
            result = self.store.run_transaction(_redeem)
        except (ValidationError, NotFoundError) as e:
            self.logger.info("invite_redemption_rejected", code=code, driver_id=driver_id, reason=e.message)
            raise

        self.logger.info(
            "invite_redeemed",
            code=code,
            driver_id=driver_id,
            fleet_id=result.fleet_id,
            role=result.role.value,
        )
        return result
