"""
Settlement - what is owed, and to whom, when a load closes.

This service:
- Settles completed loads at the agreed quote (0.00 when none was agreed)
- Settles cancelled loads according to the cancellation billing rule
- Routes the money to the driver or their fleet through the payee resolver
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel

from courier_core.core.errors import ValidationError
from courier_core.data.models.driver import Driver
from courier_core.data.models.load import BillingRule, LoadRequest, LoadStatus
from courier_core.services.base import BaseService
from courier_core.services.payee import FleetPayeeResolver, Payee
from courier_core.services.rate_engine import ZERO, to_money


class LoadSettlement(BaseModel):
    """Settlement for a single load."""

    load_id: str
    driver_id: str
    payee: Payee
    gross_amount: Decimal
    billable_amount: Decimal
    billing_rule: BillingRule
    basis: str  # "completed" or "cancelled"
    settled_at: datetime


class SettlementCalculator(BaseService):
    """Computes load settlements."""

    def __init__(self, payee_resolver: Optional[FleetPayeeResolver] = None, **kwargs: Any) -> None:
        """Initialize the settlement calculator."""
        super().__init__(service_name="settlement", **kwargs)

        self.payee_resolver = payee_resolver or FleetPayeeResolver()
        self.settings = self.config_manager.get_settlement_config()

    def _gross(self, load: LoadRequest) -> Decimal:
        if load.quote_amount is None:
            self.logger.warning("settled_without_quote", load_id=load.load_id, status=load.status.value)
            return ZERO
        return load.quote_amount

    def for_completed(self, load: LoadRequest, driver: Driver) -> LoadSettlement:
        """
        Settle a completed load at its full quote.

        A load that was never quoted settles at 0.00 and is left for
        back-office invoicing.

        Raises:
            ValidationError: If the load is not delivered or completed
        """
        if load.status not in (LoadStatus.DELIVERED, LoadStatus.COMPLETED):
            raise ValidationError(
                f"Only delivered loads can be settled as completed (status {load.status.value})",
                details={"load_id": load.load_id, "status": load.status.value},
            )

        gross = self._gross(load)
        settlement = LoadSettlement(
            load_id=load.load_id,
            driver_id=driver.driver_id,
            payee=self.payee_resolver.payee(driver),
            gross_amount=gross,
            billable_amount=gross,
            billing_rule=BillingRule.BILLABLE,
            basis="completed",
            settled_at=self.now(),
        )
        self.logger.info(
            "load_settled",
            load_id=load.load_id,
            payee_type=settlement.payee.type.value,
            payee_id=settlement.payee.id,
            billable_amount=str(settlement.billable_amount),
        )
        return settlement

    def for_cancelled(self, load: LoadRequest, driver: Driver) -> LoadSettlement:
        """
        Settle a cancelled load according to its billing rule.

        BILLABLE pays the full quote, PARTIAL the configured percentage, and
        NOT_BILLABLE (or no rule) nothing.
        """
        rule = load.cancellation_billing_rule or BillingRule.NOT_BILLABLE
        gross = self._gross(load)

        if rule == BillingRule.BILLABLE:
            billable = gross
        elif rule == BillingRule.PARTIAL:
            billable = to_money(gross * self.settings.partial_cancellation_percent / Decimal("100"))
        else:
            billable = ZERO

        settlement = LoadSettlement(
            load_id=load.load_id,
            driver_id=driver.driver_id,
            payee=self.payee_resolver.payee(driver),
            gross_amount=gross,
            billable_amount=billable,
            billing_rule=rule,
            basis="cancelled",
            settled_at=self.now(),
        )
        self.logger.info(
            "cancellation_settled",
            load_id=load.load_id,
            billing_rule=rule.value,
            billable_amount=str(billable),
        )
        return settlement
