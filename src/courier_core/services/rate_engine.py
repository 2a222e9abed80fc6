"""
Rate Engine - deterministic pricing for courier loads.

This service:
- Normalizes service types (legacy aliases price as ROUTINE)
- Prices a load from distance, service tier and time of request
- Applies the after-hours surcharge (flat fee for short runs, per-mile otherwise)
- Enforces a driver's minimum rate per mile
- Estimates driver profit for advisory display
- Checks driver-submitted quotes against plausibility bounds
"""

from datetime import datetime
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from time import time
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from courier_core.core.errors import ValidationError
from courier_core.data.models.load import ServiceType
from courier_core.services.base import BaseService, ServiceDecision
from courier_core.tools.distance import DistanceProvider, DistanceUnavailableError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Number) -> Decimal:
    """Convert without float artifacts (2.1 stays 2.1)."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class RateQuote(BaseModel):
    """Priced quote for a load."""

    distance_miles: Decimal
    service_type: ServiceType  # canonical tier

    base_rate: Decimal
    after_hours_surcharge: Decimal
    total_rate: Decimal
    rate_per_mile: Decimal

    is_after_hours: bool
    suggested_rate_min: Decimal
    suggested_rate_max: Decimal

    evaluated_at: datetime
    delivery_deadline: Optional[datetime] = None
    breakdown: dict[str, Any]


class MinimumRateAdjustment(BaseModel):
    """Result of enforcing a driver's minimum rate per mile."""

    original_rate: Decimal
    rate: Decimal
    rate_per_mile: Decimal
    minimum_rate_per_mile: Optional[Decimal] = None
    rate_adjusted_for_minimum: bool


class ProfitEstimate(BaseModel):
    """Advisory profit estimate for a driver."""

    rate: Decimal
    distance_miles: Decimal
    estimated_minutes: int
    estimated_costs: Decimal
    profit: Decimal
    profit_margin_percent: Decimal
    rate_per_mile: Decimal
    rate_per_hour: Decimal
    meets_minimum_rate: bool
    minimum_rate_required: Decimal


class RateEngine(BaseService):
    """
    Rate Engine for pricing courier loads.

    Pure computation over configuration; the only I/O is the optional
    distance lookup in ``quote_route``.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the rate engine."""
        super().__init__(service_name="rate_engine", **kwargs)

        # Load business configuration
        self.pricing = self.config_manager.get_pricing_config()
        self.business_tz = ZoneInfo(self.pricing.timezone)

    def parse_service_type(self, service_type: Union[ServiceType, str]) -> ServiceType:
        """Parse a service type name (case-insensitive), raising ValidationError if unknown."""
        if isinstance(service_type, ServiceType):
            return service_type
        name = str(service_type).strip().upper()
        try:
            return ServiceType(name)
        except ValueError:
            raise ValidationError(
                f"Unknown service type: {service_type}",
                details={"service_type": str(service_type)},
            ) from None

    def normalize_service_type(self, service_type: Union[ServiceType, str]) -> ServiceType:
        """
        Map a service type to its canonical pricing tier.

        Args:
            service_type: Service type or legacy alias (case-insensitive)

        Returns:
            Canonical ServiceType (ROUTINE, STAT or CRITICAL_STAT)

        Raises:
            ValidationError: If the service type is unknown
        """
        requested = self.parse_service_type(service_type)
        canonical = self.pricing.aliases.get(requested.value, requested.value)

        if canonical not in self.pricing.tiers:
            raise ValidationError(
                f"Service type {requested.value} has no pricing tier",
                details={"service_type": requested.value, "known": sorted(self.pricing.tiers)},
            )
        return ServiceType(canonical)

    def after_hours_reasons(self, moment: datetime) -> list[str]:
        """
        Explain why ``moment`` falls outside business hours.

        Naive datetimes are read as business-local time.

        Returns:
            Empty list during business hours, otherwise any of
            "weekend", "outside_business_hours", "holiday"
        """
        if moment.tzinfo is None:
            local = moment.replace(tzinfo=self.business_tz)
        else:
            local = moment.astimezone(self.business_tz)
        hours = self.pricing.business_hours

        reasons = []
        if local.isoweekday() not in hours.weekdays:
            reasons.append("weekend")
        if not hours.start_hour <= local.hour < hours.end_hour:
            reasons.append("outside_business_hours")
        if local.strftime("%m-%d") in self.pricing.holidays:
            reasons.append("holiday")
        return reasons

    def is_after_hours(self, moment: datetime) -> bool:
        """True on weekends, holidays, or outside the business-hours window."""
        return bool(self.after_hours_reasons(moment))

    def quote(
        self,
        distance_miles: Number,
        service_type: Union[ServiceType, str],
        ready_time: Optional[datetime] = None,
        delivery_deadline: Optional[datetime] = None,
    ) -> RateQuote:
        """
        Price a load.

        Args:
            distance_miles: Route distance in miles (>= 0)
            service_type: Service type or legacy alias
            ready_time: When the load is ready; defaults to now
            delivery_deadline: Recorded on the quote, does not affect price

        Returns:
            RateQuote with base rate, surcharge, total and per-mile rate

        Raises:
            ValidationError: For negative distance or unknown service type
        """
        start_time = time()

        distance = to_decimal(distance_miles)
        if distance < 0:
            raise ValidationError("Distance cannot be negative", details={"distance_miles": str(distance)})

        requested = self.parse_service_type(service_type)
        tier_name = self.normalize_service_type(service_type)
        tier = self.pricing.tiers[tier_name.value]
        evaluated_at = ready_time or self.now()

        reasons = self.after_hours_reasons(evaluated_at)
        base_rate = to_money(distance * tier.target_per_mile)

        surcharge = ZERO
        surcharge_method = None
        if reasons and distance > 0:
            after_hours = self.pricing.after_hours
            if distance < after_hours.flat_fee_threshold_miles:
                surcharge = to_money(after_hours.flat_fee)
                surcharge_method = "flat_fee"
            else:
                surcharge = to_money(distance * after_hours.per_mile)
                surcharge_method = "per_mile"

        total_rate = base_rate + surcharge
        rate_per_mile = to_money(total_rate / distance) if distance > 0 else ZERO

        result = RateQuote(
            distance_miles=distance,
            service_type=tier_name,
            base_rate=base_rate,
            after_hours_surcharge=surcharge,
            total_rate=total_rate,
            rate_per_mile=rate_per_mile,
            is_after_hours=bool(reasons),
            suggested_rate_min=to_money(distance * tier.min_per_mile) + surcharge,
            suggested_rate_max=to_money(distance * tier.max_per_mile) + surcharge,
            evaluated_at=evaluated_at,
            delivery_deadline=delivery_deadline,
            breakdown={
                "per_mile_rate": str(tier.target_per_mile),
                "after_hours_reasons": reasons,
                "surcharge_method": surcharge_method,
            },
        )

        self.log_decision(
            ServiceDecision(
                timestamp=self.now(),
                service_name=self.service_name,
                decision_type="rate_quote",
                input_data={
                    "distance_miles": str(distance),
                    "service_type": requested.value,
                    "evaluated_at": evaluated_at.isoformat(),
                },
                output_data={
                    "tier": tier_name.value,
                    "total_rate": str(total_rate),
                    "after_hours_reasons": reasons,
                },
                execution_time_seconds=time() - start_time,
            )
        )

        return result

    def apply_minimum(
        self,
        rate: Number,
        distance_miles: Number,
        driver_minimum_rate_per_mile: Optional[Number] = None,
    ) -> MinimumRateAdjustment:
        """
        Raise a rate to the driver's floor when it falls below it.

        Args:
            rate: Proposed total rate
            distance_miles: Route distance in miles
            driver_minimum_rate_per_mile: Driver's floor; None means no floor

        Returns:
            MinimumRateAdjustment; ``rate`` is never below floor x distance
        """
        rate = to_decimal(rate)
        distance = to_decimal(distance_miles)
        floor = to_decimal(driver_minimum_rate_per_mile) if driver_minimum_rate_per_mile is not None else None

        adjusted_rate = rate
        adjusted = False
        if floor is not None and distance > 0 and rate < floor * distance:
            adjusted_rate = (floor * distance).quantize(CENT, rounding=ROUND_CEILING)
            adjusted = True
            self.logger.info(
                "rate_adjusted_for_minimum",
                original_rate=str(rate),
                adjusted_rate=str(adjusted_rate),
                minimum_rate_per_mile=str(floor),
            )

        return MinimumRateAdjustment(
            original_rate=rate,
            rate=adjusted_rate,
            rate_per_mile=to_money(adjusted_rate / distance) if distance > 0 else ZERO,
            minimum_rate_per_mile=floor,
            rate_adjusted_for_minimum=adjusted,
        )

    def estimate_profit(
        self,
        rate: Number,
        distance_miles: Number,
        minimum_rate_per_mile: Optional[Number] = None,
    ) -> ProfitEstimate:
        """
        Estimate profit from configured operating costs.

        Args:
            rate: Total rate for the load
            distance_miles: Route distance in miles
            minimum_rate_per_mile: Driver's floor; defaults to the configured minimum

        Returns:
            ProfitEstimate (advisory only)
        """
        rate = to_decimal(rate)
        distance = to_decimal(distance_miles)
        assumptions = self.pricing.profit
        minimum = (
            to_decimal(minimum_rate_per_mile)
            if minimum_rate_per_mile is not None
            else assumptions.minimum_rate_per_mile
        )

        hours = distance / assumptions.average_speed_mph
        estimated_costs = to_money(distance * assumptions.cost_per_mile + hours * assumptions.cost_per_hour)
        profit = rate - estimated_costs
        margin = (profit / rate * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP) if rate > 0 else Decimal("0.0")
        rate_per_mile = to_money(rate / distance) if distance > 0 else ZERO
        rate_per_hour = to_money(rate / hours) if hours > 0 else ZERO

        return ProfitEstimate(
            rate=rate,
            distance_miles=distance,
            estimated_minutes=int((hours * 60).to_integral_value(rounding=ROUND_HALF_UP)),
            estimated_costs=estimated_costs,
            profit=profit,
            profit_margin_percent=margin,
            rate_per_mile=rate_per_mile,
            rate_per_hour=rate_per_hour,
            meets_minimum_rate=rate_per_mile >= minimum,
            minimum_rate_required=to_money(minimum * distance),
        )

    def validate_quote_bounds(
        self,
        amount: Number,
        service_type: Union[ServiceType, str],
        distance_miles: Optional[Number] = None,
    ) -> None:
        """
        Check a driver-submitted quote for plausibility.

        Args:
            amount: Quoted total
            service_type: Service type of the load
            distance_miles: Route distance when known; enables per-mile bounds

        Raises:
            ValidationError: Listing every bound the amount violates (never clamps)
        """
        amount = to_decimal(amount)
        tier = self.normalize_service_type(service_type)
        bounds = self.pricing.quote_bounds.get(tier.value)

        problems = []
        if amount <= 0:
            problems.append("Quote amount must be greater than zero")

        if bounds is not None:
            if amount < bounds.min_amount:
                problems.append(f"Quote amount {amount} is below the minimum of {bounds.min_amount}")
            if amount > bounds.max_amount:
                problems.append(f"Quote amount {amount} exceeds the maximum of {bounds.max_amount}")

            distance = to_decimal(distance_miles) if distance_miles is not None else None
            if distance is not None and distance > 0:
                per_mile = amount / distance
                if bounds.min_per_mile is not None and per_mile < bounds.min_per_mile:
                    problems.append(
                        f"Quote of {to_money(per_mile)}/mile is below the minimum of {bounds.min_per_mile}/mile"
                    )
                if bounds.max_per_mile is not None and per_mile > bounds.max_per_mile:
                    problems.append(
                        f"Quote of {to_money(per_mile)}/mile exceeds the maximum of {bounds.max_per_mile}/mile"
                    )

        if problems:
            raise ValidationError(
                "; ".join(problems),
                details={"amount": str(amount), "service_type": tier.value, "errors": problems},
            )

    def quote_route(
        self,
        provider: DistanceProvider,
        origin: str,
        destination: str,
        service_type: Union[ServiceType, str],
        ready_time: Optional[datetime] = None,
        delivery_deadline: Optional[datetime] = None,
    ) -> Optional[RateQuote]:
        """
        Look up the route distance and price it.

        Args:
            provider: Distance provider to ask for road miles
            origin: Pickup address
            destination: Dropoff address
            service_type: Service type or legacy alias
            ready_time: When the load is ready; defaults to now
            delivery_deadline: Recorded on the quote

        Returns:
            RateQuote, or None when the distance provider fails or times out
        """
        try:
            miles = provider.distance_miles(origin, destination)
        except DistanceUnavailableError as e:
            self.logger.warning(
                "distance_unavailable",
                error=str(e),
                origin=origin,
                destination=destination,
            )
            return None

        return self.quote(to_money(to_decimal(miles)), service_type, ready_time, delivery_deadline)
