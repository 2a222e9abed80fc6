"""
Courier services.

This module contains the services behind the load lifecycle:
- Load State Machine: Lifecycle transitions, authorization and audit trail
- Rate Engine: Tiered pricing, after-hours surcharges and quote bounds
- Compliance Gate: Driver and vehicle credential checks
- Invite Ledger: Fleet creation and race-safe invite redemption
- Schedule Checker: Keeps a driver from being double-booked
- Settlement: Payee resolution and what is owed when a load closes
"""

from .base import BaseService, ServiceDecision
from .compliance import ComplianceGate, ComplianceResult
from .invite_ledger import InviteLedger, InviteLookup, RedemptionResult
from .load_state_machine import LoadStateMachine, TransitionOutcome
from .payee import FleetPayeeResolver, Payee, PayeeType
from .rate_engine import MinimumRateAdjustment, ProfitEstimate, RateEngine, RateQuote
from .schedule import ScheduleChecker, ScheduleCheckResult
from .settlement import LoadSettlement, SettlementCalculator
from .transitions import LoadAction

__all__ = [
    "BaseService",
    "ServiceDecision",
    "LoadStateMachine",
    "TransitionOutcome",
    "LoadAction",
    "RateEngine",
    "RateQuote",
    "MinimumRateAdjustment",
    "ProfitEstimate",
    "ComplianceGate",
    "ComplianceResult",
    "InviteLedger",
    "InviteLookup",
    "RedemptionResult",
    "ScheduleChecker",
    "ScheduleCheckResult",
    "FleetPayeeResolver",
    "Payee",
    "PayeeType",
    "SettlementCalculator",
    "LoadSettlement",
]
