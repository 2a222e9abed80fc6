"""
Unit Tests for the Load Transition Table

Run with: pytest tests/test_transitions.py -v
"""

import pytest

from courier_core.core.errors import InvalidTransitionError
from courier_core.data.models import LoadStatus
from courier_core.data.models.load import TERMINAL_STATUSES
from courier_core.services.transitions import (
    EVENT_CODES,
    TRANSITIONS,
    LoadAction,
    allowed_sources,
    next_status,
)


def test_every_action_has_edges_and_an_event_code():
    for action in LoadAction:
        assert TRANSITIONS[action], action
        assert action in EVENT_CODES, action


@pytest.mark.parametrize(
    "current, action, target",
    [
        (LoadStatus.NEW, LoadAction.REQUEST_QUOTE, LoadStatus.QUOTE_REQUESTED),
        (LoadStatus.QUOTE_REQUESTED, LoadAction.SET_QUOTE, LoadStatus.QUOTED),
        (LoadStatus.QUOTED, LoadAction.ACCEPT_QUOTE, LoadStatus.QUOTE_ACCEPTED),
        (LoadStatus.QUOTED, LoadAction.REOPEN_QUOTE, LoadStatus.NEW),
        (LoadStatus.QUOTE_ACCEPTED, LoadAction.SET_QUOTE, LoadStatus.QUOTED),
        (LoadStatus.QUOTE_ACCEPTED, LoadAction.ASSIGN_DRIVER, LoadStatus.SCHEDULED),
        (LoadStatus.REQUESTED, LoadAction.ACCEPT_LOAD, LoadStatus.SCHEDULED),
        (LoadStatus.REQUESTED, LoadAction.DENY, LoadStatus.DENIED),
        (LoadStatus.DRIVER_QUOTE_SUBMITTED, LoadAction.REJECT_DRIVER_QUOTE, LoadStatus.NEW),
        (LoadStatus.DRIVER_QUOTE_SUBMITTED, LoadAction.APPROVE_DRIVER_QUOTE, LoadStatus.SCHEDULED),
        (LoadStatus.SCHEDULED, LoadAction.RELEASE, LoadStatus.NEW),
        (LoadStatus.PICKED_UP, LoadAction.DELIVER, LoadStatus.DELIVERED),
        (LoadStatus.IN_TRANSIT, LoadAction.CANCEL, LoadStatus.CANCELLED),
        (LoadStatus.CANCELLED, LoadAction.RESTORE_TO_REQUESTED, LoadStatus.REQUESTED),
        (LoadStatus.DENIED, LoadAction.RESTORE_TO_OPEN, LoadStatus.NEW),
    ],
)
def test_legal_transitions(current, action, target):
    assert next_status(current, action) == target


def test_delivered_loads_cannot_be_cancelled():
    assert LoadStatus.DELIVERED not in allowed_sources(LoadAction.CANCEL)
    with pytest.raises(InvalidTransitionError) as exc_info:
        next_status(LoadStatus.DELIVERED, LoadAction.CANCEL)
    assert exc_info.value.actual == "DELIVERED"
    assert "SCHEDULED" in exc_info.value.expected


def test_terminal_statuses_only_exit_through_restore():
    exits = {LoadAction.RESTORE_TO_OPEN, LoadAction.RESTORE_TO_REQUESTED}
    for action in LoadAction:
        if action in exits:
            continue
        assert not any(status in TERMINAL_STATUSES for status in allowed_sources(action)), action


def test_completed_loads_are_never_restored():
    assert LoadStatus.COMPLETED not in allowed_sources(LoadAction.RESTORE_TO_OPEN)
    assert LoadStatus.COMPLETED not in allowed_sources(LoadAction.RESTORE_TO_REQUESTED)


def test_shipper_claim_keeps_status():
    for status in LoadStatus:
        if status in TERMINAL_STATUSES:
            continue
        assert next_status(status, LoadAction.SHIPPER_CLAIM) == status


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_closed_loads_cannot_be_claimed(status):
    with pytest.raises(InvalidTransitionError):
        next_status(status, LoadAction.SHIPPER_CLAIM)


def test_error_payload_is_serializable():
    with pytest.raises(InvalidTransitionError) as exc_info:
        next_status(LoadStatus.NEW, LoadAction.PICK_UP)
    assert exc_info.value.to_dict() == {
        "code": "INVALID_TRANSITION",
        "message": "Cannot pick_up a load in status NEW (allowed from: SCHEDULED)",
        "details": {"action": "pick_up", "actual_status": "NEW", "expected_statuses": ["SCHEDULED"]},
    }
