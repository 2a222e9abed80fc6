"""
Load lifecycle transition table.

Every externally triggered action maps a source status to exactly one target
status. Anything not in the table is rejected before any side effect.
"""

from enum import Enum

from courier_core.core.errors import InvalidTransitionError
from courier_core.data.models.load import TERMINAL_STATUSES, LoadStatus, TrackingEventCode


class LoadAction(str, Enum):
    """Actions that move a load through its lifecycle."""

    REQUEST_QUOTE = "request_quote"
    REQUEST_DRIVER = "request_driver"
    SET_QUOTE = "set_quote"
    REOPEN_QUOTE = "reopen_quote"
    ACCEPT_QUOTE = "accept_quote"
    ASSIGN_DRIVER = "assign_driver"
    ACCEPT_LOAD = "accept_load"
    CLAIM_FOR_QUOTE = "claim_for_quote"
    SUBMIT_DRIVER_QUOTE = "submit_driver_quote"
    APPROVE_DRIVER_QUOTE = "approve_driver_quote"
    REJECT_DRIVER_QUOTE = "reject_driver_quote"
    DENY = "deny"
    RELEASE = "release"
    PICK_UP = "pick_up"
    START_TRANSIT = "start_transit"
    DELIVER = "deliver"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RESTORE_TO_OPEN = "restore_to_open"
    RESTORE_TO_REQUESTED = "restore_to_requested"
    SHIPPER_CLAIM = "shipper_claim"


S = LoadStatus

_CANCELLABLE = (
    S.NEW,
    S.QUOTE_REQUESTED,
    S.REQUESTED,
    S.QUOTED,
    S.QUOTE_ACCEPTED,
    S.DRIVER_QUOTE_PENDING,
    S.DRIVER_QUOTE_SUBMITTED,
    S.SCHEDULED,
    S.PICKED_UP,
    S.IN_TRANSIT,
)

TRANSITIONS: dict[LoadAction, dict[LoadStatus, LoadStatus]] = {
    LoadAction.REQUEST_QUOTE: {S.NEW: S.QUOTE_REQUESTED},
    LoadAction.REQUEST_DRIVER: {S.NEW: S.REQUESTED},
    LoadAction.SET_QUOTE: {
        S.NEW: S.QUOTED,
        S.QUOTE_REQUESTED: S.QUOTED,
        S.REQUESTED: S.QUOTED,
        S.QUOTED: S.QUOTED,
        S.QUOTE_ACCEPTED: S.QUOTED,
    },
    LoadAction.REOPEN_QUOTE: {S.QUOTED: S.NEW},
    LoadAction.ACCEPT_QUOTE: {S.QUOTED: S.QUOTE_ACCEPTED},
    LoadAction.ASSIGN_DRIVER: {
        S.NEW: S.SCHEDULED,
        S.QUOTED: S.SCHEDULED,
        S.QUOTE_ACCEPTED: S.SCHEDULED,
    },
    LoadAction.ACCEPT_LOAD: {
        S.NEW: S.SCHEDULED,
        S.QUOTED: S.SCHEDULED,
        S.QUOTE_ACCEPTED: S.SCHEDULED,
        S.REQUESTED: S.SCHEDULED,
    },
    LoadAction.CLAIM_FOR_QUOTE: {
        S.NEW: S.DRIVER_QUOTE_PENDING,
        S.QUOTE_REQUESTED: S.DRIVER_QUOTE_PENDING,
    },
    LoadAction.SUBMIT_DRIVER_QUOTE: {S.DRIVER_QUOTE_PENDING: S.DRIVER_QUOTE_SUBMITTED},
    LoadAction.APPROVE_DRIVER_QUOTE: {S.DRIVER_QUOTE_SUBMITTED: S.SCHEDULED},
    LoadAction.REJECT_DRIVER_QUOTE: {S.DRIVER_QUOTE_SUBMITTED: S.NEW},
    LoadAction.DENY: {S.REQUESTED: S.DENIED},
    LoadAction.RELEASE: {S.SCHEDULED: S.NEW},
    LoadAction.PICK_UP: {S.SCHEDULED: S.PICKED_UP},
    LoadAction.START_TRANSIT: {S.PICKED_UP: S.IN_TRANSIT},
    LoadAction.DELIVER: {S.PICKED_UP: S.DELIVERED, S.IN_TRANSIT: S.DELIVERED},
    LoadAction.COMPLETE: {S.DELIVERED: S.COMPLETED},
    LoadAction.CANCEL: {status: S.CANCELLED for status in _CANCELLABLE},
    LoadAction.RESTORE_TO_OPEN: {S.CANCELLED: S.NEW, S.DENIED: S.NEW},
    LoadAction.RESTORE_TO_REQUESTED: {S.CANCELLED: S.REQUESTED},
    # Audit only: the status does not change
    LoadAction.SHIPPER_CLAIM: {
        status: status for status in LoadStatus if status not in TERMINAL_STATUSES
    },
}

# Tracking event written for each action
EVENT_CODES: dict[LoadAction, TrackingEventCode] = {
    LoadAction.REQUEST_QUOTE: TrackingEventCode.QUOTE_REQUESTED,
    LoadAction.REQUEST_DRIVER: TrackingEventCode.DRIVER_REQUESTED,
    LoadAction.SET_QUOTE: TrackingEventCode.PRICE_QUOTED,
    LoadAction.REOPEN_QUOTE: TrackingEventCode.QUOTE_REJECTED,
    LoadAction.ACCEPT_QUOTE: TrackingEventCode.SHIPPER_CONFIRMED,
    LoadAction.ASSIGN_DRIVER: TrackingEventCode.DRIVER_ASSIGNED,
    LoadAction.ACCEPT_LOAD: TrackingEventCode.DRIVER_ASSIGNED,
    LoadAction.CLAIM_FOR_QUOTE: TrackingEventCode.DRIVER_QUOTE_REQUESTED,
    LoadAction.SUBMIT_DRIVER_QUOTE: TrackingEventCode.PRICE_QUOTED,
    LoadAction.APPROVE_DRIVER_QUOTE: TrackingEventCode.SHIPPER_CONFIRMED,
    LoadAction.REJECT_DRIVER_QUOTE: TrackingEventCode.QUOTE_REJECTED,
    LoadAction.DENY: TrackingEventCode.DENIED,
    LoadAction.RELEASE: TrackingEventCode.DRIVER_RELEASED,
    LoadAction.PICK_UP: TrackingEventCode.PICKED_UP,
    LoadAction.START_TRANSIT: TrackingEventCode.IN_TRANSIT,
    LoadAction.DELIVER: TrackingEventCode.DELIVERED,
    LoadAction.COMPLETE: TrackingEventCode.PAPERWORK_COMPLETED,
    LoadAction.CANCEL: TrackingEventCode.CANCELLED,
    LoadAction.RESTORE_TO_OPEN: TrackingEventCode.RESTORED,
    LoadAction.RESTORE_TO_REQUESTED: TrackingEventCode.RESTORED,
    LoadAction.SHIPPER_CLAIM: TrackingEventCode.SHIPPER_CONFIRMED,
}

# Actions allowed to start from a terminal status
_TERMINAL_EXITS = frozenset({LoadAction.RESTORE_TO_OPEN, LoadAction.RESTORE_TO_REQUESTED})


def _check_table() -> None:
    missing = [action.value for action in LoadAction if not TRANSITIONS.get(action)]
    if missing:
        raise RuntimeError(f"Transition table has no entries for: {', '.join(missing)}")

    unmapped = [action.value for action in LoadAction if action not in EVENT_CODES]
    if unmapped:
        raise RuntimeError(f"No tracking event code for: {', '.join(unmapped)}")

    for action, edges in TRANSITIONS.items():
        if action in _TERMINAL_EXITS:
            continue
        leaked = [source.value for source in edges if source in TERMINAL_STATUSES]
        if leaked:
            raise RuntimeError(f"{action.value} may not start from terminal statuses {leaked}")


_check_table()


def allowed_sources(action: LoadAction) -> list[LoadStatus]:
    """Statuses from which ``action`` is legal."""
    return list(TRANSITIONS[action])


def next_status(current: LoadStatus, action: LoadAction) -> LoadStatus:
    """
    Resolve the target status for ``action`` from ``current``.

    Raises:
        InvalidTransitionError: If the action is not legal from ``current``
    """
    target = TRANSITIONS[action].get(current)
    if target is None:
        raise InvalidTransitionError(
            action.value,
            current.value,
            [status.value for status in allowed_sources(action)],
        )
    return target
