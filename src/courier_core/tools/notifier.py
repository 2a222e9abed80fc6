"""
Notification delivery for load lifecycle events.

The state machine only produces NotificationIntent values; delivery happens
here, after the state change has committed, and a failed delivery never
undoes or blocks the transition.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    """Notification templates understood by the delivery layer."""

    LOAD_CANCELLED = "load_cancelled"
    LOAD_DENIED = "load_denied"
    QUOTE_SUBMITTED = "quote_submitted"
    DRIVER_ASSIGNED = "driver_assigned"
    QUOTE_READY = "quote_ready"
    QUOTE_ACCEPTED = "quote_accepted"
    DRIVER_QUOTE_APPROVED = "driver_quote_approved"
    DRIVER_QUOTE_REJECTED = "driver_quote_rejected"
    LOAD_RELEASED = "load_released"
    LOAD_RESTORED = "load_restored"
    LOAD_STATUS_CHANGED = "load_status_changed"


class NotificationIntent(BaseModel):
    """A notification the caller should send once the transition is committed."""

    kind: NotificationKind
    recipient_address: str
    recipient_type: str  # "shipper" or "driver"
    payload: dict[str, Any] = Field(default_factory=dict)


class Notifier(ABC):
    """Outbound channel (e-mail, SMS, push)."""

    @abstractmethod
    def notify(self, kind: NotificationKind, recipient_address: str, payload: dict[str, Any]) -> None:
        """Send one notification. May raise; the dispatcher handles failures."""


class LogNotifier(Notifier):
    """Notifier that writes notifications to the structured log."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.logger = logger or structlog.get_logger(component="notifier")

    def notify(self, kind: NotificationKind, recipient_address: str, payload: dict[str, Any]) -> None:
        self.logger.info(
            "notification_sent",
            kind=kind.value,
            recipient=recipient_address,
            payload=payload,
        )


class NotificationDispatcher:
    """
    Delivers notification intents best-effort.

    Failures are logged and swallowed so they never affect load state.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.notifier = notifier or LogNotifier()
        self.logger = logger or structlog.get_logger(component="notification_dispatcher")

    def dispatch(self, intents: list[NotificationIntent]) -> int:
        """
        Deliver every intent.

        Args:
            intents: Notifications produced by a committed transition

        Returns:
            Number of notifications delivered successfully
        """
        delivered = 0
        for intent in intents:
            try:
                self.notifier.notify(intent.kind, intent.recipient_address, intent.payload)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    "notification_failed",
                    kind=intent.kind.value,
                    recipient=intent.recipient_address,
                    load_id=intent.payload.get("load_id"),
                    error=str(e),
                )
        return delivered
