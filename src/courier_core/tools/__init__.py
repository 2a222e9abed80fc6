"""
Outbound integrations for the courier core.

Notification delivery and route distance lookup.
"""

from courier_core.tools.distance import (
    DistanceProvider,
    DistanceUnavailableError,
    OpenRouteServiceProvider,
)
from courier_core.tools.notifier import (
    LogNotifier,
    NotificationDispatcher,
    NotificationIntent,
    NotificationKind,
    Notifier,
)

__all__ = [
    "DistanceProvider",
    "DistanceUnavailableError",
    "LogNotifier",
    "NotificationDispatcher",
    "NotificationIntent",
    "NotificationKind",
    "Notifier",
    "OpenRouteServiceProvider",
]
