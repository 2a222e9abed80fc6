"""
Unit Tests for Notification Dispatch

Run with: pytest tests/test_notifier.py -v
"""

from structlog.testing import capture_logs

from conftest import FailingNotifier, RecordingNotifier
from courier_core.tools.notifier import (
    LogNotifier,
    NotificationDispatcher,
    NotificationIntent,
    NotificationKind,
)


def intent(kind=NotificationKind.LOAD_CANCELLED, address="lab@stlukes.example"):
    return NotificationIntent(
        kind=kind,
        recipient_address=address,
        recipient_type="shipper",
        payload={"load_id": "load-1", "tracking_code": "CC-ABCD1234"},
    )


def test_dispatch_delivers_every_intent():
    notifier = RecordingNotifier()
    delivered = NotificationDispatcher(notifier).dispatch([intent(), intent(NotificationKind.QUOTE_READY)])
    assert delivered == 2
    assert [kind for kind, _, _ in notifier.sent] == [NotificationKind.LOAD_CANCELLED, NotificationKind.QUOTE_READY]


def test_failures_are_logged_not_raised():
    with capture_logs() as logs:
        delivered = NotificationDispatcher(FailingNotifier()).dispatch([intent()])
    assert delivered == 0
    failure = next(entry for entry in logs if entry["event"] == "notification_failed")
    assert failure["log_level"] == "error"
    assert failure["load_id"] == "load-1"
    assert "SMTP" in failure["error"]


def test_log_notifier_writes_structured_event():
    with capture_logs() as logs:
        NotificationDispatcher(LogNotifier()).dispatch([intent()])
    sent = next(entry for entry in logs if entry["event"] == "notification_sent")
    assert sent["kind"] == "load_cancelled"
    assert sent["recipient"] == "lab@stlukes.example"
