"""
Unit Tests for the Schedule Checker

Run with: pytest tests/test_schedule.py -v
"""

from datetime import timedelta

import pytest

from courier_core.core.errors import ValidationError
from courier_core.data.models import LoadRequest, LoadStatus
from courier_core.services.schedule import ConflictSeverity, ScheduleChecker


@pytest.fixture
def checker(config, clock):
    return ScheduleChecker(config_manager=config, clock=clock)


@pytest.fixture
def make_load(clock):
    """Load held by driver-1, starting ``start`` hours from now."""

    def _make(start=None, hours=2, status=LoadStatus.SCHEDULED, code="CC-HELD0001"):
        ready = clock() + timedelta(hours=start) if start is not None else None
        return LoadRequest(
            tracking_code=code,
            status=status,
            shipper_id="shipper-1",
            driver_id="driver-1",
            pickup_facility_id="FAC-1",
            pickup_address="1 Lab Way",
            dropoff_facility_id="FAC-2",
            dropoff_address="2 Hospital Rd",
            ready_time=ready,
            delivery_deadline=ready + timedelta(hours=hours) if ready else None,
        )

    return _make


def test_same_window_blocks(checker, make_load):
    held = make_load(start=1)
    result = checker.check("driver-1", make_load(start=1, code="CC-NEW00001"), [held])

    assert result.conflicts[0].overlap_minutes == 180
    assert result.conflicts[0].severity == ConflictSeverity.HIGH
    assert result.blocking == result.conflicts
    assert result.warnings == []


@pytest.mark.parametrize(
    "gap_minutes,overlap,severity",
    [
        (0, 60, ConflictSeverity.MEDIUM),
        (30, 30, ConflictSeverity.MEDIUM),
        (45, 15, ConflictSeverity.LOW),
        (55, 5, ConflictSeverity.LOW),
    ],
)
def test_back_to_back_severity(checker, make_load, gap_minutes, overlap, severity):
    """Two buffered windows overlap by 60 minutes minus the gap between loads."""
    held = make_load(start=1)
    following = make_load(start=3 + gap_minutes / 60, code="CC-NEW00001")
    result = checker.check("driver-1", following, [held])

    assert result.conflicts[0].overlap_minutes == overlap
    assert result.conflicts[0].severity == severity
    assert result.warnings == [f"Time overlap: {overlap} minutes overlap with load CC-HELD0001"]


def test_gap_beyond_buffers_is_clear(checker, make_load):
    result = checker.check("driver-1", make_load(start=4, code="CC-NEW00001"), [make_load(start=1)])
    assert not result.has_conflict


def test_load_without_window_never_conflicts(checker, make_load):
    assert not checker.check("driver-1", make_load(code="CC-NEW00001"), [make_load(start=1)]).has_conflict
    assert not checker.check("driver-1", make_load(start=1, code="CC-NEW00001"), [make_load()]).has_conflict


def test_ignores_the_load_itself_and_inactive_loads(checker, make_load):
    load = make_load(start=1)
    delivered = make_load(start=1, status=LoadStatus.DELIVERED, code="CC-DONE0001")
    assert not checker.check("driver-1", load, [load, delivered]).has_conflict


def test_require_raises_on_blocking_overlap(checker, make_load):
    held = make_load(start=1)
    with pytest.raises(ValidationError, match="already booked") as exc_info:
        checker.require("driver-1", make_load(start=2, code="CC-NEW00001"), [held])
    assert exc_info.value.details["conflicting_loads"] == [held.load_id]


def test_require_passes_minor_overlaps_through(checker, make_load):
    result = checker.require("driver-1", make_load(start=3.5, code="CC-NEW00001"), [make_load(start=1)])
    assert result.warnings == ["Time overlap: 30 minutes overlap with load CC-HELD0001"]


def test_thresholds_come_from_config(config, clock, make_load):
    config.business_config["lifecycle"]["schedule_blocking_overlap_minutes"] = 240
    relaxed = ScheduleChecker(config_manager=config, clock=clock)
    result = relaxed.require("driver-1", make_load(start=1, code="CC-NEW00001"), [make_load(start=1)])
    assert result.conflicts[0].severity == ConflictSeverity.MEDIUM
