"""
Schedule Check - keeps a driver from being double-booked.

Compares the time window of a load a driver is about to take against the
loads they already hold. Each window is padded by a buffer; long overlaps
block the assignment, short ones are reported as warnings.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from courier_core.core.errors import ValidationError
from courier_core.data.models.load import LoadRequest, LoadStatus
from courier_core.services.base import BaseService

# Statuses in which a load occupies its driver
ACTIVE_STATUSES = frozenset({LoadStatus.SCHEDULED, LoadStatus.PICKED_UP, LoadStatus.IN_TRANSIT})


class ConflictSeverity(str, Enum):
    """How badly two load windows overlap."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ScheduleConflict(BaseModel):
    """Overlap with one load the driver already holds."""

    load_id: str
    tracking_code: str
    overlap_minutes: int
    severity: ConflictSeverity

    @property
    def message(self) -> str:
        return f"Time overlap: {self.overlap_minutes} minutes overlap with load {self.tracking_code}"


class ScheduleCheckResult(BaseModel):
    """Outcome of a double-booking check."""

    driver_id: str
    load_id: str
    conflicts: list[ScheduleConflict] = Field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    @property
    def blocking(self) -> list[ScheduleConflict]:
        return [conflict for conflict in self.conflicts if conflict.severity == ConflictSeverity.HIGH]

    @property
    def warnings(self) -> list[str]:
        return [conflict.message for conflict in self.conflicts if conflict.severity != ConflictSeverity.HIGH]


class ScheduleChecker(BaseService):
    """Detects overlapping load windows for a driver."""

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the schedule checker."""
        super().__init__(service_name="schedule_checker", **kwargs)

        lifecycle = self.config_manager.get_lifecycle_config()
        self.buffer = timedelta(minutes=lifecycle.schedule_buffer_minutes)
        self.blocking_overlap_minutes = lifecycle.schedule_blocking_overlap_minutes
        self.medium_overlap_minutes = lifecycle.schedule_medium_overlap_minutes

    def _window(self, load: LoadRequest) -> tuple[datetime, datetime]:
        return load.ready_time - self.buffer, load.delivery_deadline + self.buffer

    def _severity(self, overlap_minutes: int) -> ConflictSeverity:
        if overlap_minutes > self.blocking_overlap_minutes:
            return ConflictSeverity.HIGH
        if overlap_minutes > self.medium_overlap_minutes:
            return ConflictSeverity.MEDIUM
        return ConflictSeverity.LOW

    def check(self, driver_id: str, load: LoadRequest, held_loads: list[LoadRequest]) -> ScheduleCheckResult:
        """
        Compare ``load`` against the loads the driver already holds.

        Loads without both a ready time and a delivery deadline have no
        window and never conflict.

        Args:
            driver_id: Driver about to take the load
            load: Load being assigned or accepted
            held_loads: Loads currently held by the driver

        Returns:
            ScheduleCheckResult listing every overlap
        """
        result = ScheduleCheckResult(driver_id=driver_id, load_id=load.load_id)
        if load.ready_time is None or load.delivery_deadline is None:
            return result

        start, end = self._window(load)
        for held in held_loads:
            if held.load_id == load.load_id or held.status not in ACTIVE_STATUSES:
                continue
            if held.ready_time is None or held.delivery_deadline is None:
                continue

            held_start, held_end = self._window(held)
            if start < held_end and end > held_start:
                overlap = min(end, held_end) - max(start, held_start)
                minutes = round(overlap.total_seconds() / 60)
                result.conflicts.append(
                    ScheduleConflict(
                        load_id=held.load_id,
                        tracking_code=held.tracking_code,
                        overlap_minutes=minutes,
                        severity=self._severity(minutes),
                    )
                )

        if result.has_conflict:
            self.logger.info(
                "schedule_conflicts_found",
                driver_id=driver_id,
                load_id=load.load_id,
                conflicts=[conflict.message for conflict in result.conflicts],
            )
        return result

    def require(self, driver_id: str, load: LoadRequest, held_loads: list[LoadRequest]) -> ScheduleCheckResult:
        """
        Like ``check`` but raise on any high-severity overlap.

        Raises:
            ValidationError: If the driver is already booked for the window
        """
        result = self.check(driver_id, load, held_loads)
        if result.blocking:
            raise ValidationError(
                f"Driver {driver_id} is already booked: "
                + "; ".join(conflict.message for conflict in result.blocking),
                details={
                    "driver_id": driver_id,
                    "conflicting_loads": [conflict.load_id for conflict in result.blocking],
                },
            )
        return result
