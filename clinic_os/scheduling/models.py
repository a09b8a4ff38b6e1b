"""Pydantic models for the scheduling engine."""

import datetime as dt
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, model_validator

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class WaitlistStatus(str, Enum):
    """Waiting-list entry statuses."""

    WAITING = "waiting"
    CONTACTED = "contacted"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class TimeRange(BaseModel):
    """A half-open wall-clock range [start, end) within one day."""

    start: dt.time
    end: dt.time

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.end <= self.start:
            raise ValueError("time range end must be after start")
        return self

    def contains(self, start: dt.time, end: dt.time) -> bool:
        return start >= self.start and end <= self.end

    def overlaps(self, start: dt.time, end: dt.time) -> bool:
        return start < self.end and end > self.start


class DayHours(TimeRange):
    """Working hours for one weekday, with optional breaks."""

    breaks: list[TimeRange] = []


class Provider(BaseModel):
    """A bookable clinic staff member."""

    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    active: bool = True
    working_hours: dict[str, DayHours] = {}

    def hours_for(self, day: dt.date) -> Optional[DayHours]:
        """Configured hours for *day*, or None when the provider is off."""
        return self.working_hours.get(WEEKDAY_NAMES[day.weekday()])


class Appointment(BaseModel):
    """A booked appointment."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: uuid.UUID
    provider_id: uuid.UUID
    patient_id: uuid.UUID
    start_time: dt.datetime
    end_time: dt.datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    title: Optional[str] = None
    notes: Optional[str] = None
    waitlist_entry_id: Optional[uuid.UUID] = None
    is_auto_scheduled: bool = False
    created_at: Optional[dt.datetime] = None

    @property
    def blocks_time(self) -> bool:
        """Cancelled appointments never occupy provider time."""
        return self.status != AppointmentStatus.CANCELLED

    def overlaps(self, start: dt.datetime, end: dt.datetime) -> bool:
        return start < self.end_time and end > self.start_time


class Slot(BaseModel):
    """A candidate, not-yet-committed unit of provider time."""

    provider_id: uuid.UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time

    @computed_field  # type: ignore[prop-decorator]
    @property
    def datetime(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.start_time)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def end_datetime(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.end_time)

    @property
    def sort_key(self) -> tuple[dt.datetime, uuid.UUID]:
        return (self.datetime, self.provider_id)


class WaitlistEntry(BaseModel):
    """A patient's request for an appointment that could not be booked yet."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: uuid.UUID
    patient_id: uuid.UUID
    preferred_provider_id: Optional[uuid.UUID] = None
    preferred_date: Optional[dt.date] = None
    preferred_time_start: Optional[dt.time] = None
    preferred_time_end: Optional[dt.time] = None
    priority: int = 1
    status: WaitlistStatus = WaitlistStatus.WAITING
    procedure_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    appointment_id: Optional[uuid.UUID] = None
    created_at: dt.datetime = Field(default_factory=dt.datetime.now)
    updated_at: Optional[dt.datetime] = None

    @property
    def preferred_time_range(self) -> Optional[TimeRange]:
        """The preferred range, only when both bounds are set."""
        if self.preferred_time_start is None or self.preferred_time_end is None:
            return None
        if self.preferred_time_end <= self.preferred_time_start:
            return None
        return TimeRange(start=self.preferred_time_start, end=self.preferred_time_end)


class PreferenceMatch(BaseModel):
    """Output of the preference matcher."""

    slots: list[Slot] = []
    honored_preferences: bool = False


class AssignmentResult(BaseModel):
    """Result of a successful auto-assignment."""

    entry_id: uuid.UUID
    appointment: Appointment
    slot: Slot
    honored_preferences: bool


class BatchOutcome(BaseModel):
    """Outcome of one entry inside a batch resolution pass."""

    entry_id: uuid.UUID
    priority: int
    assigned: bool
    error_code: Optional[str] = None
    error: Optional[str] = None
    result: Optional[AssignmentResult] = None


class BatchResult(BaseModel):
    """Result of resolving the whole waiting list."""

    outcomes: list[BatchOutcome] = []

    @property
    def assigned(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.assigned]

    @property
    def failed(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if not o.assigned]


# ---------------------------------------------------------------------------
# Waiting-list transitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Scheduled:
    """waiting -> scheduled, bound to the appointment that was created."""

    appointment_id: uuid.UUID
    status: WaitlistStatus = WaitlistStatus.SCHEDULED


@dataclass(frozen=True)
class Contacted:
    """waiting -> contacted (manual)."""

    status: WaitlistStatus = WaitlistStatus.CONTACTED


@dataclass(frozen=True)
class Cancelled:
    """waiting/contacted -> cancelled (manual)."""

    status: WaitlistStatus = WaitlistStatus.CANCELLED


@dataclass(frozen=True)
class Requeued:
    """contacted -> waiting (manual)."""

    status: WaitlistStatus = WaitlistStatus.WAITING


WaitlistTransition = Scheduled | Contacted | Cancelled | Requeued

# Manual transitions allowed from each status; `scheduled` is reachable
# only through auto-assignment.
MANUAL_TRANSITIONS: dict[WaitlistStatus, tuple[WaitlistStatus, ...]] = {
    WaitlistStatus.WAITING: (WaitlistStatus.CONTACTED, WaitlistStatus.CANCELLED),
    WaitlistStatus.CONTACTED: (WaitlistStatus.WAITING, WaitlistStatus.CANCELLED),
    WaitlistStatus.SCHEDULED: (),
    WaitlistStatus.CANCELLED: (),
}


def manual_transition(target: WaitlistStatus) -> WaitlistTransition:
    """Build the typed patch for a manual status change."""
    if target == WaitlistStatus.CONTACTED:
        return Contacted()
    if target == WaitlistStatus.CANCELLED:
        return Cancelled()
    if target == WaitlistStatus.WAITING:
        return Requeued()
    raise ValueError(f"'{target.value}' cannot be set manually")
