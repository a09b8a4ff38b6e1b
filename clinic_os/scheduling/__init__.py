"""Scheduling and waiting-list resolution engine for clinic-os."""

from clinic_os.scheduling.errors import (
    AlreadyProcessed,
    ConflictError,
    NoAvailableSlot,
    NotFound,
    SchedulingError,
    SlotNoLongerAvailable,
    StaleStatusError,
    StorageFailure,
)
from clinic_os.scheduling.memory import InMemorySchedulingStore
from clinic_os.scheduling.models import (
    Appointment,
    AppointmentStatus,
    AssignmentResult,
    BatchResult,
    Provider,
    Slot,
    WaitlistEntry,
    WaitlistStatus,
)
from clinic_os.scheduling.scheduler import SchedulingService
from clinic_os.scheduling.waitlist import WaitlistResolver

__all__ = [
    "AlreadyProcessed",
    "Appointment",
    "AppointmentStatus",
    "AssignmentResult",
    "BatchResult",
    "ConflictError",
    "InMemorySchedulingStore",
    "NoAvailableSlot",
    "NotFound",
    "Provider",
    "SchedulingError",
    "SchedulingService",
    "Slot",
    "SlotNoLongerAvailable",
    "StaleStatusError",
    "StorageFailure",
    "WaitlistEntry",
    "WaitlistResolver",
    "WaitlistStatus",
]
