"""Typed errors raised by the scheduling engine and its stores."""

import uuid
from typing import Optional


class SchedulingError(Exception):
    """Base exception for scheduling errors."""

    code = "scheduling_error"

    def __init__(self, message: str, entry_id: Optional[uuid.UUID] = None):
        super().__init__(message)
        self.message = message
        self.entry_id = entry_id


class NotFound(SchedulingError):
    """The waiting-list entry does not exist for this tenant."""

    code = "not_found"


class AlreadyProcessed(SchedulingError):
    """The entry is no longer in the `waiting` status."""

    code = "already_processed"


class NoAvailableSlot(SchedulingError):
    """The candidate pool is empty, even after preference fallback."""

    code = "no_available_slot"


class SlotNoLongerAvailable(SchedulingError):
    """The chosen slot was taken between the scan and the commit."""

    code = "slot_no_longer_available"


class StorageFailure(SchedulingError):
    """A collaborator store failed; the original error is chained."""

    code = "storage_failure"


# Store-level conditional write failures. The engine translates these.


class ConflictError(Exception):
    """Insert refused: an overlapping non-cancelled appointment exists."""

    pass


class StaleStatusError(Exception):
    """Status write refused: the entry is not in the expected status."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
