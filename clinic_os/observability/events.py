"""Structured observability events for scheduling telemetry."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of observability events."""

    SLOTS_COMPUTED = "slots_computed"
    AUTO_ASSIGN_START = "auto_assign_start"
    AUTO_ASSIGN_SUCCESS = "auto_assign_success"
    AUTO_ASSIGN_ERROR = "auto_assign_error"
    BATCH_RESOLVED = "batch_resolved"


class ObservabilityEvent(BaseModel):
    """Base class for all observability events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_id: Optional[str] = None
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SlotsComputedEvent(ObservabilityEvent):
    """Event for an available-slot computation."""

    event_type: EventType = EventType.SLOTS_COMPUTED
    window_days: int
    providers: int = 0
    candidate_slots: int = 0
    free_slots: int = 0


class AssignmentEvent(ObservabilityEvent):
    """Event for one auto-assignment attempt."""

    entry_id: str
    priority: Optional[int] = None

    # Populated on success
    appointment_id: Optional[str] = None
    provider_id: Optional[str] = None
    slot_start: Optional[datetime] = None
    honored_preferences: Optional[bool] = None
    candidate_slots: Optional[int] = None

    # Populated on error
    error_type: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class BatchEvent(ObservabilityEvent):
    """Event for a whole waiting-list resolution pass."""

    event_type: EventType = EventType.BATCH_RESOLVED
    entries: int = 0
    assigned: int = 0
    failed: int = 0
    failures_by_code: dict[str, int] = Field(default_factory=dict)
