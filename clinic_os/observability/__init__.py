"""Observability module for scheduling telemetry."""

from clinic_os.observability.events import (
    AssignmentEvent,
    BatchEvent,
    EventType,
    ObservabilityEvent,
    SlotsComputedEvent,
)
from clinic_os.observability.logger import ObservabilityLogger, get_observability_logger

__all__ = [
    "AssignmentEvent",
    "BatchEvent",
    "EventType",
    "ObservabilityEvent",
    "ObservabilityLogger",
    "SlotsComputedEvent",
    "get_observability_logger",
]
