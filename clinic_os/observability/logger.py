"""Observability logger for structured scheduling telemetry."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from clinic_os.observability.events import (
    AssignmentEvent,
    BatchEvent,
    EventType,
    ObservabilityEvent,
    SlotsComputedEvent,
)

logger = logging.getLogger(__name__)


class ObservabilityLogger:
    """Central logger for scheduling events.

    Writes structured events to JSON Lines files for later analysis.
    """

    _instance: Optional["ObservabilityLogger"] = None

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
        max_message_length: int = 200,
    ):
        """Initialize observability logger.

        Args:
            log_dir: Directory for log files (default: data/logs)
            enabled: Whether logging is enabled
            max_message_length: Max length for error messages
        """
        self.enabled = enabled
        self.max_message_length = max_message_length

        if log_dir is None:
            log_dir = Path("data/logs")
        self.log_dir = log_dir
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_files: dict[str, Path] = {
            "slots": self.log_dir / "slot_queries.jsonl",
            "assignments": self.log_dir / "auto_assignments.jsonl",
            "batches": self.log_dir / "batch_resolutions.jsonl",
        }

        # Event callbacks for real-time monitoring
        self._callbacks: list[Callable[[ObservabilityEvent], None]] = []

    @classmethod
    def get_instance(cls) -> "ObservabilityLogger":
        """Get or create singleton instance."""
        if cls._instance is None:
            from clinic_os.config import get_settings

            settings = get_settings()
            cls._instance = cls(
                log_dir=settings.log_dir,
                enabled=settings.observability_enabled,
            )
        return cls._instance

    def generate_request_id(self) -> str:
        """Generate a unique request ID."""
        return str(uuid.uuid4())[:8]

    def add_callback(self, callback: Callable[[ObservabilityEvent], None]) -> None:
        """Add callback for real-time event monitoring."""
        self._callbacks.append(callback)

    def _write_event(self, event: ObservabilityEvent, log_type: str) -> None:
        """Write event to appropriate log file."""
        if not self.enabled:
            return

        try:
            log_file = self._log_files.get(log_type)
            if log_file:
                with open(log_file, "a") as f:
                    f.write(event.model_dump_json() + "\n")

            for callback in self._callbacks:
                try:
                    callback(event)
                except Exception as e:
                    logger.warning(f"Observability callback failed: {e}")

        except Exception as e:
            logger.warning(f"Failed to write observability event: {e}")

    # Slot queries

    def log_slots_computed(
        self,
        tenant_id: str,
        window_days: int,
        providers: int,
        candidate_slots: int,
        free_slots: int,
        duration_ms: Optional[float] = None,
    ) -> None:
        """Log an available-slot computation."""
        event = SlotsComputedEvent(
            tenant_id=tenant_id,
            window_days=window_days,
            providers=providers,
            candidate_slots=candidate_slots,
            free_slots=free_slots,
            duration_ms=duration_ms,
        )
        self._write_event(event, "slots")

    # Auto-assignment

    @contextmanager
    def assignment_run(
        self,
        tenant_id: str,
        entry_id: str,
        request_id: Optional[str] = None,
    ):
        """Context manager for logging one auto-assignment.

        Usage:
            with obs.assignment_run(tenant, entry_id) as event:
                result = await resolver.auto_assign(...)
                event.appointment_id = str(result.appointment.id)
        """
        start_time = time.time()
        request_id = request_id or self.generate_request_id()

        event = AssignmentEvent(
            event_type=EventType.AUTO_ASSIGN_START,
            tenant_id=tenant_id,
            entry_id=entry_id,
            request_id=request_id,
        )

        try:
            yield event
            event.event_type = EventType.AUTO_ASSIGN_SUCCESS

        except Exception as e:
            event.event_type = EventType.AUTO_ASSIGN_ERROR
            event.error_type = type(e).__name__
            event.error_code = getattr(e, "code", None)
            event.error_message = str(e)[: self.max_message_length]
            raise

        finally:
            event.duration_ms = (time.time() - start_time) * 1000
            self._write_event(event, "assignments")

    def log_batch(
        self,
        tenant_id: str,
        entries: int,
        assigned: int,
        failures_by_code: dict[str, int],
        duration_ms: Optional[float] = None,
    ) -> None:
        """Log a waiting-list resolution pass."""
        event = BatchEvent(
            tenant_id=tenant_id,
            entries=entries,
            assigned=assigned,
            failed=sum(failures_by_code.values()),
            failures_by_code=failures_by_code,
            duration_ms=duration_ms,
        )
        self._write_event(event, "batches")

    # Utility methods

    def get_recent_events(
        self,
        log_type: str,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Read recent events from a log file."""
        log_file = self._log_files.get(log_type)
        if not log_file or not log_file.exists():
            return []

        events = []
        with open(log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self, log_type: str) -> dict[str, Any]:
        """Get basic statistics for a log type."""
        events = self.get_recent_events(log_type, limit=1000)
        if not events:
            return {"total": 0}

        total = len(events)
        errors = sum(1 for e in events if "error" in e.get("event_type", ""))
        avg_duration = sum(e.get("duration_ms") or 0 for e in events) / total

        return {
            "total": total,
            "errors": errors,
            "error_rate": errors / total if total > 0 else 0,
            "avg_duration_ms": avg_duration,
        }


def get_observability_logger() -> ObservabilityLogger:
    """Get the global observability logger instance."""
    return ObservabilityLogger.get_instance()
