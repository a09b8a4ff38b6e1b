"""Waiting-list resolution: available slots, auto-assignment and batch runs."""

import logging
import time
import uuid
from datetime import date, timedelta
from typing import Callable, Optional

from clinic_os.observability import ObservabilityLogger, get_observability_logger
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
from clinic_os.scheduling.models import (
    Appointment,
    AppointmentStatus,
    AssignmentResult,
    BatchOutcome,
    BatchResult,
    Scheduled,
    Slot,
    WaitlistEntry,
    WaitlistStatus,
)
from clinic_os.scheduling.scheduler import SchedulingService
from clinic_os.scheduling.stores import SchedulingStore

logger = logging.getLogger(__name__)

AUTO_SCHEDULED_NOTE = "Auto-scheduled from the waiting list."


class WaitlistResolver:
    """Turns waiting-list entries into booked appointments.

    The resolver never retries: a lost race surfaces as
    :class:`SlotNoLongerAvailable` and the caller decides what to do next.
    """

    def __init__(
        self,
        store: SchedulingStore,
        service: Optional[SchedulingService] = None,
        today: Optional[Callable[[], date]] = None,
        window_days: int = 7,
        obs: Optional[ObservabilityLogger] = None,
    ) -> None:
        self.store = store
        self.service = service or SchedulingService()
        self._today = today or date.today
        self.window_days = window_days
        self.obs = obs or get_observability_logger()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def compute_available_slots(
        self,
        tenant_id: uuid.UUID,
        window_days: Optional[int] = None,
        start_date: Optional[date] = None,
    ) -> list[Slot]:
        """Free slots of all active providers over the rolling window."""
        started = time.time()
        days = window_days or self.window_days
        start = start_date or self._today()
        end = start + timedelta(days=days - 1)

        providers = await self.store.list_active_providers(tenant_id)
        appointments = await self.store.list_appointments(tenant_id, (start, end))

        candidates = self.service.generate_slots(providers, start, days)
        free = self.service.filter_conflicts(candidates, appointments)

        self.obs.log_slots_computed(
            tenant_id=str(tenant_id),
            window_days=days,
            providers=len(providers),
            candidate_slots=len(candidates),
            free_slots=len(free),
            duration_ms=(time.time() - started) * 1000,
        )
        return free

    # ------------------------------------------------------------------
    # Auto-assignment
    # ------------------------------------------------------------------

    async def auto_assign(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> AssignmentResult:
        """Book the best free slot for a waiting entry and mark it scheduled.

        Raises:
            NotFound: unknown entry for this tenant
            AlreadyProcessed: entry is not ``waiting``
            NoAvailableSlot: no free slot in the window, even after fallback
            SlotNoLongerAvailable: the chosen slot was booked concurrently
            StorageFailure: a store failed; nothing was changed
        """
        with self.obs.assignment_run(str(tenant_id), str(entry_id)) as event:
            entry = await self.store.get_entry(tenant_id, entry_id)
            if entry is None:
                raise NotFound(f"Waitlist entry {entry_id} not found", entry_id=entry_id)
            event.priority = entry.priority

            if entry.status != WaitlistStatus.WAITING:
                raise AlreadyProcessed(
                    f"Waitlist entry {entry_id} is already '{entry.status.value}'",
                    entry_id=entry_id,
                )

            free = await self.compute_available_slots(tenant_id)
            match = self.service.match_preferences(free, entry)
            slot = self.service.select_slot(match.slots)
            if slot is None:
                raise NoAvailableSlot(
                    f"No available slot in the next {self.window_days} days",
                    entry_id=entry_id,
                )

            appointment = await self._commit(entry, slot)

            event.appointment_id = str(appointment.id)
            event.provider_id = str(slot.provider_id)
            event.slot_start = slot.datetime
            event.honored_preferences = match.honored_preferences
            event.candidate_slots = len(match.slots)

        logger.info(
            f"Auto-assigned waitlist entry {entry_id} to provider {slot.provider_id} "
            f"at {slot.datetime:%Y-%m-%d %H:%M} (preferences honored={match.honored_preferences})"
        )
        return AssignmentResult(
            entry_id=entry.id,
            appointment=appointment,
            slot=slot,
            honored_preferences=match.honored_preferences,
        )

    async def _commit(self, entry: WaitlistEntry, slot: Slot) -> Appointment:
        """Insert the appointment and flip the entry in one unit of work."""
        appointment = Appointment(
            tenant_id=entry.tenant_id,
            provider_id=slot.provider_id,
            patient_id=entry.patient_id,
            start_time=slot.datetime,
            end_time=slot.end_datetime,
            status=AppointmentStatus.SCHEDULED,
            title="Waiting list appointment",
            notes=f"{AUTO_SCHEDULED_NOTE} {entry.notes or ''}".strip(),
            waitlist_entry_id=entry.id,
            is_auto_scheduled=True,
        )
        try:
            async with self.store.transaction():
                stored = await self.store.insert_appointment_if_no_conflict(appointment)
                await self.store.set_status(
                    entry.tenant_id,
                    entry.id,
                    expected=WaitlistStatus.WAITING,
                    transition=Scheduled(appointment_id=stored.id),
                )
        except ConflictError as e:
            raise SlotNoLongerAvailable(
                f"Slot {slot.datetime:%Y-%m-%d %H:%M} is no longer available: {e}",
                entry_id=entry.id,
            ) from e
        except StaleStatusError as e:
            raise AlreadyProcessed(str(e), entry_id=entry.id) from e
        return stored

    # ------------------------------------------------------------------
    # Batch resolution
    # ------------------------------------------------------------------

    async def resolve_waitlist(self, tenant_id: uuid.UUID) -> BatchResult:
        """Auto-assign every waiting entry in queue order.

        Per-entry scheduling errors are collected. A storage failure aborts
        the pass and propagates; the caller rolls its session back, which
        undoes the assignments already made in this pass.
        """
        started = time.time()
        entries = await self.store.list_entries(tenant_id, WaitlistStatus.WAITING)
        ordered = self.service.order_waitlist(entries)

        result = BatchResult()
        failures: dict[str, int] = {}
        for entry in ordered:
            try:
                assignment = await self.auto_assign(tenant_id, entry.id)
            except StorageFailure:
                raise
            except SchedulingError as e:
                failures[e.code] = failures.get(e.code, 0) + 1
                result.outcomes.append(
                    BatchOutcome(
                        entry_id=entry.id,
                        priority=entry.priority,
                        assigned=False,
                        error_code=e.code,
                        error=e.message,
                    )
                )
                continue
            result.outcomes.append(
                BatchOutcome(
                    entry_id=entry.id,
                    priority=entry.priority,
                    assigned=True,
                    result=assignment,
                )
            )

        self.obs.log_batch(
            tenant_id=str(tenant_id),
            entries=len(ordered),
            assigned=len(result.assigned),
            failures_by_code=failures,
            duration_ms=(time.time() - started) * 1000,
        )
        return result
