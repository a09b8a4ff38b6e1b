"""In-process scheduling store, used by tests and the CLI demo."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from typing import AsyncIterator, Iterable, Optional

from clinic_os.scheduling.errors import ConflictError, StaleStatusError
from clinic_os.scheduling.models import (
    Appointment,
    AppointmentStatus,
    Provider,
    Scheduled,
    WaitlistEntry,
    WaitlistStatus,
    WaitlistTransition,
)
from clinic_os.scheduling.stores import SchedulingStore


class InMemorySchedulingStore(SchedulingStore):
    """Dict-backed store.

    Single writes never await between their check and their mutation, so
    they are atomic on the event loop. ``transaction()`` serializes
    callers and restores a snapshot if the block raises.
    """

    def __init__(
        self,
        providers: Iterable[Provider] = (),
        appointments: Iterable[Appointment] = (),
        entries: Iterable[WaitlistEntry] = (),
    ) -> None:
        self.providers: dict[uuid.UUID, Provider] = {p.id: p for p in providers}
        self.appointments: dict[uuid.UUID, Appointment] = {a.id: a for a in appointments}
        self.entries: dict[uuid.UUID, WaitlistEntry] = {e.id: e for e in entries}
        self._lock = asyncio.Lock()

    # Providers

    async def list_active_providers(self, tenant_id: uuid.UUID) -> list[Provider]:
        return [
            p for p in self.providers.values()
            if p.tenant_id == tenant_id and p.active
        ]

    # Appointments

    async def list_appointments(
        self,
        tenant_id: uuid.UUID,
        date_range: tuple[date, date],
        provider_id: Optional[uuid.UUID] = None,
    ) -> list[Appointment]:
        start = datetime.combine(date_range[0], time.min)
        end = datetime.combine(date_range[1] + timedelta(days=1), time.min)
        return sorted(
            (
                a for a in self.appointments.values()
                if a.tenant_id == tenant_id
                and (provider_id is None or a.provider_id == provider_id)
                and a.overlaps(start, end)
            ),
            key=lambda a: (a.start_time, a.provider_id),
        )

    async def insert_appointment_if_no_conflict(self, appointment: Appointment) -> Appointment:
        for existing in self.appointments.values():
            if (
                existing.provider_id == appointment.provider_id
                and existing.blocks_time
                and existing.overlaps(appointment.start_time, appointment.end_time)
            ):
                raise ConflictError(
                    f"Provider {appointment.provider_id} already booked "
                    f"{existing.start_time:%Y-%m-%d %H:%M}-{existing.end_time:%H:%M}"
                )
        stored = appointment.model_copy(update={"created_at": appointment.created_at or datetime.now()})
        self.appointments[stored.id] = stored
        return stored

    async def cancel_appointment(self, tenant_id: uuid.UUID, appointment_id: uuid.UUID) -> Optional[Appointment]:
        appt = self.appointments.get(appointment_id)
        if appt is None or appt.tenant_id != tenant_id:
            return None
        cancelled = appt.model_copy(update={"status": AppointmentStatus.CANCELLED})
        self.appointments[appointment_id] = cancelled
        return cancelled

    # Waiting list

    async def get_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[WaitlistEntry]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.tenant_id != tenant_id:
            return None
        return entry

    async def list_entries(
        self,
        tenant_id: uuid.UUID,
        status: Optional[WaitlistStatus] = None,
    ) -> list[WaitlistEntry]:
        return [
            e for e in self.entries.values()
            if e.tenant_id == tenant_id and (status is None or e.status == status)
        ]

    async def set_status(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        expected: WaitlistStatus,
        transition: WaitlistTransition,
    ) -> WaitlistEntry:
        entry = self.entries.get(entry_id)
        if entry is None or entry.tenant_id != tenant_id:
            raise StaleStatusError(f"Waitlist entry {entry_id} not found")
        if entry.status != expected:
            raise StaleStatusError(
                f"Waitlist entry {entry_id} is '{entry.status.value}', expected '{expected.value}'",
                current_status=entry.status.value,
            )
        update: dict = {"status": transition.status, "updated_at": datetime.now()}
        if isinstance(transition, Scheduled):
            update["appointment_id"] = transition.appointment_id
        updated = entry.model_copy(update=update)
        self.entries[entry_id] = updated
        return updated

    # Unit of work

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._lock:
            appointments = dict(self.appointments)
            entries = dict(self.entries)
            try:
                yield
            except BaseException:
                self.appointments = appointments
                self.entries = entries
                raise
