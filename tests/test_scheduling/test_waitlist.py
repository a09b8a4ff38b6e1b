"""Tests for WaitlistResolver against the in-memory store."""

import asyncio
import json
from datetime import datetime, time, timedelta

import pytest

from clinic_os.observability import ObservabilityLogger
from clinic_os.scheduling import (
    AlreadyProcessed,
    Appointment,
    AppointmentStatus,
    InMemorySchedulingStore,
    NoAvailableSlot,
    NotFound,
    SchedulingService,
    SlotNoLongerAvailable,
    StorageFailure,
    WaitlistResolver,
    WaitlistStatus,
)
from clinic_os.scheduling.models import Contacted
from clinic_os.scheduling.waitlist import AUTO_SCHEDULED_NOTE
from tests.conftest import (
    OTHER_TENANT_ID,
    PATIENT_ID,
    PROVIDER_A,
    PROVIDER_B,
    TENANT_ID,
    TODAY,
    make_entry,
    make_provider,
)


def _booked(hour: int, provider_id=PROVIDER_A, day=TODAY, minutes: int = 60, **kwargs) -> Appointment:
    start = datetime.combine(day, time(hour))
    return Appointment(
        tenant_id=TENANT_ID,
        provider_id=provider_id,
        patient_id=PATIENT_ID,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        **kwargs,
    )


def _resolver(store, service=None, window_days: int = 7, obs=None) -> WaitlistResolver:
    return WaitlistResolver(
        store,
        service=service,
        today=lambda: TODAY,
        window_days=window_days,
        obs=obs or ObservabilityLogger(enabled=False),
    )


def _single_slot_resolver(store) -> WaitlistResolver:
    """One provider-hour per provider: 08:00-09:00 today."""
    return _resolver(store, service=SchedulingService(open_hour=8, close_hour=9), window_days=1)


def _no_overlaps(store: InMemorySchedulingStore) -> bool:
    live = [a for a in store.appointments.values() if a.blocks_time]
    for i, a in enumerate(live):
        for b in live[i + 1:]:
            if a.provider_id == b.provider_id and a.overlaps(b.start_time, b.end_time):
                return False
    return True


# ------------------------------------------------------------------ slots

class TestComputeAvailableSlots:
    async def test_full_window_without_bookings(self):
        store = InMemorySchedulingStore(providers=[make_provider(PROVIDER_A), make_provider(PROVIDER_B)])

        slots = await _resolver(store).compute_available_slots(TENANT_ID)

        assert len(slots) == 2 * 10 * 7
        assert slots[0].date == TODAY

    async def test_booked_hours_are_excluded_and_cancelled_are_not(self):
        store = InMemorySchedulingStore(
            providers=[make_provider()],
            appointments=[
                _booked(10),
                _booked(11, status=AppointmentStatus.CANCELLED),
            ],
        )

        slots = await _resolver(store).compute_available_slots(TENANT_ID, window_days=1)

        starts = [s.start_time for s in slots]
        assert time(10) not in starts
        assert time(11) in starts
        assert len(slots) == 9

    async def test_cancelling_frees_the_slot(self):
        booked = _booked(8)
        store = InMemorySchedulingStore(providers=[make_provider()], appointments=[booked])
        resolver = _resolver(store)

        before = await resolver.compute_available_slots(TENANT_ID, window_days=1)
        await store.cancel_appointment(TENANT_ID, booked.id)
        after = await resolver.compute_available_slots(TENANT_ID, window_days=1)

        assert len(before) == 9
        assert len(after) == 10
        assert after[0].start_time == time(8)

    async def test_other_tenants_providers_are_invisible(self):
        store = InMemorySchedulingStore(
            providers=[make_provider(PROVIDER_A), make_provider(PROVIDER_B, tenant_id=OTHER_TENANT_ID)]
        )

        slots = await _resolver(store).compute_available_slots(TENANT_ID, window_days=1)

        assert {s.provider_id for s in slots} == {PROVIDER_A}


# ------------------------------------------------------------ auto-assign

class TestAutoAssign:
    async def test_picks_earliest_free_slot(self):
        entry = make_entry()
        store = InMemorySchedulingStore(
            providers=[make_provider()],
            appointments=[_booked(10)],
            entries=[entry],
        )

        result = await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert result.slot.date == TODAY
        assert result.slot.start_time == time(8)
        assert result.appointment.start_time == datetime.combine(TODAY, time(8))
        assert result.appointment.end_time == datetime.combine(TODAY, time(9))

    async def test_books_appointment_and_marks_entry_scheduled(self):
        entry = make_entry(notes="Prefers mornings")
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])

        result = await _resolver(store).auto_assign(TENANT_ID, entry.id)

        stored_entry = store.entries[entry.id]
        appointment = store.appointments[result.appointment.id]
        assert stored_entry.status == WaitlistStatus.SCHEDULED
        assert stored_entry.appointment_id == appointment.id
        assert appointment.waitlist_entry_id == entry.id
        assert appointment.patient_id == PATIENT_ID
        assert appointment.is_auto_scheduled is True
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.notes.startswith(AUTO_SCHEDULED_NOTE)
        assert "Prefers mornings" in appointment.notes

    async def test_honors_preferences(self):
        entry = make_entry(
            preferred_provider_id=PROVIDER_B,
            preferred_date=TODAY + timedelta(days=2),
            preferred_time_start=time(14),
            preferred_time_end=time(16),
        )
        store = InMemorySchedulingStore(
            providers=[make_provider(PROVIDER_A), make_provider(PROVIDER_B)],
            appointments=[_booked(14, PROVIDER_B, TODAY + timedelta(days=2))],
            entries=[entry],
        )

        result = await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert result.honored_preferences is True
        assert result.slot.provider_id == PROVIDER_B
        assert result.slot.date == TODAY + timedelta(days=2)
        assert result.slot.start_time == time(15)

    async def test_falls_back_when_preferences_cannot_be_met(self):
        entry = make_entry(preferred_date=TODAY + timedelta(days=20))
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])

        result = await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert result.honored_preferences is False
        assert result.slot.date == TODAY
        assert result.slot.start_time == time(8)

    async def test_equal_times_go_to_lowest_provider_id(self):
        entry = make_entry()
        store = InMemorySchedulingStore(
            providers=[make_provider(PROVIDER_B), make_provider(PROVIDER_A)],
            entries=[entry],
        )

        result = await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert result.slot.provider_id == PROVIDER_A

    async def test_is_deterministic(self):
        results = []
        for _ in range(2):
            entry = make_entry()
            store = InMemorySchedulingStore(
                providers=[make_provider(PROVIDER_B), make_provider(PROVIDER_A)],
                appointments=[_booked(8), _booked(9, PROVIDER_B)],
                entries=[entry],
            )
            result = await _resolver(store).auto_assign(TENANT_ID, entry.id)
            results.append((result.slot, result.honored_preferences))

        assert results[0] == results[1]
        assert results[0][0].provider_id == PROVIDER_B
        assert results[0][0].start_time == time(8)

    async def test_second_call_is_already_processed(self):
        entry = make_entry()
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])
        resolver = _resolver(store)

        await resolver.auto_assign(TENANT_ID, entry.id)
        with pytest.raises(AlreadyProcessed) as exc_info:
            await resolver.auto_assign(TENANT_ID, entry.id)

        assert exc_info.value.code == "already_processed"
        assert len(store.appointments) == 1

    async def test_contacted_entry_is_not_auto_assigned(self):
        entry = make_entry(status=WaitlistStatus.CONTACTED)
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])

        with pytest.raises(AlreadyProcessed):
            await _resolver(store).auto_assign(TENANT_ID, entry.id)
        assert store.appointments == {}

    async def test_unknown_entry(self):
        store = InMemorySchedulingStore(providers=[make_provider()])
        entry = make_entry()

        with pytest.raises(NotFound) as exc_info:
            await _resolver(store).auto_assign(TENANT_ID, entry.id)
        assert exc_info.value.entry_id == entry.id

    async def test_entry_of_another_tenant_is_not_found(self):
        entry = make_entry(tenant_id=OTHER_TENANT_ID)
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])

        with pytest.raises(NotFound):
            await _resolver(store).auto_assign(TENANT_ID, entry.id)
        assert store.entries[entry.id].status == WaitlistStatus.WAITING

    async def test_no_slot_leaves_entry_waiting(self):
        entry = make_entry()
        # One appointment covering the whole window
        blocker = _booked(0, minutes=7 * 24 * 60)
        store = InMemorySchedulingStore(providers=[make_provider()], appointments=[blocker], entries=[entry])

        with pytest.raises(NoAvailableSlot):
            await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert store.entries[entry.id].status == WaitlistStatus.WAITING
        assert len(store.appointments) == 1

    async def test_no_active_providers(self):
        entry = make_entry()
        store = InMemorySchedulingStore(providers=[make_provider(active=False)], entries=[entry])

        with pytest.raises(NoAvailableSlot):
            await _resolver(store).auto_assign(TENANT_ID, entry.id)


# ------------------------------------------------------ failure atomicity

class _StaleReadStore(InMemorySchedulingStore):
    """Reports no bookings, as if another writer committed after the scan."""

    async def list_appointments(self, tenant_id, date_range, provider_id=None):
        return []


class _StaleEntryStore(InMemorySchedulingStore):
    """Serves a waiting snapshot while the stored entry has moved on."""

    async def get_entry(self, tenant_id, entry_id):
        entry = await super().get_entry(tenant_id, entry_id)
        return entry.model_copy(update={"status": WaitlistStatus.WAITING}) if entry else None


class _BrokenStatusStore(InMemorySchedulingStore):
    async def set_status(self, tenant_id, entry_id, expected, transition):
        raise StorageFailure("waiting list table unavailable")


class TestFailureAtomicity:
    async def test_lost_race_is_slot_no_longer_available(self):
        entry = make_entry()
        store = _StaleReadStore(providers=[make_provider()], appointments=[_booked(8)], entries=[entry])

        with pytest.raises(SlotNoLongerAvailable) as exc_info:
            await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert exc_info.value.code == "slot_no_longer_available"
        assert store.entries[entry.id].status == WaitlistStatus.WAITING
        assert len(store.appointments) == 1

    async def test_status_race_rolls_back_appointment(self):
        entry = make_entry()
        store = _StaleEntryStore(providers=[make_provider()], entries=[entry])
        await store.set_status(TENANT_ID, entry.id, WaitlistStatus.WAITING, Contacted())

        with pytest.raises(AlreadyProcessed):
            await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert store.appointments == {}
        assert store.entries[entry.id].status == WaitlistStatus.CONTACTED

    async def test_storage_failure_leaves_no_partial_state(self):
        entry = make_entry()
        store = _BrokenStatusStore(providers=[make_provider()], entries=[entry])

        with pytest.raises(StorageFailure):
            await _resolver(store).auto_assign(TENANT_ID, entry.id)

        assert store.appointments == {}
        assert store.entries[entry.id].status == WaitlistStatus.WAITING

    async def test_storage_failure_aborts_batch(self):
        store = _BrokenStatusStore(providers=[make_provider()], entries=[make_entry(), make_entry()])

        with pytest.raises(StorageFailure):
            await _resolver(store).resolve_waitlist(TENANT_ID)
        assert store.appointments == {}


# ------------------------------------------------------------ concurrency

class TestConcurrency:
    async def test_two_entries_racing_for_one_slot(self):
        first, second = make_entry(), make_entry()
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[first, second])
        resolver = _single_slot_resolver(store)

        outcomes = await asyncio.gather(
            resolver.auto_assign(TENANT_ID, first.id),
            resolver.auto_assign(TENANT_ID, second.id),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if not isinstance(o, Exception)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (SlotNoLongerAvailable, NoAvailableSlot))
        assert len(store.appointments) == 1
        assert _no_overlaps(store)

    async def test_same_entry_assigned_once(self):
        entry = make_entry()
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])
        resolver = _resolver(store)

        outcomes = await asyncio.gather(
            resolver.auto_assign(TENANT_ID, entry.id),
            resolver.auto_assign(TENANT_ID, entry.id),
            return_exceptions=True,
        )

        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (AlreadyProcessed, SlotNoLongerAvailable))
        assert len(store.appointments) == 1


# ------------------------------------------------------- batch resolution

class TestResolveWaitlist:
    async def test_resolves_in_priority_then_fifo_order(self):
        base = datetime(2026, 2, 1, 9, 0)
        low = make_entry(priority=1, created_at=base)
        urgent_late = make_entry(priority=5, created_at=base + timedelta(hours=3))
        mid = make_entry(priority=3, created_at=base + timedelta(hours=1))
        urgent_early = make_entry(priority=5, created_at=base + timedelta(hours=2))
        store = InMemorySchedulingStore(
            providers=[make_provider()],
            entries=[low, urgent_late, mid, urgent_early],
        )

        batch = await _resolver(store).resolve_waitlist(TENANT_ID)

        assert [o.entry_id for o in batch.outcomes] == [urgent_early.id, urgent_late.id, mid.id, low.id]
        assert [o.priority for o in batch.outcomes] == [5, 5, 3, 1]
        assert [o.result.slot.start_time for o in batch.assigned] == [time(8), time(9), time(10), time(11)]
        assert batch.failed == []

    async def test_single_slot_goes_to_higher_priority(self):
        urgent = make_entry(priority=5, created_at=datetime(2026, 2, 2, 9, 0))
        routine = make_entry(priority=3, created_at=datetime(2026, 2, 1, 9, 0))
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[routine, urgent])

        batch = await _single_slot_resolver(store).resolve_waitlist(TENANT_ID)

        assert [o.entry_id for o in batch.assigned] == [urgent.id]
        assert len(batch.failed) == 1
        assert batch.failed[0].entry_id == routine.id
        assert batch.failed[0].error_code == "no_available_slot"
        assert store.entries[routine.id].status == WaitlistStatus.WAITING

    async def test_only_waiting_entries_are_considered(self):
        waiting = make_entry()
        contacted = make_entry(status=WaitlistStatus.CONTACTED)
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[waiting, contacted])

        batch = await _resolver(store).resolve_waitlist(TENANT_ID)

        assert [o.entry_id for o in batch.outcomes] == [waiting.id]
        assert store.entries[contacted.id].status == WaitlistStatus.CONTACTED


# --------------------------------------------------------- observability

class TestTelemetry:
    async def test_assignment_events_are_recorded(self, tmp_path):
        obs = ObservabilityLogger(log_dir=tmp_path, enabled=True)
        entry = make_entry(priority=4)
        store = InMemorySchedulingStore(providers=[make_provider()], entries=[entry])
        resolver = _resolver(store, obs=obs)

        await resolver.auto_assign(TENANT_ID, entry.id)
        with pytest.raises(AlreadyProcessed):
            await resolver.auto_assign(TENANT_ID, entry.id)

        lines = (tmp_path / "auto_assignments.jsonl").read_text().strip().split("\n")
        events = [json.loads(line) for line in lines]
        assert [e["event_type"] for e in events] == ["auto_assign_success", "auto_assign_error"]
        assert events[0]["entry_id"] == str(entry.id)
        assert events[0]["priority"] == 4
        assert events[0]["provider_id"] == str(PROVIDER_A)
        assert events[1]["error_code"] == "already_processed"
        assert (tmp_path / "slot_queries.jsonl").exists()
