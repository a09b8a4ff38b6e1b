"""Core slot computation for clinic-os.

Everything here is pure: no I/O, no clock reads, no shared mutable state.
The booking side lives in :mod:`clinic_os.scheduling.waitlist`.
"""

import uuid
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from clinic_os.config import Settings
from clinic_os.scheduling.models import (
    Appointment,
    PreferenceMatch,
    Provider,
    Slot,
    WaitlistEntry,
)


def clinic_today(timezone_name: str) -> date:
    """Today's date in the clinic's local timezone."""
    return datetime.now(ZoneInfo(timezone_name)).date()


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _clock(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


class SchedulingService:
    """Generates, filters, matches and selects slots."""

    def __init__(
        self,
        open_hour: int = 8,
        close_hour: int = 18,
        slot_minutes: int = 60,
        honor_working_hours: bool = False,
    ) -> None:
        if close_hour <= open_hour:
            raise ValueError("close_hour must be after open_hour")
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.slot_minutes = slot_minutes
        self.honor_working_hours = honor_working_hours

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulingService":
        return cls(
            open_hour=settings.clinic_open_hour,
            close_hour=settings.clinic_close_hour,
            slot_minutes=settings.slot_minutes,
            honor_working_hours=settings.honor_working_hours,
        )

    # ------------------------------------------------------------------
    # Slot generation
    # ------------------------------------------------------------------

    def generate_provider_slots(self, provider: Provider, day: date) -> list[Slot]:
        """Generate all candidate slots for one provider on one day."""
        start = self.open_hour * 60
        end = self.close_hour * 60

        hours = None
        if self.honor_working_hours:
            hours = provider.hours_for(day)
            if hours is None:
                return []
            # Clinic hours still bound the day
            start = max(start, _minutes(hours.start))
            end = min(end, _minutes(hours.end))

        slots: list[Slot] = []
        current = start
        while current + self.slot_minutes <= end:
            slot_start = _clock(current)
            slot_end = _clock(current + self.slot_minutes) if current + self.slot_minutes < 1440 else time.max
            if hours is None or not any(b.overlaps(slot_start, slot_end) for b in hours.breaks):
                slots.append(
                    Slot(
                        provider_id=provider.id,
                        date=day,
                        start_time=slot_start,
                        end_time=slot_end,
                    )
                )
            current += self.slot_minutes
        return slots

    def generate_slots(
        self,
        providers: Iterable[Provider],
        start_date: date,
        window_days: int = 7,
    ) -> list[Slot]:
        """Enumerate candidate slots over ``window_days`` days from ``start_date``.

        Ordered by day, then provider id, then start time. Inactive
        providers are skipped.
        """
        active = sorted((p for p in providers if p.active), key=lambda p: p.id)
        slots: list[Slot] = []
        for offset in range(window_days):
            day = start_date + timedelta(days=offset)
            for provider in active:
                slots.extend(self.generate_provider_slots(provider, day))
        return slots

    # ------------------------------------------------------------------
    # Conflict filter
    # ------------------------------------------------------------------

    @staticmethod
    def slot_is_free(slot: Slot, appointments: Iterable[Appointment]) -> bool:
        """True when no non-cancelled appointment of the slot's provider overlaps it."""
        start, end = slot.datetime, slot.end_datetime
        return not any(
            appt.provider_id == slot.provider_id
            and appt.blocks_time
            and appt.overlaps(start, end)
            for appt in appointments
        )

    def filter_conflicts(
        self,
        slots: Iterable[Slot],
        appointments: Iterable[Appointment],
    ) -> list[Slot]:
        """Drop slots that intersect an existing booking."""
        by_provider: dict[uuid.UUID, list[Appointment]] = {}
        for appt in appointments:
            if appt.blocks_time:
                by_provider.setdefault(appt.provider_id, []).append(appt)
        return [
            s for s in slots
            if self.slot_is_free(s, by_provider.get(s.provider_id, ()))
        ]

    # ------------------------------------------------------------------
    # Preference matcher
    # ------------------------------------------------------------------

    @staticmethod
    def match_preferences(slots: list[Slot], entry: WaitlistEntry) -> PreferenceMatch:
        """Narrow *slots* to the entry's preferences, falling back to all of them.

        Preferences are applied in order: provider, date, time range. When
        the preferred subset is empty the full conflict-free set is
        returned with ``honored_preferences=False``.
        """
        preferred = list(slots)

        if entry.preferred_provider_id is not None:
            preferred = [s for s in preferred if s.provider_id == entry.preferred_provider_id]

        if entry.preferred_date is not None:
            preferred = [s for s in preferred if s.date == entry.preferred_date]

        time_range = entry.preferred_time_range
        if time_range is not None:
            preferred = [s for s in preferred if time_range.contains(s.start_time, s.end_time)]

        if preferred:
            return PreferenceMatch(slots=preferred, honored_preferences=True)
        return PreferenceMatch(slots=list(slots), honored_preferences=False)

    # ------------------------------------------------------------------
    # Assignment selector
    # ------------------------------------------------------------------

    @staticmethod
    def select_slot(slots: Iterable[Slot]) -> Optional[Slot]:
        """Earliest slot; equal start times resolve to the lowest provider id."""
        return min(slots, key=lambda s: s.sort_key, default=None)

    # ------------------------------------------------------------------
    # Queue ordering
    # ------------------------------------------------------------------

    @staticmethod
    def order_waitlist(entries: Iterable[WaitlistEntry]) -> list[WaitlistEntry]:
        """Priority descending, then creation time ascending (FIFO)."""
        return sorted(entries, key=lambda e: (-e.priority, e.created_at, e.id))
