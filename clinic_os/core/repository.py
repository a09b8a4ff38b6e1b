"""CRUD repositories for the clinic schema, plus the SQL scheduling store."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncIterator, Iterator, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import insert, literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_os.core.models import (
    AppointmentDB,
    AuditLog,
    Patient,
    Provider,
    WaitlistEntryDB,
)
from clinic_os.scheduling.errors import ConflictError, StaleStatusError, StorageFailure
from clinic_os.scheduling.models import (
    Appointment,
    AppointmentStatus,
    DayHours,
    Provider as ProviderModel,
    Scheduled,
    WaitlistEntry,
    WaitlistStatus,
    WaitlistTransition,
)
from clinic_os.scheduling.stores import SchedulingStore

logger = logging.getLogger(__name__)


def _day_bounds(date_range: tuple[date, date]) -> tuple[datetime, datetime]:
    start = datetime.combine(date_range[0], time.min)
    end = datetime.combine(date_range[1] + timedelta(days=1), time.min)
    return start, end


class PatientRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Patient:
        patient = Patient(**kwargs)
        self.session.add(patient)
        await self.session.flush()
        return patient

    async def get_by_id(self, tenant_id: uuid.UUID, patient_id: uuid.UUID) -> Optional[Patient]:
        patient = await self.session.get(Patient, patient_id)
        if patient is None or patient.tenant_id != tenant_id:
            return None
        return patient


class ProviderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Provider:
        provider = Provider(**kwargs)
        self.session.add(provider)
        await self.session.flush()
        return provider

    async def get_by_id(self, tenant_id: uuid.UUID, provider_id: uuid.UUID) -> Optional[Provider]:
        provider = await self.session.get(Provider, provider_id)
        if provider is None or provider.tenant_id != tenant_id:
            return None
        return provider

    async def list_active(self, tenant_id: uuid.UUID) -> Sequence[Provider]:
        stmt = (
            select(Provider)
            .where(Provider.tenant_id == tenant_id, Provider.active.is_(True))
            .order_by(Provider.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def lock(self, tenant_id: uuid.UUID, provider_id: uuid.UUID) -> bool:
        """Row-lock the provider for the rest of the transaction.

        Serializes concurrent bookings of one provider on PostgreSQL;
        SQLite ignores FOR UPDATE; its transactions begin IMMEDIATE instead.
        """
        stmt = (
            select(Provider.id)
            .where(Provider.id == provider_id, Provider.tenant_id == tenant_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None


class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, tenant_id: uuid.UUID, appointment_id: uuid.UUID) -> Optional[AppointmentDB]:
        appt = await self.session.get(AppointmentDB, appointment_id)
        if appt is None or appt.tenant_id != tenant_id:
            return None
        return appt

    async def list_by_date_range(
        self,
        tenant_id: uuid.UUID,
        start: datetime,
        end: datetime,
        provider_id: Optional[uuid.UUID] = None,
    ) -> Sequence[AppointmentDB]:
        """Appointments overlapping [start, end), any status."""
        stmt = select(AppointmentDB).where(
            AppointmentDB.tenant_id == tenant_id,
            AppointmentDB.start_time < end,
            AppointmentDB.end_time > start,
        )
        if provider_id is not None:
            stmt = stmt.where(AppointmentDB.provider_id == provider_id)
        stmt = stmt.order_by(AppointmentDB.start_time, AppointmentDB.provider_id)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def insert_if_no_conflict(self, appointment: Appointment) -> AppointmentDB:
        """Single-statement ``INSERT ... SELECT ... WHERE NOT EXISTS (overlap)``.

        Raises:
            ConflictError: if a non-cancelled appointment of the provider overlaps.
        """
        overlap = (
            select(AppointmentDB.id)
            .where(
                AppointmentDB.provider_id == appointment.provider_id,
                AppointmentDB.status != AppointmentStatus.CANCELLED.value,
                AppointmentDB.start_time < appointment.end_time,
                AppointmentDB.end_time > appointment.start_time,
            )
            .correlate(None)
            .exists()
        )

        now = datetime.now(timezone.utc)
        values = {
            "id": appointment.id,
            "tenant_id": appointment.tenant_id,
            "patient_id": appointment.patient_id,
            "provider_id": appointment.provider_id,
            "waitlist_entry_id": appointment.waitlist_entry_id,
            "start_time": appointment.start_time,
            "end_time": appointment.end_time,
            "title": appointment.title,
            "status": appointment.status.value,
            "notes": appointment.notes,
            "is_auto_scheduled": appointment.is_auto_scheduled,
            "created_at": now,
            "updated_at": now,
        }
        table = AppointmentDB.__table__
        row = select(
            *[literal(value, type_=table.c[name].type).label(name) for name, value in values.items()]
        ).where(~overlap)
        result = await self.session.execute(insert(table).from_select(list(values), row))

        if result.rowcount == 0:
            raise ConflictError(
                f"Provider {appointment.provider_id} is already booked between "
                f"{appointment.start_time:%Y-%m-%d %H:%M} and {appointment.end_time:%H:%M}"
            )
        stored = await self.session.get(AppointmentDB, appointment.id)
        assert stored is not None
        return stored

    async def cancel(self, tenant_id: uuid.UUID, appointment_id: uuid.UUID, reason: str | None = None) -> Optional[AppointmentDB]:
        appt = await self.get_by_id(tenant_id, appointment_id)
        if not appt:
            return None
        appt.status = AppointmentStatus.CANCELLED.value
        if reason:
            appt.notes = f"{appt.notes}\nCancelled: {reason}" if appt.notes else f"Cancelled: {reason}"
        appt.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return appt


class WaitlistRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> WaitlistEntryDB:
        entry = WaitlistEntryDB(**kwargs)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_by_id(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[WaitlistEntryDB]:
        stmt = select(WaitlistEntryDB).where(
            WaitlistEntryDB.id == entry_id,
            WaitlistEntryDB.tenant_id == tenant_id,
        )
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_ordered(
        self,
        tenant_id: uuid.UUID,
        status: Optional[str] = None,
    ) -> Sequence[WaitlistEntryDB]:
        """Entries in queue order: priority DESC, created_at ASC."""
        stmt = select(WaitlistEntryDB).where(WaitlistEntryDB.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(WaitlistEntryDB.status == status)
        stmt = stmt.order_by(
            WaitlistEntryDB.priority.desc(),
            WaitlistEntryDB.created_at.asc(),
            WaitlistEntryDB.id.asc(),
        )
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().all()

    async def update_details(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        *,
        patient_id: uuid.UUID,
        provider_id: Optional[uuid.UUID],
        procedure_id: Optional[uuid.UUID],
        preferred_date: Optional[date],
        preferred_time_start: Optional[time],
        preferred_time_end: Optional[time],
        priority: int,
        notes: Optional[str],
    ) -> Optional[WaitlistEntryDB]:
        """Replace the request details. Status is never touched here."""
        entry = await self.get_by_id(tenant_id, entry_id)
        if entry is None:
            return None
        entry.patient_id = patient_id
        entry.provider_id = provider_id
        entry.procedure_id = procedure_id
        entry.preferred_date = preferred_date
        entry.preferred_time_start = preferred_time_start
        entry.preferred_time_end = preferred_time_end
        entry.priority = priority
        entry.notes = notes
        entry.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        return entry

    async def set_status(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        expected: WaitlistStatus,
        transition: WaitlistTransition,
    ) -> WaitlistEntryDB:
        """Conditional ``UPDATE ... WHERE status = expected``.

        Raises:
            StaleStatusError: if the entry is missing or not in *expected*.
        """
        values: dict = {
            "status": transition.status.value,
            "updated_at": datetime.now(timezone.utc),
        }
        if isinstance(transition, Scheduled):
            values["appointment_id"] = transition.appointment_id

        table = WaitlistEntryDB.__table__
        stmt = (
            update(table)
            .where(
                table.c.id == entry_id,
                table.c.tenant_id == tenant_id,
                table.c.status == expected.value,
            )
            .values(**values)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            current = await self.session.scalar(
                select(table.c.status).where(table.c.id == entry_id, table.c.tenant_id == tenant_id)
            )
            if current is None:
                raise StaleStatusError(f"Waitlist entry {entry_id} not found")
            raise StaleStatusError(
                f"Waitlist entry {entry_id} is '{current}', expected '{expected.value}'",
                current_status=current,
            )

        entry = await self.get_by_id(tenant_id, entry_id)
        assert entry is not None
        return entry

    async def delete(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> bool:
        entry = await self.get_by_id(tenant_id, entry_id)
        if entry is None:
            return False
        await self.session.delete(entry)
        await self.session.flush()
        return True


class AuditRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_action(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        tenant_id: Optional[uuid.UUID] = None,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            details=details,
            ip_address=ip_address,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_by_resource(self, resource_type: str, resource_id: str, limit: int = 50) -> Sequence[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.timestamp.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


# ---------------------------------------------------------------------------
# ORM -> engine model conversion
# ---------------------------------------------------------------------------


def provider_to_model(row: Provider) -> ProviderModel:
    working_hours: dict[str, DayHours] = {}
    if row.working_hours:
        try:
            working_hours = {
                day: DayHours.model_validate(hours)
                for day, hours in row.working_hours.items()
            }
        except ValidationError as e:
            logger.warning(f"Ignoring invalid working_hours for provider {row.id}: {e}")
    return ProviderModel(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        active=row.active,
        working_hours=working_hours,
    )


def appointment_to_model(row: AppointmentDB) -> Appointment:
    return Appointment(
        id=row.id,
        tenant_id=row.tenant_id,
        provider_id=row.provider_id,
        patient_id=row.patient_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=AppointmentStatus(row.status),
        title=row.title,
        notes=row.notes,
        waitlist_entry_id=row.waitlist_entry_id,
        is_auto_scheduled=row.is_auto_scheduled,
        created_at=row.created_at,
    )


def waitlist_to_model(row: WaitlistEntryDB) -> WaitlistEntry:
    return WaitlistEntry(
        id=row.id,
        tenant_id=row.tenant_id,
        patient_id=row.patient_id,
        preferred_provider_id=row.provider_id,
        preferred_date=row.preferred_date,
        preferred_time_start=row.preferred_time_start,
        preferred_time_end=row.preferred_time_end,
        priority=row.priority,
        status=WaitlistStatus(row.status),
        procedure_id=row.procedure_id,
        notes=row.notes,
        appointment_id=row.appointment_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlSchedulingStore(SchedulingStore):
    """Scheduling store over one ``AsyncSession``.

    ``transaction()`` opens a savepoint; the enclosing session commit
    (``get_db`` or the CLI) makes it durable.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.providers = ProviderRepository(session)
        self.appointments = AppointmentRepository(session)
        self.waitlist = WaitlistRepository(session)

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageFailure(f"{operation} failed") from e

    async def list_active_providers(self, tenant_id: uuid.UUID) -> list[ProviderModel]:
        with self._storage_errors("list_active_providers"):
            rows = await self.providers.list_active(tenant_id)
        return [provider_to_model(r) for r in rows]

    async def list_appointments(
        self,
        tenant_id: uuid.UUID,
        date_range: tuple[date, date],
        provider_id: Optional[uuid.UUID] = None,
    ) -> list[Appointment]:
        start, end = _day_bounds(date_range)
        with self._storage_errors("list_appointments"):
            rows = await self.appointments.list_by_date_range(tenant_id, start, end, provider_id)
        return [appointment_to_model(r) for r in rows]

    async def insert_appointment_if_no_conflict(self, appointment: Appointment) -> Appointment:
        with self._storage_errors("insert_appointment_if_no_conflict"):
            if not await self.providers.lock(appointment.tenant_id, appointment.provider_id):
                raise ConflictError(f"Provider {appointment.provider_id} is not bookable")
            row = await self.appointments.insert_if_no_conflict(appointment)
        return appointment_to_model(row)

    async def get_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[WaitlistEntry]:
        with self._storage_errors("get_entry"):
            row = await self.waitlist.get_by_id(tenant_id, entry_id)
        return waitlist_to_model(row) if row else None

    async def list_entries(
        self,
        tenant_id: uuid.UUID,
        status: Optional[WaitlistStatus] = None,
    ) -> list[WaitlistEntry]:
        with self._storage_errors("list_entries"):
            rows = await self.waitlist.list_ordered(tenant_id, status.value if status else None)
        return [waitlist_to_model(r) for r in rows]

    async def set_status(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        expected: WaitlistStatus,
        transition: WaitlistTransition,
    ) -> WaitlistEntry:
        with self._storage_errors("set_status"):
            row = await self.waitlist.set_status(tenant_id, entry_id, expected, transition)
        return waitlist_to_model(row)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        with self._storage_errors("transaction"):
            async with self.session.begin_nested():
                yield
