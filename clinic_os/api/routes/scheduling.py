"""Scheduling API endpoints: free slots and the appointment book."""

import uuid
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_os.api.dependencies import get_current_user, get_resolver, require_scheduler
from clinic_os.config import get_settings
from clinic_os.core.database import get_db
from clinic_os.core.models import AppointmentDB, Provider
from clinic_os.core.repository import AppointmentRepository
from clinic_os.scheduling.models import Slot
from clinic_os.scheduling.scheduler import clinic_today
from clinic_os.scheduling.waitlist import WaitlistResolver

router = APIRouter(prefix="/scheduling")


class AppointmentResponse(BaseModel):
    id: str
    patient_id: str
    provider_id: str
    waitlist_entry_id: str | None = None
    start_time: datetime
    end_time: datetime
    title: str | None = None
    status: str
    notes: str | None = None
    is_auto_scheduled: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


def appt_to_response(appt: AppointmentDB) -> AppointmentResponse:
    return AppointmentResponse(
        id=str(appt.id),
        patient_id=str(appt.patient_id),
        provider_id=str(appt.provider_id),
        waitlist_entry_id=str(appt.waitlist_entry_id) if appt.waitlist_entry_id else None,
        start_time=appt.start_time,
        end_time=appt.end_time,
        title=appt.title,
        status=appt.status,
        notes=appt.notes,
        is_auto_scheduled=appt.is_auto_scheduled,
        created_at=appt.created_at,
        updated_at=appt.updated_at,
    )


def parse_uuid(value: str, name: str = "ID") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


@router.get("/available-slots", response_model=list[Slot])
async def available_slots(
    window_days: Optional[int] = Query(None, ge=1, le=90),
    start_date: Optional[date] = Query(None),
    current_user: Provider = Depends(get_current_user),
    resolver: WaitlistResolver = Depends(get_resolver),
) -> list[Slot]:
    """Free slots of every active provider over the rolling window."""
    return await resolver.compute_available_slots(
        current_user.tenant_id,
        window_days=window_days,
        start_date=start_date,
    )


@router.get("/appointments", response_model=list[AppointmentResponse])
async def list_appointments(
    provider_id: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    current_user: Provider = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[AppointmentResponse]:
    """Appointments of the caller's clinic; defaults to the scheduling window."""
    settings = get_settings()
    start = date_from or clinic_today(settings.clinic_timezone)
    end = date_to or start + timedelta(days=settings.scheduling_window_days - 1)
    if end < start:
        raise HTTPException(status_code=400, detail="date_to must not be before date_from")

    pid = parse_uuid(provider_id, "provider_id") if provider_id else None
    repo = AppointmentRepository(db)
    appts = await repo.list_by_date_range(
        current_user.tenant_id,
        datetime.combine(start, time.min),
        datetime.combine(end + timedelta(days=1), time.min),
        provider_id=pid,
    )
    results = [appt_to_response(a) for a in appts]
    if status:
        results = [r for r in results if r.status == status]
    return results


@router.delete("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    body: CancelRequest | None = None,
    current_user: Provider = Depends(require_scheduler),
    db: AsyncSession = Depends(get_db),
) -> AppointmentResponse:
    """Cancel an appointment; its time becomes bookable again."""
    aid = parse_uuid(appointment_id, "appointment_id")
    repo = AppointmentRepository(db)
    appt = await repo.cancel(current_user.tenant_id, aid, reason=body.reason if body else None)
    if not appt:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appt_to_response(appt)
