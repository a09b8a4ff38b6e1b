"""Waiting-list endpoints: queue management and auto-scheduling."""

import logging
import uuid
from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_os.api.dependencies import get_resolver, require_admin, require_scheduler
from clinic_os.api.routes.scheduling import parse_uuid
from clinic_os.core.database import get_db
from clinic_os.core.models import Provider, WaitlistEntryDB
from clinic_os.core.repository import (
    AuditRepository,
    PatientRepository,
    ProviderRepository,
    WaitlistRepository,
)
from clinic_os.scheduling.errors import StaleStatusError
from clinic_os.scheduling.models import (
    MANUAL_TRANSITIONS,
    AssignmentResult,
    BatchResult,
    WaitlistStatus,
    manual_transition,
)
from clinic_os.scheduling.waitlist import WaitlistResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/waiting-list")


# ---------------------------------------------------------------------------
# Pydantic request/response schemas
# ---------------------------------------------------------------------------

class WaitlistEntryIn(BaseModel):
    patient_id: uuid.UUID
    provider_id: Optional[uuid.UUID] = None
    procedure_id: Optional[uuid.UUID] = None
    preferred_date: Optional[date] = None
    preferred_time_start: Optional[time] = None
    preferred_time_end: Optional[time] = None
    priority: int = Field(default=1, ge=1, le=5)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_time_range(self) -> "WaitlistEntryIn":
        if (
            self.preferred_time_start is not None
            and self.preferred_time_end is not None
            and self.preferred_time_end <= self.preferred_time_start
        ):
            raise ValueError("preferred_time_end must be after preferred_time_start")
        return self


class StatusUpdate(BaseModel):
    status: WaitlistStatus


class WaitlistEntryResponse(BaseModel):
    id: str
    patient_id: str
    provider_id: str | None = None
    procedure_id: str | None = None
    preferred_date: date | None = None
    preferred_time_start: time | None = None
    preferred_time_end: time | None = None
    priority: int
    status: str
    notes: str | None = None
    appointment_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _opt_str(value: uuid.UUID | None) -> str | None:
    return str(value) if value else None


def entry_to_response(entry: WaitlistEntryDB) -> WaitlistEntryResponse:
    return WaitlistEntryResponse(
        id=str(entry.id),
        patient_id=str(entry.patient_id),
        provider_id=_opt_str(entry.provider_id),
        procedure_id=_opt_str(entry.procedure_id),
        preferred_date=entry.preferred_date,
        preferred_time_start=entry.preferred_time_start,
        preferred_time_end=entry.preferred_time_end,
        priority=entry.priority,
        status=entry.status,
        notes=entry.notes,
        appointment_id=_opt_str(entry.appointment_id),
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


async def _check_references(db: AsyncSession, tenant_id: uuid.UUID, body: WaitlistEntryIn) -> None:
    if not await PatientRepository(db).get_by_id(tenant_id, body.patient_id):
        raise HTTPException(status_code=404, detail="Patient not found")
    if body.provider_id and not await ProviderRepository(db).get_by_id(tenant_id, body.provider_id):
        raise HTTPException(status_code=404, detail="Provider not found")


async def _audit_assignment(
    db: AsyncSession,
    request: Request,
    user: Provider,
    result: AssignmentResult,
    action: str,
) -> None:
    await AuditRepository(db).log_action(
        action=action,
        resource_type="waiting_list",
        resource_id=str(result.entry_id),
        tenant_id=user.tenant_id,
        user_id=str(user.id),
        details={
            "appointment_id": str(result.appointment.id),
            "provider_id": str(result.slot.provider_id),
            "start_time": result.slot.datetime.isoformat(),
            "honored_preferences": result.honored_preferences,
        },
        ip_address=request.client.host if request.client else None,
    )


# ---------------------------------------------------------------------------
# Queue management
# ---------------------------------------------------------------------------

@router.get("", response_model=list[WaitlistEntryResponse])
async def list_waiting_list(
    status: Optional[WaitlistStatus] = Query(None),
    current_user: Provider = Depends(require_scheduler),
    db: AsyncSession = Depends(get_db),
) -> list[WaitlistEntryResponse]:
    """Entries in queue order: highest priority first, then oldest first."""
    repo = WaitlistRepository(db)
    entries = await repo.list_ordered(current_user.tenant_id, status.value if status else None)
    return [entry_to_response(e) for e in entries]


@router.post("", response_model=WaitlistEntryResponse, status_code=201)
async def create_entry(
    body: WaitlistEntryIn,
    current_user: Provider = Depends(require_scheduler),
    db: AsyncSession = Depends(get_db),
) -> WaitlistEntryResponse:
    await _check_references(db, current_user.tenant_id, body)
    entry = await WaitlistRepository(db).create(
        tenant_id=current_user.tenant_id,
        status=WaitlistStatus.WAITING.value,
        **body.model_dump(),
    )
    logger.info(f"Waitlist entry {entry.id} created with priority {entry.priority}")
    return entry_to_response(entry)


@router.put("/{entry_id}", response_model=WaitlistEntryResponse)
async def update_entry(
    entry_id: str,
    body: WaitlistEntryIn,
    current_user: Provider = Depends(require_scheduler),
    db: AsyncSession = Depends(get_db),
) -> WaitlistEntryResponse:
    """Replace the request details of an entry. Status is changed via PATCH."""
    eid = parse_uuid(entry_id, "entry_id")
    await _check_references(db, current_user.tenant_id, body)
    entry = await WaitlistRepository(db).update_details(current_user.tenant_id, eid, **body.model_dump())
    if not entry:
        raise HTTPException(status_code=404, detail="Waitlist entry not found")
    return entry_to_response(entry)


@router.patch("/{entry_id}/status", response_model=WaitlistEntryResponse)
async def update_status(
    entry_id: str,
    body: StatusUpdate,
    current_user: Provider = Depends(require_scheduler),
    db: AsyncSession = Depends(get_db),
) -> WaitlistEntryResponse:
    """Manual status change. ``scheduled`` is only reachable via auto-schedule."""
    eid = parse_uuid(entry_id, "entry_id")
    repo = WaitlistRepository(db)
    entry = await repo.get_by_id(current_user.tenant_id, eid)
    if not entry:
        raise HTTPException(status_code=404, detail="Waitlist entry not found")

    current = WaitlistStatus(entry.status)
    if body.status not in MANUAL_TRANSITIONS[current]:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move entry from '{current.value}' to '{body.status.value}'",
        )
    try:
        updated = await repo.set_status(
            current_user.tenant_id, eid, expected=current, transition=manual_transition(body.status)
        )
    except StaleStatusError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return entry_to_response(updated)


@router.delete("/{entry_id}", status_code=204)
async def delete_entry(
    entry_id: str,
    current_user: Provider = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Response:
    eid = parse_uuid(entry_id, "entry_id")
    if not await WaitlistRepository(db).delete(current_user.tenant_id, eid):
        raise HTTPException(status_code=404, detail="Waitlist entry not found")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Auto-scheduling
# ---------------------------------------------------------------------------

@router.post("/resolve", response_model=BatchResult)
async def resolve_waiting_list(
    request: Request,
    current_user: Provider = Depends(require_scheduler),
    resolver: WaitlistResolver = Depends(get_resolver),
    db: AsyncSession = Depends(get_db),
) -> BatchResult:
    """Auto-schedule every waiting entry in queue order."""
    result = await resolver.resolve_waitlist(current_user.tenant_id)
    for outcome in result.assigned:
        await _audit_assignment(db, request, current_user, outcome.result, "auto_schedule_batch")
    return result


@router.post("/{entry_id}/auto-schedule", response_model=AssignmentResult)
async def auto_schedule(
    entry_id: str,
    request: Request,
    current_user: Provider = Depends(require_scheduler),
    resolver: WaitlistResolver = Depends(get_resolver),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResult:
    """Book the earliest matching free slot for one waiting entry."""
    eid = parse_uuid(entry_id, "entry_id")
    result = await resolver.auto_assign(current_user.tenant_id, eid)
    await _audit_assignment(db, request, current_user, result, "auto_schedule")
    return result
