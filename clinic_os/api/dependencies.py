"""FastAPI dependencies: cookie JWT + API key dual-auth, roles and the resolver."""

from __future__ import annotations

import hmac
import uuid

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_os.config import get_settings
from clinic_os.core.auth import ACCESS_COOKIE, decode_token
from clinic_os.core.database import get_db
from clinic_os.core.models import Provider, ProviderRole
from clinic_os.core.repository import SqlSchedulingStore
from clinic_os.scheduling.scheduler import SchedulingService, clinic_today
from clinic_os.scheduling.waitlist import WaitlistResolver

SCHEDULER_ROLES = (
    ProviderRole.owner.value,
    ProviderRole.admin.value,
    ProviderRole.receptionist.value,
)


async def _load_provider(db: AsyncSession, pid: uuid.UUID) -> Provider | None:
    result = await db.execute(
        select(Provider).where(Provider.id == pid, Provider.active.is_(True))
    )
    return result.scalar_one_or_none()


def _provided_api_key(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.headers.get("X-API-Key")


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Provider:
    """Resolve the authenticated provider.

    Priority:
    1. clinic_access cookie → decode JWT → load Provider
    2. API key (Bearer / X-API-Key) + X-Provider-Id header → load Provider
    3. Raise 401
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        claims = decode_token(token)
        if claims and claims.get("type") == "access" and claims.get("sub"):
            try:
                pid = uuid.UUID(claims["sub"])
            except ValueError:
                raise HTTPException(status_code=401, detail="Invalid token subject")
            provider = await _load_provider(db, pid)
            if provider:
                return provider
        # Cookie present but invalid → fall through to API key check

    settings = get_settings()
    provided_key = _provided_api_key(request)
    if settings.api_key and provided_key and hmac.compare_digest(provided_key, settings.api_key):
        # Machine clients act on behalf of a provider, which fixes the tenant
        provider_id_str = request.headers.get("X-Provider-Id")
        if not provider_id_str:
            raise HTTPException(status_code=400, detail="X-Provider-Id header required")
        try:
            pid = uuid.UUID(provider_id_str)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid X-Provider-Id")
        provider = await _load_provider(db, pid)
        if provider:
            return provider

    raise HTTPException(status_code=401, detail="Not authenticated")


async def require_scheduler(
    current_user: Provider = Depends(get_current_user),
) -> Provider:
    """Require a role allowed to manage the waiting list."""
    if current_user.role not in SCHEDULER_ROLES:
        raise HTTPException(status_code=403, detail="Scheduling access required")
    return current_user


async def require_admin(
    current_user: Provider = Depends(get_current_user),
) -> Provider:
    """Require the current user to be an owner or admin."""
    if current_user.role not in (ProviderRole.owner.value, ProviderRole.admin.value):
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


def get_resolver(db: AsyncSession = Depends(get_db)) -> WaitlistResolver:
    """Resolver bound to the request's session."""
    settings = get_settings()
    return WaitlistResolver(
        SqlSchedulingStore(db),
        service=SchedulingService.from_settings(settings),
        today=lambda: clinic_today(settings.clinic_timezone),
        window_days=settings.scheduling_window_days,
    )
