"""Login endpoint issuing the access cookie."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_os.core.auth import create_access_token, set_access_cookie, verify_password
from clinic_os.core.database import get_db
from clinic_os.core.models import Provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    provider_id: str
    tenant_id: str
    name: str
    role: str


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    result = await db.execute(
        select(Provider).where(Provider.email == body.email.lower(), Provider.active.is_(True))
    )
    provider = result.scalar_one_or_none()
    if not provider or not provider.password_hash or not verify_password(body.password, provider.password_hash):
        logger.warning(f"Failed login for {body.email}")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_access_token(str(provider.id), str(provider.tenant_id), provider.role)
    set_access_cookie(response, token)
    return LoginResponse(
        provider_id=str(provider.id),
        tenant_id=str(provider.tenant_id),
        name=provider.name,
        role=provider.role,
    )
