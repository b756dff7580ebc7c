"""
salesflow.api.routers.affiliates

Affiliate portal endpoints.

Responsibilities:
- Register and log in by phone (public); both return a bearer token with role `affiliate`.
- Profile, dashboard, joined and discoverable funnels, joining a funnel, per-funnel
  stats and the leaderboard (role `affiliate`).

Funnel owners manage a funnel's programme under `/api/v1/funnels/{id}/affiliates`.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED

from salesflow.api.deps import db_session, settings_dep
from salesflow.api.serializers import affiliate_out
from salesflow.auth.deps import require_roles
from salesflow.auth.models import Principal
from salesflow.db.models import FunnelAffiliate
from salesflow.services.affiliate_service import AffiliateService
from salesflow.settings import Settings

router = APIRouter(prefix="/api/v1/affiliates", tags=["affiliates"])


def _service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> AffiliateService:
    return AffiliateService(session=session, settings=settings)


async def _affiliate(
    principal: Principal = Depends(require_roles("affiliate")),
    svc: AffiliateService = Depends(_service),
) -> FunnelAffiliate:
    return await svc.current(principal.subject)


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    phone: str = Field(min_length=1, max_length=50)
    email: EmailStr | None = None


class LoginRequest(BaseModel):
    phone: str = Field(min_length=1, max_length=50)


def _session_out(svc: AffiliateService, affiliate: FunnelAffiliate) -> dict[str, Any]:
    return {
        "affiliate": affiliate_out(affiliate),
        "access_token": svc.access_token(affiliate),
        "token_type": "bearer",
    }


# --- Accounts ---------------------------------------------------------------------


@router.post("/register", status_code=HTTP_201_CREATED)
async def register(body: RegisterRequest, svc: AffiliateService = Depends(_service)) -> dict[str, Any]:
    affiliate = await svc.register(
        name=body.name, phone=body.phone, email=str(body.email) if body.email else None
    )
    return {"data": _session_out(svc, affiliate)}


@router.post("/login")
async def login(body: LoginRequest, svc: AffiliateService = Depends(_service)) -> dict[str, Any]:
    return {"data": _session_out(svc, await svc.login(phone=body.phone))}


@router.get("/me")
async def me(affiliate: FunnelAffiliate = Depends(_affiliate)) -> dict[str, Any]:
    return {"data": affiliate_out(affiliate)}


@router.put("/me")
async def update_me(
    body: RegisterRequest,
    affiliate: FunnelAffiliate = Depends(_affiliate),
    svc: AffiliateService = Depends(_service),
) -> dict[str, Any]:
    affiliate = await svc.update_profile(
        affiliate, name=body.name, phone=body.phone, email=str(body.email) if body.email else None
    )
    return {"data": affiliate_out(affiliate)}


# --- Portal -------------------------------------------------------------------------


@router.get("/dashboard")
async def dashboard(
    affiliate: FunnelAffiliate = Depends(_affiliate), svc: AffiliateService = Depends(_service)
) -> dict[str, Any]:
    return {"data": await svc.dashboard(affiliate)}


@router.get("/funnels")
async def joined_funnels(
    affiliate: FunnelAffiliate = Depends(_affiliate), svc: AffiliateService = Depends(_service)
) -> dict[str, Any]:
    return {"data": await svc.joined_funnels(affiliate)}


@router.get("/funnels/discover")
async def discover_funnels(
    affiliate: FunnelAffiliate = Depends(_affiliate), svc: AffiliateService = Depends(_service)
) -> dict[str, Any]:
    return {"data": await svc.discover(affiliate)}


@router.post("/funnels/{funnel_id}/join")
async def join_funnel(
    funnel_id: uuid.UUID,
    affiliate: FunnelAffiliate = Depends(_affiliate),
    svc: AffiliateService = Depends(_service),
) -> dict[str, Any]:
    return await svc.join(affiliate, funnel_id)


@router.get("/funnels/{funnel_id}/stats")
async def funnel_stats(
    funnel_id: uuid.UUID,
    affiliate: FunnelAffiliate = Depends(_affiliate),
    svc: AffiliateService = Depends(_service),
) -> dict[str, Any]:
    return {"data": await svc.funnel_stats(affiliate, funnel_id)}


@router.get("/leaderboard")
async def leaderboard(
    affiliate: FunnelAffiliate = Depends(_affiliate), svc: AffiliateService = Depends(_service)
) -> dict[str, Any]:
    return {"data": await svc.leaderboard(affiliate)}
