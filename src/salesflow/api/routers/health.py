"""
salesflow.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness check (`/healthz`).
- Provide readiness check (`/readyz`) with DB connectivity validation and the
  payment gateway mode (in-process or hosted).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.api.deps import db_session, settings_dep
from salesflow.settings import Settings

router = APIRouter()


@router.get("/healthz")
async def healthz(settings: Settings = Depends(settings_dep)) -> dict[str, str]:
    return {"status": "ok", "service": settings.service_name, "env": settings.env}


@router.get("/readyz")
async def readyz(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, str]:
    # Cron jobs and checkout both depend on the database.
    await session.execute(text("SELECT 1"))
    return {
        "status": "ready",
        "database": "ok",
        "payment_gateway": "hosted" if settings.payment_gateway_base_url else "internal",
    }
