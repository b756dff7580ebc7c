"""
salesflow.api.routers.dev_auth

Dev-only token minting (disabled when `env=prod`).

Responsibilities:
- Mint a token for an arbitrary subject and roles.
- Mint a token for a stored user: subject, role and name come from the record.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND

from salesflow.api.deps import db_session, settings_dep
from salesflow.auth.jwt import JwtConfig, issue_token
from salesflow.auth.models import ROLES
from salesflow.db.repositories.contacts import UserRepo
from salesflow.errors import NotFound, ValidationFailed
from salesflow.settings import Settings

router = APIRouter(prefix="/api/v1/dev", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str | None = Field(default=None, min_length=1, max_length=256)
    user_id: uuid.UUID | None = None
    roles: list[str] = Field(default_factory=list)
    name: str | None = Field(default=None, max_length=255)
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)

    @model_validator(mode="after")
    def _subject_or_user(self) -> DevTokenRequest:
        if not self.subject and self.user_id is None:
            raise ValueError("Either subject or user_id is required")
        return self


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    subject: str
    roles: list[str]


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
    session: AsyncSession = Depends(db_session),
) -> DevTokenResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    unknown = sorted(set(body.roles) - ROLES)
    if unknown:
        raise ValidationFailed.field("roles", f"Unknown roles: {', '.join(unknown)}")

    subject, roles, name = body.subject, set(body.roles), body.name
    if body.user_id is not None:
        user = await UserRepo(session).get(body.user_id)
        if user is None:
            raise NotFound("User not found")
        subject, name = str(user.id), name or user.name
        roles.add(user.role)

    token = issue_token(
        cfg=JwtConfig.from_settings(settings),
        subject=str(subject),
        roles=sorted(roles),
        name=name,
        ttl=timedelta(minutes=body.ttl_minutes),
    )
    return DevTokenResponse(access_token=token, subject=str(subject), roles=sorted(roles))
