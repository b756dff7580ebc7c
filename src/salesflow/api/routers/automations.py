"""
salesflow.api.routers.automations

Funnel automation endpoints (role `marketer`).
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED

from salesflow.actions.registry import default_registry
from salesflow.api.deps import db_session, http_client, settings_dep
from salesflow.api.serializers import automation_log_out, automation_out
from salesflow.auth.deps import require_roles
from salesflow.mergetags.registry import TRIGGER_GROUPS
from salesflow.services.automation_service import AutomationService
from salesflow.settings import Settings

router = APIRouter(
    prefix="/api/v1/automations",
    tags=["automations"],
    dependencies=[Depends(require_roles("marketer"))],
)


def _service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> AutomationService:
    return AutomationService(session=session, settings=settings, http=http)


class ActionRequest(BaseModel):
    action_type: str
    action_config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    delay_minutes: int = Field(default=0, ge=0)
    sort_order: int | None = Field(default=None, ge=0)


class AutomationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    trigger_type: str
    funnel_id: uuid.UUID | None = None
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    priority: int = 0
    actions: list[ActionRequest] = Field(default_factory=list)


class UpdateAutomationRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    trigger_type: str | None = None
    funnel_id: uuid.UUID | None = None
    trigger_config: dict[str, Any] | None = None
    is_active: bool | None = None
    priority: int | None = None
    actions: list[ActionRequest] | None = None


def _actions(actions: list[ActionRequest] | None) -> list[dict[str, Any]] | None:
    if actions is None:
        return None
    return [a.model_dump(exclude_none=True) for a in actions]


@router.get("/options")
async def options() -> dict[str, Any]:
    return {"data": {"trigger_types": TRIGGER_GROUPS, "action_types": default_registry.types}}


@router.get("")
async def list_automations(
    funnel_id: uuid.UUID | None = Query(default=None),
    svc: AutomationService = Depends(_service),
) -> dict[str, Any]:
    return {"data": [automation_out(a) for a in await svc.list(funnel_id=funnel_id)]}


@router.post("", status_code=HTTP_201_CREATED)
async def create_automation(
    body: AutomationRequest, svc: AutomationService = Depends(_service)
) -> dict[str, Any]:
    automation = await svc.create(
        name=body.name,
        trigger_type=body.trigger_type,
        funnel_id=body.funnel_id,
        trigger_config=body.trigger_config,
        is_active=body.is_active,
        priority=body.priority,
        actions=_actions(body.actions),
    )
    return {"data": automation_out(automation)}


@router.get("/{automation_id}")
async def get_automation(automation_id: uuid.UUID, svc: AutomationService = Depends(_service)) -> dict[str, Any]:
    return {"data": automation_out(await svc.get(automation_id))}


@router.put("/{automation_id}")
async def update_automation(
    automation_id: uuid.UUID,
    body: UpdateAutomationRequest,
    svc: AutomationService = Depends(_service),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True, exclude={"actions"})
    automation = await svc.update(automation_id, actions=_actions(body.actions), **changes)
    return {"data": automation_out(automation)}


@router.delete("/{automation_id}")
async def delete_automation(automation_id: uuid.UUID, svc: AutomationService = Depends(_service)) -> dict[str, Any]:
    await svc.delete(automation_id)
    return {"message": "Automation deleted"}


@router.post("/{automation_id}/toggle")
async def toggle_automation(automation_id: uuid.UUID, svc: AutomationService = Depends(_service)) -> dict[str, Any]:
    return {"data": automation_out(await svc.toggle(automation_id))}


@router.post("/{automation_id}/duplicate", status_code=HTTP_201_CREATED)
async def duplicate_automation(
    automation_id: uuid.UUID, svc: AutomationService = Depends(_service)
) -> dict[str, Any]:
    return {"data": automation_out(await svc.duplicate(automation_id))}


@router.get("/{automation_id}/logs")
async def automation_logs(automation_id: uuid.UUID, svc: AutomationService = Depends(_service)) -> dict[str, Any]:
    return {"data": [automation_log_out(entry) for entry in await svc.logs(automation_id)]}
