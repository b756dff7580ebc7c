"""
salesflow.api.routers.workflows

Visual workflow endpoints (role `marketer`).

Responsibilities:
- Save workflow graphs (nodes/edges as drawn by the builder) and manage their status.
- Inspect enrollments, their step executions, and exit them manually.
"""

from __future__ import annotations

import uuid
from collections import Counter
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED

from salesflow.api.deps import db_session, http_client, settings_dep
from salesflow.api.serializers import enrollment_out, execution_out, workflow_out
from salesflow.auth.deps import require_roles
from salesflow.db.models import EnrollmentStatus, WorkflowStatus
from salesflow.errors import ValidationFailed
from salesflow.services.workflow_service import WorkflowService
from salesflow.settings import Settings

router = APIRouter(
    prefix="/api/v1/workflows",
    tags=["workflows"],
    dependencies=[Depends(require_roles("marketer"))],
)


def _service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> WorkflowService:
    return WorkflowService(session=session, settings=settings, http=http)


class WorkflowRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    trigger_type: str | None = None
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class UpdateWorkflowRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    trigger_type: str | None = None
    trigger_config: dict[str, Any] | None = None
    nodes: list[dict[str, Any]] | None = None
    edges: list[dict[str, Any]] | None = None


class ExitRequest(BaseModel):
    reason: str = Field(default="manual", max_length=255)


@router.get("")
async def list_workflows(
    status: str | None = Query(default=None),
    svc: WorkflowService = Depends(_service),
) -> dict[str, Any]:
    wanted = None
    if status:
        try:
            wanted = WorkflowStatus(status)
        except ValueError as e:
            raise ValidationFailed.field("status", "The selected status is invalid.") from e
    return {"data": [workflow_out(w) for w in await svc.list(status=wanted)]}


@router.post("", status_code=HTTP_201_CREATED)
async def create_workflow(body: WorkflowRequest, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    workflow = await svc.create(
        name=body.name,
        description=body.description,
        trigger_type=body.trigger_type,
        trigger_config=body.trigger_config,
        nodes=body.nodes,
        edges=body.edges,
    )
    return {"data": workflow_out(workflow)}


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: uuid.UUID, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    return {"data": workflow_out(await svc.get(workflow_id))}


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: uuid.UUID,
    body: UpdateWorkflowRequest,
    svc: WorkflowService = Depends(_service),
) -> dict[str, Any]:
    workflow = await svc.update(
        workflow_id,
        name=body.name,
        description=body.description,
        trigger_type=body.trigger_type,
        trigger_config=body.trigger_config,
        nodes=body.nodes,
        edges=body.edges,
    )
    return {"data": workflow_out(workflow)}


@router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: uuid.UUID, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    await svc.delete(workflow_id)
    return {"message": "Workflow deleted"}


@router.post("/{workflow_id}/publish")
async def publish_workflow(workflow_id: uuid.UUID, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    return {"message": "Workflow activated", "data": workflow_out(await svc.activate(workflow_id))}


@router.post("/{workflow_id}/pause")
async def pause_workflow(workflow_id: uuid.UUID, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    return {"message": "Workflow paused", "data": workflow_out(await svc.pause(workflow_id))}


@router.get("/{workflow_id}/stats")
async def workflow_stats(workflow_id: uuid.UUID, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    counts = Counter(e.status for e in await svc.enrollments(workflow_id))
    return {
        "data": {
            "total_enrolled": sum(counts.values()),
            **{status.value: counts.get(status, 0) for status in EnrollmentStatus},
        }
    }


@router.get("/{workflow_id}/enrollments")
async def list_enrollments(workflow_id: uuid.UUID, svc: WorkflowService = Depends(_service)) -> dict[str, Any]:
    return {"data": [enrollment_out(e) for e in await svc.enrollments(workflow_id)]}


@router.get("/{workflow_id}/enrollments/{enrollment_id}")
async def get_enrollment(
    workflow_id: uuid.UUID, enrollment_id: uuid.UUID, svc: WorkflowService = Depends(_service)
) -> dict[str, Any]:
    enrollment = await svc.get_enrollment(workflow_id, enrollment_id)
    out = enrollment_out(enrollment)
    out["executions"] = [execution_out(x) for x in await svc.executions(enrollment)]
    return {"data": out}


@router.post("/{workflow_id}/enrollments/{enrollment_id}/exit")
async def exit_enrollment(
    workflow_id: uuid.UUID,
    enrollment_id: uuid.UUID,
    body: ExitRequest | None = None,
    svc: WorkflowService = Depends(_service),
) -> dict[str, Any]:
    enrollment = await svc.get_enrollment(workflow_id, enrollment_id)
    reason = body.reason if body is not None else "manual"
    return {"data": enrollment_out(await svc.exit_enrollment(enrollment, reason))}
