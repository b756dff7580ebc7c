"""
salesflow.db.repositories.workflows

Repositories for workflows, enrollments and step executions.

Responsibilities:
- Load workflows with their step/connection graph.
- Find open enrollments for a contact and enrollments due to resume.
- Append step execution records.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import (
    EnrollmentStatus,
    Workflow,
    WorkflowEnrollment,
    WorkflowStatus,
    WorkflowStepExecution,
    utcnow,
)

OPEN_ENROLLMENT_STATUSES = (EnrollmentStatus.active, EnrollmentStatus.waiting)


class WorkflowRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, workflow: Workflow) -> Workflow:
        self._session.add(workflow)
        await self._session.flush()
        return workflow

    async def get(self, workflow_id: uuid.UUID) -> Workflow | None:
        return await self._session.get(Workflow, workflow_id)

    async def list(self, *, status: WorkflowStatus | None = None) -> list[Workflow]:
        stmt = select(Workflow).order_by(desc(Workflow.created_at))
        if status is not None:
            stmt = stmt.where(Workflow.status == status)
        return list((await self._session.execute(stmt)).scalars().all())

    async def active_for_trigger(self, trigger_type: str) -> list[Workflow]:
        stmt = select(Workflow).where(
            Workflow.status == WorkflowStatus.active, Workflow.trigger_type == trigger_type
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def delete(self, workflow: Workflow) -> None:
        await self._session.delete(workflow)
        await self._session.flush()


class EnrollmentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self, *, workflow: Workflow, contact_id: uuid.UUID, context: dict[str, Any]
    ) -> WorkflowEnrollment:
        enrollment = WorkflowEnrollment(
            workflow_id=workflow.id,
            workflow=workflow,
            contact_id=contact_id,
            status=EnrollmentStatus.active,
            context=context,
            pending_resumes=[],
        )
        self._session.add(enrollment)
        await self._session.flush()
        await self._session.refresh(enrollment, attribute_names=["contact"])
        return enrollment

    async def get(self, enrollment_id: uuid.UUID) -> WorkflowEnrollment | None:
        return await self._session.get(WorkflowEnrollment, enrollment_id)

    async def open_for_contact(
        self, *, workflow_id: uuid.UUID, contact_id: uuid.UUID
    ) -> WorkflowEnrollment | None:
        stmt = (
            select(WorkflowEnrollment)
            .where(
                WorkflowEnrollment.workflow_id == workflow_id,
                WorkflowEnrollment.contact_id == contact_id,
                WorkflowEnrollment.status.in_(OPEN_ENROLLMENT_STATUSES),
            )
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def for_workflow(self, workflow_id: uuid.UUID, *, limit: int = 200) -> list[WorkflowEnrollment]:
        stmt = (
            select(WorkflowEnrollment)
            .where(WorkflowEnrollment.workflow_id == workflow_id)
            .order_by(desc(WorkflowEnrollment.enrolled_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def due_for_resume(self, *, now: datetime) -> list[WorkflowEnrollment]:
        stmt = (
            select(WorkflowEnrollment)
            .where(
                WorkflowEnrollment.status == EnrollmentStatus.waiting,
                WorkflowEnrollment.next_resume_at <= now,
            )
            .order_by(WorkflowEnrollment.next_resume_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def add_execution(
        self,
        *,
        enrollment_id: uuid.UUID,
        step_id: uuid.UUID,
        status: str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> WorkflowStepExecution:
        now = utcnow()
        execution = WorkflowStepExecution(
            enrollment_id=enrollment_id,
            step_id=step_id,
            status=status,
            result=result or {},
            error=error,
            started_at=now,
            completed_at=now,
        )
        self._session.add(execution)
        await self._session.flush()
        return execution

    async def executions(self, enrollment_id: uuid.UUID) -> list[WorkflowStepExecution]:
        stmt = (
            select(WorkflowStepExecution)
            .where(WorkflowStepExecution.enrollment_id == enrollment_id)
            .order_by(WorkflowStepExecution.started_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# Step executions are written as each graph node reports its update, so a crash
# mid-run still leaves the executed prefix on record.
