"""
salesflow.db.repositories.automations

Repositories for funnel automations, their logs and message templates.

Responsibilities:
- Load active automations (funnel-scoped plus global) in priority order.
- Append execution logs and find due scheduled actions.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import desc, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import (
    AutomationLogStatus,
    FunnelAutomation,
    FunnelAutomationAction,
    FunnelAutomationLog,
    MessageTemplate,
)


class AutomationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, automation: FunnelAutomation) -> FunnelAutomation:
        self._session.add(automation)
        await self._session.flush()
        return automation

    async def get(self, automation_id: uuid.UUID) -> FunnelAutomation | None:
        return await self._session.get(FunnelAutomation, automation_id)

    async def get_action(self, action_id: uuid.UUID) -> FunnelAutomationAction | None:
        return await self._session.get(FunnelAutomationAction, action_id)

    async def list(self, *, funnel_id: uuid.UUID | None = None) -> list[FunnelAutomation]:
        stmt = select(FunnelAutomation).order_by(desc(FunnelAutomation.priority), FunnelAutomation.name)
        if funnel_id is not None:
            stmt = stmt.where(FunnelAutomation.funnel_id == funnel_id)
        return list((await self._session.execute(stmt)).scalars().all())

    async def active_for_funnel(self, funnel_id: uuid.UUID | None) -> list[FunnelAutomation]:
        stmt = (
            select(FunnelAutomation)
            .where(FunnelAutomation.is_active.is_(True))
            .order_by(desc(FunnelAutomation.priority))
        )
        if funnel_id is not None:
            # Global automations (no funnel) apply to every funnel.
            stmt = stmt.where(
                or_(FunnelAutomation.funnel_id == funnel_id, FunnelAutomation.funnel_id.is_(None))
            )
        return list((await self._session.execute(stmt)).scalars().all())

    async def delete(self, automation: FunnelAutomation) -> None:
        await self._session.delete(automation)
        await self._session.flush()


class AutomationLogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        automation_id: uuid.UUID,
        action_id: uuid.UUID,
        status: AutomationLogStatus,
        result: dict[str, Any],
        session_id: str | None = None,
        contact_email: str | None = None,
        scheduled_at: datetime | None = None,
        executed_at: datetime | None = None,
    ) -> FunnelAutomationLog:
        entry = FunnelAutomationLog(
            automation_id=automation_id,
            action_id=action_id,
            status=status,
            result=result,
            session_id=session_id,
            contact_email=contact_email,
            scheduled_at=scheduled_at,
            executed_at=executed_at,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def due(self, *, now: datetime) -> list[FunnelAutomationLog]:
        stmt = (
            select(FunnelAutomationLog)
            .where(
                FunnelAutomationLog.status == AutomationLogStatus.pending,
                FunnelAutomationLog.scheduled_at <= now,
            )
            .order_by(FunnelAutomationLog.scheduled_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def for_automation(self, automation_id: uuid.UUID, *, limit: int = 200) -> list[FunnelAutomationLog]:
        stmt = (
            select(FunnelAutomationLog)
            .where(FunnelAutomationLog.automation_id == automation_id)
            .order_by(desc(FunnelAutomationLog.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


class MessageTemplateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self, *, name: str, body: str, channel: str = "whatsapp", subject: str | None = None
    ) -> MessageTemplate:
        template = MessageTemplate(name=name, body=body, channel=channel, subject=subject)
        self._session.add(template)
        await self._session.flush()
        return template

    async def get(self, template_id: uuid.UUID) -> MessageTemplate | None:
        return await self._session.get(MessageTemplate, template_id)
