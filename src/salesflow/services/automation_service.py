"""
salesflow.services.automation_service

Funnel automation service (linear trigger -> ordered actions).

Responsibilities:
- CRUD, toggle, duplicate and log listing for funnel automations.
- Fire matching automations for an event, running or scheduling each action.
- Build the purchase context used by purchase-completed automations.
- Execute scheduled (delayed) actions once they are due.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.actions.base import ActionContext, ActionRuntime
from salesflow.actions.conditions import conditions_met, config_matches, get_path
from salesflow.actions.registry import ActionRegistry, default_registry
from salesflow.db.models import (
    AutomationLogStatus,
    Contact,
    FunnelAutomation,
    FunnelAutomationAction,
    FunnelAutomationLog,
    FunnelSession,
    ProductOrder,
    utcnow,
)
from salesflow.db.repositories.automations import AutomationLogRepo, AutomationRepo
from salesflow.db.repositories.contacts import ContactRepo
from salesflow.db.repositories.funnels import FunnelOrderRepo
from salesflow.errors import NotFound, ValidationFailed
from salesflow.mergetags.context import to_jsonable
from salesflow.mergetags.registry import triggers_match
from salesflow.observability.logging import get_logger
from salesflow.settings import Settings

log = get_logger(__name__)


class AutomationService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        http: httpx.AsyncClient,
        registry: ActionRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings
        self._http = http
        self._registry = registry or default_registry
        self._clock = clock

        self._automations = AutomationRepo(session)
        self._logs = AutomationLogRepo(session)

    # --- CRUD ---------------------------------------------------------------

    async def get(self, automation_id: uuid.UUID) -> FunnelAutomation:
        automation = await self._automations.get(automation_id)
        if automation is None:
            raise NotFound("Automation not found")
        return automation

    async def list(self, *, funnel_id: uuid.UUID | None = None) -> list[FunnelAutomation]:
        return await self._automations.list(funnel_id=funnel_id)

    async def create(
        self,
        *,
        name: str,
        trigger_type: str,
        funnel_id: uuid.UUID | None = None,
        trigger_config: dict[str, Any] | None = None,
        is_active: bool = True,
        priority: int = 0,
        actions: list[dict[str, Any]] | None = None,
    ) -> FunnelAutomation:
        automation = FunnelAutomation(
            funnel_id=funnel_id,
            name=name,
            trigger_type=trigger_type,
            trigger_config=dict(trigger_config or {}),
            is_active=is_active,
            priority=priority,
            actions=self._build_actions(actions or []),
        )
        await self._automations.add(automation)
        await self._session.commit()
        log.info("automation_created", automation_id=str(automation.id), trigger_type=trigger_type)
        return automation

    async def update(self, automation_id: uuid.UUID, **changes: Any) -> FunnelAutomation:
        automation = await self.get(automation_id)
        actions = changes.pop("actions", None)
        for key in ("name", "trigger_type", "trigger_config", "is_active", "priority", "funnel_id"):
            if key in changes and changes[key] is not None:
                setattr(automation, key, changes[key])
        if actions is not None:
            automation.actions = self._build_actions(actions)
        await self._session.commit()
        return automation

    async def delete(self, automation_id: uuid.UUID) -> None:
        automation = await self.get(automation_id)
        await self._automations.delete(automation)
        await self._session.commit()

    async def toggle(self, automation_id: uuid.UUID) -> FunnelAutomation:
        automation = await self.get(automation_id)
        automation.is_active = not automation.is_active
        await self._session.commit()
        return automation

    async def duplicate(self, automation_id: uuid.UUID) -> FunnelAutomation:
        source = await self.get(automation_id)
        copy = FunnelAutomation(
            funnel_id=source.funnel_id,
            name=f"{source.name} (Copy)",
            trigger_type=source.trigger_type,
            trigger_config=dict(source.trigger_config or {}),
            # Copies start disabled so they never double-fire.
            is_active=False,
            priority=source.priority,
            actions=[
                FunnelAutomationAction(
                    action_type=a.action_type,
                    action_config=dict(a.action_config or {}),
                    conditions=list(a.conditions or []),
                    delay_minutes=a.delay_minutes,
                    sort_order=a.sort_order,
                )
                for a in source.actions
            ],
        )
        await self._automations.add(copy)
        await self._session.commit()
        return copy

    async def logs(self, automation_id: uuid.UUID) -> list[FunnelAutomationLog]:
        await self.get(automation_id)
        return await self._logs.for_automation(automation_id)

    def _build_actions(self, actions: list[dict[str, Any]]) -> list[FunnelAutomationAction]:
        errors: dict[str, list[str]] = {}
        built = []
        for i, raw in enumerate(actions):
            action_type = str(raw.get("action_type") or "")
            if not self._registry.has(action_type):
                errors[f"actions.{i}.action_type"] = [f"Unknown action type: {action_type}"]
            delay = int(raw.get("delay_minutes") or 0)
            if delay < 0:
                errors[f"actions.{i}.delay_minutes"] = ["The delay must be at least 0."]
            built.append(
                FunnelAutomationAction(
                    action_type=action_type,
                    action_config=dict(raw.get("action_config") or {}),
                    conditions=list(raw.get("conditions") or []),
                    delay_minutes=delay,
                    sort_order=int(raw.get("sort_order", i)),
                )
            )
        if errors:
            raise ValidationFailed(errors)
        return built

    # --- Execution ----------------------------------------------------------

    async def trigger(
        self, event_type: str, context: dict[str, Any], *, funnel_id: uuid.UUID | None = None
    ) -> list[FunnelAutomationLog]:
        entries: list[FunnelAutomationLog] = []
        for automation in await self._automations.active_for_funnel(funnel_id):
            if not triggers_match(automation.trigger_type, event_type):
                continue
            if not config_matches(automation.trigger_config, context):
                continue
            log.info(
                "automation_executing",
                automation_id=str(automation.id),
                trigger_type=automation.trigger_type,
                event_type=event_type,
            )
            for action in automation.actions:
                entries.append(await self._run_action(automation, action, context))
        await self._session.commit()
        return entries

    async def trigger_purchase_completed(
        self, order: ProductOrder, session: FunnelSession | None = None, contact: Contact | None = None
    ) -> list[FunnelAutomationLog]:
        context = build_purchase_context(order, session, contact)
        funnel_id = _as_uuid((order.meta or {}).get("funnel_id"))
        if funnel_id is None and session is not None:
            funnel_id = session.funnel_id
        if funnel_id is None:
            funnel_order = await FunnelOrderRepo(self._session).for_product_order(order.id)
            funnel_id = funnel_order.funnel_id if funnel_order is not None else None
        return await self.trigger("purchase_completed", context, funnel_id=funnel_id)

    async def process_scheduled_actions(self, *, now: datetime | None = None) -> int:
        now = now or self._clock()
        processed = 0
        for entry in await self._logs.due(now=now):
            automation = await self._automations.get(entry.automation_id)
            action = await self._automations.get_action(entry.action_id)
            if automation is None or action is None:
                entry.status = AutomationLogStatus.failed
                entry.result = {"error": "Automation or action not found"}
                entry.executed_at = now
                await self._session.commit()
                continue

            context = dict((entry.result or {}).get("context") or {})
            result = await self._execute(action, context)
            entry.status = AutomationLogStatus.executed if result.get("success") else AutomationLogStatus.failed
            entry.result = to_jsonable(result)
            entry.executed_at = now
            await self._session.commit()
            processed += 1
        return processed

    async def _run_action(
        self, automation: FunnelAutomation, action: FunnelAutomationAction, context: dict[str, Any]
    ) -> FunnelAutomationLog:
        if not conditions_met(action.conditions, context):
            return await self._log(automation, action, context, AutomationLogStatus.skipped, {"reason": "Conditions not met"})

        if action.delay_minutes > 0:
            scheduled_at = self._clock() + timedelta(minutes=action.delay_minutes)
            entry = await self._logs.add(
                automation_id=automation.id,
                action_id=action.id,
                status=AutomationLogStatus.pending,
                result={"context": to_jsonable(context)},
                session_id=_session_id(context),
                contact_email=_contact_email(context),
                scheduled_at=scheduled_at,
            )
            log.info(
                "automation_action_scheduled",
                automation_id=str(automation.id),
                action_id=str(action.id),
                scheduled_at=scheduled_at.isoformat(),
            )
            return entry

        result = await self._execute(action, context)
        status = AutomationLogStatus.executed if result.get("success") else AutomationLogStatus.failed
        return await self._log(automation, action, context, status, result)

    async def _execute(self, action: FunnelAutomationAction, context: dict[str, Any]) -> dict[str, Any]:
        runtime = ActionRuntime.build(
            session=self._session, settings=self._settings, http=self._http, clock=self._clock
        )
        contact = context.get("contact")
        if isinstance(contact, dict):
            # Scheduled actions carry the contact as stored JSON.
            contact_id = _as_uuid(contact.get("id"))
            contact = await ContactRepo(self._session).get(contact_id) if contact_id else None
        ctx = ActionContext(data=context, contact=contact if isinstance(contact, Contact) else None)
        return await self._registry.execute(action.action_type, action.action_config, ctx, runtime)

    async def _log(
        self,
        automation: FunnelAutomation,
        action: FunnelAutomationAction,
        context: dict[str, Any],
        status: AutomationLogStatus,
        result: dict[str, Any],
    ) -> FunnelAutomationLog:
        entry = await self._logs.add(
            automation_id=automation.id,
            action_id=action.id,
            status=status,
            result=to_jsonable(result),
            session_id=_session_id(context),
            contact_email=_contact_email(context),
            executed_at=self._clock(),
        )
        log.info(
            "automation_action_logged",
            automation_id=str(automation.id),
            action_id=str(action.id),
            status=status.value,
        )
        return entry


def build_purchase_context(
    order: ProductOrder, session: FunnelSession | None = None, contact: Contact | None = None
) -> dict[str, Any]:
    """
    Records for the merge-tag providers plus flat dicts for direct `{{order.*}}`-style access.
    """

    meta = order.meta or {}
    name = order.display_customer_name()
    email = order.customer_email
    funnel = session.funnel if session is not None else None
    contact_data: Any = contact
    if contact_data is None:
        contact_data = {
            "name": name,
            "email": email,
            "phone": order.customer_phone,
            "first_name": (name or "").split(" ")[0],
        }
    return {
        "product_order": order,
        "funnel_session": session,
        "session_id": str(session.id) if session is not None else None,
        "contact": contact_data,
        "order": {
            "id": str(order.id),
            "order_number": order.order_number,
            "total": str(order.total_amount),
            "subtotal": str(order.subtotal),
            "currency": order.currency,
            "payment_method": order.payment_method,
            "status": order.status.value,
            "customer_name": name,
            "customer_email": email,
            "customer_phone": order.customer_phone,
        },
        "funnel": {
            "id": meta.get("funnel_id") or (str(session.funnel_id) if session is not None else None),
            "slug": meta.get("funnel_slug") or (funnel.slug if funnel is not None else None),
        },
    }


def _session_id(context: dict[str, Any]) -> str | None:
    value = context.get("session_id")
    return str(value) if value else None


def _contact_email(context: dict[str, Any]) -> str | None:
    value = get_path(context, "contact.email") or get_path(context, "order.customer_email")
    return str(value) if value else None


def _as_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
