"""
salesflow.services.activity_service

Contact activity timeline.

Responsibilities:
- Record what happened to a contact: orders, tags, workflows, messages, notes and
  profile edits, each with a human-readable title and description.
- List a contact's timeline newest first, optionally narrowed by type or recency.

Recording flushes but does not commit; the caller owns the transaction.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import ContactActivity, ProductOrder, Workflow, utcnow
from salesflow.db.repositories.contacts import ContactActivityRepo
from salesflow.mergetags.context import to_jsonable
from salesflow.mergetags.formatting import format_money

ACTIVITY_TYPES = (
    "page_view",
    "email_opened",
    "email_clicked",
    "whatsapp_sent",
    "whatsapp_replied",
    "order_created",
    "order_paid",
    "order_cancelled",
    "enrollment_created",
    "class_attended",
    "class_absent",
    "tag_added",
    "tag_removed",
    "workflow_entered",
    "workflow_completed",
    "workflow_exited",
    "note_added",
    "profile_updated",
    "login",
    "custom",
)


def _order_line(order: ProductOrder) -> str:
    return f"Order #{order.order_number} - {format_money(order.total_amount, order.currency)}"


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class ContactActivityService:
    def __init__(self, *, session: AsyncSession, clock: Callable[[], datetime] = utcnow) -> None:
        self._session = session
        self._clock = clock
        self._activities = ContactActivityRepo(session)

    async def record(
        self,
        contact_id: uuid.UUID | None,
        type: str,
        title: str,
        description: str | None = None,
        *,
        metadata: dict[str, Any] | None = None,
        performed_by: str | None = None,
    ) -> ContactActivity | None:
        # Contacts that were never persisted have no timeline.
        if contact_id is None:
            return None
        activity = ContactActivity(
            contact_id=contact_id,
            type=type if type in ACTIVITY_TYPES else "custom",
            title=title,
            description=description,
            meta=to_jsonable(metadata or {}),
            performed_by=performed_by,
            created_at=self._clock(),
        )
        return await self._activities.add(activity)

    async def timeline(
        self,
        contact_id: uuid.UUID,
        *,
        types: Iterable[str] | None = None,
        days: int | None = None,
        limit: int = 50,
    ) -> list[ContactActivity]:
        since = self._clock() - timedelta(days=days) if days else None
        return await self._activities.for_contact(
            contact_id, types=list(types or []), since=since, limit=limit
        )

    # --- Orders ---------------------------------------------------------------

    async def order_created(self, contact_id: uuid.UUID | None, order: ProductOrder, *, performed_by: str | None = None):
        return await self.record(
            contact_id,
            "order_created",
            "Created order",
            _order_line(order),
            metadata={"order_id": order.id, "order_number": order.order_number, "source": order.source},
            performed_by=performed_by,
        )

    async def order_paid(self, contact_id: uuid.UUID | None, order: ProductOrder, *, performed_by: str | None = None):
        return await self.record(
            contact_id,
            "order_paid",
            "Completed payment",
            _order_line(order),
            metadata={"order_id": order.id, "order_number": order.order_number, "payment_method": order.payment_method},
            performed_by=performed_by,
        )

    async def order_cancelled(
        self, contact_id: uuid.UUID | None, order: ProductOrder, *, reason: str | None = None, performed_by: str | None = None
    ):
        description = f"Order #{order.order_number}"
        if reason:
            description += f" - Reason: {reason}"
        return await self.record(
            contact_id,
            "order_cancelled",
            "Order cancelled",
            description,
            metadata={"order_id": order.id, "order_number": order.order_number, "reason": reason},
            performed_by=performed_by,
        )

    # --- Tags -----------------------------------------------------------------

    async def tag_added(
        self, contact_id: uuid.UUID | None, tag: str, *, source: str | None = None, performed_by: str | None = None
    ):
        description = f"Tag: {tag}" + (f" (Source: {source})" if source else "")
        return await self.record(
            contact_id,
            "tag_added",
            "Tag added",
            description,
            metadata={"tag": tag, "source": source},
            performed_by=performed_by,
        )

    async def tag_removed(self, contact_id: uuid.UUID | None, tag: str, *, performed_by: str | None = None):
        return await self.record(
            contact_id, "tag_removed", "Tag removed", f"Tag: {tag}", metadata={"tag": tag}, performed_by=performed_by
        )

    # --- Workflows ------------------------------------------------------------

    async def workflow_entered(self, contact_id: uuid.UUID | None, workflow: Workflow):
        return await self.record(
            contact_id,
            "workflow_entered",
            "Entered workflow",
            f"Workflow: {workflow.name}",
            metadata={"workflow_id": workflow.id},
            performed_by="workflow",
        )

    async def workflow_completed(self, contact_id: uuid.UUID | None, workflow: Workflow):
        return await self.record(
            contact_id,
            "workflow_completed",
            "Completed workflow",
            f"Workflow: {workflow.name}",
            metadata={"workflow_id": workflow.id},
            performed_by="workflow",
        )

    async def workflow_exited(self, contact_id: uuid.UUID | None, workflow: Workflow, *, reason: str | None = None):
        description = f"Workflow: {workflow.name}" + (f" - Reason: {reason}" if reason else "")
        return await self.record(
            contact_id,
            "workflow_exited",
            "Exited workflow",
            description,
            metadata={"workflow_id": workflow.id, "reason": reason},
            performed_by="workflow",
        )

    # --- Messaging, notes, profile ----------------------------------------------

    async def whatsapp_sent(self, contact_id: uuid.UUID | None, message: str, *, phone: str | None = None):
        return await self.record(
            contact_id,
            "whatsapp_sent",
            "WhatsApp message sent",
            _clip(message, 100),
            metadata={"phone": phone},
            performed_by="system",
        )

    async def note_added(self, contact_id: uuid.UUID | None, note: str, *, performed_by: str | None = None):
        return await self.record(
            contact_id, "note_added", "Note added", _clip(note, 200), metadata={"note": note}, performed_by=performed_by
        )

    async def profile_updated(
        self, contact_id: uuid.UUID | None, fields: Iterable[str], *, performed_by: str | None = None
    ):
        names = list(fields)
        return await self.record(
            contact_id,
            "profile_updated",
            "Profile updated",
            f"Updated fields: {', '.join(names)}",
            metadata={"fields": names},
            performed_by=performed_by,
        )
