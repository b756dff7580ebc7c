"""
salesflow.actions.base

Shared types for action handlers.

Responsibilities:
- `ActionContext`: the contact (when one exists) plus the merge-tag context.
- `ActionRuntime`: the collaborators handlers need (DB session, senders, HTTP).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.clients.mailer import Mailer
from salesflow.clients.whatsapp import WhatsAppSender
from salesflow.db.models import Contact, utcnow
from salesflow.mergetags.engine import MergeTagEngine
from salesflow.settings import Settings

ActionResult = dict[str, Any]


@dataclass(slots=True)
class ActionContext:
    data: dict[str, Any] = field(default_factory=dict)
    contact: Contact | None = None

    def merge_context(self) -> dict[str, Any]:
        merged = dict(self.data)
        if self.contact is not None and not merged.get("contact"):
            merged["contact"] = self.contact
        return merged


@dataclass(frozen=True, slots=True)
class ActionRuntime:
    session: AsyncSession
    settings: Settings
    http: httpx.AsyncClient
    whatsapp: WhatsAppSender
    mailer: Mailer
    clock: Callable[[], datetime] = utcnow

    @classmethod
    def build(
        cls,
        *,
        session: AsyncSession,
        settings: Settings,
        http: httpx.AsyncClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> ActionRuntime:
        return cls(
            session=session,
            settings=settings,
            http=http,
            whatsapp=WhatsAppSender(settings=settings, http=http),
            mailer=Mailer(settings=settings),
            clock=clock,
        )

    def engine(self, ctx: ActionContext) -> MergeTagEngine:
        return MergeTagEngine(self.settings, ctx.merge_context(), clock=self.clock)


ActionHandler = Callable[[dict[str, Any], ActionContext, ActionRuntime], Awaitable[ActionResult]]
