"""
salesflow.db.repositories.funnels

Repositories for funnels and their runtime records.

Responsibilities:
- Funnels, steps, step products and order bumps (admin CRUD reads).
- Visitor sessions and their tracked events.
- Session carts (upsert, recovery lookups, abandoned-cart scans).
- Funnel orders (analytics link between a session and a product order).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import (
    CartRecoveryStatus,
    Funnel,
    FunnelCart,
    FunnelEvent,
    FunnelOrder,
    FunnelSession,
    FunnelStep,
    FunnelStepOrderBump,
    FunnelStepProduct,
)


class FunnelRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, funnel: Funnel) -> Funnel:
        self._session.add(funnel)
        await self._session.flush()
        return funnel

    async def get(self, funnel_id: uuid.UUID) -> Funnel | None:
        return await self._session.get(Funnel, funnel_id)

    async def get_by_slug(self, slug: str) -> Funnel | None:
        stmt = select(Funnel).where(Funnel.slug == slug)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get_by_embed_key(self, embed_key: str) -> Funnel | None:
        stmt = select(Funnel).where(Funnel.embed_key == embed_key)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def embed_key_exists(self, embed_key: str) -> bool:
        stmt = select(Funnel.id).where(Funnel.embed_key == embed_key)
        return (await self._session.execute(stmt)).first() is not None

    async def slug_exists(self, slug: str) -> bool:
        stmt = select(Funnel.id).where(Funnel.slug == slug)
        return (await self._session.execute(stmt)).first() is not None

    async def list(self, *, status: str | None = None, search: str | None = None) -> list[Funnel]:
        stmt = select(Funnel).order_by(desc(Funnel.created_at))
        if status:
            stmt = stmt.where(Funnel.status == status)
        if search:
            stmt = stmt.where(Funnel.name.ilike(f"%{search}%"))
        return list((await self._session.execute(stmt)).scalars().all())

    async def delete(self, funnel: Funnel) -> None:
        await self._session.delete(funnel)
        await self._session.flush()

    async def get_step(self, step_id: uuid.UUID) -> FunnelStep | None:
        return await self._session.get(FunnelStep, step_id)

    async def get_step_product(self, product_id: uuid.UUID) -> FunnelStepProduct | None:
        return await self._session.get(FunnelStepProduct, product_id)

    async def get_order_bump(self, bump_id: uuid.UUID) -> FunnelStepOrderBump | None:
        return await self._session.get(FunnelStepOrderBump, bump_id)


class FunnelSessionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, funnel: Funnel, **fields: Any) -> FunnelSession:
        visitor = FunnelSession(funnel_id=funnel.id, funnel=funnel, meta={}, **fields)
        self._session.add(visitor)
        await self._session.flush()
        return visitor

    async def get(self, session_id: uuid.UUID) -> FunnelSession | None:
        return await self._session.get(FunnelSession, session_id)

    async def track(
        self,
        visitor: FunnelSession,
        event_type: str,
        data: dict[str, Any] | None = None,
        *,
        step_id: uuid.UUID | None = None,
    ) -> FunnelEvent:
        event = FunnelEvent(
            session_id=visitor.id, step_id=step_id, event_type=event_type, data=data or {}
        )
        self._session.add(event)
        await self._session.flush()
        return event

    async def events(self, session_id: uuid.UUID) -> list[FunnelEvent]:
        stmt = (
            select(FunnelEvent)
            .where(FunnelEvent.session_id == session_id)
            .order_by(FunnelEvent.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def count_for_funnel(self, funnel_id: uuid.UUID, *, converted: bool | None = None) -> int:
        stmt = select(func.count()).select_from(FunnelSession).where(FunnelSession.funnel_id == funnel_id)
        if converted is True:
            stmt = stmt.where(FunnelSession.converted_at.is_not(None))
        elif converted is False:
            stmt = stmt.where(FunnelSession.converted_at.is_(None))
        return int((await self._session.execute(stmt)).scalar_one())


class FunnelCartRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def for_session(self, session_id: uuid.UUID) -> FunnelCart | None:
        stmt = select(FunnelCart).where(FunnelCart.session_id == session_id).limit(1)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def add(self, cart: FunnelCart) -> FunnelCart:
        self._session.add(cart)
        await self._session.flush()
        return cart

    async def get_by_token(self, token: str) -> FunnelCart | None:
        stmt = select(FunnelCart).where(FunnelCart.recovery_token == token)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def abandoned_for_funnel(self, funnel_id: uuid.UUID) -> list[FunnelCart]:
        stmt = (
            select(FunnelCart)
            .where(FunnelCart.funnel_id == funnel_id, FunnelCart.abandoned_at.is_not(None))
            .order_by(desc(FunnelCart.abandoned_at))
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def stale_pending(self, *, idle_before: datetime) -> list[FunnelCart]:
        """
        Pending carts with a way to reach the visitor, untouched since `idle_before`.
        """

        stmt = (
            select(FunnelCart)
            .where(
                FunnelCart.recovery_status == CartRecoveryStatus.pending,
                FunnelCart.updated_at < idle_before,
                (FunnelCart.email.is_not(None)) | (FunnelCart.phone.is_not(None)),
            )
            .order_by(FunnelCart.updated_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())


class FunnelOrderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, funnel_order: FunnelOrder) -> FunnelOrder:
        self._session.add(funnel_order)
        await self._session.flush()
        return funnel_order

    async def get(self, funnel_order_id: uuid.UUID) -> FunnelOrder | None:
        return await self._session.get(FunnelOrder, funnel_order_id)

    async def for_product_order(self, product_order_id: uuid.UUID) -> FunnelOrder | None:
        stmt = select(FunnelOrder).where(FunnelOrder.product_order_id == product_order_id).limit(1)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def latest_main_for_session(self, session_id: uuid.UUID) -> FunnelOrder | None:
        stmt = (
            select(FunnelOrder)
            .where(FunnelOrder.session_id == session_id, FunnelOrder.order_type == "main")
            .order_by(desc(FunnelOrder.created_at))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_funnel(self, funnel_id: uuid.UUID, *, limit: int = 100) -> list[FunnelOrder]:
        stmt = (
            select(FunnelOrder)
            .where(FunnelOrder.funnel_id == funnel_id)
            .order_by(desc(FunnelOrder.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def totals_by_type(self, funnel_id: uuid.UUID) -> dict[str, tuple[int, Decimal]]:
        stmt = (
            select(FunnelOrder.order_type, func.count(), func.coalesce(func.sum(FunnelOrder.funnel_revenue), 0))
            .where(FunnelOrder.funnel_id == funnel_id)
            .group_by(FunnelOrder.order_type)
        )
        rows = (await self._session.execute(stmt)).all()
        return {order_type: (int(count), Decimal(str(revenue))) for order_type, count, revenue in rows}
