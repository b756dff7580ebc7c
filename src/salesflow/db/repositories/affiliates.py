"""
salesflow.db.repositories.affiliates

Repositories for funnel affiliates, their funnel memberships, commission rules
and earned commissions.

Responsibilities:
- Affiliate accounts (lookup by phone/ref code) and funnel memberships.
- Per-affiliate session and event counts that feed the stats and leaderboard.
- Commission rules per funnel product, and commission records with status sums.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import (
    CommissionStatus,
    Funnel,
    FunnelAffiliate,
    FunnelAffiliateCommission,
    FunnelAffiliateCommissionRule,
    FunnelAffiliateMembership,
    FunnelEvent,
    FunnelSession,
    FunnelStep,
)


class AffiliateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, affiliate: FunnelAffiliate) -> FunnelAffiliate:
        self._session.add(affiliate)
        await self._session.flush()
        return affiliate

    async def get(self, affiliate_id: uuid.UUID) -> FunnelAffiliate | None:
        return await self._session.get(FunnelAffiliate, affiliate_id)

    async def get_by_phone(self, phone: str) -> FunnelAffiliate | None:
        stmt = select(FunnelAffiliate).where(FunnelAffiliate.phone == phone)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get_by_ref_code(self, ref_code: str) -> FunnelAffiliate | None:
        stmt = select(FunnelAffiliate).where(FunnelAffiliate.ref_code == ref_code)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def ref_code_exists(self, ref_code: str) -> bool:
        stmt = select(FunnelAffiliate.id).where(FunnelAffiliate.ref_code == ref_code)
        return (await self._session.execute(stmt)).first() is not None

    # --- Memberships -----------------------------------------------------------

    async def membership(self, affiliate_id: uuid.UUID, funnel_id: uuid.UUID) -> FunnelAffiliateMembership | None:
        stmt = select(FunnelAffiliateMembership).where(
            FunnelAffiliateMembership.affiliate_id == affiliate_id,
            FunnelAffiliateMembership.funnel_id == funnel_id,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def join(self, affiliate: FunnelAffiliate, funnel: Funnel, *, joined_at: datetime) -> FunnelAffiliateMembership:
        membership = FunnelAffiliateMembership(
            affiliate_id=affiliate.id, funnel_id=funnel.id, funnel=funnel, status="approved", joined_at=joined_at
        )
        affiliate.memberships.append(membership)
        await self._session.flush()
        return membership

    async def members_of(self, funnel_ids: Sequence[uuid.UUID]) -> list[FunnelAffiliateMembership]:
        """
        Approved memberships across the given funnels, oldest join first.
        """

        if not funnel_ids:
            return []
        stmt = (
            select(FunnelAffiliateMembership)
            .where(
                FunnelAffiliateMembership.funnel_id.in_(list(funnel_ids)),
                FunnelAffiliateMembership.status == "approved",
            )
            .order_by(FunnelAffiliateMembership.joined_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    # --- Traffic ---------------------------------------------------------------

    def _sessions_of(self, affiliate_id: uuid.UUID, funnel_ids: Iterable[uuid.UUID]):
        return select(FunnelSession.id).where(
            FunnelSession.affiliate_id == affiliate_id, FunnelSession.funnel_id.in_(list(funnel_ids))
        )

    async def session_count(
        self, affiliate_id: uuid.UUID, funnel_ids: Iterable[uuid.UUID] | None = None, *, converted: bool = False
    ) -> int:
        stmt = select(func.count()).select_from(FunnelSession).where(FunnelSession.affiliate_id == affiliate_id)
        if funnel_ids is not None:
            stmt = stmt.where(FunnelSession.funnel_id.in_(list(funnel_ids)))
        if converted:
            stmt = stmt.where(FunnelSession.converted_at.is_not(None))
        return int((await self._session.execute(stmt)).scalar_one())

    async def event_count(
        self,
        affiliate_id: uuid.UUID,
        funnel_ids: Iterable[uuid.UUID],
        event_types: Sequence[str],
        *,
        step_type: str | None = None,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(FunnelEvent)
            .where(
                FunnelEvent.session_id.in_(self._sessions_of(affiliate_id, funnel_ids)),
                FunnelEvent.event_type.in_(list(event_types)),
            )
        )
        if step_type is not None:
            stmt = stmt.join(FunnelStep, FunnelStep.id == FunnelEvent.step_id).where(FunnelStep.type == step_type)
        return int((await self._session.execute(stmt)).scalar_one())

    # --- Commission rules ---------------------------------------------------------

    async def rules_for_funnel(self, funnel_id: uuid.UUID) -> list[FunnelAffiliateCommissionRule]:
        stmt = (
            select(FunnelAffiliateCommissionRule)
            .where(FunnelAffiliateCommissionRule.funnel_id == funnel_id)
            .order_by(FunnelAffiliateCommissionRule.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def rule(self, funnel_id: uuid.UUID, funnel_product_id: uuid.UUID) -> FunnelAffiliateCommissionRule | None:
        stmt = select(FunnelAffiliateCommissionRule).where(
            FunnelAffiliateCommissionRule.funnel_id == funnel_id,
            FunnelAffiliateCommissionRule.funnel_product_id == funnel_product_id,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def add_rule(self, rule: FunnelAffiliateCommissionRule) -> FunnelAffiliateCommissionRule:
        self._session.add(rule)
        await self._session.flush()
        return rule


class CommissionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, commission: FunnelAffiliateCommission) -> FunnelAffiliateCommission:
        self._session.add(commission)
        await self._session.flush()
        return commission

    async def get_for_funnel(self, funnel_id: uuid.UUID, commission_id: uuid.UUID) -> FunnelAffiliateCommission | None:
        stmt = select(FunnelAffiliateCommission).where(
            FunnelAffiliateCommission.id == commission_id, FunnelAffiliateCommission.funnel_id == funnel_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def exists_for_funnel_order(self, funnel_order_id: uuid.UUID) -> bool:
        stmt = select(FunnelAffiliateCommission.id).where(FunnelAffiliateCommission.funnel_order_id == funnel_order_id)
        return (await self._session.execute(stmt)).first() is not None

    async def list(
        self,
        *,
        funnel_id: uuid.UUID | None = None,
        affiliate_id: uuid.UUID | None = None,
        status: CommissionStatus | None = None,
        limit: int = 100,
    ) -> list[FunnelAffiliateCommission]:
        stmt = select(FunnelAffiliateCommission).order_by(desc(FunnelAffiliateCommission.created_at)).limit(limit)
        if funnel_id is not None:
            stmt = stmt.where(FunnelAffiliateCommission.funnel_id == funnel_id)
        if affiliate_id is not None:
            stmt = stmt.where(FunnelAffiliateCommission.affiliate_id == affiliate_id)
        if status is not None:
            stmt = stmt.where(FunnelAffiliateCommission.status == status)
        return list((await self._session.execute(stmt)).scalars().all())

    async def total(
        self,
        affiliate_id: uuid.UUID,
        statuses: Iterable[CommissionStatus],
        *,
        funnel_id: uuid.UUID | None = None,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(FunnelAffiliateCommission.commission_amount), 0)).where(
            FunnelAffiliateCommission.affiliate_id == affiliate_id,
            FunnelAffiliateCommission.status.in_(list(statuses)),
        )
        if funnel_id is not None:
            stmt = stmt.where(FunnelAffiliateCommission.funnel_id == funnel_id)
        return Decimal(str((await self._session.execute(stmt)).scalar_one()))

    async def approve_pending(
        self, funnel_id: uuid.UUID, commission_ids: Sequence[uuid.UUID], *, approved_by: str, approved_at: datetime
    ) -> int:
        if not commission_ids:
            return 0
        stmt = (
            update(FunnelAffiliateCommission)
            .where(
                FunnelAffiliateCommission.funnel_id == funnel_id,
                FunnelAffiliateCommission.id.in_(list(commission_ids)),
                FunnelAffiliateCommission.status == CommissionStatus.pending,
            )
            .values(
                status=CommissionStatus.approved,
                approved_at=approved_at,
                approved_by=approved_by,
                updated_at=approved_at,
            )
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)
