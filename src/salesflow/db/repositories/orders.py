"""
salesflow.db.repositories.orders

Repository for `ProductOrder` aggregates (items and payments included).

Responsibilities:
- Allocate unique order numbers.
- Create, fetch, filter and delete orders.
- Range queries used by POS dashboards and reports.
"""

from __future__ import annotations

import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import OrderSource, OrderStatus, ProductOrder, utcnow

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True, slots=True)
class OrderFilters:
    source: OrderSource | None = None
    search: str | None = None
    # paid | pending | cancelled
    status: str | None = None
    payment_method: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    salesperson_id: str | None = None
    funnel_id: str | None = None


class OrderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_order_number(self, *, now: datetime | None = None) -> str:
        # PO-YYYYMMDD-XXXXXX; retry on the (unlikely) collision.
        stamp = (now or utcnow()).strftime("%Y%m%d")
        while True:
            suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(6))
            number = f"PO-{stamp}-{suffix}"
            stmt = select(ProductOrder.id).where(ProductOrder.order_number == number)
            if (await self._session.execute(stmt)).first() is None:
                return number

    async def add(self, order: ProductOrder) -> ProductOrder:
        self._session.add(order)
        await self._session.flush()
        return order

    async def get(self, order_id: uuid.UUID) -> ProductOrder | None:
        return await self._session.get(ProductOrder, order_id)

    async def get_by_number(self, order_number: str) -> ProductOrder | None:
        stmt = select(ProductOrder).where(ProductOrder.order_number == order_number)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get_by_payment_intent(self, payment_intent_id: str) -> ProductOrder | None:
        stmt = select(ProductOrder).where(ProductOrder.payment_intent_id == payment_intent_id)
        return (await self._session.execute(stmt)).scalars().first()

    async def delete(self, order: ProductOrder) -> None:
        # Items and payments cascade with the order.
        await self._session.delete(order)
        await self._session.flush()

    def _filtered(self, filters: OrderFilters):
        stmt = select(ProductOrder)
        if filters.source is not None:
            stmt = stmt.where(ProductOrder.source == filters.source)
        if filters.search:
            like = f"%{filters.search}%"
            stmt = stmt.where(
                or_(
                    ProductOrder.order_number.ilike(like),
                    ProductOrder.customer_name.ilike(like),
                    ProductOrder.customer_phone.ilike(like),
                    ProductOrder.guest_email.ilike(like),
                )
            )
        if filters.status == "paid":
            stmt = stmt.where(ProductOrder.paid_time.is_not(None))
        elif filters.status == "pending":
            stmt = stmt.where(
                ProductOrder.paid_time.is_(None), ProductOrder.status != OrderStatus.cancelled
            )
        elif filters.status == "cancelled":
            stmt = stmt.where(ProductOrder.status == OrderStatus.cancelled)
        if filters.payment_method:
            stmt = stmt.where(ProductOrder.payment_method == filters.payment_method)
        if filters.date_from is not None:
            stmt = stmt.where(ProductOrder.order_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(ProductOrder.order_date < filters.date_to)
        if filters.salesperson_id:
            stmt = stmt.where(
                ProductOrder.meta["salesperson_id"].as_string() == filters.salesperson_id
            )
        if filters.funnel_id:
            stmt = stmt.where(ProductOrder.meta["funnel_id"].as_string() == filters.funnel_id)
        return stmt

    async def page(
        self, filters: OrderFilters, *, page: int = 1, per_page: int = 20
    ) -> tuple[list[ProductOrder], int]:
        base = self._filtered(filters)
        count_stmt = select(func.count()).select_from(base.subquery())
        total = int((await self._session.execute(count_stmt)).scalar_one())

        stmt = (
            base.order_by(desc(ProductOrder.order_date))
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        rows = list((await self._session.execute(stmt)).scalars().all())
        return rows, total

    async def paid_between(
        self, *, source: OrderSource, start: datetime, end: datetime, salesperson_id: str | None = None
    ) -> list[ProductOrder]:
        filters = OrderFilters(
            source=source,
            status="paid",
            date_from=start,
            date_to=end,
            salesperson_id=salesperson_id,
        )
        stmt = self._filtered(filters).order_by(desc(ProductOrder.order_date))
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# "Paid" means `paid_time` is set; payment_status mirrors it for API consumers.
