"""
salesflow.db.repositories.payments

Repository for `PaymentIntent` records of the in-process payment gateway.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import PaymentIntent


class PaymentIntentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        intent_id: str,
        amount: int,
        currency: str,
        client_secret: str,
        description: str | None,
        receipt_email: str | None,
        meta: dict[str, Any],
    ) -> PaymentIntent:
        intent = PaymentIntent(
            id=intent_id,
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            client_secret=client_secret,
            description=description,
            receipt_email=receipt_email,
            meta=meta,
        )
        self._session.add(intent)
        await self._session.flush()
        return intent

    async def get(self, intent_id: str) -> PaymentIntent | None:
        return await self._session.get(PaymentIntent, intent_id)
