from __future__ import annotations

import secrets
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND, HTTP_409_CONFLICT

from salesflow.api.deps import db_session
from salesflow.auth.deps import require_roles
from salesflow.db.models import PaymentIntent
from salesflow.db.repositories.payments import PaymentIntentRepo
from salesflow.observability.logging import get_logger

log = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_roles("internal_system"))])

# Outcome of a simulated card capture -> resulting intent status.
_OUTCOMES = {"succeeded": "succeeded", "failed": "requires_payment_method", "canceled": "canceled"}


class CreateIntentRequest(BaseModel):
    amount: int = Field(ge=1)
    currency: str = Field(min_length=3, max_length=3)
    description: str | None = None
    receipt_email: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConfirmIntentRequest(BaseModel):
    outcome: Literal["succeeded", "failed", "canceled"] = "succeeded"


class PaymentIntentResponse(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def _response(intent: PaymentIntent) -> PaymentIntentResponse:
    return PaymentIntentResponse(
        id=intent.id,
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status,
        client_secret=intent.client_secret,
        description=intent.description,
        metadata=intent.meta or {},
    )


@router.post("/intents", response_model=PaymentIntentResponse)
async def create_intent(
    body: CreateIntentRequest,
    session: AsyncSession = Depends(db_session),
) -> PaymentIntentResponse:
    intent_id = f"pi_{secrets.token_hex(12)}"
    intent = await PaymentIntentRepo(session).create(
        intent_id=intent_id,
        amount=body.amount,
        currency=body.currency.lower(),
        client_secret=f"{intent_id}_secret_{secrets.token_hex(12)}",
        description=body.description,
        receipt_email=body.receipt_email,
        meta=body.metadata,
    )
    await session.commit()
    log.info("payment_intent_created", payment_intent_id=intent.id, amount=intent.amount)
    return _response(intent)


@router.get("/intents/{intent_id}", response_model=PaymentIntentResponse)
async def get_intent(
    intent_id: str,
    session: AsyncSession = Depends(db_session),
) -> PaymentIntentResponse:
    intent = await PaymentIntentRepo(session).get(intent_id)
    if intent is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Payment intent not found")
    return _response(intent)


@router.post("/intents/{intent_id}/confirm", response_model=PaymentIntentResponse)
async def confirm_intent(
    intent_id: str,
    body: ConfirmIntentRequest,
    session: AsyncSession = Depends(db_session),
) -> PaymentIntentResponse:
    intent = await PaymentIntentRepo(session).get(intent_id)
    if intent is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Payment intent not found")
    if intent.status in ("succeeded", "canceled"):
        raise HTTPException(status_code=HTTP_409_CONFLICT, detail=f"Payment intent already {intent.status}")

    intent.status = _OUTCOMES[body.outcome]
    await session.commit()
    log.info("payment_intent_confirmed", payment_intent_id=intent.id, status=intent.status)
    return _response(intent)
