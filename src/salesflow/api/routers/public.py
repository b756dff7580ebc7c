"""
salesflow.api.routers.public

Unauthenticated funnel and checkout endpoints used by published funnel pages.

Responsibilities:
- Start a visitor session (crediting a referring affiliate), serve a published step,
  accept opt-ins and record page events.
- Serve the embeddable checkout widget by embed key.
- Checkout: create the order + payment intent, confirm payment, upsell accept/decline.
- Abandoned-cart recovery links.
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.api.deps import db_session, http_client, payment_gateway, settings_dep
from salesflow.api.serializers import cart_out, funnel_order_out, order_out, public_step_out, session_out
from salesflow.clients.payment_gateway import PaymentGatewayClient
from salesflow.services.checkout_service import CheckoutService
from salesflow.services.funnel_service import FunnelService
from salesflow.settings import Settings

router = APIRouter(prefix="/api/v1", tags=["public"])


def _funnels(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> FunnelService:
    return FunnelService(session=session, settings=settings, http=http)


def _checkout(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
    gateway: PaymentGatewayClient = Depends(payment_gateway),
) -> CheckoutService:
    return CheckoutService(session=session, settings=settings, http=http, gateway=gateway)


class StartSessionRequest(BaseModel):
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_content: str | None = None
    utm_term: str | None = None
    device: str | None = None
    browser: str | None = None
    country: str | None = None
    referrer: str | None = None
    ip_address: str | None = None
    landing_page: str | None = None
    ref: str | None = Field(default=None, max_length=32)


class EventRequest(BaseModel):
    session_id: uuid.UUID
    event_type: str = Field(min_length=1, max_length=64)
    step_id: uuid.UUID | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class OptinRequest(BaseModel):
    step_id: uuid.UUID
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    session_id: uuid.UUID | None = None


class Customer(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=64)


class CheckoutRequest(BaseModel):
    session_id: uuid.UUID
    products: list[uuid.UUID] = Field(min_length=1)
    bumps: list[uuid.UUID] = Field(default_factory=list)
    customer: Customer
    billing_address: dict[str, Any] | None = None


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)


class UpsellRequest(BaseModel):
    session_id: uuid.UUID
    product_id: uuid.UUID


class DeclineRequest(BaseModel):
    session_id: uuid.UUID
    product_id: uuid.UUID | None = None


# --- Funnel visits ---------------------------------------------------------------


@router.post("/public/funnels/{slug}/sessions")
async def start_session(
    slug: str,
    body: StartSessionRequest | None = None,
    svc: FunnelService = Depends(_funnels),
) -> dict[str, Any]:
    tracking = body.model_dump(exclude_none=True) if body is not None else {}
    ref = tracking.pop("ref", None)
    visitor = await svc.start_session(slug, tracking=tracking, ref=ref)
    return {"data": session_out(visitor)}


@router.get("/public/funnels/{slug}/steps/{step_slug}")
async def view_step(
    slug: str,
    step_slug: str,
    session_id: uuid.UUID | None = Query(default=None),
    svc: FunnelService = Depends(_funnels),
) -> dict[str, Any]:
    funnel, step, following = await svc.view_step(slug, step_slug, session_id=session_id)
    return {
        "data": {
            "funnel": {"id": str(funnel.id), "name": funnel.name, "slug": funnel.slug},
            "step": public_step_out(step),
            "next_step": {"id": str(following.id), "slug": following.slug} if following is not None else None,
        }
    }


@router.post("/public/funnels/{slug}/optin")
async def submit_optin(slug: str, body: OptinRequest, svc: FunnelService = Depends(_funnels)) -> dict[str, Any]:
    return await svc.submit_optin(
        slug,
        step_id=body.step_id,
        email=str(body.email),
        name=body.name,
        phone=body.phone,
        session_id=body.session_id,
    )


@router.post("/public/funnels/{slug}/events")
async def track_event(slug: str, body: EventRequest, svc: FunnelService = Depends(_funnels)) -> dict[str, Any]:
    await svc.track_event(
        slug, session_id=body.session_id, event_type=body.event_type, step_id=body.step_id, data=body.data
    )
    return {"success": True}


@router.get("/public/embed/{embed_key}")
async def embedded_checkout(
    embed_key: str,
    session_id: uuid.UUID | None = Query(default=None),
    ref: str | None = Query(default=None, max_length=32),
    origin: str | None = Query(default=None, max_length=2048),
    utm_source: str | None = Query(default=None),
    utm_medium: str | None = Query(default=None),
    utm_campaign: str | None = Query(default=None),
    referrer: str | None = Query(default=None, max_length=1024),
    svc: FunnelService = Depends(_funnels),
) -> dict[str, Any]:
    tracking = {
        "utm_source": utm_source,
        "utm_medium": utm_medium,
        "utm_campaign": utm_campaign,
        "referrer": referrer,
    }
    funnel, step, visitor = await svc.embedded_checkout(
        embed_key, session_id=session_id, tracking=tracking, ref=ref, origin=origin
    )
    return {
        "data": {
            "funnel": {"id": str(funnel.id), "name": funnel.name, "slug": funnel.slug},
            "step": public_step_out(step),
            "session": session_out(visitor),
            "embed_settings": funnel.embed_settings or {},
        }
    }


# --- Checkout --------------------------------------------------------------------


@router.post("/checkout/confirm-payment")
async def confirm_payment(
    body: ConfirmPaymentRequest, svc: CheckoutService = Depends(_checkout)
) -> dict[str, Any]:
    result = await svc.confirm_payment(body.payment_intent_id)
    order = result.pop("order", None)
    if order is not None:
        result["order"] = order_out(order)
    return result


@router.get("/checkout/cart/recover/{token}")
async def recover_cart(token: str, svc: CheckoutService = Depends(_checkout)) -> dict[str, Any]:
    result = await svc.recover_cart(token)
    return {
        "data": {
            "cart": cart_out(result["cart"]),
            "session_id": result["session_id"],
            "redirect_url": result["redirect_url"],
        }
    }


@router.post("/checkout/{slug}/steps/{step_id}/checkout")
async def create_checkout(
    slug: str,
    step_id: uuid.UUID,
    body: CheckoutRequest,
    svc: CheckoutService = Depends(_checkout),
) -> dict[str, Any]:
    result = await svc.create_checkout(
        slug=slug,
        step_id=step_id,
        session_id=body.session_id,
        product_ids=body.products,
        bump_ids=body.bumps,
        customer=body.customer.model_dump(mode="json"),
        billing_address=body.billing_address,
    )
    return {
        "success": True,
        "order": order_out(result["order"]),
        "funnel_order": funnel_order_out(result["funnel_order"]),
        "payment_intent": result["payment_intent"],
        "total": str(result["total"]),
    }


@router.post("/checkout/{slug}/steps/{step_id}/upsell")
async def accept_upsell(
    slug: str,
    step_id: uuid.UUID,
    body: UpsellRequest,
    svc: CheckoutService = Depends(_checkout),
) -> dict[str, Any]:
    result = await svc.accept_upsell(
        slug=slug, step_id=step_id, session_id=body.session_id, product_id=body.product_id
    )
    return {
        "success": True,
        "order": order_out(result["order"]),
        "funnel_order": funnel_order_out(result["funnel_order"]),
        "payment_intent": result["payment_intent"],
        "redirect_url": result["redirect_url"],
    }


@router.post("/checkout/{slug}/steps/{step_id}/decline-upsell")
async def decline_upsell(
    slug: str,
    step_id: uuid.UUID,
    body: DeclineRequest,
    svc: CheckoutService = Depends(_checkout),
) -> dict[str, Any]:
    return await svc.decline_upsell(
        slug=slug, step_id=step_id, session_id=body.session_id, product_id=body.product_id
    )
