"""
salesflow.api.routers.funnels

Funnel builder endpoints (role `marketer`).

Responsibilities:
- Funnel CRUD plus duplicate/publish/unpublish.
- Step CRUD, reorder, duplicate and draft/published page content.
- Step products and order bumps.
- Funnel orders, stats and abandoned carts.
- Affiliate programme: settings and commission rules, affiliates with stats,
  commission review.
- Embeddable checkout widget: snippet codes, on/off, widget settings, key rotation.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Literal

import httpx
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED

from salesflow.api.deps import db_session, http_client, settings_dep
from salesflow.api.serializers import (
    affiliate_out,
    bump_out,
    cart_out,
    commission_out,
    funnel_order_out,
    funnel_out,
    step_out,
    step_product_out,
)
from salesflow.auth.deps import get_principal, require_roles
from salesflow.auth.models import Principal
from salesflow.services.affiliate_service import AffiliateService
from salesflow.services.funnel_service import FunnelService
from salesflow.settings import Settings

router = APIRouter(
    prefix="/api/v1/funnels",
    tags=["funnels"],
    dependencies=[Depends(require_roles("marketer"))],
)


def _service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> FunnelService:
    return FunnelService(session=session, settings=settings, http=http)


def _affiliates(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> AffiliateService:
    return AffiliateService(session=session, settings=settings)


class FunnelRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    settings: dict[str, Any] | None = None


class UpdateFunnelRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    slug: str | None = Field(default=None, min_length=1, max_length=255)
    settings: dict[str, Any] | None = None


class StepRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str
    slug: str | None = Field(default=None, max_length=255)
    settings: dict[str, Any] | None = None


class UpdateStepRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: str | None = None
    slug: str | None = Field(default=None, max_length=255)
    settings: dict[str, Any] | None = None


class StepOrder(BaseModel):
    id: uuid.UUID
    sort_order: int


class ReorderRequest(BaseModel):
    steps: list[StepOrder] = Field(min_length=1)


class ContentRequest(BaseModel):
    content: dict[str, Any]


class StepProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    funnel_price: Decimal = Field(ge=0)
    product_id: uuid.UUID | None = None
    description: str | None = None
    type: str = "main"
    compare_at_price: Decimal | None = Field(default=None, ge=0)
    is_active: bool = True
    sort_order: int | None = Field(default=None, ge=0)


class UpdateStepProductRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    funnel_price: Decimal | None = Field(default=None, ge=0)
    product_id: uuid.UUID | None = None
    description: str | None = None
    type: str | None = None
    compare_at_price: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None
    sort_order: int | None = Field(default=None, ge=0)


class BumpRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)
    product_id: uuid.UUID | None = None
    description: str | None = None
    is_active: bool = True
    sort_order: int | None = Field(default=None, ge=0)


class UpdateBumpRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    price: Decimal | None = Field(default=None, ge=0)
    product_id: uuid.UUID | None = None
    description: str | None = None
    is_active: bool | None = None
    sort_order: int | None = Field(default=None, ge=0)


# --- Funnels ------------------------------------------------------------------


@router.get("")
async def list_funnels(
    status: str | None = Query(default=None),
    search: str | None = Query(default=None),
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    return {"data": [funnel_out(f) for f in await svc.list(status=status, search=search)]}


@router.post("", status_code=HTTP_201_CREATED)
async def create_funnel(body: FunnelRequest, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    funnel = await svc.create(name=body.name, settings=body.settings)
    return {"data": funnel_out(funnel, with_steps=True)}


@router.get("/{funnel_id}")
async def get_funnel(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": funnel_out(await svc.get(funnel_id), with_steps=True)}


@router.put("/{funnel_id}")
async def update_funnel(
    funnel_id: uuid.UUID, body: UpdateFunnelRequest, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    funnel = await svc.update(funnel_id, name=body.name, slug=body.slug, settings=body.settings)
    return {"data": funnel_out(funnel, with_steps=True)}


@router.delete("/{funnel_id}")
async def delete_funnel(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    await svc.delete(funnel_id)
    return {"message": "Funnel deleted"}


@router.post("/{funnel_id}/duplicate", status_code=HTTP_201_CREATED)
async def duplicate_funnel(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": funnel_out(await svc.duplicate(funnel_id), with_steps=True)}


@router.post("/{funnel_id}/publish")
async def publish_funnel(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": funnel_out(await svc.publish(funnel_id))}


@router.post("/{funnel_id}/unpublish")
async def unpublish_funnel(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": funnel_out(await svc.unpublish(funnel_id))}


# --- Steps --------------------------------------------------------------------


@router.get("/{funnel_id}/steps")
async def list_steps(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": [step_out(s, with_content=False) for s in await svc.list_steps(funnel_id)]}


@router.post("/{funnel_id}/steps", status_code=HTTP_201_CREATED)
async def create_step(
    funnel_id: uuid.UUID, body: StepRequest, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    step = await svc.create_step(
        funnel_id, name=body.name, type=body.type, slug=body.slug, settings=body.settings
    )
    return {"data": step_out(step)}


# Declared before /steps/{step_id} so "reorder" is not parsed as a step id.
@router.put("/{funnel_id}/steps/reorder")
async def reorder_steps(
    funnel_id: uuid.UUID, body: ReorderRequest, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    steps = await svc.reorder_steps(
        funnel_id, [{"id": s.id, "sort_order": s.sort_order} for s in body.steps]
    )
    return {"data": [step_out(s, with_content=False) for s in steps]}


@router.get("/{funnel_id}/steps/{step_id}")
async def get_step(funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": step_out(await svc.get_step(funnel_id, step_id))}


@router.put("/{funnel_id}/steps/{step_id}")
async def update_step(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    body: UpdateStepRequest,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    step = await svc.update_step(
        funnel_id, step_id, name=body.name, slug=body.slug, type=body.type, settings=body.settings
    )
    return {"data": step_out(step)}


@router.delete("/{funnel_id}/steps/{step_id}")
async def delete_step(
    funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    await svc.delete_step(funnel_id, step_id)
    return {"message": "Step deleted"}


@router.post("/{funnel_id}/steps/{step_id}/duplicate", status_code=HTTP_201_CREATED)
async def duplicate_step(
    funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    return {"data": step_out(await svc.duplicate_step(funnel_id, step_id))}


@router.get("/{funnel_id}/steps/{step_id}/content")
async def get_content(
    funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    step = await svc.get_step(funnel_id, step_id)
    return {
        "data": {
            "content": step.content or {},
            "published_content": step.published_content,
            "version": int((step.settings or {}).get("content_version", 0)),
        }
    }


@router.put("/{funnel_id}/steps/{step_id}/content")
async def save_content(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    body: ContentRequest,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    step = await svc.save_content(funnel_id, step_id, body.content)
    return {
        "message": "Content saved",
        "data": {"content": step.content, "version": int(step.settings["content_version"])},
    }


@router.post("/{funnel_id}/steps/{step_id}/content/publish")
async def publish_content(
    funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    step = await svc.publish_content(funnel_id, step_id)
    return {"message": "Content published", "data": step_out(step)}


# --- Step products --------------------------------------------------------------


@router.get("/{funnel_id}/steps/{step_id}/products")
async def list_step_products(
    funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    return {"data": [step_product_out(p) for p in await svc.list_products(funnel_id, step_id)]}


@router.post("/{funnel_id}/steps/{step_id}/products", status_code=HTTP_201_CREATED)
async def create_step_product(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    body: StepProductRequest,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    fields = body.model_dump(exclude_none=True)
    product = await svc.create_product(funnel_id, step_id, **fields)
    return {"data": step_product_out(product)}


@router.put("/{funnel_id}/steps/{step_id}/products/{product_id}")
async def update_step_product(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    product_id: uuid.UUID,
    body: UpdateStepProductRequest,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    product = await svc.update_product(funnel_id, step_id, product_id, **body.model_dump(exclude_unset=True))
    return {"data": step_product_out(product)}


@router.delete("/{funnel_id}/steps/{step_id}/products/{product_id}")
async def delete_step_product(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    product_id: uuid.UUID,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    await svc.delete_product(funnel_id, step_id, product_id)
    return {"message": "Product removed"}


# --- Order bumps ----------------------------------------------------------------


@router.get("/{funnel_id}/steps/{step_id}/order-bumps")
async def list_bumps(
    funnel_id: uuid.UUID, step_id: uuid.UUID, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    return {"data": [bump_out(b) for b in await svc.list_bumps(funnel_id, step_id)]}


@router.post("/{funnel_id}/steps/{step_id}/order-bumps", status_code=HTTP_201_CREATED)
async def create_bump(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    body: BumpRequest,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    bump = await svc.create_bump(funnel_id, step_id, **body.model_dump(exclude_none=True))
    return {"data": bump_out(bump)}


@router.put("/{funnel_id}/steps/{step_id}/order-bumps/{bump_id}")
async def update_bump(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    bump_id: uuid.UUID,
    body: UpdateBumpRequest,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    bump = await svc.update_bump(funnel_id, step_id, bump_id, **body.model_dump(exclude_unset=True))
    return {"data": bump_out(bump)}


@router.delete("/{funnel_id}/steps/{step_id}/order-bumps/{bump_id}")
async def delete_bump(
    funnel_id: uuid.UUID,
    step_id: uuid.UUID,
    bump_id: uuid.UUID,
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    await svc.delete_bump(funnel_id, step_id, bump_id)
    return {"message": "Order bump removed"}


# --- Orders, stats, carts -------------------------------------------------------


@router.get("/{funnel_id}/orders")
async def list_orders(
    funnel_id: uuid.UUID,
    order_type: str | None = Query(default=None),
    svc: FunnelService = Depends(_service),
) -> dict[str, Any]:
    orders = await svc.orders(funnel_id, order_type=order_type)
    return {"data": [funnel_order_out(o) for o in orders]}


@router.get("/{funnel_id}/orders/stats")
async def order_stats(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": await svc.stats(funnel_id)}


@router.get("/{funnel_id}/carts")
async def abandoned_carts(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": [cart_out(c) for c in await svc.abandoned_carts(funnel_id)]}


# --- Affiliate programme ---------------------------------------------------------


class CommissionRuleRequest(BaseModel):
    funnel_product_id: uuid.UUID
    commission_type: str
    commission_value: Decimal


class AffiliateSettingsRequest(BaseModel):
    affiliate_enabled: bool | None = None
    affiliate_custom_url: str | None = None
    commission_rules: list[CommissionRuleRequest] | None = None


class RejectCommissionRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class BulkApproveRequest(BaseModel):
    commission_ids: list[uuid.UUID] = Field(min_length=1)


@router.get("/{funnel_id}/affiliates")
async def list_affiliates(funnel_id: uuid.UUID, svc: AffiliateService = Depends(_affiliates)) -> dict[str, Any]:
    rows = await svc.funnel_affiliates(funnel_id)
    return {
        "data": [
            {**affiliate_out(row["affiliate"]), "joined_at": row["joined_at"].isoformat(), "stats": row["stats"]}
            for row in rows
        ]
    }


@router.get("/{funnel_id}/affiliates/settings")
async def affiliate_settings(funnel_id: uuid.UUID, svc: AffiliateService = Depends(_affiliates)) -> dict[str, Any]:
    return {"data": await svc.programme_settings(funnel_id)}


@router.put("/{funnel_id}/affiliates/settings")
async def update_affiliate_settings(
    funnel_id: uuid.UUID, body: AffiliateSettingsRequest, svc: AffiliateService = Depends(_affiliates)
) -> dict[str, Any]:
    result = await svc.update_programme_settings(funnel_id, body.model_dump(exclude_unset=True))
    return {"message": "Settings updated successfully.", "data": result}


@router.get("/{funnel_id}/affiliates/{affiliate_id}/stats")
async def affiliate_stats(
    funnel_id: uuid.UUID, affiliate_id: uuid.UUID, svc: AffiliateService = Depends(_affiliates)
) -> dict[str, Any]:
    result = await svc.affiliate_stats(funnel_id, affiliate_id)
    return {
        "data": {
            "affiliate": affiliate_out(result["affiliate"]),
            "stats": result["stats"],
            "commissions": [commission_out(c) for c in result["commissions"]],
        }
    }


@router.get("/{funnel_id}/commissions")
async def list_commissions(
    funnel_id: uuid.UUID,
    status: str | None = Query(default=None),
    svc: AffiliateService = Depends(_affiliates),
) -> dict[str, Any]:
    return {"data": [commission_out(c) for c in await svc.funnel_commissions(funnel_id, status=status)]}


@router.post("/{funnel_id}/commissions/bulk-approve")
async def bulk_approve_commissions(
    funnel_id: uuid.UUID,
    body: BulkApproveRequest,
    principal: Principal = Depends(get_principal),
    svc: AffiliateService = Depends(_affiliates),
) -> dict[str, Any]:
    count = await svc.bulk_approve(funnel_id, body.commission_ids, approved_by=principal.subject)
    return {"message": "Commissions approved.", "approved": count}


@router.post("/{funnel_id}/commissions/{commission_id}/approve")
async def approve_commission(
    funnel_id: uuid.UUID,
    commission_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: AffiliateService = Depends(_affiliates),
) -> dict[str, Any]:
    commission = await svc.approve(funnel_id, commission_id, approved_by=principal.subject)
    return {"message": "Commission approved.", "data": commission_out(commission)}


@router.post("/{funnel_id}/commissions/{commission_id}/reject")
async def reject_commission(
    funnel_id: uuid.UUID,
    commission_id: uuid.UUID,
    body: RejectCommissionRequest | None = None,
    principal: Principal = Depends(get_principal),
    svc: AffiliateService = Depends(_affiliates),
) -> dict[str, Any]:
    commission = await svc.reject(
        funnel_id, commission_id, rejected_by=principal.subject, notes=body.notes if body is not None else None
    )
    return {"message": "Commission rejected.", "data": commission_out(commission)}


# --- Embed widget ------------------------------------------------------------------


class EmbedToggleRequest(BaseModel):
    enabled: bool


class EmbedSettingsRequest(BaseModel):
    allowed_domains: list[str] | None = None
    theme: Literal["light", "dark", "auto"] | None = None
    primary_color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    border_radius: Literal["none", "sm", "md", "lg", "xl", "2xl"] | None = None
    show_powered_by: bool | None = None


@router.post("/{funnel_id}/embed/generate")
async def generate_embed_code(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    return {"data": await svc.embed_code(funnel_id)}


@router.post("/{funnel_id}/embed/toggle")
async def toggle_embed(
    funnel_id: uuid.UUID, body: EmbedToggleRequest, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    funnel = await svc.toggle_embed(funnel_id, enabled=body.enabled)
    return {"success": True, "embed_enabled": funnel.embed_enabled, "embed_key": funnel.embed_key}


@router.put("/{funnel_id}/embed/settings")
async def update_embed_settings(
    funnel_id: uuid.UUID, body: EmbedSettingsRequest, svc: FunnelService = Depends(_service)
) -> dict[str, Any]:
    funnel = await svc.update_embed_settings(funnel_id, body.model_dump(exclude_unset=True))
    return {"success": True, "embed_settings": funnel.embed_settings}


@router.post("/{funnel_id}/embed/regenerate")
async def regenerate_embed_key(funnel_id: uuid.UUID, svc: FunnelService = Depends(_service)) -> dict[str, Any]:
    funnel = await svc.regenerate_embed_key(funnel_id)
    return {"success": True, "embed_key": funnel.embed_key}
