"""
salesflow.api.serializers

Response shaping for ORM records.

Responsibilities:
- Convert records into the JSON bodies returned by the routers.
- Keep money formatting consistent (`"100.00"` strings).
"""

from __future__ import annotations

from typing import Any

from salesflow.db.models import (
    Contact,
    ContactActivity,
    Course,
    CourseClass,
    Funnel,
    FunnelAffiliate,
    FunnelAffiliateCommission,
    FunnelAutomation,
    FunnelAutomationLog,
    FunnelCart,
    FunnelOrder,
    FunnelSession,
    FunnelStep,
    FunnelStepOrderBump,
    FunnelStepProduct,
    Package,
    Product,
    ProductOrder,
    ProductVariant,
    User,
    Workflow,
    WorkflowEnrollment,
    WorkflowStepExecution,
)
from salesflow.mergetags.context import to_jsonable
from salesflow.services.pos_service import money


def _ts(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


# --- CRM & catalog ------------------------------------------------------------


def contact_out(c: Contact) -> dict[str, Any]:
    return {
        "id": str(c.id),
        "name": c.name,
        "email": c.email,
        "phone": c.phone,
        "tags": list(c.tags or []),
        "score": c.score,
        "fields": dict(c.fields or {}),
        "user_id": str(c.user_id) if c.user_id else None,
        "created_at": _ts(c.created_at),
    }


def activity_out(a: ContactActivity) -> dict[str, Any]:
    return {
        "id": str(a.id),
        "contact_id": str(a.contact_id),
        "type": a.type,
        "title": a.title,
        "description": a.description,
        "metadata": a.meta or {},
        "performed_by": a.performed_by,
        "created_at": _ts(a.created_at),
    }


def user_out(u: User) -> dict[str, Any]:
    return {"id": str(u.id), "name": u.name, "email": u.email, "phone": u.phone, "role": u.role}


def variant_out(v: ProductVariant) -> dict[str, Any]:
    return {
        "id": str(v.id),
        "name": v.name,
        "sku": v.sku,
        "price": money(v.price) if v.price is not None else None,
        "stock_quantity": v.stock_quantity,
        "is_active": v.is_active,
    }


def product_out(p: Product) -> dict[str, Any]:
    return {
        "id": str(p.id),
        "name": p.name,
        "slug": p.slug,
        "sku": p.sku,
        "price": money(p.price),
        "status": p.status,
        "track_stock": p.track_stock,
        "stock_quantity": p.stock_quantity,
        "variants": [variant_out(v) for v in p.variants],
    }


def package_out(p: Package) -> dict[str, Any]:
    return {"id": str(p.id), "name": p.name, "price": money(p.price), "status": p.status, "items": p.items}


def class_out(c: CourseClass) -> dict[str, Any]:
    return {
        "id": str(c.id),
        "course_id": str(c.course_id),
        "title": c.title,
        "code": c.code,
        "status": c.status,
        "max_students": c.max_students,
    }


def course_out(c: Course, *, with_classes: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": str(c.id),
        "name": c.name,
        "code": c.code,
        "price": money(c.price),
        "status": c.status,
    }
    if with_classes:
        out["classes"] = [class_out(k) for k in c.classes]
    return out


# --- Orders ---------------------------------------------------------------------


def order_out(o: ProductOrder, *, receipt_url: str | None = None) -> dict[str, Any]:
    meta = o.meta or {}
    return {
        "id": str(o.id),
        "order_number": o.order_number,
        "sale_number": o.order_number,
        "source": o.source.value,
        "status": o.status.value,
        "payment_status": meta.get("payment_status") or o.payment_status.value,
        "payment_method": o.payment_method,
        "payment_reference": meta.get("payment_reference"),
        "customer_id": str(o.customer_id) if o.customer_id else None,
        "customer_name": o.display_customer_name(),
        "customer_email": o.customer_email,
        "customer_phone": o.customer_phone,
        "shipping_address": o.shipping_address,
        "billing_address": o.billing_address,
        "currency": o.currency,
        "subtotal": money(o.subtotal),
        "discount_amount": money(o.discount_amount),
        "shipping_cost": money(o.shipping_cost),
        "total_amount": money(o.total_amount),
        "salesperson_id": meta.get("salesperson_id"),
        "salesperson_name": meta.get("salesperson_name"),
        "receipt_attachment": o.receipt_attachment,
        "receipt_attachment_url": receipt_url,
        "tracking_id": o.tracking_id,
        "internal_notes": o.internal_notes,
        "payment_intent_id": o.payment_intent_id,
        "order_date": _ts(o.order_date),
        "paid_time": _ts(o.paid_time),
        "items": [
            {
                "id": str(i.id),
                "itemable_type": i.itemable_type,
                "itemable_id": str(i.itemable_id) if i.itemable_id else None,
                "product_id": str(i.product_id) if i.product_id else None,
                "product_variant_id": str(i.product_variant_id) if i.product_variant_id else None,
                "product_name": i.product_name,
                "variant_name": i.variant_name,
                "sku": i.sku,
                "quantity": i.quantity_ordered,
                "unit_price": money(i.unit_price),
                "total_price": money(i.total_price),
                "metadata": i.item_metadata,
            }
            for i in o.items
        ],
        "payments": [
            {
                "id": str(p.id),
                "payment_method": p.payment_method,
                "amount": money(p.amount),
                "status": p.status,
                "reference_number": p.reference_number,
                "paid_at": _ts(p.paid_at),
            }
            for p in o.payments
        ],
        "metadata": meta,
    }


# --- Funnels --------------------------------------------------------------------


def step_product_out(p: FunnelStepProduct) -> dict[str, Any]:
    return {
        "id": str(p.id),
        "step_id": str(p.step_id),
        "product_id": str(p.product_id) if p.product_id else None,
        "name": p.name,
        "description": p.description,
        "type": p.type,
        "funnel_price": money(p.funnel_price),
        "compare_at_price": money(p.compare_at_price) if p.compare_at_price is not None else None,
        "is_active": p.is_active,
        "sort_order": p.sort_order,
    }


def bump_out(b: FunnelStepOrderBump) -> dict[str, Any]:
    return {
        "id": str(b.id),
        "step_id": str(b.step_id),
        "product_id": str(b.product_id) if b.product_id else None,
        "name": b.name,
        "description": b.description,
        "price": money(b.price),
        "is_active": b.is_active,
        "sort_order": b.sort_order,
    }


def step_out(s: FunnelStep, *, with_content: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": str(s.id),
        "funnel_id": str(s.funnel_id),
        "name": s.name,
        "slug": s.slug,
        "type": s.type,
        "sort_order": s.sort_order,
        "settings": s.settings or {},
        "is_published": s.published_content is not None,
        "products": [step_product_out(p) for p in s.products],
        "order_bumps": [bump_out(b) for b in s.order_bumps],
    }
    if with_content:
        out["content"] = s.content or {}
        out["published_content"] = s.published_content
    return out


def public_step_out(s: FunnelStep) -> dict[str, Any]:
    return {
        "id": str(s.id),
        "name": s.name,
        "slug": s.slug,
        "type": s.type,
        "content": s.published_content or {},
        "settings": s.settings or {},
        "products": [step_product_out(p) for p in s.products if p.is_active],
        "order_bumps": [bump_out(b) for b in s.order_bumps if b.is_active],
    }


def funnel_out(f: Funnel, *, with_steps: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": str(f.id),
        "name": f.name,
        "slug": f.slug,
        "status": f.status,
        "settings": f.settings or {},
        "published_at": _ts(f.published_at),
        "steps_count": len(f.steps),
        "affiliate_enabled": f.affiliate_enabled,
        "embed_enabled": f.embed_enabled,
        "embed_key": f.embed_key,
        "embed_settings": f.embed_settings or {},
        "created_at": _ts(f.created_at),
    }
    if with_steps:
        out["steps"] = [step_out(s, with_content=False) for s in f.steps]
    return out


def session_out(v: FunnelSession) -> dict[str, Any]:
    return {
        "id": str(v.id),
        "funnel_id": str(v.funnel_id),
        "contact_id": str(v.contact_id) if v.contact_id else None,
        "email": v.email,
        "status": v.status,
        "utm_source": v.utm_source,
        "utm_medium": v.utm_medium,
        "utm_campaign": v.utm_campaign,
        "device": v.device,
        "browser": v.browser,
        "country": v.country,
        "referrer": v.referrer,
        "converted_at": _ts(v.converted_at),
        "affiliate_id": str(v.affiliate_id) if v.affiliate_id else None,
    }


def funnel_order_out(fo: FunnelOrder) -> dict[str, Any]:
    return {
        "id": str(fo.id),
        "funnel_id": str(fo.funnel_id),
        "session_id": str(fo.session_id),
        "step_id": str(fo.step_id) if fo.step_id else None,
        "order_type": fo.order_type,
        "funnel_revenue": money(fo.funnel_revenue),
        "bumps_offered": fo.bumps_offered,
        "bumps_accepted": fo.bumps_accepted,
        "product_order": order_out(fo.product_order),
        "created_at": _ts(fo.created_at),
    }


def cart_out(c: FunnelCart) -> dict[str, Any]:
    return {
        "id": str(c.id),
        "funnel_id": str(c.funnel_id),
        "session_id": str(c.session_id),
        "step_id": str(c.step_id) if c.step_id else None,
        "email": c.email,
        "phone": c.phone,
        "cart_data": c.cart_data or {},
        "total_amount": money(c.total_amount),
        "currency": c.currency,
        "recovery_status": c.recovery_status.value,
        "abandoned_at": _ts(c.abandoned_at),
    }


# --- Affiliates ------------------------------------------------------------------


def affiliate_out(a: FunnelAffiliate) -> dict[str, Any]:
    return {
        "id": str(a.id),
        "name": a.name,
        "phone": a.phone,
        "email": a.email,
        "ref_code": a.ref_code,
        "status": a.status,
        "last_login_at": _ts(a.last_login_at),
        "created_at": _ts(a.created_at),
    }


def commission_out(c: FunnelAffiliateCommission) -> dict[str, Any]:
    return {
        "id": str(c.id),
        "affiliate_id": str(c.affiliate_id),
        "affiliate_name": c.affiliate.name if c.affiliate is not None else None,
        "affiliate_phone": c.affiliate.phone if c.affiliate is not None else None,
        "affiliate_ref_code": c.affiliate.ref_code if c.affiliate is not None else None,
        "funnel_order_id": str(c.funnel_order_id) if c.funnel_order_id else None,
        "order_amount": float(c.order_amount),
        "commission_amount": float(c.commission_amount),
        "commission_type": c.commission_type,
        "commission_rate": float(c.commission_rate),
        "status": c.status.value,
        "approved_at": _ts(c.approved_at),
        "approved_by": c.approved_by,
        "paid_at": _ts(c.paid_at),
        "notes": c.notes,
        "created_at": _ts(c.created_at),
    }


# --- Automations & workflows ------------------------------------------------------


def automation_out(a: FunnelAutomation) -> dict[str, Any]:
    return {
        "id": str(a.id),
        "funnel_id": str(a.funnel_id) if a.funnel_id else None,
        "name": a.name,
        "trigger_type": a.trigger_type,
        "trigger_config": a.trigger_config or {},
        "is_active": a.is_active,
        "priority": a.priority,
        "actions": [
            {
                "id": str(x.id),
                "action_type": x.action_type,
                "action_config": x.action_config or {},
                "conditions": x.conditions or [],
                "delay_minutes": x.delay_minutes,
                "sort_order": x.sort_order,
            }
            for x in a.actions
        ],
    }


def automation_log_out(entry: FunnelAutomationLog) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "automation_id": str(entry.automation_id),
        "action_id": str(entry.action_id),
        "status": entry.status.value,
        "session_id": entry.session_id,
        "contact_email": entry.contact_email,
        "scheduled_at": _ts(entry.scheduled_at),
        "executed_at": _ts(entry.executed_at),
        "result": entry.result or {},
    }


def workflow_out(w: Workflow) -> dict[str, Any]:
    node_ids = {s.id: s.node_id for s in w.steps}
    return {
        "id": str(w.id),
        "name": w.name,
        "description": w.description,
        "status": w.status.value,
        "trigger_type": w.trigger_type,
        "trigger_config": w.trigger_config or {},
        "nodes": [
            {
                "id": s.node_id,
                "type": s.type,
                "position": s.position or {},
                "data": {
                    "label": s.name,
                    ("trigger_type" if s.type == "trigger" else "action_type"): s.action_type,
                    "config": s.config or {},
                },
            }
            for s in w.steps
        ],
        "edges": [
            {
                "id": str(c.id),
                "source": node_ids.get(c.source_step_id),
                "target": node_ids.get(c.target_step_id),
                "sourceHandle": c.source_handle,
            }
            for c in w.connections
        ],
    }


def enrollment_out(e: WorkflowEnrollment) -> dict[str, Any]:
    return {
        "id": str(e.id),
        "workflow_id": str(e.workflow_id),
        "contact_id": str(e.contact_id),
        "status": e.status.value,
        "current_step_id": str(e.current_step_id) if e.current_step_id else None,
        "pending_resumes": e.pending_resumes or [],
        "next_resume_at": _ts(e.next_resume_at),
        "exit_reason": e.exit_reason,
        "enrolled_at": _ts(e.enrolled_at),
        "completed_at": _ts(e.completed_at),
    }


def execution_out(x: WorkflowStepExecution) -> dict[str, Any]:
    return {
        "id": str(x.id),
        "step_id": str(x.step_id),
        "status": x.status,
        "result": to_jsonable(x.result or {}),
        "error": x.error,
        "started_at": _ts(x.started_at),
        "completed_at": _ts(x.completed_at),
    }
