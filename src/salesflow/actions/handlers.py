"""
salesflow.actions.handlers

Built-in action handlers shared by funnel automations and workflows.

Responsibilities:
- Messaging: `send_whatsapp`, `send_email` (merge tags resolved at send time).
- Integration: `webhook` (JSON-safe context as the request body).
- Contact updates: `add_tag`, `remove_tag`, `update_field`, `add_score`.

Sends and contact updates are recorded on the contact's activity timeline.

Every handler returns a result dict with a boolean `success`. Delivery problems are
reported in the result; only programming errors raise.
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx

from salesflow.actions.base import ActionContext, ActionResult, ActionRuntime
from salesflow.actions.conditions import get_path
from salesflow.db.models import MessageTemplate
from salesflow.db.repositories.automations import MessageTemplateRepo
from salesflow.mergetags.context import to_jsonable
from salesflow.mergetags.providers.base import read, resolve_order, resolve_session
from salesflow.observability.logging import get_logger
from salesflow.services.activity_service import ContactActivityService

log = get_logger(__name__)

_CONTACT_ATTRIBUTES = ("name", "email", "phone")


def _timeline(rt: ActionRuntime) -> ContactActivityService:
    return ContactActivityService(session=rt.session, clock=rt.clock)


def _contact_id(ctx: ActionContext) -> uuid.UUID | None:
    return ctx.contact.id if ctx.contact is not None else None


async def _load_template(rt: ActionRuntime, template_id: Any) -> MessageTemplate | None:
    try:
        key = template_id if isinstance(template_id, uuid.UUID) else uuid.UUID(str(template_id))
    except ValueError:
        return None
    return await MessageTemplateRepo(rt.session).get(key)


def _recipient_phone(config: dict[str, Any], merge: dict[str, Any]) -> str | None:
    phone_field = config.get("phone_field")
    if phone_field:
        value = get_path(merge, str(phone_field))
        return str(value) if value else None

    candidates = (
        read(resolve_order(merge), "customer_phone"),
        read(resolve_session(merge), "phone"),
        read(merge.get("contact"), "phone"),
        merge.get("phone"),
        merge.get("customer_phone"),
    )
    for value in candidates:
        if value:
            return str(value)
    return None


async def send_whatsapp(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    merge = ctx.merge_context()
    phone = _recipient_phone(config, merge)
    if not phone:
        return {"success": False, "message": "No phone number found for contact"}

    message = config.get("message") or config.get("template")
    template_id = config.get("template_id")
    if template_id:
        template = await _load_template(rt, template_id)
        if template is None:
            return {"success": False, "message": "WhatsApp template not found"}
        message = template.body
    if not message:
        return {"success": False, "message": "WhatsApp message is required"}

    resolved = rt.engine(ctx).resolve(str(message))
    sent = await rt.whatsapp.send(phone, resolved)
    if not sent.get("success"):
        return {
            "success": False,
            "message": "Failed to send WhatsApp message",
            "error": sent.get("error"),
            "phone": sent.get("phone"),
        }
    await _timeline(rt).whatsapp_sent(_contact_id(ctx), resolved, phone=sent.get("phone"))
    return {
        "success": True,
        "message": "WhatsApp message sent successfully",
        "phone": sent.get("phone"),
        "message_id": sent.get("message_id"),
        "delivered": sent.get("delivered", False),
    }


async def send_email(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    engine = rt.engine(ctx)
    merge = engine.context

    email = get_path(merge, str(config.get("email_field") or "contact.email"))
    if not email:
        email = engine.value_for("contact.email")
    if not email:
        return {"success": False, "message": "No email address found in context"}

    subject = config.get("subject") or "Notification"
    body = config.get("body") or config.get("message") or config.get("template")
    template_id = config.get("template_id")
    if template_id:
        template = await _load_template(rt, template_id)
        if template is None:
            return {"success": False, "message": "Email template not found"}
        body = template.body
        subject = config.get("subject") or template.subject or subject
    if not body:
        return {"success": False, "message": "Email body is required"}

    sent = await rt.mailer.send(
        to=str(email), subject=engine.resolve(str(subject)), body=engine.resolve(str(body))
    )
    return sent


async def webhook(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    url = config.get("url")
    if not url:
        return {"success": False, "message": "No webhook URL configured"}
    method = str(config.get("method") or "POST").upper()
    headers = {str(k): str(v) for k, v in (config.get("headers") or {}).items()}
    payload = to_jsonable(ctx.merge_context())

    try:
        if method == "GET":
            r = await rt.http.request(
                method, str(url), headers=headers, timeout=rt.settings.http_timeout_seconds
            )
        else:
            r = await rt.http.request(
                method,
                str(url),
                headers=headers,
                json=payload,
                timeout=rt.settings.http_timeout_seconds,
            )
    except httpx.HTTPError as e:
        log.error("webhook_failed", url=url, error=str(e))
        return {"success": False, "message": f"Webhook request failed: {e}"}

    try:
        body: Any = r.json()
    except ValueError:
        body = r.text
    return {"success": r.is_success, "status_code": r.status_code, "response": body}


def _tag_name(config: dict[str, Any]) -> str:
    return str(config.get("tag") or config.get("tag_name") or "").strip()


async def add_tag(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    tag = _tag_name(config)
    if not tag:
        return {"success": False, "message": "Tag is required"}
    if ctx.contact is not None and tag not in (ctx.contact.tags or []):
        # JSON columns only persist on reassignment.
        ctx.contact.tags = [*(ctx.contact.tags or []), tag]
        await _timeline(rt).tag_added(ctx.contact.id, tag, source="automation", performed_by="system")
    return {"success": True, "tag": tag, "action": "added"}


async def remove_tag(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    tag = _tag_name(config)
    if not tag:
        return {"success": False, "message": "Tag is required"}
    if ctx.contact is not None and tag in (ctx.contact.tags or []):
        ctx.contact.tags = [t for t in (ctx.contact.tags or []) if t != tag]
        await _timeline(rt).tag_removed(ctx.contact.id, tag, performed_by="system")
    return {"success": True, "tag": tag, "action": "removed"}


async def update_field(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    field = str(config.get("field") or "").strip()
    if not field:
        return {"success": False, "message": "Field is required"}
    value = config.get("value")
    if isinstance(value, str):
        value = rt.engine(ctx).resolve(value)

    contact = ctx.contact
    if contact is None:
        return {"success": True, "skipped": "No contact record", "field": field}
    if field in _CONTACT_ATTRIBUTES:
        setattr(contact, field, value)
    else:
        contact.fields = {**(contact.fields or {}), field: value}
    await _timeline(rt).profile_updated(contact.id, [field], performed_by="system")
    return {"success": True, "field": field, "value": value}


async def add_score(config: dict[str, Any], ctx: ActionContext, rt: ActionRuntime) -> ActionResult:
    try:
        points = int(config.get("points") or 0)
    except (TypeError, ValueError):
        return {"success": False, "message": "Points must be a whole number"}
    contact = ctx.contact
    if contact is None:
        return {"success": True, "skipped": "No contact record", "points": points}
    contact.score = int(contact.score or 0) + points
    return {"success": True, "points": points, "score": contact.score}
